"""FastAPI application factory.

Every collaborator (session factory, change feed, rate limiters, pipeline
service) is built here once per application and exposed on app.state.
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from .. import __version__
from ..changefeed import ChangeFeed
from ..config import Settings, get_settings
from ..database import build_engine, build_session_factory
from ..errors import RateLimitError, ReqFlowError
from ..pipeline import PipelineService
from ..rate_limit import RateLimiter, run_sweeper
from .routers import ai, collections, documents, projects, requirements, user_profiles

logger = logging.getLogger("reqflow-core.api")


def _error_response(request: Request, exc: ReqFlowError) -> JSONResponse:
    if isinstance(exc, RateLimitError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "retryAfter": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def _validation_response(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    logger.warning(f"Rejected {request.method} {request.url.path}: {'; '.join(messages)}")
    return JSONResponse(status_code=400, content={"error": "; ".join(messages)})


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    pipeline_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Settings to use (defaults to environment settings)
        session_factory: SQLAlchemy session factory (defaults to one built from settings.database_url)
        pipeline_transport: httpx transport for the AI pipeline client (tests)
    """
    settings = settings or get_settings()
    if session_factory is None:
        session_factory = build_session_factory(build_engine(settings.database_url))

    change_feed = ChangeFeed(queue_size=settings.stream_queue_size)
    change_feed.attach(session_factory)
    rate_limiters = {
        "default": RateLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_ms),
        "ai": RateLimiter(settings.ai_rate_limit_max_requests, settings.ai_rate_limit_window_ms),
    }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(run_sweeper(rate_limiters.values(), settings.rate_limit_sweep_interval_s))
        logger.info("ReqFlow Core API started")
        try:
            yield
        finally:
            change_feed.close()
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            logger.info("ReqFlow Core API stopped")

    app = FastAPI(
        title="ReqFlow Core API",
        description="Requirements management with live change streams",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.change_feed = change_feed
    app.state.rate_limiters = rate_limiters
    app.state.pipeline = PipelineService(settings, transport=pipeline_transport)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ReqFlowError, _error_response)
    app.add_exception_handler(RequestValidationError, _validation_response)

    app.include_router(projects.router, prefix="/api/db/projects")
    app.include_router(requirements.router, prefix="/api/db/requirements")
    app.include_router(collections.router, prefix="/api/db/collections")
    app.include_router(documents.router, prefix="/api/db/documents")
    app.include_router(user_profiles.router, prefix="/api/db/user-profiles")
    app.include_router(ai.router, prefix="/api/ai")

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "listeners": change_feed.listener_count}

    return app
