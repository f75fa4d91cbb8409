"""Server-sent event streams over the change feed."""
import asyncio
import json
import logging
from typing import Any, AsyncIterator

import anyio.from_thread
from fastapi import BackgroundTasks, Request
from fastapi.responses import StreamingResponse

from ..changefeed import ChangeFeed, ChangeListener
from ..mapper import resolve_filters

logger = logging.getLogger("reqflow-core.streaming")


def format_event(message: dict) -> str:
    """Encode one message as a text/event-stream frame."""
    return f"data: {json.dumps(message)}\n\n"


def _event_loop() -> asyncio.AbstractEventLoop:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        # Sync routes run in a worker thread; use the loop that dispatched it
        return anyio.from_thread.run_sync(asyncio.get_running_loop)


async def change_stream(
    request: Request,
    feed: ChangeFeed,
    listener: ChangeListener,
    keepalive_s: float = 15.0,
) -> AsyncIterator[str]:
    """
    Yield one frame per change the listener receives until the client goes
    away or the feed closes.

    The listener is released when this generator finishes, is closed, or is
    cancelled.
    """
    try:
        while True:
            if await request.is_disconnected():
                logger.info(f"Client disconnected from {listener.table} stream")
                break
            try:
                change = await asyncio.wait_for(listener.get(), timeout=keepalive_s)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            if change is None:
                logger.info(f"Change feed closed {listener.table} stream")
                break
            yield format_event(change.to_message())
    finally:
        feed.release(listener)


def subscription_response(request: Request, entity_type: str, filters: dict[str, Any]) -> StreamingResponse:
    """
    Open a text/event-stream response for an entity type and its public filters.

    The listener is registered before the response is returned, so changes
    committed while the headers are being sent are not lost. A response whose
    body never starts still releases it through the background task.
    """
    state = request.app.state
    feed: ChangeFeed = state.change_feed
    listener = feed.register(entity_type, resolve_filters(entity_type, filters), _event_loop())
    cleanup = BackgroundTasks()
    cleanup.add_task(feed.release, listener)
    return StreamingResponse(
        change_stream(request, feed, listener, state.settings.stream_keepalive_s),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        background=cleanup,
    )
