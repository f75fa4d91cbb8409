"""Database connection and session management."""
from typing import Generator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool


def build_engine(database_url: str) -> Engine:
    """
    Create the SQLAlchemy engine for a database URL.

    SQLite URLs (used by tests and local runs) share one connection across
    threads; everything else gets the pooled PostgreSQL settings.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    # Conservative pool settings for Supabase Session mode (max ~15-20 connections)
    return create_engine(
        database_url,
        pool_pre_ping=True,          # Verify connections before using
        pool_size=3,                 # Base pool of 3 connections
        max_overflow=7,              # Allow up to 10 total connections
        pool_recycle=3600,           # Recycle connections every hour
        pool_timeout=30,             # Timeout after 30 seconds
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory bound to an engine."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields:
        Session: SQLAlchemy database session from the app's session factory
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
