"""Shared fixtures: an in-memory SQLite store and the API application built on it."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Delete
from sqlalchemy.exc import OperationalError

from reqflow_core.api.app import create_app
from reqflow_core.config import Settings
from reqflow_core.database import build_engine, build_session_factory
from reqflow_core.models import Base


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        pipeline_api_key=None,
        pipeline_user_id=None,
        pipeline_saved_item_id=None,
    )


@pytest.fixture
def session_factory(settings):
    engine = build_engine(settings.database_url)
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def app(settings, session_factory):
    return create_app(settings, session_factory)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def failing_bulk_delete(db, monkeypatch):
    """Make every DELETE statement sent through db.execute fail at the database."""
    execute = db.execute

    def guarded(statement, *args, **kwargs):
        if isinstance(statement, Delete):
            raise OperationalError(str(statement), {}, Exception("database is locked"))
        return execute(statement, *args, **kwargs)

    monkeypatch.setattr(db, "execute", guarded)
