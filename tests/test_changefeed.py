"""Tests for the change feed and the event-stream generator built on it."""
import asyncio
import json

import pytest
from starlette.requests import Request

from reqflow_core import crud, models
from reqflow_core.api.routers import projects as project_routes
from reqflow_core.api.routers import requirements as requirement_routes
from reqflow_core.api.streaming import change_stream
from reqflow_core.changefeed import ChangeFeed
from reqflow_core.errors import StoreError
from reqflow_core.schemas import ChangeEvent, ChangeType

pytestmark = pytest.mark.asyncio


@pytest.fixture
def feed(session_factory):
    feed = ChangeFeed(queue_size=10)
    feed.attach(session_factory)
    return feed


async def next_change(listener, timeout=1.0):
    return await asyncio.wait_for(listener.get(), timeout)


async def assert_quiet(listener):
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(listener.get(), 0.05)


class TestPublication:
    """Changes reach listeners only after commit."""

    async def test_insert_published_after_commit(self, feed, db):
        """Test that a committed insert arrives with the full new row."""
        async with feed.listen("projects") as listener:
            project = crud.create_entity(db, "projects", {"name": "Alpha", "created_by": "u1"})

            change = await next_change(listener)

        assert change.event_type == ChangeType.INSERT
        assert change.table == "projects"
        assert change.old is None
        assert change.new["id"] == str(project.id)
        assert change.new["name"] == "Alpha"
        assert change.new["version"] == 1

    async def test_update_carries_old_and_new(self, feed, db):
        """Test that an update event carries the row before and after."""
        project = crud.create_entity(db, "projects", {"name": "Alpha"})

        async with feed.listen("projects") as listener:
            crud.update_entity(db, "projects", project.id, {"name": "Beta", "version": 2})

            change = await next_change(listener)

        assert change.event_type == ChangeType.UPDATE
        assert change.old["name"] == "Alpha"
        assert change.old["version"] == 1
        assert change.new["name"] == "Beta"
        assert change.new["version"] == 2

    async def test_delete_carries_old_row(self, feed, db):
        """Test that a delete event carries only the old row."""
        project = crud.create_entity(db, "projects", {"name": "Alpha"})
        requirement = crud.create_entity(db, "requirements", {"project_id": project.id, "title": "Req1"})

        async with feed.listen("requirements") as listener:
            crud.delete_entity(db, "requirements", requirement.id)

            change = await next_change(listener)

        assert change.event_type == ChangeType.DELETE
        assert change.new is None
        assert change.row_id() == str(requirement.id)

    async def test_rollback_publishes_nothing(self, feed, db):
        """Test that flushed but rolled back changes are discarded."""
        async with feed.listen("projects") as listener:
            db.add(models.Project(name="Never"))
            db.flush()
            db.rollback()

            await assert_quiet(listener)

    async def test_other_tables_not_delivered(self, feed, db):
        """Test that a listener only sees its own table."""
        async with feed.listen("collections") as listener:
            crud.create_entity(db, "projects", {"name": "Alpha"})

            await assert_quiet(listener)

    async def test_filter_limits_delivery(self, feed, db):
        """Test that a filtered listener skips rows outside its filter."""
        alpha = crud.create_entity(db, "projects", {"name": "Alpha"})
        beta = crud.create_entity(db, "projects", {"name": "Beta"})

        async with feed.listen("requirements", {"project_id": alpha.id}) as listener:
            crud.create_entity(db, "requirements", {"project_id": beta.id, "title": "Elsewhere"})
            crud.create_entity(db, "requirements", {"project_id": alpha.id, "title": "Here"})

            change = await next_change(listener)
            await assert_quiet(listener)

        assert change.new["title"] == "Here"

    async def test_project_delete_emits_requirement_deletes(self, feed, db):
        """Test that a cascading project delete emits one DELETE per requirement."""
        project = crud.create_entity(db, "projects", {"name": "Alpha"})
        for title in ("R1", "R2"):
            crud.create_entity(db, "requirements", {"project_id": project.id, "title": title})

        async with feed.listen("requirements", {"project_id": project.id}) as listener:
            crud.delete_project(db, project.id)

            changes = [await next_change(listener), await next_change(listener)]

        assert {c.event_type for c in changes} == {ChangeType.DELETE}
        assert sorted(c.old["title"] for c in changes) == ["R1", "R2"]

    async def test_failed_cascade_publishes_no_deletes(self, feed, db, failing_bulk_delete):
        """Test that a store failure during the requirement delete leaks no DELETE events."""
        project = crud.create_entity(db, "projects", {"name": "Alpha"})
        crud.create_entity(db, "requirements", {"project_id": project.id, "title": "R1"})

        async with feed.listen("requirements") as requirement_listener, feed.listen("projects") as project_listener:
            with pytest.raises(StoreError):
                crud.delete_project(db, project.id)

            await assert_quiet(requirement_listener)
            await assert_quiet(project_listener)

        assert crud.get_entity(db, "projects", project.id).name == "Alpha"
        assert [r.title for r in crud.list_entities(db, "requirements", {"project_id": project.id})] == ["R1"]


class TestListenerLifecycle:
    async def test_listener_released_on_exit(self, feed):
        """Test that leaving the context removes the listener."""
        async with feed.listen("projects"):
            assert feed.listener_count == 1

        assert feed.listener_count == 0

    async def test_listener_released_on_error(self, feed):
        """Test that an exception in the consumer still removes the listener."""
        with pytest.raises(RuntimeError):
            async with feed.listen("projects"):
                raise RuntimeError("consumer crashed")

        assert feed.listener_count == 0

    async def test_unknown_table_rejected(self, feed):
        """Test that listening on a non-entity table raises."""
        with pytest.raises(ValueError):
            async with feed.listen("widgets"):
                pass

    async def test_release_is_idempotent(self, feed):
        """Test that releasing a registered listener twice is harmless."""
        listener = feed.register("projects")
        assert feed.listener_count == 1

        feed.release(listener)
        feed.release(listener)

        assert feed.listener_count == 0
        assert listener.closed

    async def test_close_ends_streams(self, feed):
        """Test that closing the feed ends every open listener."""
        async with feed.listen("projects") as listener:
            feed.close()

            assert await next_change(listener) is None

    async def test_overflow_closes_stream(self):
        """Test that a full queue closes the stream instead of dropping events silently."""
        feed = ChangeFeed(queue_size=2)
        async with feed.listen("projects") as listener:
            for n in range(3):
                feed.publish(ChangeEvent(event_type="INSERT", table="projects", new={"id": str(n)}))
            await asyncio.sleep(0)

            assert listener.closed
            received = []
            change = await next_change(listener)
            while change is not None:
                received.append(change)
                change = await next_change(listener)

        assert len(received) < 3


class FakeRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


class TestChangeStream:
    """The text/event-stream generator used by subscribe=true routes."""

    async def test_stream_emits_keepalive_then_events(self, feed):
        """Test that an idle stream sends a keep-alive, then one data frame per change."""
        request = FakeRequest()
        stream = change_stream(request, feed, feed.register("projects"), keepalive_s=0.05)

        assert await stream.__anext__() == ": keep-alive\n\n"

        feed.publish(ChangeEvent(event_type="INSERT", table="projects", new={"id": "p1", "name": "Alpha"}))
        frame = await stream.__anext__()

        assert frame.startswith("data: ") and frame.endswith("\n\n")
        assert json.loads(frame[len("data: "):]) == {
            "eventType": "INSERT",
            "old": None,
            "new": {"id": "p1", "name": "Alpha"},
        }

        request.disconnected = True
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert feed.listener_count == 0

    async def test_closing_stream_releases_listener(self, feed):
        """Test that closing the generator early releases its listener."""
        stream = change_stream(FakeRequest(), feed, feed.register("projects"), keepalive_s=0.05)
        await stream.__anext__()
        assert feed.listener_count == 1

        await stream.aclose()

        assert feed.listener_count == 0

    async def test_feed_shutdown_ends_stream(self, feed):
        """Test that feed shutdown ends the generator and releases the listener."""
        stream = change_stream(FakeRequest(), feed, feed.register("projects"), keepalive_s=0.05)
        await stream.__anext__()

        feed.close()

        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert feed.listener_count == 0


def route_request(app, path):
    """A GET request bound to app whose client never disconnects."""
    scope = {"type": "http", "method": "GET", "path": path, "query_string": b"", "headers": [], "app": app}

    async def receive():
        await asyncio.Event().wait()

    return Request(scope, receive)


class TestSubscribeRoutes:
    """GET ?subscribe=true on the entity routes."""

    async def test_requirement_subscription_streams_filtered_changes(self, app, db):
        """Test that a project-filtered subscription streams only that project's changes."""
        alpha = crud.create_entity(db, "projects", {"name": "Alpha"})
        beta = crud.create_entity(db, "projects", {"name": "Beta"})
        feed = app.state.change_feed

        response = requirement_routes.get_requirements(
            route_request(app, "/api/db/requirements"),
            id=None,
            project_id=alpha.id,
            parent_id=None,
            user_id=None,
            subscribe=True,
            db=None,
        )

        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache"
        assert feed.listener_count == 1

        crud.create_entity(db, "requirements", {"project_id": beta.id, "title": "Elsewhere"})
        requirement = crud.create_entity(db, "requirements", {"project_id": alpha.id, "title": "Here"})

        frame = await asyncio.wait_for(response.body_iterator.__anext__(), 1.0)
        message = json.loads(frame[len("data: "):])
        assert frame.startswith("data: ")
        assert message["eventType"] == "INSERT"
        assert message["old"] is None
        assert message["new"]["id"] == str(requirement.id)
        assert message["new"]["title"] == "Here"

        await response.body_iterator.aclose()
        assert feed.listener_count == 0

    async def test_project_subscription_filters_by_status(self, app, db):
        """Test that the status filter is translated to its stored value."""
        response = project_routes.get_projects(
            route_request(app, "/api/db/projects"),
            id=None,
            user_id=None,
            status=models.ProjectStatus.ARCHIVED,
            subscribe=True,
            db=None,
        )

        crud.create_entity(db, "projects", {"name": "Live"})
        crud.create_entity(db, "projects", {"name": "Shelved", "status": models.ProjectStatus.ARCHIVED})

        frame = await asyncio.wait_for(response.body_iterator.__anext__(), 1.0)
        assert json.loads(frame[len("data: "):])["new"]["name"] == "Shelved"

        await response.body_iterator.aclose()

    async def test_unstarted_response_releases_on_background(self, app):
        """Test that a response whose body never ran still frees its listener."""
        feed = app.state.change_feed
        response = project_routes.get_projects(
            route_request(app, "/api/db/projects"),
            id=None,
            user_id=None,
            status=None,
            subscribe=True,
            db=None,
        )
        assert feed.listener_count == 1

        await response.background()

        assert feed.listener_count == 0
