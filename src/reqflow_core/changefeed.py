"""Row-level change feed built on SQLAlchemy session events.

Changes are captured when a session flushes, held on the session until the
transaction commits, then published to every listener whose table and filter
match. A rollback discards them. Listeners live on the asyncio loop that
created them; publication is thread-safe because sync routes commit from the
threadpool.

There is no replay: a listener only sees changes committed while it is
registered.
"""
import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, sessionmaker

from .mapper import ENTITY_TYPES, column_attributes, row_from_model
from .schemas import ChangeEvent, ChangeType

logger = logging.getLogger("reqflow-core.changefeed")

_PENDING_KEY = "reqflow_pending_changes"
_CLOSED = object()


def stage_change(
    session: Session,
    table: str,
    event_type: str,
    old: Optional[dict[str, Any]] = None,
    new: Optional[dict[str, Any]] = None,
) -> None:
    """Queue a change on the session; it is published when the session commits."""
    change = ChangeEvent(event_type=ChangeType(event_type), table=table, old=old, new=new)
    session.info.setdefault(_PENDING_KEY, []).append(change)


def _old_values(instance) -> dict[str, Any]:
    """Pre-flush values of the columns modified on an instance."""
    state = inspect(instance)
    old = {}
    for column_name, attr_key in column_attributes(type(instance)).items():
        history = state.attrs[attr_key].history
        if history.deleted:
            old[column_name] = history.deleted[0]
    return old


def _matches(row: Optional[dict[str, Any]], filters: dict[str, Any]) -> bool:
    if row is None:
        return False
    return all(str(row.get(column)) == str(value) for column, value in filters.items())


class ChangeListener:
    """One subscriber's view of the feed: a bounded queue of matching changes."""

    def __init__(self, table: str, filters: dict[str, Any], loop: asyncio.AbstractEventLoop, maxsize: int):
        self.table = table
        self.filters = filters
        self.closed = False
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def matches(self, change: ChangeEvent) -> bool:
        """Server-side filter: table must match and old or new row must satisfy the filter."""
        if change.table != self.table:
            return False
        if not self.filters:
            return True
        return _matches(change.new, self.filters) or _matches(change.old, self.filters)

    def deliver(self, change: ChangeEvent) -> None:
        """Hand a change to the listener from any thread."""
        try:
            self._loop.call_soon_threadsafe(self._put, change)
        except RuntimeError:
            # Loop already closed; the stream is gone
            self.closed = True

    def close(self) -> None:
        """End the stream; get() returns None once queued changes are drained."""
        try:
            self._loop.call_soon_threadsafe(self._put, _CLOSED)
        except RuntimeError:
            self.closed = True

    def _put(self, item) -> None:
        if self.closed:
            return
        if item is _CLOSED:
            self.closed = True
            self._force_put(item)
            return
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            # A slow consumer loses its stream rather than silently missing events
            logger.warning(f"Listener on {self.table} overflowed; closing stream")
            self.closed = True
            self._force_put(_CLOSED)

    def _force_put(self, item) -> None:
        while self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(item)

    async def get(self) -> Optional[ChangeEvent]:
        """Wait for the next change; None means the stream has ended."""
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item


class ChangeFeed:
    """Process-local change feed for the entity tables."""

    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._listeners: set[ChangeListener] = set()
        self._lock = threading.Lock()

    def attach(self, session_factory: sessionmaker) -> None:
        """Capture changes from every session created by this factory."""
        event.listen(session_factory, "after_flush", self._capture)
        event.listen(session_factory, "after_commit", self._publish_pending)
        event.listen(session_factory, "after_rollback", self._discard_pending)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def register(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> ChangeListener:
        """
        Register a listener whose queue is served by loop (default: the running loop).

        The caller owns the listener and must hand it back to release().

        Raises:
            ValueError: If table is not an entity table
        """
        if table not in ENTITY_TYPES:
            raise ValueError(f"Unknown table: {table}")
        listener = ChangeListener(
            table,
            {key: value for key, value in (filters or {}).items() if value is not None},
            loop or asyncio.get_running_loop(),
            self.queue_size,
        )
        with self._lock:
            self._listeners.add(listener)
        logger.info(f"Listener registered on {table} with filter {listener.filters}")
        return listener

    def release(self, listener: ChangeListener) -> None:
        """Stop delivering to a listener. Releasing twice is a no-op."""
        with self._lock:
            if listener not in self._listeners:
                return
            self._listeners.discard(listener)
        listener.closed = True
        logger.info(f"Listener released on {listener.table}")

    @asynccontextmanager
    async def listen(self, table: str, filters: Optional[dict[str, Any]] = None) -> AsyncIterator[ChangeListener]:
        """
        Register a listener for the duration of the context.

        The listener is removed on every exit path, including cancellation
        when the client disconnects.
        """
        listener = self.register(table, filters)
        try:
            yield listener
        finally:
            self.release(listener)

    def publish(self, change: ChangeEvent) -> None:
        """Deliver a change to every matching listener."""
        with self._lock:
            targets = [listener for listener in self._listeners if listener.matches(change)]
        for listener in targets:
            listener.deliver(change)
        logger.debug(f"Published {change.event_type} on {change.table} to {len(targets)} listener(s)")

    def close(self) -> None:
        """End every open stream (server shutdown)."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener.close()

    # Session event hooks

    def _capture(self, session: Session, flush_context) -> None:
        for instance in session.new:
            table = getattr(instance, "__tablename__", None)
            if table in ENTITY_TYPES:
                stage_change(session, table, "INSERT", new=row_from_model(instance))
        for instance in session.dirty:
            table = getattr(instance, "__tablename__", None)
            if table in ENTITY_TYPES and session.is_modified(instance):
                stage_change(
                    session,
                    table,
                    "UPDATE",
                    old=row_from_model(instance, overrides=_old_values(instance)),
                    new=row_from_model(instance),
                )
        for instance in session.deleted:
            table = getattr(instance, "__tablename__", None)
            if table in ENTITY_TYPES:
                stage_change(session, table, "DELETE", old=row_from_model(instance))

    def _publish_pending(self, session: Session) -> None:
        for change in session.info.pop(_PENDING_KEY, []):
            self.publish(change)

    def _discard_pending(self, session: Session) -> None:
        dropped = session.info.pop(_PENDING_KEY, [])
        if dropped:
            logger.debug(f"Discarded {len(dropped)} uncommitted change(s)")
