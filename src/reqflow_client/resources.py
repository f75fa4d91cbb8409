"""Client cache & mutation layer.

One resource per entity type. Each keeps the shared QueryCache consistent
with the server across reads, local mutations and remote change events:

- list/get populate ('<entity>', 'list', *scope) and ('<entity>', 'detail', id)
- create inserts into the cached lists whose scope the new entity falls in
- update bumps the version, replaces the entity in place and drops it from
  lists whose scope it left
- delete purges every cached copy, the selection and the recent items
- apply_change folds a subscription event into the cache (idempotent)
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from reqflow_core import mapper
from reqflow_core.errors import NotFoundError, ValidationError
from reqflow_core.schemas import ChangeEvent, ChangeType

from .api import ApiClient
from .query_cache import CacheKey, QueryCache
from .stores import RecentStore, SelectionStore

logger = logging.getLogger("reqflow-client.resources")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value: Any) -> Optional[str]:
    if isinstance(value, Enum):
        value = value.value
    return None if value is None else str(value)


class EntityResource:
    """
    Cached access to one entity type.

    Subclasses declare:
        entity_type: Table name as registered in reqflow_core.mapper
        path: API endpoint
        recent_type: Item type used in the recent-items store
        scope: Every filter the list endpoint accepts, in key order
        scope_fields: Entity attribute for each scope filter (defaults to the filter name)
    """

    entity_type: str = ""
    path: str = ""
    recent_type: str = ""
    scope: tuple[str, ...] = ()
    scope_fields: dict[str, str] = {}

    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        selection: Optional[SelectionStore] = None,
        recent: Optional[RecentStore] = None,
        user_id: Optional[str] = None,
    ):
        self.api = api
        self.cache = cache
        self.selection = selection
        self.recent = recent
        self.user_id = user_id

    # Keys

    def _check_filters(self, filters: dict[str, Any]) -> None:
        unknown = sorted(set(filters) - set(self.scope))
        if unknown:
            raise ValidationError(f"Unsupported {self.entity_type} filter(s): {', '.join(unknown)}")

    def list_key(self, **filters: Any) -> CacheKey:
        self._check_filters(filters)
        return (self.entity_type, "list", *(_text(filters.get(name)) for name in self.scope))

    def detail_key(self, entity_id: UUID | str) -> CacheKey:
        return (self.entity_type, "detail", str(entity_id))

    def _scope_values(self, entity: BaseModel) -> tuple[Optional[str], ...]:
        return tuple(_text(getattr(entity, self.scope_fields.get(name, name), None)) for name in self.scope)

    def _in_scope(self, key: CacheKey, entity: BaseModel) -> bool:
        """A key's None positions are unconstrained; every other position must match."""
        return all(
            wanted is None or wanted == actual
            for wanted, actual in zip(key[2:], self._scope_values(entity))
        )

    def _map(self, row: Optional[dict]) -> Optional[BaseModel]:
        return mapper.map_entity(self.entity_type, row)

    # Reads

    async def list(self, refresh: bool = False, **filters: Any) -> list[BaseModel]:
        """
        List entities for a scope; a cached scope is served without a request.

        Filters that are None are omitted from the request and leave their key
        position unconstrained.

        Raises:
            ValidationError: If a filter is not one the endpoint accepts
        """
        key = self.list_key(**filters)
        if not refresh and key in self.cache:
            return list(self.cache.get(key))

        token = self.cache.begin_fetch(key)
        rows = await self.api.list(self.path, filters)
        entities = mapper.map_entities(self.entity_type, rows)
        self.cache.complete_fetch(key, token, entities)
        return list(entities)

    async def get(self, entity_id: UUID | str, refresh: bool = False) -> BaseModel:
        key = self.detail_key(entity_id)
        if not refresh and key in self.cache:
            return self.cache.get(key)

        token = self.cache.begin_fetch(key)
        entity = self._map(await self.api.get_one(self.path, entity_id))
        self.cache.complete_fetch(key, token, entity)
        return entity

    def cached(self, entity_id: UUID | str) -> Optional[BaseModel]:
        """The locally held copy of an entity, from its detail entry or any list."""
        entity = self.cache.get(self.detail_key(entity_id))
        if entity is not None:
            return entity
        wanted = str(entity_id)
        for key in self.cache.keys((self.entity_type, "list")):
            for item in self.cache.get(key):
                if str(item.id) == wanted:
                    return item
        return None

    # Mutations

    async def create(self, data: dict[str, Any]) -> BaseModel:
        """Create an entity; the server echo is inserted into matching cached lists."""
        now = _now()
        payload = {
            **data,
            "version": 1,
            "created_at": now,
            "updated_at": now,
            "created_by": self.user_id,
            "updated_by": self.user_id,
        }
        entity = self._map(await self.api.create(self.path, payload))
        self._upsert(entity)
        logger.info(f"Created {self.entity_type} {entity.id}")
        return entity

    async def update(self, entity_id: UUID | str, changes: dict[str, Any]) -> BaseModel:
        """
        Update an entity that is held locally.

        Raises:
            NotFoundError: If no cached copy exists to derive the next version from
        """
        current = self.cached(entity_id)
        if current is None:
            raise NotFoundError(f"{mapper.get_entity_type(self.entity_type).label} not found")

        payload = {
            **changes,
            "id": str(entity_id),
            "version": current.version + 1,
            "updated_at": _now(),
            "updated_by": self.user_id,
        }
        entity = self._map(await self.api.update(self.path, payload))
        self._upsert(entity)
        self.cache.invalidate(self.detail_key(entity_id))
        logger.info(f"Updated {self.entity_type} {entity_id} to version {entity.version}")
        return entity

    async def delete(self, entity_id: UUID | str) -> None:
        await self.api.delete(self.path, entity_id)
        self._purge(str(entity_id))
        logger.info(f"Deleted {self.entity_type} {entity_id}")

    # Remote changes

    def apply_change(self, event: ChangeEvent) -> None:
        """Fold one subscription event into the cache."""
        if event.event_type == ChangeType.DELETE:
            entity_id = event.row_id()
            if entity_id is not None:
                self._purge(entity_id)
            return

        entity = self._map(event.new)
        if entity is not None:
            self._upsert(entity)
            detail = self.detail_key(entity.id)
            if detail in self.cache and self.cache.get(detail).version <= entity.version:
                self.cache.set(detail, entity)

    async def watch(self, **filters: Any) -> int:
        """
        Apply change events for a scope until the server closes the stream.

        Returns:
            Number of events applied
        """
        self._check_filters(filters)
        applied = 0
        async for event in self.api.stream_changes(self.path, filters):
            self.apply_change(event)
            applied += 1
        return applied

    # Cache maintenance

    def _upsert(self, entity: BaseModel) -> None:
        """Place entity in every cached list whose scope it belongs to and drop it from the rest."""
        wanted = str(entity.id)
        for key in self.cache.keys((self.entity_type, "list")):
            items = self.cache.get(key)
            index = next((i for i, item in enumerate(items) if str(item.id) == wanted), None)
            if self._in_scope(key, entity):
                if index is None:
                    self.cache.set(key, [*items, entity])
                elif items[index].version <= entity.version:
                    self.cache.set(key, [*items[:index], entity, *items[index + 1:]])
            elif index is not None:
                self.cache.set(key, [*items[:index], *items[index + 1:]])

    def _drop(self, entity_ids: set[str]) -> None:
        for key in self.cache.keys((self.entity_type, "list")):
            items = self.cache.get(key)
            kept = [item for item in items if str(item.id) not in entity_ids]
            if len(kept) != len(items):
                self.cache.set(key, kept)
        for entity_id in entity_ids:
            self.cache.invalidate(self.detail_key(entity_id))
            if self.selection is not None:
                self.selection.deselect(self.entity_type, entity_id)
            if self.recent is not None:
                self.recent.remove_recent_item(entity_id, self.recent_type)

    def _purge(self, entity_id: str) -> None:
        self._drop({entity_id})


class ProjectResource(EntityResource):
    """Projects; deleting one also purges its requirements from the client."""

    entity_type = "projects"
    path = "/api/db/projects"
    recent_type = "project"
    scope = ("user_id", "status")
    scope_fields = {"user_id": "created_by"}

    def __init__(self, *args: Any, requirements: Optional["RequirementResource"] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.requirements = requirements

    def _purge(self, entity_id: str) -> None:
        super()._purge(entity_id)
        if self.selection is not None and self.selection.active_project_id == entity_id:
            self.selection.set_active_project(None)
        if self.requirements is not None:
            self.requirements.purge_project(entity_id)


class RequirementResource(EntityResource):
    entity_type = "requirements"
    path = "/api/db/requirements"
    recent_type = "requirement"
    scope = ("project_id", "parent_id", "user_id")
    scope_fields = {"user_id": "created_by"}

    def purge_project(self, project_id: str) -> None:
        """Forget every cached requirement of a deleted project."""
        orphans = set()
        for key in self.cache.keys((self.entity_type,)):
            value = self.cache.get(key)
            items = value if isinstance(value, list) else [value]
            orphans.update(str(item.id) for item in items if _text(item.project_id) == project_id)
        for key in self.cache.keys((self.entity_type, "list", project_id)):
            self.cache.invalidate(key)
        self._drop(orphans)
        logger.debug(f"Purged {len(orphans)} cached requirement(s) of project {project_id}")


class CollectionResource(EntityResource):
    entity_type = "collections"
    path = "/api/db/collections"
    recent_type = "collection"
    scope = ("parent_id",)


class DocumentResource(EntityResource):
    entity_type = "external_docs"
    path = "/api/db/documents"
    recent_type = "document"
    scope = ("collection_id", "type")
