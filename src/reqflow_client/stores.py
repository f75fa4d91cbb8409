"""Selection and recent-items stores.

Both stores keep their state in a pydantic model and write the persisted
part of it through a StateStorage after every change, so a restarted client
picks up where it left off:

- SelectionStore ("selection-store"): selected ids, filter preferences and
  the active project, per entity type
- RecentStore ("recent-items-store"): most recently accessed items, newest
  first, bounded to max_items
"""
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Literal, Optional, Protocol

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError

logger = logging.getLogger("reqflow-client.stores")

RecentItemType = Literal["project", "requirement", "collection", "document"]


class StateStorage(Protocol):
    """Durable key/value storage for store state."""

    def load(self, key: str) -> Optional[dict[str, Any]]: ...

    def save(self, key: str, data: dict[str, Any]) -> None: ...


class MemoryStorage:
    """Process-local storage; state survives store re-creation but not the process."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def load(self, key: str) -> Optional[dict[str, Any]]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, data: dict[str, Any]) -> None:
        self._data[key] = json.dumps(data)


class JsonFileStorage:
    """One JSON file per key in a directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def load(self, key: str) -> Optional[dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable state file {path}: {e}")
            return None

    def save(self, key: str, data: dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_name, self._path(key))


def _restore(storage: Optional[StateStorage], key: str, model: type[BaseModel]) -> BaseModel:
    data = storage.load(key) if storage is not None else None
    if not data:
        return model()
    try:
        return model.model_validate(data)
    except SchemaError as e:
        logger.warning(f"Discarding invalid persisted state for {key}: {e.error_count()} error(s)")
        return model()


# Selection

class SelectionState(BaseModel):
    selected: dict[str, list[str]] = Field(default_factory=dict)
    filters: dict[str, dict[str, Any]] = Field(default_factory=dict)
    active_project_id: Optional[str] = None


class SelectionStore:
    """
    Selected ids and filter preferences per entity type.

    Selection is an ordered set: selecting an already-selected id is a no-op.
    """

    STORAGE_KEY = "selection-store"

    def __init__(self, storage: Optional[StateStorage] = None):
        self.storage = storage
        self.state = _restore(storage, self.STORAGE_KEY, SelectionState)

    def persisted(self) -> dict[str, Any]:
        """The part of the state written to storage."""
        return self.state.model_dump(include={"selected", "filters", "active_project_id"})

    def _save(self) -> None:
        if self.storage is not None:
            self.storage.save(self.STORAGE_KEY, self.persisted())

    def selected(self, entity_type: str) -> list[str]:
        return list(self.state.selected.get(entity_type, []))

    def is_selected(self, entity_type: str, entity_id: Any) -> bool:
        return str(entity_id) in self.state.selected.get(entity_type, [])

    def select(self, entity_type: str, entity_id: Any) -> None:
        ids = self.state.selected.setdefault(entity_type, [])
        if str(entity_id) not in ids:
            ids.append(str(entity_id))
            self._save()

    def deselect(self, entity_type: str, entity_id: Any) -> None:
        ids = self.state.selected.get(entity_type, [])
        if str(entity_id) in ids:
            ids.remove(str(entity_id))
            self._save()

    def toggle(self, entity_type: str, entity_id: Any) -> bool:
        """Flip selection of an id; returns whether it is now selected."""
        if self.is_selected(entity_type, entity_id):
            self.deselect(entity_type, entity_id)
            return False
        self.select(entity_type, entity_id)
        return True

    def clear_selection(self, entity_type: Optional[str] = None) -> None:
        if entity_type is None:
            self.state.selected.clear()
        else:
            self.state.selected.pop(entity_type, None)
        self._save()

    def filters(self, entity_type: str) -> dict[str, Any]:
        return dict(self.state.filters.get(entity_type, {}))

    def set_filters(self, entity_type: str, **filters: Any) -> None:
        """Merge filter preferences; a None value removes that filter."""
        current = self.state.filters.setdefault(entity_type, {})
        for name, value in filters.items():
            if value is None:
                current.pop(name, None)
            else:
                current[name] = value
        self._save()

    def clear_filters(self, entity_type: str) -> None:
        self.state.filters.pop(entity_type, None)
        self._save()

    @property
    def active_project_id(self) -> Optional[str]:
        return self.state.active_project_id

    def set_active_project(self, project_id: Any) -> None:
        self.state.active_project_id = None if project_id is None else str(project_id)
        self._save()

    def reset(self) -> None:
        self.state = SelectionState()
        self._save()


# Recent items

class RecentItem(BaseModel):
    id: str
    name: str
    type: RecentItemType
    accessed_at: datetime


class RecentState(BaseModel):
    items: list[RecentItem] = Field(default_factory=list)
    max_items: int = 50


class RecentStore:
    """
    Most recently accessed items, newest first.

    Re-adding an item moves it to the front instead of duplicating it; the
    list never grows beyond max_items.
    """

    STORAGE_KEY = "recent-items-store"

    def __init__(
        self,
        storage: Optional[StateStorage] = None,
        max_items: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.storage = storage
        self.clock = clock
        self.state = _restore(storage, self.STORAGE_KEY, RecentState)
        if max_items is not None:
            self.state.max_items = max_items
            self.state.items = self.state.items[:max_items]

    @property
    def max_items(self) -> int:
        return self.state.max_items

    @property
    def items(self) -> list[RecentItem]:
        return list(self.state.items)

    def persisted(self) -> dict[str, Any]:
        return self.state.model_dump(mode="json", include={"items", "max_items"})

    def _save(self) -> None:
        if self.storage is not None:
            self.storage.save(self.STORAGE_KEY, self.persisted())

    def add_recent_item(self, item_id: Any, name: str, item_type: RecentItemType) -> None:
        item = RecentItem(id=str(item_id), name=name, type=item_type, accessed_at=self.clock())
        others = [i for i in self.state.items if not (i.id == item.id and i.type == item.type)]
        self.state.items = [item, *others][: self.state.max_items]
        self._save()

    def remove_recent_item(self, item_id: Any, item_type: Optional[RecentItemType] = None) -> None:
        """Remove an item; without item_type every type with that id is removed."""
        wanted = str(item_id)
        kept = [i for i in self.state.items if not (i.id == wanted and item_type in (None, i.type))]
        if len(kept) != len(self.state.items):
            self.state.items = kept
            self._save()

    def clear_recent_items(self) -> None:
        self.state.items = []
        self._save()

    def get_recent_items_by_type(self, item_type: RecentItemType, limit: int = 10) -> list[dict[str, str]]:
        """Newest-first {id, name} pairs of one type."""
        matching = [i for i in self.state.items if i.type == item_type]
        return [{"id": i.id, "name": i.name} for i in matching[:limit]]
