"""Entity Mapper: persisted rows <-> canonical entity shapes.

A "row" is the JSON-safe dict of a table row keyed by column name (what the
store returns and what change-feed events carry). Mapping is purely structural:
no validation beyond the entity shape, no side effects, and nullable
timestamps/audit fields pass through as None.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Type

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy import inspect

from . import models, schemas
from .errors import ValidationError


@dataclass(frozen=True)
class EntityType:
    """Everything the gateway, routers and change feed need to know about one table."""

    name: str
    label: str
    model: Type[models.Base]
    entity: Type[BaseModel]
    filters: tuple[tuple[str, str], ...]
    versioned: bool = True


PROJECTS = EntityType(
    name="projects",
    label="Project",
    model=models.Project,
    entity=schemas.Project,
    filters=(("user_id", "created_by"), ("status", "status")),
)
REQUIREMENTS = EntityType(
    name="requirements",
    label="Requirement",
    model=models.Requirement,
    entity=schemas.Requirement,
    filters=(("project_id", "project_id"), ("parent_id", "parent_id"), ("user_id", "created_by")),
)
COLLECTIONS = EntityType(
    name="collections",
    label="Collection",
    model=models.Collection,
    entity=schemas.Collection,
    filters=(("parent_id", "parent_id"),),
)
EXTERNAL_DOCS = EntityType(
    name="external_docs",
    label="Document",
    model=models.ExternalDoc,
    entity=schemas.ExternalDoc,
    filters=(("collection_id", "collection_id"), ("type", "type")),
)
USER_PROFILES = EntityType(
    name="user_profiles",
    label="Profile",
    model=models.UserProfile,
    entity=schemas.UserProfile,
    filters=(("firebase_uid", "firebase_uid"), ("supabase_uid", "supabase_uid")),
    versioned=False,
)

ENTITY_TYPES: dict[str, EntityType] = {
    entity_type.name: entity_type
    for entity_type in (PROJECTS, REQUIREMENTS, COLLECTIONS, EXTERNAL_DOCS, USER_PROFILES)
}


def get_entity_type(name: str) -> EntityType:
    """Look up a registered entity type by table name."""
    try:
        return ENTITY_TYPES[name]
    except KeyError:
        raise ValueError(f"Unknown entity type: {name}") from None


def resolve_filters(entity_type: str, filters: Optional[dict[str, Any]]) -> dict[str, Any]:
    """
    Translate public filter names into column names, dropping None values.

    Raises:
        ValidationError: If a filter name is not supported for this entity type
    """
    meta = get_entity_type(entity_type)
    columns = dict(meta.filters)
    resolved = {}
    for name, value in (filters or {}).items():
        if value is None:
            continue
        column_name = columns.get(name)
        if column_name is None:
            raise ValidationError(f"Unsupported filter for {meta.name}: {name}")
        resolved[column_name] = value.value if isinstance(value, Enum) else value
    return resolved


def column_attributes(model: Type[models.Base]) -> dict[str, str]:
    """Map column names to ORM attribute keys ('metadata' -> 'metadata_')."""
    return {attr.columns[0].name: attr.key for attr in inspect(model).mapper.column_attrs}


def row_from_model(instance: models.Base, overrides: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    """
    Build the persisted-row dict of an ORM instance.

    Args:
        instance: ORM instance
        overrides: Column values to use instead of the instance's (e.g. pre-update values)

    Returns:
        JSON-safe dict keyed by column name
    """
    overrides = overrides or {}
    row = {}
    for column_name, attr_key in column_attributes(type(instance)).items():
        if column_name in overrides:
            row[column_name] = overrides[column_name]
        else:
            row[column_name] = getattr(instance, attr_key)
    return jsonable_encoder(row)


def map_entity(entity_type: str, row: Optional[dict[str, Any]]) -> Optional[BaseModel]:
    """
    Map one persisted row to its canonical entity.

    Returns None for a None row. created_at/updated_at/created_by/updated_by
    are carried over as-is, including None.
    """
    if row is None:
        return None
    return get_entity_type(entity_type).entity.model_validate(row)


def map_entities(entity_type: str, rows: Optional[Iterable[Optional[dict[str, Any]]]]) -> list[BaseModel]:
    """Map a batch of rows, dropping anything that maps to None."""
    if not rows:
        return []
    mapped = (map_entity(entity_type, row) for row in rows)
    return [entity for entity in mapped if entity is not None]


def entity_to_row(entity: Optional[BaseModel]) -> Optional[dict[str, Any]]:
    """Inverse of map_entity: canonical entity back to its row shape."""
    if entity is None:
        return None
    return entity.model_dump(mode="json")
