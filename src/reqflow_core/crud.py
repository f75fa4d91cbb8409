"""Persistence Gateway: CRUD operations for every entity type.

All functions take a SQLAlchemy session and an entity type name from
mapper.ENTITY_TYPES. Store failures are rolled back and surfaced as
StoreError; lookups of missing ids raise NotFoundError.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from . import changefeed, models
from .errors import ConflictError, NotFoundError, StoreError, ValidationError
from .mapper import EntityType, column_attributes, get_entity_type, resolve_filters, row_from_model

logger = logging.getLogger("reqflow-core.crud")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _apply(instance: models.Base, values: dict[str, Any]) -> None:
    """Set column values (keyed by column name) on an ORM instance."""
    attributes = column_attributes(type(instance))
    for column_name, value in values.items():
        attr_key = attributes.get(column_name)
        if attr_key is None:
            raise ValidationError(f"Unknown field for {type(instance).__tablename__}: {column_name}")
        setattr(instance, attr_key, value)


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Store error while trying to {action}: {e}", exc_info=True)
        raise StoreError(f"Failed to {action}: {e}") from e


def get_entity(db: Session, entity_type: str, entity_id: UUID) -> models.Base:
    """
    Get one entity by ID.

    Args:
        db: Database session
        entity_type: Registered entity type name (e.g. 'projects')
        entity_id: Entity UUID

    Returns:
        ORM instance

    Raises:
        NotFoundError: If no row has this id
        StoreError: If the query fails
    """
    meta = get_entity_type(entity_type)
    try:
        instance = db.get(meta.model, entity_id)
    except SQLAlchemyError as e:
        logger.error(f"Error loading {meta.label.lower()} {entity_id}: {e}", exc_info=True)
        raise StoreError(str(e)) from e
    if instance is None:
        raise NotFoundError(f"{meta.label} {entity_id} not found")
    return instance


def list_entities(db: Session, entity_type: str, filters: Optional[dict[str, Any]] = None) -> list[models.Base]:
    """
    List entities matching an equality filter.

    Filters are keyed by the public filter name (e.g. 'user_id' for projects
    maps to the created_by column). None values are omitted from the query,
    they never mean "match nothing".

    Raises:
        ValidationError: If a filter name is not supported for this entity type
        StoreError: If the query fails
    """
    meta = get_entity_type(entity_type)
    attributes = column_attributes(meta.model)
    query = select(meta.model)

    for column_name, value in resolve_filters(entity_type, filters).items():
        query = query.where(getattr(meta.model, attributes[column_name]) == value)

    query = query.order_by(meta.model.created_at)
    try:
        return list(db.execute(query).scalars().all())
    except SQLAlchemyError as e:
        logger.error(f"Error listing {meta.name}: {e}", exc_info=True)
        raise StoreError(str(e)) from e


def create_entity(db: Session, entity_type: str, payload: dict[str, Any]) -> models.Base:
    """
    Create a new entity.

    created_at/updated_at default to the creation instant and version to 1
    when the caller does not send them.

    Args:
        db: Database session
        entity_type: Registered entity type name
        payload: Column values (required fields already validated by the schema)

    Returns:
        Persisted instance including server-assigned id and timestamps
    """
    meta = get_entity_type(entity_type)
    values = dict(payload)
    now = utcnow()
    if values.get("created_at") is None:
        values["created_at"] = now
    if values.get("updated_at") is None:
        values["updated_at"] = values["created_at"]
    if meta.versioned and values.get("version") is None:
        values["version"] = 1

    instance = meta.model()
    _apply(instance, values)
    db.add(instance)
    _commit(db, f"create {meta.label.lower()}")
    logger.info(f"Created {meta.label.lower()} {instance.id}")
    return instance


def _next_version(meta: EntityType, instance: models.Base, changes: dict[str, Any], enforce_version_check: bool) -> int:
    stored = instance.version or 0
    requested = changes.get("version")
    if requested is None:
        return stored + 1
    if enforce_version_check and requested != stored + 1:
        logger.warning(
            f"Version conflict on {meta.label.lower()} {instance.id}: "
            f"stored v{stored}, update sent v{requested}"
        )
        raise ConflictError(
            f"{meta.label} {instance.id} was modified concurrently "
            f"(stored version {stored}, update sent version {requested})",
            expected_version=stored + 1,
            actual_version=requested,
        )
    return requested


def update_entity(
    db: Session,
    entity_type: str,
    entity_id: UUID,
    changes: dict[str, Any],
    enforce_version_check: bool = True,
) -> models.Base:
    """
    Merge a partial payload into an entity.

    Version policy: an update carrying `version` must carry exactly the
    stored version + 1 when enforce_version_check is on (ConflictError
    otherwise). Without `version` the stored version is incremented.

    Returns:
        The full updated instance

    Raises:
        NotFoundError: If the entity does not exist
        ConflictError: If the sent version does not follow the stored one
        StoreError: If the update fails
    """
    meta = get_entity_type(entity_type)
    instance = get_entity(db, entity_type, entity_id)

    values = {key: value for key, value in changes.items() if key not in ("id", "created_at", "created_by")}
    if meta.versioned:
        values["version"] = _next_version(meta, instance, values, enforce_version_check)
    if values.get("updated_at") is None:
        values["updated_at"] = utcnow()

    _apply(instance, values)
    _commit(db, f"update {meta.label.lower()} {entity_id}")
    logger.info(f"Updated {meta.label.lower()} {entity_id}" + (f" to v{instance.version}" if meta.versioned else ""))
    return instance


def delete_entity(db: Session, entity_type: str, entity_id: UUID) -> None:
    """
    Delete an entity by ID.

    Raises:
        NotFoundError: If the entity does not exist
        StoreError: If the delete fails
    """
    meta = get_entity_type(entity_type)
    if entity_type == "projects":
        delete_project(db, entity_id)
        return

    instance = get_entity(db, entity_type, entity_id)
    db.delete(instance)
    _commit(db, f"delete {meta.label.lower()} {entity_id}")
    logger.info(f"Deleted {meta.label.lower()} {entity_id}")


def delete_requirements_for_project(db: Session, project_id: UUID) -> int:
    """
    Bulk delete every requirement of a project in one statement.

    A DELETE change is staged for each removed row so subscribers see them.

    Returns:
        Number of requirements deleted
    """
    try:
        doomed = list(
            db.execute(select(models.Requirement).where(models.Requirement.project_id == project_id))
            .scalars()
            .all()
        )
        for requirement in doomed:
            changefeed.stage_change(db, "requirements", "DELETE", old=row_from_model(requirement))
        db.execute(
            delete(models.Requirement)
            .where(models.Requirement.project_id == project_id)
            .execution_options(synchronize_session=False)
        )
        for requirement in doomed:
            db.expunge(requirement)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error deleting requirements of project {project_id}: {e}", exc_info=True)
        raise StoreError(f"Failed to delete requirements of project {project_id}: {e}") from e
    _commit(db, f"delete requirements of project {project_id}")
    return len(doomed)


def delete_project(db: Session, project_id: UUID) -> int:
    """
    Delete a project and all its requirements.

    Two steps: the requirements are bulk-deleted first, then the project row.
    If the first step fails the project is left untouched and the error
    propagates; there is no compensating rollback of a later failure.

    Returns:
        Number of requirements deleted with the project
    """
    project = get_entity(db, "projects", project_id)
    removed = delete_requirements_for_project(db, project_id)

    db.delete(project)
    _commit(db, f"delete project {project_id}")
    logger.info(f"Deleted project {project_id} with {removed} requirement(s)")
    return removed
