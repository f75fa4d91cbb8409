"""Requirements API endpoints."""
import logging
from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from reqflow_core import crud, mapper, schemas

from ...database import get_db
from ...errors import ValidationError
from ...rate_limit import rate_limit
from ..streaming import subscription_response

logger = logging.getLogger("reqflow-core.requirements")

router = APIRouter(tags=["requirements"], dependencies=[rate_limit()])


@router.get("", response_model=None)
def get_requirements(
    request: Request,
    id: Optional[UUID] = Query(None, description="Return a single requirement"),
    project_id: Optional[UUID] = Query(None, description="Filter by project ID"),
    parent_id: Optional[UUID] = Query(None, description="Filter by parent requirement ID"),
    user_id: Optional[str] = Query(None, description="Filter by creator"),
    subscribe: bool = Query(False, description="Open a change stream instead of returning rows"),
    db: Session = Depends(get_db),
) -> Union[schemas.Requirement, list[schemas.Requirement]]:
    """
    Get one requirement, list requirements, or subscribe to requirement changes.

    - **id**: Requirement UUID (returns a single object)
    - **project_id** / **parent_id** / **user_id**: Equality filters; omitted filters are not applied
    - **subscribe**: Stream INSERT/UPDATE/DELETE events for the filtered rows
    """
    filters = {"project_id": project_id, "parent_id": parent_id, "user_id": user_id}
    if subscribe:
        return subscription_response(request, "requirements", filters)
    if id is not None:
        return mapper.map_entity("requirements", mapper.row_from_model(crud.get_entity(db, "requirements", id)))
    rows = [mapper.row_from_model(req) for req in crud.list_entities(db, "requirements", filters)]
    return mapper.map_entities("requirements", rows)


@router.post("", response_model=schemas.Requirement, status_code=201)
def create_requirement(
    requirement: schemas.RequirementCreate,
    db: Session = Depends(get_db),
):
    """
    Create a new requirement.

    - **project_id**: Owning project (required)
    - **parent_id**: Parent requirement for hierarchical decomposition (optional)
    - **title**: Requirement title (required)
    - **priority**: critical, high, medium or low (default: medium)
    """
    result = crud.create_entity(db, "requirements", requirement.model_dump(exclude_unset=True))
    logger.info(f"Created requirement '{result.title}' in project {result.project_id} (ID: {result.id})")
    return mapper.map_entity("requirements", mapper.row_from_model(result))


@router.put("", response_model=schemas.Requirement)
def update_requirement(
    request: Request,
    requirement_update: schemas.RequirementUpdate,
    db: Session = Depends(get_db),
):
    """
    Update a requirement. The body carries the id and only the fields to change.
    """
    result = crud.update_entity(
        db,
        "requirements",
        requirement_update.id,
        requirement_update.model_dump(exclude_unset=True),
        enforce_version_check=request.app.state.settings.enforce_version_check,
    )
    return mapper.map_entity("requirements", mapper.row_from_model(result))


@router.delete("", response_model=schemas.DeleteResponse)
def delete_requirement(
    id: Optional[UUID] = Query(None, description="Requirement UUID"),
    db: Session = Depends(get_db),
):
    """Delete a requirement."""
    if id is None:
        raise ValidationError("Requirement ID is required")
    crud.delete_entity(db, "requirements", id)
    return schemas.DeleteResponse()


# Path-id routes: /api/db/requirements/{requirement_id}

@router.get("/{requirement_id}", response_model=schemas.Requirement)
def get_requirement(requirement_id: UUID, db: Session = Depends(get_db)):
    """Get a requirement by ID."""
    return mapper.map_entity("requirements", mapper.row_from_model(crud.get_entity(db, "requirements", requirement_id)))


@router.put("/{requirement_id}", response_model=schemas.Requirement)
def replace_requirement_fields(
    request: Request,
    requirement_id: UUID,
    changes: schemas.RequirementChanges,
    db: Session = Depends(get_db),
):
    """
    Update a requirement addressed by path. Same version policy as PUT without an id.
    """
    result = crud.update_entity(
        db,
        "requirements",
        requirement_id,
        changes.model_dump(exclude_unset=True),
        enforce_version_check=request.app.state.settings.enforce_version_check,
    )
    return mapper.map_entity("requirements", mapper.row_from_model(result))


@router.delete("/{requirement_id}", response_model=schemas.DeleteResponse)
def delete_requirement_by_path(requirement_id: UUID, db: Session = Depends(get_db)):
    """Delete a requirement addressed by path."""
    crud.delete_entity(db, "requirements", requirement_id)
    return schemas.DeleteResponse()
