"""Projects API endpoints."""
import logging
from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from reqflow_core import crud, mapper, models, schemas

from ...database import get_db
from ...errors import ValidationError
from ...rate_limit import rate_limit
from ..streaming import subscription_response

logger = logging.getLogger("reqflow-core.projects")

router = APIRouter(tags=["projects"], dependencies=[rate_limit()])


@router.get("", response_model=None)
def get_projects(
    request: Request,
    id: Optional[UUID] = Query(None, description="Return a single project"),
    user_id: Optional[str] = Query(None, description="Filter by creator"),
    status: Optional[models.ProjectStatus] = Query(None, description="Filter by status"),
    subscribe: bool = Query(False, description="Open a change stream instead of returning rows"),
    db: Session = Depends(get_db),
) -> Union[schemas.Project, list[schemas.Project]]:
    """
    Get one project by id, list projects, or subscribe to project changes.

    - **id**: Project UUID (returns a single object)
    - **user_id**: Only projects created by this user
    - **status**: Only projects in this status
    - **subscribe**: Stream INSERT/UPDATE/DELETE events as text/event-stream
    """
    filters = {"user_id": user_id, "status": status}
    if subscribe:
        return subscription_response(request, "projects", filters)
    if id is not None:
        return mapper.map_entity("projects", mapper.row_from_model(crud.get_entity(db, "projects", id)))
    rows = [mapper.row_from_model(project) for project in crud.list_entities(db, "projects", filters)]
    return mapper.map_entities("projects", rows)


@router.post("", response_model=schemas.Project, status_code=201)
def create_project(
    project: schemas.ProjectCreate,
    db: Session = Depends(get_db),
):
    """
    Create a new project.

    - **name**: Project name (required)
    - **status**: draft, active, on_hold, completed or archived (default: active)
    - **version**: Sent as 1 by clients; defaults to 1
    """
    result = crud.create_entity(db, "projects", project.model_dump(exclude_unset=True))
    logger.info(f"Created project '{result.name}' (ID: {result.id})")
    return mapper.map_entity("projects", mapper.row_from_model(result))


@router.put("", response_model=schemas.Project)
def update_project(
    request: Request,
    project_update: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
):
    """
    Update a project. The body carries the id and only the fields to change.
    """
    result = crud.update_entity(
        db,
        "projects",
        project_update.id,
        project_update.model_dump(exclude_unset=True),
        enforce_version_check=request.app.state.settings.enforce_version_check,
    )
    return mapper.map_entity("projects", mapper.row_from_model(result))


@router.delete("", response_model=schemas.DeleteResponse)
def delete_project(
    id: Optional[UUID] = Query(None, description="Project UUID"),
    db: Session = Depends(get_db),
):
    """
    Delete a project and all its requirements (requirements first, then the project).
    """
    if id is None:
        raise ValidationError("Project ID is required")
    crud.delete_project(db, id)
    return schemas.DeleteResponse()
