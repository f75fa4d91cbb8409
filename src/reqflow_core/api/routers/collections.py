"""Collections API endpoints."""
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

logger = logging.getLogger("reqflow-core.collections")

router = APIRouter(tags=["collections"], dependencies=[rate_limit()])


@router.get("", response_model=None)
def get_collections(
    request: Request,
    id: Optional[UUID] = Query(None, description="Return a single collection"),
    parent_id: Optional[UUID] = Query(None, description="Filter by parent collection"),
    subscribe: bool = Query(False, description="Open a change stream instead of returning rows"),
    db: Session = Depends(get_db),
) -> Union[schemas.Collection, list[schemas.Collection]]:
    """Get one collection, list collections, or subscribe to collection changes."""
    filters = {"parent_id": parent_id}
    if subscribe:
        return subscription_response(request, "collections", filters)
    if id is not None:
        return mapper.map_entity("collections", mapper.row_from_model(crud.get_entity(db, "collections", id)))
    rows = [mapper.row_from_model(col) for col in crud.list_entities(db, "collections", filters)]
    return mapper.map_entities("collections", rows)


@router.post("", response_model=schemas.Collection, status_code=201)
def create_collection(
    collection: schemas.CollectionCreate,
    db: Session = Depends(get_db),
):
    """Create a new collection."""
    result = crud.create_entity(db, "collections", collection.model_dump(exclude_unset=True))
    logger.info(f"Created collection '{result.name}' (ID: {result.id})")
    return mapper.map_entity("collections", mapper.row_from_model(result))


@router.put("", response_model=schemas.Collection)
def update_collection(
    request: Request,
    collection_update: schemas.CollectionUpdate,
    db: Session = Depends(get_db),
):
    """Update a collection."""
    result = crud.update_entity(
        db,
        "collections",
        collection_update.id,
        collection_update.model_dump(exclude_unset=True),
        enforce_version_check=request.app.state.settings.enforce_version_check,
    )
    return mapper.map_entity("collections", mapper.row_from_model(result))


@router.delete("", response_model=schemas.DeleteResponse)
def delete_collection(
    id: Optional[UUID] = Query(None, description="Collection UUID"),
    db: Session = Depends(get_db),
):
    """Delete a collection."""
    if id is None:
        raise ValidationError("Collection ID is required")
    crud.delete_entity(db, "collections", id)
    return schemas.DeleteResponse()
