"""External documents API endpoints."""
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

logger = logging.getLogger("reqflow-core.documents")

router = APIRouter(tags=["documents"], dependencies=[rate_limit()])


@router.get("", response_model=None)
def get_documents(
    request: Request,
    id: Optional[UUID] = Query(None, description="Return a single document"),
    collection_id: Optional[UUID] = Query(None, description="Filter by collection"),
    type: Optional[models.DocumentType] = Query(None, description="Filter by document type"),
    subscribe: bool = Query(False, description="Open a change stream instead of returning rows"),
    db: Session = Depends(get_db),
) -> Union[schemas.ExternalDoc, list[schemas.ExternalDoc]]:
    """Get one document, list documents, or subscribe to document changes."""
    filters = {"collection_id": collection_id, "type": type}
    if subscribe:
        return subscription_response(request, "external_docs", filters)
    if id is not None:
        return mapper.map_entity("external_docs", mapper.row_from_model(crud.get_entity(db, "external_docs", id)))
    rows = [mapper.row_from_model(doc) for doc in crud.list_entities(db, "external_docs", filters)]
    return mapper.map_entities("external_docs", rows)


@router.post("", response_model=schemas.ExternalDoc, status_code=201)
def create_document(
    document: schemas.ExternalDocCreate,
    db: Session = Depends(get_db),
):
    """
    Register an external reference document.

    - **title**, **url**, **type**: Required
    - **last_verified_date**: Defaults to now when omitted
    """
    payload = document.model_dump(exclude_unset=True)
    if payload.get("last_verified_date") is None:
        payload["last_verified_date"] = crud.utcnow()
    result = crud.create_entity(db, "external_docs", payload)
    logger.info(f"Created document '{result.title}' (ID: {result.id})")
    return mapper.map_entity("external_docs", mapper.row_from_model(result))


@router.put("", response_model=schemas.ExternalDoc)
def update_document(
    request: Request,
    document_update: schemas.ExternalDocUpdate,
    db: Session = Depends(get_db),
):
    """Update a document."""
    result = crud.update_entity(
        db,
        "external_docs",
        document_update.id,
        document_update.model_dump(exclude_unset=True),
        enforce_version_check=request.app.state.settings.enforce_version_check,
    )
    return mapper.map_entity("external_docs", mapper.row_from_model(result))


@router.delete("", response_model=schemas.DeleteResponse)
def delete_document(
    id: Optional[UUID] = Query(None, description="Document UUID"),
    db: Session = Depends(get_db),
):
    """Delete a document."""
    if id is None:
        raise ValidationError("Document ID is required")
    crud.delete_entity(db, "external_docs", id)
    return schemas.DeleteResponse()
