"""User profile API endpoints.

Profiles bridge the identity provider's uid to the id used as
created_by/updated_by elsewhere. Creating a profile is the account-creation
step, so it also seeds the user's starter project.
"""
import logging
from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from reqflow_core import crud, mapper, onboarding, schemas

from ...database import get_db
from ...errors import NotFoundError, ValidationError
from ...rate_limit import rate_limit

logger = logging.getLogger("reqflow-core.user_profiles")

router = APIRouter(tags=["user-profiles"], dependencies=[rate_limit()])


def _single(db: Session, filters: dict) -> schemas.UserProfile:
    rows = crud.list_entities(db, "user_profiles", filters)
    if not rows:
        raise NotFoundError("Profile not found")
    return mapper.map_entity("user_profiles", mapper.row_from_model(rows[0]))


@router.get("", response_model=None)
def get_user_profiles(
    id: Optional[UUID] = Query(None, description="Profile UUID"),
    firebase_uid: Optional[str] = Query(None, alias="firebaseUid", description="Identity provider uid"),
    supabase_uid: Optional[str] = Query(None, alias="supabaseUid", description="Store auth uid"),
    db: Session = Depends(get_db),
) -> Union[schemas.UserProfile, list[schemas.UserProfile]]:
    """Get a profile by id or identity uid, or list all profiles."""
    if id is not None:
        return mapper.map_entity("user_profiles", mapper.row_from_model(crud.get_entity(db, "user_profiles", id)))
    if firebase_uid:
        return _single(db, {"firebase_uid": firebase_uid})
    if supabase_uid:
        return _single(db, {"supabase_uid": supabase_uid})
    rows = [mapper.row_from_model(profile) for profile in crud.list_entities(db, "user_profiles")]
    return mapper.map_entities("user_profiles", rows)


@router.post("", response_model=schemas.UserProfile, status_code=201)
def create_user_profile(
    profile: schemas.UserProfileCreate,
    db: Session = Depends(get_db),
):
    """
    Create a profile for a newly registered user and seed their starter project.

    - **firebase_uid**: Identity provider uid (required)
    - **display_name**: Defaults to the local part of the e-mail address
    """
    display_name = profile.display_name
    if not display_name and profile.email:
        display_name = profile.email.split("@")[0]

    result = crud.create_entity(
        db,
        "user_profiles",
        {
            "firebase_uid": profile.firebase_uid,
            "supabase_uid": profile.supabase_uid,
            "email": profile.email,
            "display_name": display_name,
            "avatar_url": profile.avatar_url,
            "email_notifications": True if profile.email_notifications is None else profile.email_notifications,
            "theme": "system",
            "notification_preferences": "important",
        },
    )
    onboarding.bootstrap_workspace(db, str(result.id))
    logger.info(f"Created profile {result.id} for {profile.firebase_uid}")
    return mapper.map_entity("user_profiles", mapper.row_from_model(result))


@router.put("", response_model=schemas.UserProfile)
def update_user_profile(
    profile_update: schemas.UserProfileUpdate,
    db: Session = Depends(get_db),
):
    """Update a profile."""
    result = crud.update_entity(
        db, "user_profiles", profile_update.id, profile_update.model_dump(exclude_unset=True)
    )
    return mapper.map_entity("user_profiles", mapper.row_from_model(result))


@router.delete("", response_model=schemas.DeleteResponse)
def delete_user_profile(
    id: Optional[UUID] = Query(None, description="Profile UUID"),
    db: Session = Depends(get_db),
):
    """Delete a profile."""
    if id is None:
        raise ValidationError("Profile ID is required")
    crud.delete_entity(db, "user_profiles", id)
    return schemas.DeleteResponse()
