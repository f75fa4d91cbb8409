"""Pydantic schemas for request/response validation and canonical entity shapes."""
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .models import (
    ProjectStatus,
    RequirementStatus,
    RequirementPriority,
    AccessLevel,
    DocumentType,
    UserTheme,
    NotificationPreference,
)


# Canonical entity shapes

class BaseEntity(BaseModel):
    """Fields shared by every versioned entity.

    Timestamps and audit fields are nullable until the entity is persisted and
    are passed through unchanged (never defaulted to '' or the epoch).
    """

    id: UUID
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    version: int = 1

    model_config = ConfigDict(use_enum_values=True)


class Project(BaseEntity):
    """Canonical project entity."""

    name: str
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    start_date: Optional[datetime] = None
    target_end_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    tags: Optional[list[str]] = None
    metadata: Optional[dict[str, Any]] = None


class Requirement(BaseEntity):
    """Canonical requirement entity, including the AI rewrite lifecycle fields."""

    project_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    title: str
    description: Optional[str] = None
    acceptance_criteria: Optional[list[str]] = None
    priority: RequirementPriority = RequirementPriority.MEDIUM
    status: RequirementStatus = RequirementStatus.DRAFT
    assigned_to: Optional[str] = None
    reviewer: Optional[str] = None
    tags: Optional[list[str]] = None
    original_req: Optional[str] = None
    current_req: Optional[Any] = None
    history_req: Optional[list[Any]] = None
    rewritten_ears: Optional[str] = None
    rewritten_incose: Optional[str] = None
    selected_format: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class Collection(BaseEntity):
    """Canonical collection entity."""

    name: str
    description: Optional[str] = None
    parent_id: Optional[UUID] = None
    access_level: AccessLevel = AccessLevel.PRIVATE
    tags: Optional[list[str]] = None


class ExternalDoc(BaseEntity):
    """Canonical external document entity."""

    collection_id: Optional[UUID] = None
    title: str
    url: str
    type: DocumentType
    version_info: Optional[str] = None
    author: Optional[str] = None
    publication_date: Optional[datetime] = None
    last_verified_date: Optional[datetime] = None
    status: str = "active"
    tags: Optional[list[str]] = None


class UserProfile(BaseModel):
    """Canonical user profile."""

    id: UUID
    firebase_uid: str
    supabase_uid: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    theme: UserTheme = UserTheme.SYSTEM
    notification_preferences: NotificationPreference = NotificationPreference.IMPORTANT
    email_notifications: bool = True
    timezone: Optional[str] = None
    bio: Optional[str] = None
    tags: Optional[list[str]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(use_enum_values=True)


# Create / update payloads

class AuditFields(BaseModel):
    """Audit fields a client may send with a write."""

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    version: Optional[int] = Field(None, ge=1)


class ProjectCreate(AuditFields):
    """Schema for creating a project."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    start_date: Optional[datetime] = None
    target_end_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    tags: Optional[list[str]] = None
    metadata: Optional[dict[str, Any]] = None


class ProjectUpdate(AuditFields):
    """Schema for updating a project (partial)."""

    id: UUID
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None
    start_date: Optional[datetime] = None
    target_end_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    tags: Optional[list[str]] = None
    metadata: Optional[dict[str, Any]] = None


class RequirementCreate(AuditFields):
    """Schema for creating a requirement. project_id is required at creation."""

    project_id: UUID
    parent_id: Optional[UUID] = None
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    acceptance_criteria: Optional[list[str]] = None
    priority: RequirementPriority = RequirementPriority.MEDIUM
    status: RequirementStatus = RequirementStatus.DRAFT
    assigned_to: Optional[str] = None
    reviewer: Optional[str] = None
    tags: Optional[list[str]] = None
    original_req: Optional[str] = None
    current_req: Optional[Any] = None
    history_req: Optional[list[Any]] = None
    rewritten_ears: Optional[str] = None
    rewritten_incose: Optional[str] = None
    selected_format: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class RequirementChanges(AuditFields):
    """Fields of a partial requirement update, for routes that take the id from the path."""

    project_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    acceptance_criteria: Optional[list[str]] = None
    priority: Optional[RequirementPriority] = None
    status: Optional[RequirementStatus] = None
    assigned_to: Optional[str] = None
    reviewer: Optional[str] = None
    tags: Optional[list[str]] = None
    original_req: Optional[str] = None
    current_req: Optional[Any] = None
    history_req: Optional[list[Any]] = None
    rewritten_ears: Optional[str] = None
    rewritten_incose: Optional[str] = None
    selected_format: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class RequirementUpdate(RequirementChanges):
    """Schema for updating a requirement (partial)."""

    id: UUID


class CollectionCreate(AuditFields):
    """Schema for creating a collection."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    parent_id: Optional[UUID] = None
    access_level: AccessLevel = AccessLevel.PRIVATE
    tags: Optional[list[str]] = None


class CollectionUpdate(AuditFields):
    """Schema for updating a collection (partial)."""

    id: UUID
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    parent_id: Optional[UUID] = None
    access_level: Optional[AccessLevel] = None
    tags: Optional[list[str]] = None


class ExternalDocCreate(AuditFields):
    """Schema for creating an external document."""

    collection_id: Optional[UUID] = None
    title: str = Field(..., min_length=1, max_length=500)
    url: str = Field(..., min_length=1)
    type: DocumentType
    version_info: Optional[str] = None
    author: Optional[str] = None
    publication_date: Optional[datetime] = None
    last_verified_date: Optional[datetime] = None
    status: str = "active"
    tags: Optional[list[str]] = None


class ExternalDocUpdate(AuditFields):
    """Schema for updating an external document (partial)."""

    id: UUID
    collection_id: Optional[UUID] = None
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    url: Optional[str] = Field(None, min_length=1)
    type: Optional[DocumentType] = None
    version_info: Optional[str] = None
    author: Optional[str] = None
    publication_date: Optional[datetime] = None
    last_verified_date: Optional[datetime] = None
    status: Optional[str] = None
    tags: Optional[list[str]] = None


class UserProfileCreate(BaseModel):
    """Schema for creating a user profile at account creation."""

    firebase_uid: str = Field(..., min_length=1)
    supabase_uid: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    email_notifications: Optional[bool] = None


class UserProfileUpdate(BaseModel):
    """Schema for updating a user profile (partial)."""

    id: UUID
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    theme: Optional[UserTheme] = None
    notification_preferences: Optional[NotificationPreference] = None
    email_notifications: Optional[bool] = None
    timezone: Optional[str] = None
    bio: Optional[str] = None
    tags: Optional[list[str]] = None


class DeleteResponse(BaseModel):
    """Acknowledgement returned by DELETE endpoints."""

    success: bool = True


# Change streams

class ChangeType(str, Enum):
    """Row-level change kinds emitted by the change feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """One row-level change as delivered on a subscription stream."""

    event_type: ChangeType = Field(..., alias="eventType")
    table: Optional[str] = None
    old: Optional[dict[str, Any]] = None
    new: Optional[dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    def row_id(self) -> Optional[str]:
        """Id of the changed row, taken from new or (for deletes) old."""
        row = self.new or self.old or {}
        value = row.get("id")
        return str(value) if value is not None else None

    def to_message(self) -> dict:
        """Wire shape of the event: {eventType, old, new}."""
        return {"eventType": self.event_type, "old": self.old, "new": self.new}


# AI pipeline

class PipelineFile(BaseModel):
    """A file to upload to the workflow-automation service."""

    file_name: str = Field(..., min_length=1)
    file_content: str = Field(..., min_length=1, description="Base64-encoded file content")


class PipelineRequest(BaseModel):
    """Body of POST /api/ai."""

    action: Optional[str] = None
    files: Optional[Union[list[Any], str]] = None
    requirement: Optional[str] = None
    system_name: Optional[str] = Field(None, alias="systemName")
    objective: Optional[str] = None
    run_id: Optional[str] = Field(None, alias="runId")

    model_config = ConfigDict(populate_by_name=True)


class PipelineRun(BaseModel):
    """Status of a pipeline run."""

    run_id: str
    state: Optional[str] = None
    outputs: Optional[dict[str, Any]] = None

    model_config = ConfigDict(extra="allow")
