"""SQLAlchemy database models."""
from datetime import datetime
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    DateTime,
    ForeignKey,
    Enum,
    Boolean,
    JSON,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

# Base class for all models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ProjectStatus(str, enum.Enum):
    """Project status enum."""

    DRAFT = "draft"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class RequirementStatus(str, enum.Enum):
    """Requirement lifecycle status enum."""

    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    TESTING = "testing"
    COMPLETED = "completed"
    REJECTED = "rejected"


class RequirementPriority(str, enum.Enum):
    """Requirement priority enum."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RequirementFormat(str, enum.Enum):
    """Output format selected for an AI-rewritten requirement."""

    ORIGINAL = "original"
    EARS = "ears"
    INCOSE = "incose"


class AccessLevel(str, enum.Enum):
    """Collection access level enum."""

    PRIVATE = "private"
    PROJECT = "project"
    ORGANIZATION = "organization"
    PUBLIC = "public"


class DocumentType(str, enum.Enum):
    """External document type enum."""

    SPECIFICATION = "specification"
    REFERENCE = "reference"
    DOCUMENTATION = "documentation"
    STANDARD = "standard"
    GUIDELINE = "guideline"
    REPORT = "report"


class UserTheme(str, enum.Enum):
    """UI theme preference."""

    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


class NotificationPreference(str, enum.Enum):
    """Notification preference."""

    ALL = "all"
    IMPORTANT = "important"
    NONE = "none"


def _enum(enum_class: type[enum.Enum], name: str) -> Enum:
    # Store enum values (not member names) so raw rows carry 'on_hold', not 'ON_HOLD'
    return Enum(enum_class, name=name, values_callable=lambda e: [member.value for member in e])


class AuditMixin:
    """
    Columns shared by every entity.

    Timestamps and audit fields stay NULL until the caller provides them;
    the gateway fills created_at/updated_at on create when they are absent.
    """

    id = Column(Uuid, primary_key=True, default=uuid4)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(255), nullable=True, index=True)
    updated_by = Column(String(255), nullable=True)
    version = Column(Integer, nullable=False, default=1)


class Project(AuditMixin, Base):
    """
    Project model - top-level container for requirements.
    """

    __tablename__ = "projects"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(_enum(ProjectStatus, "project_status"), nullable=False, default=ProjectStatus.ACTIVE)
    start_date = Column(DateTime(timezone=True), nullable=True)
    target_end_date = Column(DateTime(timezone=True), nullable=True)
    actual_end_date = Column(DateTime(timezone=True), nullable=True)
    tags = Column(JSONType, nullable=True)
    metadata_ = Column("metadata", JSONType, nullable=True)

    def __repr__(self):
        return f"<Project(id={self.id}, name='{self.name}', status={self.status})>"


class Requirement(AuditMixin, Base):
    """
    Requirement model.

    Requirements belong to a project and may be decomposed through parent_id.
    The original/current/history/rewritten columns track the AI rewrite
    lifecycle (EARS and INCOSE formats).
    """

    __tablename__ = "requirements"

    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=True, index=True)
    parent_id = Column(Uuid, ForeignKey("requirements.id"), nullable=True, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    acceptance_criteria = Column(JSONType, nullable=True)
    priority = Column(_enum(RequirementPriority, "requirement_priority"), nullable=False, default=RequirementPriority.MEDIUM)
    status = Column(_enum(RequirementStatus, "requirement_status"), nullable=False, default=RequirementStatus.DRAFT)
    assigned_to = Column(String(255), nullable=True)
    reviewer = Column(String(255), nullable=True)
    tags = Column(JSONType, nullable=True)
    original_req = Column(Text, nullable=True)
    current_req = Column(JSONType, nullable=True)
    history_req = Column(JSONType, nullable=True)
    rewritten_ears = Column(Text, nullable=True)
    rewritten_incose = Column(Text, nullable=True)
    selected_format = Column(String(50), nullable=True)
    metadata_ = Column("metadata", JSONType, nullable=True)

    def __repr__(self):
        return f"<Requirement(id={self.id}, title='{self.title}', priority={self.priority})>"


class Collection(AuditMixin, Base):
    """Collection model - folder-like grouping of external documents."""

    __tablename__ = "collections"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    parent_id = Column(Uuid, ForeignKey("collections.id"), nullable=True, index=True)
    access_level = Column(_enum(AccessLevel, "access_level"), nullable=False, default=AccessLevel.PRIVATE)
    tags = Column(JSONType, nullable=True)

    def __repr__(self):
        return f"<Collection(id={self.id}, name='{self.name}')>"


class ExternalDoc(AuditMixin, Base):
    """External reference document model."""

    __tablename__ = "external_docs"

    collection_id = Column(Uuid, ForeignKey("collections.id"), nullable=True, index=True)
    title = Column(String(500), nullable=False)
    url = Column(Text, nullable=False)
    type = Column(_enum(DocumentType, "document_type"), nullable=False, index=True)
    version_info = Column(String(100), nullable=True)
    author = Column(String(255), nullable=True)
    publication_date = Column(DateTime(timezone=True), nullable=True)
    last_verified_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(50), nullable=False, default="active")
    tags = Column(JSONType, nullable=True)

    def __repr__(self):
        return f"<ExternalDoc(id={self.id}, title='{self.title}')>"


class UserProfile(Base):
    """
    User profile model.

    Bridges the identity provider's uid (firebase_uid) to the record id used
    as created_by/updated_by on every other entity.
    """

    __tablename__ = "user_profiles"

    id = Column(Uuid, primary_key=True, default=uuid4)
    firebase_uid = Column(String(255), nullable=False, unique=True, index=True)
    supabase_uid = Column(String(255), nullable=True, index=True)
    email = Column(String(255), nullable=True)
    display_name = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)
    job_title = Column(String(255), nullable=True)
    department = Column(String(255), nullable=True)
    theme = Column(_enum(UserTheme, "user_theme"), nullable=False, default=UserTheme.SYSTEM)
    notification_preferences = Column(
        _enum(NotificationPreference, "notification_preference"),
        nullable=False,
        default=NotificationPreference.IMPORTANT,
    )
    email_notifications = Column(Boolean, nullable=False, default=True)
    timezone = Column(String(100), nullable=True)
    bio = Column(Text, nullable=True)
    tags = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<UserProfile(id={self.id}, firebase_uid='{self.firebase_uid}')>"
