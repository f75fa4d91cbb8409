"""Account onboarding: seed a starter project for a new user.

Runs once, when the user's profile is created. Listing projects never
creates anything.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, models

logger = logging.getLogger("reqflow-core.onboarding")

STARTER_PROJECT_NAME = "Getting Started"
STARTER_PROJECT_DESCRIPTION = (
    "Welcome to your first project! This is where you can organize and track your work.\n\n"
    "Tips:\n"
    "- Add requirements to track features and tasks\n"
    "- Invite team members to collaborate\n"
    "- Use tags to categorize work\n"
    "- Set start and target dates\n"
    "- Monitor project status"
)
STARTER_REQUIREMENT_TITLE = "Describe your first requirement"
STARTER_REQUIREMENT_DESCRIPTION = (
    "Replace this text with something the system shall do, then use the AI "
    "rewrite to turn it into EARS or INCOSE form."
)


def bootstrap_workspace(db: Session, user_id: str) -> Optional[models.Project]:
    """
    Create the starter project and requirement for a user with no projects.

    Args:
        db: Database session
        user_id: Profile id of the new user (stored as created_by)

    Returns:
        The starter project, or None if the user already owns projects
    """
    if crud.list_entities(db, "projects", {"user_id": user_id}):
        logger.debug(f"User {user_id} already has projects; skipping onboarding")
        return None

    project = crud.create_entity(
        db,
        "projects",
        {
            "name": STARTER_PROJECT_NAME,
            "description": STARTER_PROJECT_DESCRIPTION,
            "status": models.ProjectStatus.ACTIVE,
            "start_date": datetime.now(timezone.utc),
            "tags": ["getting-started"],
            "metadata": {"source": "template", "template_version": "1.0"},
            "created_by": user_id,
            "updated_by": user_id,
        },
    )
    crud.create_entity(
        db,
        "requirements",
        {
            "project_id": project.id,
            "title": STARTER_REQUIREMENT_TITLE,
            "description": STARTER_REQUIREMENT_DESCRIPTION,
            "priority": models.RequirementPriority.MEDIUM,
            "status": models.RequirementStatus.DRAFT,
            "tags": ["getting-started"],
            "created_by": user_id,
            "updated_by": user_id,
        },
    )
    logger.info(f"Onboarded user {user_id} with starter project {project.id}")
    return project
