"""API routers for ReqFlow Core."""

from . import ai, collections, documents, projects, requirements, user_profiles

__all__ = ["ai", "collections", "documents", "projects", "requirements", "user_profiles"]
