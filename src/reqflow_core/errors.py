"""Error taxonomy shared by the API service and the client library.

Every error carries the HTTP status it is rendered with, so the API can
translate exceptions into responses and the client can translate responses
back into exceptions.
"""
from typing import Optional


class ReqFlowError(Exception):
    """Base class for all ReqFlow errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ReqFlowError):
    """A required field is missing or malformed. Never retried automatically."""

    status_code = 400


class NotFoundError(ReqFlowError):
    """The requested entity does not exist (in the store or in the local cache)."""

    status_code = 404


class ConflictError(ReqFlowError):
    """An update carried a version that does not follow the stored version."""

    status_code = 409

    def __init__(self, message: str, expected_version: Optional[int] = None, actual_version: Optional[int] = None):
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version


class RateLimitError(ReqFlowError):
    """Too many requests from one client on one route within the window."""

    status_code = 429

    def __init__(self, retry_after: int, message: str = "Too many requests"):
        super().__init__(message)
        self.retry_after = retry_after


class StoreError(ReqFlowError):
    """The relational store rejected or failed the operation."""

    status_code = 500


class PipelineError(ReqFlowError):
    """The external workflow-automation service returned an error."""

    status_code = 502


class ConfigurationError(ReqFlowError):
    """A collaborator is used without the settings it requires."""

    status_code = 503


STATUS_ERRORS: dict[int, type[ReqFlowError]] = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
    502: PipelineError,
    503: ConfigurationError,
}


def error_for_status(status_code: int, message: str, retry_after: Optional[int] = None) -> ReqFlowError:
    """Build the exception matching an HTTP error status."""
    if status_code == 429:
        return RateLimitError(retry_after or 0, message)
    error_class = STATUS_ERRORS.get(status_code, StoreError)
    return error_class(message)
