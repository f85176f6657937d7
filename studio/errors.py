"""
Studio Errors
=============

Exception hierarchy shared by the edit-session engine and the API layer.
Every error carries the HTTP status the API surfaces it with.
"""

from typing import Any, Dict, Optional


class StudioError(Exception):
    """Base class for all studio errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "STUDIO_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class StudioValidationError(StudioError):
    """Request rejected before any state mutation or network call."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details={"field": field} if field else {},
        )


class NotFoundError(StudioError):
    """A referenced resource does not exist."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} not found: {resource_id}",
            error_code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class LayerNotFoundError(NotFoundError):
    def __init__(self, layer_id: str):
        super().__init__("Layer", layer_id)


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str):
        super().__init__("Session", session_id)


class RecordNotFoundError(NotFoundError):
    def __init__(self, record_id: str):
        super().__init__("History record", record_id)


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: str):
        super().__init__("Job", job_id)


class NoOpError(StudioError):
    """Undo or redo requested with an empty stack."""

    def __init__(self, message: str = "Nothing to undo"):
        super().__init__(message=message, error_code="NO_OP", status_code=409)


class JobTimeoutError(StudioError):
    """Video polling gave up; the task may still finish server-side."""

    def __init__(
        self,
        message: str = "Video generation timed out. Check your history later, the video may still complete.",
    ):
        super().__init__(message=message, error_code="JOB_TIMEOUT", status_code=504)


class TransientNetworkError(StudioError):
    """A single status poll failed. Retried on the next interval, never surfaced."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="TRANSIENT_NETWORK", status_code=503)


class MediaLoadError(StudioError):
    """A layer source could not be fetched or decoded."""

    def __init__(self, source: str, reason: str):
        preview = source if len(source) <= 80 else f"{source[:77]}..."
        super().__init__(
            message=f"Failed to load media '{preview}': {reason}",
            error_code="MEDIA_LOAD_ERROR",
            status_code=422,
        )
