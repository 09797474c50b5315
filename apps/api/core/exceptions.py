"""
Custom exception classes and error handling.

HTTP-facing errors subclass FastAPI's HTTPException so routers can raise
them directly. Domain errors (upstream fetch, persistence) are plain
exceptions that carry the identifiers of the item that failed; main.py
maps them to responses.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class AnalyticsError(Exception):
    """Base class for analytics pipeline failures."""

    error_code = "ANALYTICS_ERROR"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "detail": self.message, **{k: str(v) for k, v in self.context.items()}}


class UpstreamFetchError(AnalyticsError):
    """Reading raw rows from the activity store failed or timed out.

    Not retried here; callers apply their own retry policy.
    """

    error_code = "UPSTREAM_FETCH_FAILED"

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        activity_id: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        super().__init__(message, user_id=user_id, activity_id=activity_id, provider=provider)
        self.user_id = user_id
        self.activity_id = activity_id
        self.provider = provider


class PersistenceError(AnalyticsError):
    """Upserting a derived result failed; ``key`` is the natural key."""

    error_code = "PERSISTENCE_FAILED"

    def __init__(self, message: str, table: str, key: Dict[str, Any]):
        super().__init__(message, table=table, **key)
        self.table = table
        self.key = key
