"""
Lifecycle error mapping for API routers.

Every 4xx body is an ErrorDetail:
- JobNotFoundError -> 404 JOB_NOT_FOUND
- PermissionDenied -> 403 PERMISSION_DENIED
- ValidationError -> 422 VALIDATION_FAILED with code and field
- ConcurrentModificationError -> 409 CONCURRENT_MODIFICATION with both versions
"""

from fastapi import HTTPException

from .schemas.jobs import ErrorDetail

from src.lifecycle.errors import (
    ConcurrentModificationError,
    JobNotFoundError,
    LifecycleError,
    PermissionDenied,
    ValidationError,
)


def _http_error(status_code: int, detail: ErrorDetail) -> HTTPException:
    return HTTPException(status_code=status_code, detail=detail.model_dump(exclude_none=True))


def to_http_error(error: LifecycleError) -> HTTPException:
    """Map a lifecycle error to the HTTP status the client should see."""
    if isinstance(error, JobNotFoundError):
        return _http_error(404, ErrorDetail(error="JOB_NOT_FOUND", message=str(error)))
    if isinstance(error, PermissionDenied):
        return _http_error(403, ErrorDetail(error="PERMISSION_DENIED", message=error.reason))
    if isinstance(error, ValidationError):
        return _http_error(
            422,
            ErrorDetail(
                error="VALIDATION_FAILED",
                code=error.code,
                field=error.field,
                message=error.message,
            ),
        )
    if isinstance(error, ConcurrentModificationError):
        return _http_error(
            409,
            ErrorDetail(
                error="CONCURRENT_MODIFICATION",
                message=str(error),
                expected_version=error.expected_version,
                actual_version=error.actual_version,
            ),
        )
    return _http_error(500, ErrorDetail(error="LIFECYCLE_ERROR", message=str(error)))
