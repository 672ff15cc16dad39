"""
Lifecycle-specific exceptions.

Caller-facing kinds (raised from JobLifecycleService.transition):
- PermissionDenied: role may not take this edge; never retried
- ValidationError: structural precondition unmet; names code and field
- ConcurrentModificationError: version mismatch; reload and retry
- JobNotFoundError: unknown job id

Internal kinds:
- VersionConflictError: conditional write lost; translated by the service
- NotificationDispatchFailure: logged by the dispatcher, never surfaced
"""

from typing import Optional


class LifecycleError(Exception):
    """Base exception for all lifecycle errors."""
    pass


class PermissionDenied(LifecycleError):
    """Raised when the actor's role is not allowed to take an edge."""

    def __init__(self, role: str, from_state: str, to_state: str, reason: Optional[str] = None):
        self.role = role
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Role {role} may not move a job from {from_state} to {to_state}"
        super().__init__(self.reason)


class ValidationError(LifecycleError):
    """
    Raised for the first unmet precondition of a transition.

    Codes:
    - TERMINAL_STATE: job is DELIVERED or CANCELLED
    - ILLEGAL_EDGE: edge is not in the transition table
    - MISSING_FIELD / INVALID_FIELD: payload field absent or malformed
    - INCOMPLETE_CHECKLIST / FAILED_CHECKLIST: quality gate unmet
    - INVALID_REOPEN_TARGET: dispute re-opened to the wrong state
    - UNKNOWN_STATE / UNKNOWN_ROLE: unparseable request values
    - IDEMPOTENCY_KEY_REUSED: key replayed with different arguments
    """

    def __init__(self, code: str, field: Optional[str] = None, message: Optional[str] = None):
        self.code = code
        self.field = field
        self.message = message or (f"{code} ({field})" if field else code)
        super().__init__(self.message)


class ConcurrentModificationError(LifecycleError):
    """
    Raised when the job version differs from the caller's expectation.

    Safe to retry after reloading the job.
    """

    def __init__(self, job_id: str, expected_version: int, actual_version: Optional[int] = None):
        self.job_id = job_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrent modification of job {job_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


class JobNotFoundError(LifecycleError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class VersionConflictError(LifecycleError):
    """Raised by a store when a conditional write finds a different version."""

    def __init__(self, job_id: str, expected_version: int, actual_version: Optional[int]):
        self.job_id = job_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict for job {job_id}: "
            f"expected {expected_version}, stored {actual_version}"
        )


class NotificationDispatchFailure(LifecycleError):
    """Raised by a gateway when a notification could not be delivered."""

    def __init__(self, intent_id: str, reason: str):
        self.intent_id = intent_id
        self.reason = reason
        super().__init__(f"Notification {intent_id} failed: {reason}")
