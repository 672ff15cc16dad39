"""
Job Lifecycle Core Module.

Components, leaves first:
- transitions / catalog: static edge table, state catalog, notification plan
- permissions: PermissionResolver (role x edge -> allow/deny)
- validator: TransitionValidator (fail-fast structural checks)
- engine: StateMachineEngine (pure next-snapshot computation)
- persistence: JobStore implementations with optimistic versioning
- notifications: gateways and the fire-and-forget dispatcher
- service: JobLifecycleService, the public entry point
"""

from .entities import (
    JobState,
    ActorRole,
    Actor,
    HistoryEntry,
    Job,
    NotificationIntent,
    TransitionResult,
    TERMINAL_STATES,
    NON_TERMINAL_STATES,
)
from .errors import (
    LifecycleError,
    PermissionDenied,
    ValidationError,
    ConcurrentModificationError,
    JobNotFoundError,
    VersionConflictError,
    NotificationDispatchFailure,
)
from .transitions import TRANSITIONS, TransitionRule, REQUIRED_QUALITY_CHECKPOINTS
from .catalog import STATE_CATALOG, StateDefinition
from .permissions import PermissionResolver, PermissionDecision, resolve
from .validator import TransitionValidator
from .engine import StateMachineEngine
from .persistence import JobStore, InMemoryJobStore, SQLiteJobStore
from .notifications import (
    NotificationGateway,
    LoggingNotificationGateway,
    WebhookNotificationGateway,
    NotificationDispatcher,
)
from .service import JobLifecycleService

__all__ = [
    # Entities
    "JobState",
    "ActorRole",
    "Actor",
    "HistoryEntry",
    "Job",
    "NotificationIntent",
    "TransitionResult",
    "TERMINAL_STATES",
    "NON_TERMINAL_STATES",
    # Errors
    "LifecycleError",
    "PermissionDenied",
    "ValidationError",
    "ConcurrentModificationError",
    "JobNotFoundError",
    "VersionConflictError",
    "NotificationDispatchFailure",
    # Tables
    "TRANSITIONS",
    "TransitionRule",
    "REQUIRED_QUALITY_CHECKPOINTS",
    "STATE_CATALOG",
    "StateDefinition",
    # Permissions
    "PermissionResolver",
    "PermissionDecision",
    "resolve",
    # Validator
    "TransitionValidator",
    # Engine
    "StateMachineEngine",
    # Persistence
    "JobStore",
    "InMemoryJobStore",
    "SQLiteJobStore",
    # Notifications
    "NotificationGateway",
    "LoggingNotificationGateway",
    "WebhookNotificationGateway",
    "NotificationDispatcher",
    # Service
    "JobLifecycleService",
]
