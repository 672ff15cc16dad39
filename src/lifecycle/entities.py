"""
Job Lifecycle Domain Entities.

- JobState: The 13 canonical repair job states
- ActorRole: Roles that may request a transition
- Actor: Who is requesting a transition
- HistoryEntry: Immutable audit record of one applied transition
- Job: Snapshot of a repair job (mutated only through the engine)
- NotificationIntent: A notification the service must dispatch
- TransitionResult: New snapshot plus its side-effect intents

Snapshots are never modified in place. The engine builds a new Job for every
accepted transition, which keeps old snapshots safe to hand to other threads.
"""

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional
import uuid


class JobState(str, Enum):
    """
    Repair job states.

    Primary path:
        CREATED → IN_DIAGNOSIS → AWAITING_APPROVAL → APPROVED → IN_PROGRESS
        → (PARTS_ORDERED → IN_PROGRESS)* → TESTING → QUALITY_CHECK
        → COMPLETED → CUSTOMER_APPROVED → DELIVERED

    Exception states:
    - CANCELLED: terminal, reachable from any non-terminal state
    - DISPUTED: customer-raised, leaves only to CANCELLED or back to the
      state it was raised from
    """

    CREATED = "CREATED"
    IN_DIAGNOSIS = "IN_DIAGNOSIS"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    APPROVED = "APPROVED"
    IN_PROGRESS = "IN_PROGRESS"
    PARTS_ORDERED = "PARTS_ORDERED"
    TESTING = "TESTING"
    QUALITY_CHECK = "QUALITY_CHECK"
    COMPLETED = "COMPLETED"
    CUSTOMER_APPROVED = "CUSTOMER_APPROVED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.DELIVERED, JobState.CANCELLED})

NON_TERMINAL_STATES = tuple(s for s in JobState if s not in TERMINAL_STATES)


class ActorRole(str, Enum):
    """Roles recognised by the permission table."""

    CUSTOMER = "CUSTOMER"
    TECHNICIAN = "TECHNICIAN"
    ORG_MANAGER = "ORG_MANAGER"
    ORG_OWNER = "ORG_OWNER"
    SAAS_ADMIN = "SAAS_ADMIN"


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """Get current time as ISO format string."""
    return datetime.utcnow().isoformat() + "Z"


def parse_iso(value: str) -> datetime:
    """Parse a timestamp written by now_iso()."""
    return datetime.fromisoformat(value.rstrip("Z"))


@dataclass(frozen=True)
class Actor:
    """The user requesting a transition."""

    actor_id: str
    role: ActorRole


@dataclass(frozen=True)
class HistoryEntry:
    """
    Audit record of one applied transition.

    `version` is the job version produced by this entry, so entries are
    numbered 1..N and history[i].version == i + 1.
    """

    from_state: JobState
    to_state: JobState
    actor_id: str
    actor_role: ActorRole
    timestamp: str
    version: int
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role.value,
            "timestamp": self.timestamp,
            "version": self.version,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            from_state=JobState(data["from_state"]),
            to_state=JobState(data["to_state"]),
            actor_id=data["actor_id"],
            actor_role=ActorRole(data["actor_role"]),
            timestamp=data["timestamp"],
            version=int(data["version"]),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class Job:
    """
    Snapshot of a repair job.

    Mutability rules:
    - job_id, customer_id, organization_id, created_at: Immutable
    - state, version, history: Changed only by the engine, together
    - technician_id: Set when a technician is assigned
    - history: Append-only; len(history) == version at all times
    """

    job_id: str
    customer_id: str
    organization_id: str
    state: JobState = JobState.CREATED
    technician_id: Optional[str] = None
    quality_checklist: dict = field(default_factory=dict)
    attributes: dict = field(default_factory=dict)
    history: tuple = ()
    version: int = 0
    disputed_from: Optional[JobState] = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def create(
        cls,
        customer_id: str,
        organization_id: str,
        technician_id: Optional[str] = None,
        attributes: Optional[dict] = None,
    ) -> "Job":
        """Create a new Job with generated ID in CREATED state."""
        now = now_iso()
        return cls(
            job_id=generate_uuid(),
            customer_id=customer_id,
            organization_id=organization_id,
            technician_id=technician_id,
            attributes=copy.deepcopy(attributes or {}),
            created_at=now,
            updated_at=now,
        )

    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.state.is_terminal

    @property
    def state_entered_at(self) -> str:
        """Timestamp at which the job entered its current state."""
        if self.history:
            return self.history[-1].timestamp
        return self.created_at

    def evolve(self, **changes: Any) -> "Job":
        """Return a copy of this snapshot with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "customer_id": self.customer_id,
            "organization_id": self.organization_id,
            "state": self.state.value,
            "technician_id": self.technician_id,
            "quality_checklist": copy.deepcopy(self.quality_checklist),
            "attributes": copy.deepcopy(self.attributes),
            "history": [entry.to_dict() for entry in self.history],
            "version": self.version,
            "disputed_from": self.disputed_from.value if self.disputed_from else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        disputed_from = data.get("disputed_from")
        return cls(
            job_id=data["job_id"],
            customer_id=data["customer_id"],
            organization_id=data["organization_id"],
            state=JobState(data["state"]),
            technician_id=data.get("technician_id"),
            quality_checklist=copy.deepcopy(data.get("quality_checklist") or {}),
            attributes=copy.deepcopy(data.get("attributes") or {}),
            history=tuple(HistoryEntry.from_dict(e) for e in data.get("history") or []),
            version=int(data.get("version", 0)),
            disputed_from=JobState(disputed_from) if disputed_from else None,
            created_at=data["created_at"],
            updated_at=data["updated_at"],
        )


@dataclass(frozen=True)
class NotificationIntent:
    """
    A notification the lifecycle service must dispatch after commit.

    The engine only describes notifications; gateways deliver them.
    """

    job_id: str
    recipient_role: ActorRole
    template: str
    variables: dict = field(default_factory=dict)
    channel: str = "sms"
    intent_id: str = field(default_factory=generate_uuid)

    def to_dict(self) -> dict:
        return {
            "intent_id": self.intent_id,
            "job_id": self.job_id,
            "recipient_role": self.recipient_role.value,
            "template": self.template,
            "channel": self.channel,
            "variables": dict(self.variables),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NotificationIntent":
        return cls(
            job_id=data["job_id"],
            recipient_role=ActorRole(data["recipient_role"]),
            template=data["template"],
            variables=dict(data.get("variables") or {}),
            channel=data.get("channel", "sms"),
            intent_id=data.get("intent_id") or generate_uuid(),
        )


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of an accepted transition."""

    job: Job
    side_effects: tuple = ()
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "job": self.job.to_dict(),
            "side_effects": [intent.to_dict() for intent in self.side_effects],
        }

    @classmethod
    def from_dict(cls, data: dict, replayed: bool = False) -> "TransitionResult":
        return cls(
            job=Job.from_dict(data["job"]),
            side_effects=tuple(
                NotificationIntent.from_dict(i) for i in data.get("side_effects") or []
            ),
            replayed=replayed,
        )
