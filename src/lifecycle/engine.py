"""
Job State Machine Engine.

Owns the rules for changing a job's state. Given a snapshot and a request it
either raises or returns the next snapshot together with the notifications
that must follow. It performs no I/O and keeps no state between calls;
persisting the snapshot and dispatching notifications is the lifecycle
service's job.

Check order for apply_transition:
1. Expected version matches the snapshot (ConcurrentModificationError)
2. Job not terminal and edge in the table (ValidationError)
3. Actor role allowed on the edge (PermissionDenied)
4. Payload and gate checks (ValidationError)
"""

import copy
import logging
from typing import Optional

from .catalog import NOTIFICATION_PLAN, STATE_CATALOG
from .entities import (
    Actor,
    ActorRole,
    HistoryEntry,
    Job,
    JobState,
    NotificationIntent,
    TransitionResult,
    now_iso,
)
from .errors import ConcurrentModificationError
from .permissions import PermissionResolver
from .transitions import TransitionRule, targets_from
from .validator import TransitionValidator, merged_checklist, quality_score


logger = logging.getLogger(__name__)


# Payload keys stored on the job rather than in `attributes`
_RESERVED_PAYLOAD_KEYS = frozenset({"reason", "technician_id", "quality_checklist"})


class StateMachineEngine:
    """
    Applies validated transitions to job snapshots.

    Args:
        permissions: PermissionResolver for role checks
        validator: TransitionValidator for structural checks
    """

    def __init__(
        self,
        permissions: Optional[PermissionResolver] = None,
        validator: Optional[TransitionValidator] = None,
    ):
        self.permissions = permissions or PermissionResolver()
        self.validator = validator or TransitionValidator()

    # =========================================================================
    # Transitions
    # =========================================================================

    def apply_transition(
        self,
        job: Job,
        to_state: JobState,
        actor: Actor,
        payload: Optional[dict] = None,
        expected_version: Optional[int] = None,
        now: Optional[str] = None,
    ) -> TransitionResult:
        """
        Compute the result of moving `job` to `to_state`.

        Args:
            job: Current job snapshot (not modified)
            to_state: Requested target state
            actor: Who is requesting the transition
            payload: Edge-specific data (reason, checklist, parts, ...)
            expected_version: Version the caller last saw; defaults to job.version
            now: Timestamp for the history entry; defaults to current UTC time

        Returns:
            TransitionResult with the new snapshot and notification intents

        Raises:
            ConcurrentModificationError: Version mismatch
            ValidationError: Terminal job, illegal edge, bad payload, unmet gate
            PermissionDenied: Role not allowed on the edge
        """
        payload = copy.deepcopy(payload or {})

        if expected_version is not None and expected_version != job.version:
            raise ConcurrentModificationError(job.job_id, expected_version, job.version)

        self.validator.check_edge(job, to_state)
        self.permissions.check(actor.role, job.state, to_state)
        rule = self.validator.validate(job, to_state, payload)

        timestamp = now or now_iso()
        new_version = job.version + 1
        entry = HistoryEntry(
            from_state=job.state,
            to_state=to_state,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            timestamp=timestamp,
            version=new_version,
            reason=payload.get("reason"),
        )

        new_job = job.evolve(
            state=to_state,
            version=new_version,
            history=job.history + (entry,),
            technician_id=self._next_technician(job, rule, payload),
            quality_checklist=merged_checklist(job, payload),
            attributes=self._merge_attributes(job, payload),
            disputed_from=self._next_disputed_from(job, to_state),
            updated_at=timestamp,
        )

        side_effects = self.plan_notifications(new_job, entry)

        logger.debug(
            f"Computed transition for job {job.job_id}: "
            f"{job.state.value} -> {to_state.value} (v{new_version}, "
            f"{len(side_effects)} notification(s))"
        )

        return TransitionResult(job=new_job, side_effects=tuple(side_effects))

    def _merge_attributes(self, job: Job, payload: dict) -> dict:
        attributes = copy.deepcopy(job.attributes)
        for key, value in payload.items():
            if key not in _RESERVED_PAYLOAD_KEYS:
                attributes[key] = value
        return attributes

    def _next_technician(self, job: Job, rule: TransitionRule, payload: dict) -> Optional[str]:
        # Only the assignment edge may set the technician
        if "technician_id" in rule.required_fields and payload.get("technician_id"):
            return payload["technician_id"]
        return job.technician_id

    def _next_disputed_from(self, job: Job, to_state: JobState) -> Optional[JobState]:
        if to_state is JobState.DISPUTED:
            return job.state
        return None

    # =========================================================================
    # Notifications
    # =========================================================================

    def plan_notifications(self, job: Job, entry: Optional[HistoryEntry] = None) -> list:
        """
        Build notification intents for a job that just entered its state.

        Technician notifications are skipped while no technician is assigned.
        """
        definition = STATE_CATALOG[job.state]
        variables = {
            "job_id": job.job_id,
            "state": job.state.value,
            "state_name": definition.name,
            "description": definition.description,
            "customer_id": job.customer_id,
            "organization_id": job.organization_id,
            "technician_id": job.technician_id,
            "version": job.version,
        }
        if entry is not None:
            variables.update(
                from_state=entry.from_state.value,
                actor_id=entry.actor_id,
                actor_role=entry.actor_role.value,
                reason=entry.reason,
            )
        if job.state is JobState.COMPLETED:
            variables["quality_score"] = quality_score(job.quality_checklist)

        intents = []
        for rule in NOTIFICATION_PLAN.get(job.state, ()):
            if rule.recipient_role is ActorRole.TECHNICIAN and not job.technician_id:
                continue
            intents.append(
                NotificationIntent(
                    job_id=job.job_id,
                    recipient_role=rule.recipient_role,
                    template=rule.template,
                    variables=dict(variables),
                    channel=rule.channel,
                )
            )
        return intents

    # =========================================================================
    # Queries
    # =========================================================================

    def next_states(self, job: Job) -> list:
        """
        Targets reachable from the job's current state, for any role.

        A disputed job only offers CANCELLED and its pre-dispute state.
        """
        if job.is_terminal():
            return []
        targets = targets_from(job.state)
        if job.state is JobState.DISPUTED:
            targets = [t for t in targets if t in (JobState.CANCELLED, job.disputed_from)]
        return targets

    def available_transitions(self, job: Job, role: ActorRole) -> list:
        """Targets `role` may request for `job` right now."""
        return [
            target for target in self.next_states(job)
            if self.permissions.resolve(role, job.state, target).allowed
        ]
