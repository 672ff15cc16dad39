"""
Job Lifecycle Service - the only entry point other subsystems call.

Orchestrates:
- JobStore (load / conditional save / idempotency records)
- StateMachineEngine (permission + validation + next snapshot)
- NotificationDispatcher (fire-and-forget delivery after commit)

Usage:
    service = JobLifecycleService.create(LifecycleSettings.from_env())
    job = service.open_job(customer_id="c-1", organization_id="org-1")
    result = service.transition(job.job_id, "IN_DIAGNOSIS", actor, payload={...})
"""

import copy
import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from src.infra.config import LifecycleSettings
from src.infra.logging_config import AUDIT_LOGGER_NAME
from .catalog import STATE_CATALOG
from .engine import StateMachineEngine
from .entities import (
    Actor,
    ActorRole,
    Job,
    JobState,
    NON_TERMINAL_STATES,
    NotificationIntent,
    TransitionResult,
    parse_iso,
)
from .errors import (
    ConcurrentModificationError,
    PermissionDenied,
    ValidationError,
    VersionConflictError,
)
from .notifications import (
    LoggingNotificationGateway,
    NotificationDispatcher,
    WebhookNotificationGateway,
)
from .persistence import InMemoryJobStore, JobStore, SQLiteJobStore, idempotency_record_key
from .transitions import all_edges


logger = logging.getLogger(__name__)
audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)


DEFAULT_CONFLICT_RETRIES = 3


def coerce_state(value) -> JobState:
    """Parse a state name, raising ValidationError(UNKNOWN_STATE) on failure."""
    if isinstance(value, JobState):
        return value
    try:
        return JobState(str(value).upper())
    except ValueError:
        raise ValidationError("UNKNOWN_STATE", "state", f"Unknown job state: {value}")


def coerce_role(value) -> ActorRole:
    """Parse a role name, raising ValidationError(UNKNOWN_ROLE) on failure."""
    if isinstance(value, ActorRole):
        return value
    try:
        return ActorRole(str(value).upper())
    except ValueError:
        raise ValidationError("UNKNOWN_ROLE", "role", f"Unknown actor role: {value}")


def _utc_moment(value, field_name: str) -> Optional[datetime]:
    """Naive UTC datetime from a datetime or ISO string; None passes through."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = parse_iso(value)
        except ValueError:
            raise ValidationError("INVALID_FIELD", field_name, f"Invalid timestamp: {value}")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def request_fingerprint(target_state: JobState, actor: Actor, payload: dict, expected_version: Optional[int]) -> str:
    """Stable hash of a transition request, used to detect idempotency key reuse."""
    body = json.dumps(
        {
            "target_state": target_state.value,
            "actor_id": actor.actor_id,
            "actor_role": actor.role.value,
            "payload": payload,
            "expected_version": expected_version,
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


class JobLifecycleService:
    """
    Public lifecycle API.

    Provides:
    - transition() with idempotency and optimistic concurrency
    - Notification dispatch after commit (failures never roll back)
    - Read helpers: job, history, available transitions, workflow, reports, analytics
    - SLA escalation of jobs stuck in a state
    """

    def __init__(
        self,
        store: JobStore,
        engine: Optional[StateMachineEngine] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        conflict_retries: int = DEFAULT_CONFLICT_RETRIES,
    ):
        """
        Initialize JobLifecycleService.

        Use JobLifecycleService.create() to build one from settings.

        Args:
            store: JobStore for snapshots and idempotency records
            engine: StateMachineEngine (default rules if omitted)
            dispatcher: NotificationDispatcher (log-only if omitted)
            conflict_retries: Reload-and-retry attempts when no expected version is given
        """
        self.store = store
        self.engine = engine or StateMachineEngine()
        self.dispatcher = dispatcher or NotificationDispatcher(LoggingNotificationGateway())
        self.conflict_retries = max(0, conflict_retries)

    @classmethod
    def create(cls, settings: Optional[LifecycleSettings] = None) -> "JobLifecycleService":
        """
        Create a service with all components wired from settings.

        Args:
            settings: LifecycleSettings (read from environment if omitted)

        Returns:
            Configured JobLifecycleService
        """
        settings = settings or LifecycleSettings.from_env()

        if settings.uses_memory_store:
            store: JobStore = InMemoryJobStore()
        else:
            store = SQLiteJobStore(settings.db_path)

        if settings.notify_webhook_url:
            gateway = WebhookNotificationGateway(
                settings.notify_webhook_url, timeout=settings.notify_timeout
            )
        else:
            gateway = LoggingNotificationGateway()

        dispatcher = NotificationDispatcher(
            gateway,
            max_attempts=settings.notify_max_attempts,
            base_delay=settings.notify_base_delay,
            max_delay=settings.notify_max_delay,
        )

        logger.info(
            f"Lifecycle service created (store={type(store).__name__}, "
            f"gateway={type(gateway).__name__})"
        )

        return cls(
            store=store,
            dispatcher=dispatcher,
            conflict_retries=settings.conflict_retries,
        )

    # =========================================================================
    # Job Intake
    # =========================================================================

    def open_job(
        self,
        customer_id: str,
        organization_id: str,
        technician_id: Optional[str] = None,
        attributes: Optional[dict] = None,
    ) -> Job:
        """
        Create a job in CREATED state and notify the customer.

        Called by booking intake; version 0, empty history.
        """
        job = Job.create(
            customer_id=customer_id,
            organization_id=organization_id,
            technician_id=technician_id,
            attributes=attributes,
        )
        self.store.create_job(job)
        audit_logger.info(
            f"OPENED job={job.job_id} customer={customer_id} org={organization_id} v{job.version}"
        )

        self.dispatcher.dispatch(self.engine.plan_notifications(job))
        return job

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition(
        self,
        job_id: str,
        target_state,
        actor: Actor,
        payload: Optional[dict] = None,
        expected_version: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move a job to `target_state`.

        Args:
            job_id: Job to transition
            target_state: JobState or state name
            actor: Actor requesting the change
            payload: Edge-specific data
            expected_version: Version the caller last saw. When given, a
                mismatch fails immediately; when omitted, conflicts are
                retried against the reloaded job.
            idempotency_key: Replays with the same key return the first result

        Returns:
            TransitionResult with the committed snapshot and its intents

        Raises:
            PermissionDenied: Role not allowed on the edge
            ValidationError: Unknown state, illegal edge, bad payload, key reuse
            ConcurrentModificationError: Version mismatch
            JobNotFoundError: Unknown job id
        """
        to_state = coerce_state(target_state)
        actor = Actor(actor_id=actor.actor_id, role=coerce_role(actor.role))
        payload = copy.deepcopy(payload or {})

        record_key = None
        fingerprint = None
        if idempotency_key:
            record_key = idempotency_record_key(job_id, to_state, idempotency_key)
            fingerprint = request_fingerprint(to_state, actor, payload, expected_version)
            cached = self._replay(record_key, fingerprint)
            if cached is not None:
                return cached

        attempts = 0
        while True:
            job = self.store.load_job(job_id)
            version = job.version if expected_version is None else expected_version

            try:
                result = self.engine.apply_transition(
                    job, to_state, actor, payload, expected_version=version
                )
            except (ValidationError, PermissionDenied, ConcurrentModificationError) as e:
                # The same request may have committed after our first lookup
                if record_key is not None:
                    cached = self._replay(record_key, fingerprint)
                    if cached is not None:
                        return cached
                self._log_rejection(job, to_state, version, e)
                raise

            idempotency = (record_key, fingerprint, result) if record_key is not None else None
            try:
                self.store.save_job(result.job, expected_version=version, idempotency=idempotency)
                break
            except VersionConflictError as e:
                if record_key is not None:
                    cached = self._replay(record_key, fingerprint)
                    if cached is not None:
                        return cached

                if expected_version is not None or attempts >= self.conflict_retries:
                    logger.warning(
                        f"Version conflict for job {job_id}: expected v{e.expected_version}, "
                        f"stored v{e.actual_version}"
                    )
                    raise ConcurrentModificationError(
                        job_id, e.expected_version, e.actual_version
                    ) from e

                attempts += 1
                logger.info(
                    f"Version conflict for job {job_id}, retrying "
                    f"({attempts}/{self.conflict_retries})"
                )

        audit_logger.info(
            f"TRANSITION job={job_id} {job.state.value} -> {to_state.value} "
            f"actor={actor.role.value}:{actor.actor_id} v{result.job.version}"
        )

        # Committed; delivery problems from here on never undo the transition
        self.dispatcher.dispatch(result.side_effects)

        return result

    def _log_rejection(self, job: Job, to_state: JobState, version: int, error: Exception) -> None:
        if isinstance(error, ValidationError):
            logger.info(
                f"Rejected transition for job {job.job_id} "
                f"{job.state.value} -> {to_state.value}: {error.code} ({error.field})"
            )
        elif isinstance(error, ConcurrentModificationError):
            logger.info(
                f"Stale transition for job {job.job_id}: expected v{version}, found v{job.version}"
            )
        else:
            logger.info(
                f"Denied transition for job {job.job_id} "
                f"{job.state.value} -> {to_state.value}: {error}"
            )

    def _replay(self, record_key: str, fingerprint: str) -> Optional[TransitionResult]:
        record = self.store.get_idempotency_record(record_key)
        if record is None:
            return None

        stored_fingerprint, result = record
        if stored_fingerprint != fingerprint:
            raise ValidationError(
                "IDEMPOTENCY_KEY_REUSED",
                "idempotency_key",
                "Idempotency key was already used with different arguments",
            )

        logger.info(f"Replaying idempotent transition {record_key}")
        return result

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: str) -> Job:
        """
        Raises:
            JobNotFoundError: If job_id doesn't exist
        """
        return self.store.load_job(job_id)

    def get_history(self, job_id: str) -> list:
        return list(self.store.load_job(job_id).history)

    def list_jobs(self, state=None, limit: int = 100) -> list:
        states = [coerce_state(state)] if state is not None else None
        return self.store.list_jobs(states=states, limit=limit)

    def available_transitions(self, job_id: str, role) -> list:
        """Target states `role` may request for the job right now."""
        job = self.store.load_job(job_id)
        return self.engine.available_transitions(job, coerce_role(role))

    def describe_workflow(self) -> dict:
        """
        Describe states, edges and rules for clients.

        Returns:
            Dictionary with states (catalog entries) and transitions (rules)
        """
        states = []
        for state in JobState:
            definition = STATE_CATALOG[state]
            states.append({
                "state": state.value,
                "name": definition.name,
                "description": definition.description,
                "terminal": state.is_terminal,
                "timeout_hours": definition.timeout_hours,
                "escalation_role": definition.escalation_role.value if definition.escalation_role else None,
            })

        transitions = [
            {
                "from_state": rule.from_state.value,
                "to_state": rule.to_state.value,
                "allowed_roles": sorted(role.value for role in rule.allowed_roles),
                "required_fields": list(rule.required_fields),
                "gate": rule.gate,
                "description": rule.description,
            }
            for rule in all_edges()
        ]

        return {"states": states, "transitions": transitions}

    def state_report(self, job_id: str) -> dict:
        """Job snapshot, its audit trail, and what can happen next."""
        job = self.store.load_job(job_id)
        definition = STATE_CATALOG[job.state]
        next_states = [state.value for state in self.engine.next_states(job)]
        return {
            "job": job.to_dict(),
            "current_state": {
                "state": job.state.value,
                "name": definition.name,
                "description": definition.description,
                "entered_at": job.state_entered_at,
            },
            "next_states": next_states,
            "history": [entry.to_dict() for entry in job.history],
        }

    def workflow_analytics(self, date_from=None, date_to=None) -> dict:
        """
        Count jobs per state, for jobs created within a date range.

        Args:
            date_from: datetime or ISO timestamp, inclusive (unbounded if omitted)
            date_to: datetime or ISO timestamp, inclusive (unbounded if omitted)

        Returns:
            Dictionary with the range, total, and a count for every state

        Raises:
            ValidationError: Unparseable timestamp or date_from after date_to
        """
        start = _utc_moment(date_from, "date_from")
        end = _utc_moment(date_to, "date_to")
        if start is not None and end is not None and start > end:
            raise ValidationError("INVALID_DATE_RANGE", "date_from", "date_from must not be after date_to")

        created_from = start.isoformat() + "Z" if start is not None else None
        created_to = end.isoformat() + "Z" if end is not None else None
        counts = self.store.count_by_state(created_from=created_from, created_to=created_to)

        return {
            "date_from": created_from,
            "date_to": created_to,
            "total": sum(counts.values()),
            "by_state": {state.value: counts.get(state, 0) for state in JobState},
        }

    # =========================================================================
    # SLA Escalation
    # =========================================================================

    def find_overdue_jobs(self, now: Optional[datetime] = None, page_size: int = 500) -> list:
        """
        Find jobs that have stayed in their state longer than its timeout.

        Every non-terminal job is checked, `page_size` jobs per store read.
        A job that changes state during the scan is picked up by the next one.

        Returns:
            List of (job, hours_in_state) tuples
        """
        now = now or datetime.utcnow()
        overdue = []
        offset = 0

        while True:
            page = self.store.list_jobs(states=NON_TERMINAL_STATES, limit=page_size, offset=offset)
            for job in page:
                timeout_hours = STATE_CATALOG[job.state].timeout_hours
                if timeout_hours is None:
                    continue
                elapsed = now - parse_iso(job.state_entered_at)
                if elapsed > timedelta(hours=timeout_hours):
                    overdue.append((job, elapsed.total_seconds() / 3600.0))

            if len(page) < page_size:
                break
            offset += page_size

        return overdue

    def escalate_overdue_jobs(self, now: Optional[datetime] = None) -> list:
        """
        Notify each overdue job's escalation role.

        Escalations are notifications only; they never change job state.

        Returns:
            List of dispatched escalation intents
        """
        intents = []
        for job, hours in self.find_overdue_jobs(now):
            definition = STATE_CATALOG[job.state]
            if definition.escalation_role is None:
                continue
            intents.append(
                NotificationIntent(
                    job_id=job.job_id,
                    recipient_role=definition.escalation_role,
                    template="job_escalated",
                    channel="email",
                    variables={
                        "job_id": job.job_id,
                        "state": job.state.value,
                        "state_name": definition.name,
                        "timeout_hours": definition.timeout_hours,
                        "hours_in_state": round(hours, 1),
                        "organization_id": job.organization_id,
                    },
                )
            )
            audit_logger.warning(
                f"ESCALATED job={job.job_id} state={job.state.value} "
                f"hours={hours:.1f}/{definition.timeout_hours} "
                f"to={definition.escalation_role.value}"
            )

        self.dispatcher.dispatch(intents)
        return intents
