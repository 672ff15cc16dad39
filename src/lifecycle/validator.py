"""
Transition Validator.

Confirms a transition is structurally legal for a specific job snapshot,
beyond role permission. Checks run in a fixed order and stop at the first
failure, so the same request always reports the same error.

Order:
1. Terminal state
2. Edge present in the transition table
3. Required payload fields present
4. Payload field values well-formed
5. Edge gate (quality checklist, dispute re-open target)
"""

from numbers import Real
from typing import Optional

from .entities import Job, JobState
from .errors import ValidationError
from .transitions import (
    GATE_DISPUTE_REOPEN,
    GATE_QUALITY_CHECKLIST,
    REQUIRED_QUALITY_CHECKPOINTS,
    TransitionRule,
    get_rule,
)


# Payload fields stored as text (history reason, technician, documents)
TEXT_FIELDS = (
    "reason",
    "technician_id",
    "diagnosis_notes",
    "testing_results",
    "customer_signature",
    "delivery_receipt",
)


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def merged_checklist(job: Job, payload: Optional[dict]) -> dict:
    """Job's quality checklist updated with checkpoints from the payload."""
    merged = dict(job.quality_checklist)
    submitted = (payload or {}).get("quality_checklist")
    if isinstance(submitted, dict):
        merged.update(submitted)
    return merged


def quality_score(checklist: dict) -> float:
    """Percentage of passing checkpoints, rounded to one decimal."""
    if not checklist:
        return 0.0
    passed = sum(1 for result in checklist.values() if result is True)
    return round(100.0 * passed / len(checklist), 1)


class TransitionValidator:
    """
    Fail-fast structural validation of a requested transition.

    Args:
        required_checkpoints: Checkpoints QUALITY_CHECK → COMPLETED requires
    """

    def __init__(self, required_checkpoints: tuple = REQUIRED_QUALITY_CHECKPOINTS):
        self.required_checkpoints = tuple(required_checkpoints)

    # =========================================================================
    # Structural checks
    # =========================================================================

    def check_edge(self, job: Job, to_state: JobState) -> TransitionRule:
        """
        Check the job can leave its state and the edge exists.

        Returns:
            The TransitionRule for the edge

        Raises:
            ValidationError: TERMINAL_STATE or ILLEGAL_EDGE
        """
        if job.is_terminal():
            raise ValidationError(
                "TERMINAL_STATE",
                "state",
                f"Job {job.job_id} is {job.state.value} and admits no further transitions",
            )

        rule = get_rule(job.state, to_state)
        if rule is None:
            raise ValidationError(
                "ILLEGAL_EDGE",
                "state",
                f"Transition from {job.state.value} to {to_state.value} is not allowed",
            )
        return rule

    def validate(self, job: Job, to_state: JobState, payload: Optional[dict] = None) -> TransitionRule:
        """
        Run every check for the transition.

        Args:
            job: Current job snapshot
            to_state: Requested target state
            payload: Transition payload supplied by the caller

        Returns:
            The TransitionRule for the edge

        Raises:
            ValidationError: For the first unmet condition
        """
        payload = payload or {}
        rule = self.check_edge(job, to_state)

        self._check_required_fields(job, rule, payload)
        self._check_field_values(rule, payload)

        if rule.gate == GATE_QUALITY_CHECKLIST:
            self._check_quality_checklist(job, payload)
        elif rule.gate == GATE_DISPUTE_REOPEN:
            self._check_reopen_target(job, to_state)

        return rule

    # =========================================================================
    # Payload checks
    # =========================================================================

    def _check_required_fields(self, job: Job, rule: TransitionRule, payload: dict) -> None:
        for name in rule.required_fields:
            value = payload.get(name)
            # An already-assigned technician satisfies the assignment requirement
            if name == "technician_id" and _is_blank(value):
                value = job.technician_id
            if _is_blank(value):
                raise ValidationError(
                    "MISSING_FIELD",
                    name,
                    f"{name} is required for {rule.from_state.value} -> {rule.to_state.value}",
                )

    def _check_field_values(self, rule: TransitionRule, payload: dict) -> None:
        for name in TEXT_FIELDS:
            value = payload.get(name)
            if value is not None and not isinstance(value, str):
                raise ValidationError("INVALID_FIELD", name, f"{name} must be a string")

        if payload.get("technician_id") is not None and "technician_id" not in rule.required_fields:
            raise ValidationError(
                "INVALID_FIELD",
                "technician_id",
                f"Technician cannot be assigned on {rule.from_state.value} -> {rule.to_state.value}",
            )

        if "actual_hours" in payload:
            hours = payload["actual_hours"]
            if not _is_number(hours) or hours <= 0:
                raise ValidationError(
                    "INVALID_FIELD", "actual_hours", "Work hours must be recorded before testing"
                )

        for name in ("estimated_hours", "estimated_cost"):
            if name in payload:
                value = payload[name]
                if not _is_number(value) or value < 0:
                    raise ValidationError(
                        "INVALID_FIELD", name, f"{name} must be a non-negative number"
                    )

        if "parts_ordered" in payload:
            parts = payload["parts_ordered"]
            if not isinstance(parts, (list, tuple)) or not parts:
                raise ValidationError(
                    "INVALID_FIELD", "parts_ordered", "parts_ordered must be a non-empty list"
                )

        if "parts_received" in payload and payload["parts_received"] is not True:
            raise ValidationError(
                "INVALID_FIELD", "parts_received", "All ordered parts must be received"
            )

        if "quality_checklist" in payload:
            checklist = payload["quality_checklist"]
            if not isinstance(checklist, dict) or not all(
                isinstance(result, bool) for result in checklist.values()
            ):
                raise ValidationError(
                    "INVALID_FIELD",
                    "quality_checklist",
                    "quality_checklist must map checkpoint names to true/false",
                )

    # =========================================================================
    # Gates
    # =========================================================================

    def _check_quality_checklist(self, job: Job, payload: dict) -> None:
        checklist = merged_checklist(job, payload)

        missing = [name for name in self.required_checkpoints if name not in checklist]
        if not checklist or missing:
            raise ValidationError(
                "INCOMPLETE_CHECKLIST",
                "quality_checklist",
                f"Quality checklist incomplete, missing: {', '.join(missing) or 'all checkpoints'}",
            )

        failing = sorted(name for name, result in checklist.items() if result is not True)
        if failing:
            raise ValidationError(
                "FAILED_CHECKLIST",
                "quality_checklist",
                f"Quality checkpoints failing: {', '.join(failing)}",
            )

    def _check_reopen_target(self, job: Job, to_state: JobState) -> None:
        if job.disputed_from is not to_state:
            expected = job.disputed_from.value if job.disputed_from else "unknown"
            raise ValidationError(
                "INVALID_REOPEN_TARGET",
                "state",
                f"Disputed job can only be re-opened to {expected}, not {to_state.value}",
            )
