"""
Transition Validator Tests.

Checks run in a fixed order and stop at the first failure:
terminal state, edge, required fields, field values, gate.
"""

import pytest

from src.lifecycle import JobState, TransitionValidator, ValidationError
from src.lifecycle.validator import merged_checklist, quality_score

from .conftest import PASSING_CHECKLIST


@pytest.fixture
def validator() -> TransitionValidator:
    return TransitionValidator()


def _at(job, state, **changes):
    return job.evolve(state=state, **changes)


class TestEdgeChecks:

    def test_skipping_testing_is_illegal(self, validator, new_job):
        job = _at(new_job(), JobState.IN_PROGRESS)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.QUALITY_CHECK, {})

        assert exc_info.value.code == "ILLEGAL_EDGE"
        assert exc_info.value.field == "state"

    def test_diagnosis_cannot_jump_to_completed(self, validator, new_job):
        job = _at(new_job(), JobState.IN_DIAGNOSIS)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.COMPLETED, {})

        assert exc_info.value.code == "ILLEGAL_EDGE"

    def test_completed_cannot_skip_customer_approval(self, validator, new_job):
        job = _at(new_job(), JobState.COMPLETED)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.DELIVERED, {"delivery_receipt": "r-1"})

        assert exc_info.value.code == "ILLEGAL_EDGE"

    @pytest.mark.parametrize("terminal", [JobState.DELIVERED, JobState.CANCELLED])
    def test_terminal_state_reported_before_edge(self, validator, new_job, terminal):
        job = _at(new_job(), terminal)

        for target in JobState:
            with pytest.raises(ValidationError) as exc_info:
                validator.validate(job, target, {"reason": "again"})
            assert exc_info.value.code == "TERMINAL_STATE"

    def test_returns_rule_for_legal_edge(self, validator, new_job):
        rule = validator.validate(new_job(), JobState.IN_DIAGNOSIS, {"technician_id": "tech-9"})
        assert rule.from_state == JobState.CREATED
        assert rule.to_state == JobState.IN_DIAGNOSIS


class TestRequiredFields:

    def test_cancel_requires_reason(self, validator, new_job):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(new_job(), JobState.CANCELLED, {})

        assert exc_info.value.code == "MISSING_FIELD"
        assert exc_info.value.field == "reason"

    def test_blank_reason_is_missing(self, validator, new_job):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(new_job(), JobState.CANCELLED, {"reason": "   "})

        assert exc_info.value.field == "reason"

    def test_first_missing_field_is_reported(self, validator, new_job):
        job = _at(new_job(), JobState.IN_DIAGNOSIS)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.AWAITING_APPROVAL, {"estimated_cost": 10})

        assert exc_info.value.code == "MISSING_FIELD"
        assert exc_info.value.field == "diagnosis_notes"

    def test_assigned_technician_satisfies_assignment(self, validator, new_job):
        job = new_job(technician_id="tech-7")
        validator.validate(job, JobState.IN_DIAGNOSIS, {})

    def test_diagnosis_requires_technician(self, validator, new_job):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(new_job(), JobState.IN_DIAGNOSIS, {})

        assert exc_info.value.field == "technician_id"

    def test_parts_order_requires_parts(self, validator, new_job):
        job = _at(new_job(), JobState.IN_PROGRESS)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.PARTS_ORDERED, {})

        assert exc_info.value.field == "parts_ordered"


class TestFieldValues:

    @pytest.mark.parametrize("hours", [0, -1, "two", True])
    def test_actual_hours_must_be_positive_number(self, validator, new_job, hours):
        job = _at(new_job(), JobState.IN_PROGRESS)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.TESTING, {"actual_hours": hours})

        assert exc_info.value.code == "INVALID_FIELD"
        assert exc_info.value.field == "actual_hours"

    def test_negative_estimate_rejected(self, validator, new_job):
        job = _at(new_job(), JobState.IN_DIAGNOSIS)
        payload = {"diagnosis_notes": "Bad fan", "estimated_hours": 1, "estimated_cost": -5}

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.AWAITING_APPROVAL, payload)

        assert exc_info.value.code == "INVALID_FIELD"
        assert exc_info.value.field == "estimated_cost"

    def test_parts_received_must_be_confirmed(self, validator, new_job):
        job = _at(new_job(), JobState.PARTS_ORDERED)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.IN_PROGRESS, {"parts_received": "yes"})

        assert exc_info.value.field == "parts_received"

    def test_parts_ordered_must_be_list(self, validator, new_job):
        job = _at(new_job(), JobState.APPROVED)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.PARTS_ORDERED, {"parts_ordered": "screen"})

        assert exc_info.value.code == "INVALID_FIELD"

    @pytest.mark.parametrize("reason", [42, ["too", "slow"], {"text": "no"}, False])
    def test_reason_must_be_text(self, validator, new_job, reason):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(new_job(), JobState.CANCELLED, {"reason": reason})

        assert exc_info.value.code == "INVALID_FIELD"
        assert exc_info.value.field == "reason"

    def test_document_fields_must_be_text(self, validator, new_job):
        job = _at(new_job(), JobState.COMPLETED)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.CUSTOMER_APPROVED, {"customer_signature": 1234})

        assert exc_info.value.field == "customer_signature"

    def test_technician_must_be_text(self, validator, new_job):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(new_job(), JobState.IN_DIAGNOSIS, {"technician_id": 7})

        assert exc_info.value.code == "INVALID_FIELD"
        assert exc_info.value.field == "technician_id"

    @pytest.mark.parametrize("state, target", [
        (JobState.IN_DIAGNOSIS, JobState.DISPUTED),
        (JobState.IN_PROGRESS, JobState.CANCELLED),
        (JobState.APPROVED, JobState.IN_PROGRESS),
    ])
    def test_technician_only_set_on_assignment(self, validator, new_job, state, target):
        job = _at(new_job(technician_id="tech-1"), state)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, target, {"reason": "Reassign", "technician_id": "tech-2"})

        assert exc_info.value.code == "INVALID_FIELD"
        assert exc_info.value.field == "technician_id"

    def test_assignment_edge_accepts_technician(self, validator, new_job):
        rule = validator.validate(new_job(), JobState.IN_DIAGNOSIS, {"technician_id": "tech-2"})

        assert rule.to_state == JobState.IN_DIAGNOSIS


class TestQualityGate:

    def test_incomplete_checklist(self, validator, new_job):
        job = _at(new_job(), JobState.QUALITY_CHECK)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.COMPLETED, {"quality_checklist": {"functionality_test": True}})

        assert exc_info.value.code == "INCOMPLETE_CHECKLIST"
        assert exc_info.value.field == "quality_checklist"

    def test_empty_checklist_is_incomplete(self, validator, new_job):
        job = _at(new_job(), JobState.QUALITY_CHECK)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.COMPLETED, {})

        assert exc_info.value.code == "INCOMPLETE_CHECKLIST"

    def test_failing_checkpoint(self, validator, new_job):
        job = _at(new_job(), JobState.QUALITY_CHECK)
        checklist = dict(PASSING_CHECKLIST, visual_inspection=False)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.COMPLETED, {"quality_checklist": checklist})

        assert exc_info.value.code == "FAILED_CHECKLIST"
        assert "visual_inspection" in exc_info.value.message

    def test_checklist_values_must_be_booleans(self, validator, new_job):
        job = _at(new_job(), JobState.QUALITY_CHECK)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.COMPLETED, {"quality_checklist": {"functionality_test": "ok"}})

        assert exc_info.value.code == "INVALID_FIELD"

    def test_stored_checkpoints_count_towards_gate(self, validator, new_job):
        stored = {"functionality_test": True, "visual_inspection": True}
        job = _at(new_job(), JobState.QUALITY_CHECK, quality_checklist=stored)
        submitted = {"customer_requirements": True, "documentation_complete": True}

        validator.validate(job, JobState.COMPLETED, {"quality_checklist": submitted})

    def test_custom_required_checkpoints(self, new_job):
        validator = TransitionValidator(required_checkpoints=("water_test",))
        job = _at(new_job(), JobState.QUALITY_CHECK)

        validator.validate(job, JobState.COMPLETED, {"quality_checklist": {"water_test": True}})


class TestReopenGate:

    def test_reopen_to_pre_dispute_state(self, validator, new_job):
        job = _at(new_job(), JobState.DISPUTED, disputed_from=JobState.TESTING)
        validator.validate(job, JobState.TESTING, {})

    def test_reopen_to_other_state_rejected(self, validator, new_job):
        job = _at(new_job(), JobState.DISPUTED, disputed_from=JobState.TESTING)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(job, JobState.IN_PROGRESS, {})

        assert exc_info.value.code == "INVALID_REOPEN_TARGET"


class TestChecklistHelpers:

    def test_merged_checklist_prefers_payload(self, new_job):
        job = new_job().evolve(quality_checklist={"functionality_test": False})
        merged = merged_checklist(job, {"quality_checklist": {"functionality_test": True}})
        assert merged == {"functionality_test": True}

    def test_quality_score(self):
        assert quality_score(PASSING_CHECKLIST) == 100.0
        assert quality_score({"a": True, "b": False, "c": False}) == 33.3
        assert quality_score({}) == 0.0
