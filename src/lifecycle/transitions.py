"""
Static transition table.

Every legal edge is one entry of TRANSITIONS, keyed by (from_state, to_state).
Each rule lists the roles allowed to take the edge, the payload fields the
edge requires, and an optional gate checked by the validator. Edges and
roles absent from the table are illegal and denied.

Exception edges (CANCELLED, DISPUTED, dispute re-open) are generated from
the state set rather than listed by hand.
"""

from dataclasses import dataclass
from typing import Optional

from .entities import ActorRole, JobState, NON_TERMINAL_STATES


# Gate names
GATE_QUALITY_CHECKLIST = "quality_checklist"
GATE_DISPUTE_REOPEN = "dispute_reopen"

# Checkpoints that must all pass before QUALITY_CHECK → COMPLETED
REQUIRED_QUALITY_CHECKPOINTS = (
    "functionality_test",
    "visual_inspection",
    "customer_requirements",
    "documentation_complete",
)

_CUSTOMER = ActorRole.CUSTOMER
_TECHNICIAN = ActorRole.TECHNICIAN
_MANAGER = ActorRole.ORG_MANAGER
_OWNER = ActorRole.ORG_OWNER
_ADMIN = ActorRole.SAAS_ADMIN


@dataclass(frozen=True)
class TransitionRule:
    """One legal edge of the lifecycle graph."""

    from_state: JobState
    to_state: JobState
    allowed_roles: frozenset
    required_fields: tuple = ()
    gate: Optional[str] = None
    description: str = ""

    def allows(self, role: ActorRole) -> bool:
        return role in self.allowed_roles


def _rule(
    from_state: JobState,
    to_state: JobState,
    roles,
    required_fields: tuple = (),
    gate: Optional[str] = None,
    description: str = "",
) -> TransitionRule:
    return TransitionRule(
        from_state=from_state,
        to_state=to_state,
        allowed_roles=frozenset(roles),
        required_fields=tuple(required_fields),
        gate=gate,
        description=description,
    )


_PRIMARY_RULES = (
    _rule(JobState.CREATED, JobState.IN_DIAGNOSIS,
          (_TECHNICIAN, _MANAGER, _OWNER), ("technician_id",),
          description="Technician assigned and diagnosis started"),
    _rule(JobState.IN_DIAGNOSIS, JobState.AWAITING_APPROVAL,
          (_TECHNICIAN, _MANAGER), ("diagnosis_notes", "estimated_hours", "estimated_cost"),
          description="Diagnosis documented and quote sent"),
    _rule(JobState.AWAITING_APPROVAL, JobState.APPROVED,
          (_CUSTOMER, _MANAGER, _OWNER),
          description="Customer approved the quote"),
    _rule(JobState.AWAITING_APPROVAL, JobState.IN_DIAGNOSIS,
          (_TECHNICIAN, _MANAGER),
          description="Quote withdrawn for re-diagnosis"),
    _rule(JobState.APPROVED, JobState.IN_PROGRESS,
          (_TECHNICIAN, _MANAGER),
          description="Repair work started"),
    _rule(JobState.APPROVED, JobState.PARTS_ORDERED,
          (_TECHNICIAN, _MANAGER), ("parts_ordered",),
          description="Parts ordered before work starts"),
    _rule(JobState.IN_PROGRESS, JobState.PARTS_ORDERED,
          (_TECHNICIAN, _MANAGER), ("parts_ordered",),
          description="Work paused waiting for parts"),
    _rule(JobState.PARTS_ORDERED, JobState.IN_PROGRESS,
          (_TECHNICIAN, _MANAGER), ("parts_received",),
          description="Parts received, work resumed"),
    _rule(JobState.IN_PROGRESS, JobState.TESTING,
          (_TECHNICIAN,), ("actual_hours",),
          description="Repair finished, testing started"),
    _rule(JobState.TESTING, JobState.QUALITY_CHECK,
          (_TECHNICIAN, _MANAGER), ("testing_results",),
          description="Tests passed, handed to quality check"),
    _rule(JobState.TESTING, JobState.IN_PROGRESS,
          (_TECHNICIAN, _MANAGER),
          description="Tests failed, rework required"),
    _rule(JobState.QUALITY_CHECK, JobState.COMPLETED,
          (_MANAGER, _OWNER), gate=GATE_QUALITY_CHECKLIST,
          description="Quality checklist signed off"),
    _rule(JobState.QUALITY_CHECK, JobState.TESTING,
          (_TECHNICIAN, _MANAGER, _OWNER),
          description="Quality check failed, back to testing"),
    _rule(JobState.COMPLETED, JobState.CUSTOMER_APPROVED,
          (_CUSTOMER, _MANAGER), ("customer_signature",),
          description="Customer signed off the completed work"),
    _rule(JobState.CUSTOMER_APPROVED, JobState.DELIVERED,
          (_TECHNICIAN, _MANAGER, _OWNER), ("delivery_receipt",),
          description="Device handed back to the customer"),
)

# States the customer may cancel from without staff involvement
CUSTOMER_CANCELLABLE_STATES = frozenset({JobState.CREATED, JobState.AWAITING_APPROVAL})


def _exception_rules() -> list:
    rules = []
    for state in NON_TERMINAL_STATES:
        roles = {_OWNER, _ADMIN}
        if state in CUSTOMER_CANCELLABLE_STATES:
            roles.add(_CUSTOMER)
        rules.append(_rule(state, JobState.CANCELLED, roles, ("reason",),
                           description="Job cancelled"))

        if state is JobState.DISPUTED:
            continue
        rules.append(_rule(state, JobState.DISPUTED, (_CUSTOMER,), ("reason",),
                           description="Customer raised a dispute"))
        rules.append(_rule(JobState.DISPUTED, state, (_MANAGER, _OWNER, _ADMIN),
                           gate=GATE_DISPUTE_REOPEN,
                           description="Dispute resolved, job re-opened"))
    return rules


def _build_table() -> dict:
    table = {}
    for rule in (*_PRIMARY_RULES, *_exception_rules()):
        key = (rule.from_state, rule.to_state)
        if key in table:
            raise ValueError(f"Duplicate transition rule: {key[0].value} -> {key[1].value}")
        table[key] = rule
    return table


TRANSITIONS: dict = _build_table()


def get_rule(from_state: JobState, to_state: JobState) -> Optional[TransitionRule]:
    """Get the rule for an edge, or None if the edge is illegal."""
    return TRANSITIONS.get((from_state, to_state))


def is_edge(from_state: JobState, to_state: JobState) -> bool:
    return (from_state, to_state) in TRANSITIONS


def targets_from(state: JobState) -> list:
    """All states reachable in one step from `state`, in enum order."""
    return [target for target in JobState if (state, target) in TRANSITIONS]


def all_edges() -> list:
    return list(TRANSITIONS.values())
