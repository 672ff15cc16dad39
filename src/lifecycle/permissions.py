"""
Permission Resolver.

Maps (role, from_state, to_state) to Allowed or Denied using the static
transition table. The resolver is a pure function of its inputs: it reads
only the module-level table and never touches a job or a store.
"""

from dataclasses import dataclass
from typing import Optional

from .entities import ActorRole, JobState
from .errors import PermissionDenied
from .transitions import TRANSITIONS


@dataclass(frozen=True)
class PermissionDecision:
    """Allow/deny verdict for one (role, from, to) triple."""

    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = PermissionDecision(allowed=True)


def resolve(role: ActorRole, from_state: JobState, to_state: JobState) -> PermissionDecision:
    """
    Decide whether `role` may move a job from `from_state` to `to_state`.

    Total over ActorRole x JobState x JobState: any triple not explicitly
    allowed by the table is denied.
    """
    rule = TRANSITIONS.get((from_state, to_state))
    if rule is None:
        return PermissionDecision(
            allowed=False,
            reason=f"No transition from {from_state.value} to {to_state.value}",
        )
    if not rule.allows(role):
        return PermissionDecision(
            allowed=False,
            reason=f"Role {role.value} may not move a job from "
                   f"{from_state.value} to {to_state.value}",
        )
    return ALLOWED


class PermissionResolver:
    """Role-scoped access check over the transition table."""

    def resolve(self, role: ActorRole, from_state: JobState, to_state: JobState) -> PermissionDecision:
        return resolve(role, from_state, to_state)

    def check(self, role: ActorRole, from_state: JobState, to_state: JobState) -> None:
        """
        Raise PermissionDenied unless the role may take the edge.

        Raises:
            PermissionDenied: If the decision is Denied
        """
        decision = resolve(role, from_state, to_state)
        if not decision.allowed:
            raise PermissionDenied(role.value, from_state.value, to_state.value, decision.reason)

    def allowed_targets(self, role: ActorRole, state: JobState) -> list:
        """States `role` may move a job in `state` to, in enum order."""
        return [target for target in JobState if resolve(role, state, target).allowed]
