"""
State catalog and notification plan.

STATE_CATALOG describes each state for people and for SLA monitoring:
display name, description, how long a job may sit in the state before it is
escalated, and who receives the escalation.

NOTIFICATION_PLAN lists who is told when a job enters a state. The engine
turns matching entries into NotificationIntents; nothing here sends anything.
"""

from dataclasses import dataclass
from typing import Optional

from .entities import ActorRole, JobState


@dataclass(frozen=True)
class StateDefinition:
    state: JobState
    name: str
    description: str
    timeout_hours: Optional[int] = None
    escalation_role: Optional[ActorRole] = None


@dataclass(frozen=True)
class NotificationRule:
    recipient_role: ActorRole
    template: str
    channel: str = "sms"


def _define(state, name, description, timeout_hours=None, escalation_role=None):
    return StateDefinition(state, name, description, timeout_hours, escalation_role)


STATE_CATALOG = {
    d.state: d
    for d in (
        _define(JobState.CREATED, "Job Created",
                "Job sheet created from a customer booking",
                24, ActorRole.ORG_MANAGER),
        _define(JobState.IN_DIAGNOSIS, "Under Diagnosis",
                "Technician evaluating the device and documenting findings",
                2, ActorRole.ORG_MANAGER),
        _define(JobState.AWAITING_APPROVAL, "Awaiting Customer Approval",
                "Quote sent, waiting for the customer to approve",
                48, ActorRole.ORG_MANAGER),
        _define(JobState.APPROVED, "Work Approved",
                "Customer approved the work, repair being scheduled",
                4, ActorRole.ORG_MANAGER),
        _define(JobState.IN_PROGRESS, "Work in Progress",
                "Repair work under way",
                8, ActorRole.ORG_MANAGER),
        _define(JobState.PARTS_ORDERED, "Waiting for Parts",
                "Work paused until ordered parts arrive",
                72, ActorRole.ORG_MANAGER),
        _define(JobState.TESTING, "Testing & Validation",
                "Post-repair functional testing",
                2, ActorRole.ORG_MANAGER),
        _define(JobState.QUALITY_CHECK, "Quality Validation",
                "Quality checklist and supervisor sign-off",
                1, ActorRole.ORG_OWNER),
        _define(JobState.COMPLETED, "Work Completed",
                "Repair finished, waiting for customer sign-off",
                24, ActorRole.ORG_MANAGER),
        _define(JobState.CUSTOMER_APPROVED, "Customer Approved",
                "Customer signed off, ready for hand-over",
                4, ActorRole.ORG_MANAGER),
        _define(JobState.DELIVERED, "Delivered",
                "Device handed back to the customer"),
        _define(JobState.CANCELLED, "Cancelled",
                "Job cancelled"),
        _define(JobState.DISPUTED, "Disputed",
                "Customer raised a dispute that needs resolution",
                24, ActorRole.ORG_OWNER),
    )
}


def _customer_update(channel: str = "sms") -> NotificationRule:
    return NotificationRule(ActorRole.CUSTOMER, "job_status_update", channel)


NOTIFICATION_PLAN = {
    JobState.CREATED: (
        NotificationRule(ActorRole.CUSTOMER, "job_created"),
    ),
    JobState.IN_DIAGNOSIS: (
        _customer_update(),
        NotificationRule(ActorRole.TECHNICIAN, "technician_assigned"),
    ),
    JobState.AWAITING_APPROVAL: (
        _customer_update(),
        NotificationRule(ActorRole.CUSTOMER, "quote_ready", "email"),
    ),
    JobState.APPROVED: (
        _customer_update(),
        NotificationRule(ActorRole.TECHNICIAN, "work_approved"),
    ),
    JobState.IN_PROGRESS: (_customer_update(),),
    JobState.PARTS_ORDERED: (_customer_update(),),
    JobState.TESTING: (_customer_update(),),
    JobState.QUALITY_CHECK: (
        _customer_update(),
        NotificationRule(ActorRole.ORG_MANAGER, "quality_check_requested"),
    ),
    JobState.COMPLETED: (
        _customer_update(),
        NotificationRule(ActorRole.CUSTOMER, "job_completed", "email"),
    ),
    JobState.CUSTOMER_APPROVED: (
        _customer_update(),
        NotificationRule(ActorRole.TECHNICIAN, "ready_for_delivery"),
    ),
    JobState.DELIVERED: (
        _customer_update(),
        NotificationRule(ActorRole.CUSTOMER, "job_delivered", "email"),
    ),
    JobState.CANCELLED: (
        _customer_update(),
        NotificationRule(ActorRole.TECHNICIAN, "job_cancelled"),
    ),
    JobState.DISPUTED: (
        _customer_update(),
        NotificationRule(ActorRole.ORG_MANAGER, "job_disputed"),
        NotificationRule(ActorRole.ORG_OWNER, "job_disputed", "email"),
    ),
}
