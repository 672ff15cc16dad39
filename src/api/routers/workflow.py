"""
Workflow router.

Description of the lifecycle (states, edges, roles, SLA timeouts) and
aggregate views over stored jobs.

Endpoints:
- GET /workflow - States and transition rules
- GET /workflow/analytics - Job counts per state for a creation date range
- POST /workflow/escalations - Notify escalation roles of overdue jobs
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query

from ..schemas.jobs import WorkflowAnalyticsResponse
from .._errors import to_http_error
from .._lifecycle_state import get_lifecycle_service

from src.lifecycle.errors import LifecycleError


router = APIRouter()


@router.get("")
async def describe_workflow():
    """
    Describe every state and every allowed edge.

    Each transition lists its allowed roles, required payload fields and
    any gate (quality checklist, dispute re-open).
    """
    service = get_lifecycle_service()
    return service.describe_workflow()


@router.get("/analytics", response_model=WorkflowAnalyticsResponse)
async def workflow_analytics(
    date_from: Optional[datetime] = Query(default=None, description="Created at or after (ISO 8601)"),
    date_to: Optional[datetime] = Query(default=None, description="Created at or before (ISO 8601)"),
):
    """
    Count jobs per state, for jobs created within [date_from, date_to].

    Every state is listed, with 0 where no job is in it.
    """
    service = get_lifecycle_service()

    try:
        report = service.workflow_analytics(date_from=date_from, date_to=date_to)
    except LifecycleError as e:
        raise to_http_error(e)

    return WorkflowAnalyticsResponse(**report)


@router.post("/escalations")
async def run_escalations():
    """
    Check SLA timeouts and notify escalation roles.

    Escalation never changes job state.
    """
    service = get_lifecycle_service()
    intents = service.escalate_overdue_jobs()
    return {
        "escalated": len(intents),
        "notifications": [intent.to_dict() for intent in intents],
    }
