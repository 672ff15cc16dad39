"""
Jobs router for the repair job lifecycle API.

Endpoints:
- POST /jobs - Open a job in CREATED state
- GET /jobs - List jobs (optionally by state)
- GET /jobs/{job_id} - Get job snapshot
- GET /jobs/{job_id}/history - Get transition audit trail
- GET /jobs/{job_id}/report - Snapshot, current state and next states
- GET /jobs/{job_id}/transitions - States a role may request next
- POST /jobs/{job_id}/transitions - Request a transition

Error mapping (see _errors.to_http_error):
- PermissionDenied -> 403
- ValidationError -> 422 with {code, field, message}
- ConcurrentModificationError -> 409
- JobNotFoundError -> 404
"""

from typing import Optional

from fastapi import APIRouter, Header, Query

from ..schemas.jobs import (
    JobCreateRequest,
    TransitionRequest,
    HistoryEntryResponse,
    JobResponse,
    JobListResponse,
    NotificationIntentResponse,
    TransitionResponse,
    HistoryResponse,
    AvailableTransitionsResponse,
)
from .._errors import to_http_error
from .._lifecycle_state import get_lifecycle_service

from src.lifecycle.entities import Actor
from src.lifecycle.errors import LifecycleError
from src.lifecycle.service import coerce_role


router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================


def _entry_to_response(entry) -> HistoryEntryResponse:
    """Convert HistoryEntry entity to API response."""
    return HistoryEntryResponse(**entry.to_dict())


def _job_to_response(job) -> JobResponse:
    """Convert Job entity to API response."""
    data = job.to_dict()
    data["history"] = [_entry_to_response(entry) for entry in job.history]
    return JobResponse(**data)


def _result_to_response(result) -> TransitionResponse:
    """Convert TransitionResult to API response."""
    return TransitionResponse(
        job=_job_to_response(result.job),
        side_effects=[
            NotificationIntentResponse(**intent.to_dict()) for intent in result.side_effects
        ],
        replayed=result.replayed,
    )


# =============================================================================
# Job Endpoints
# =============================================================================


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(request: JobCreateRequest):
    """
    Open a new repair job.

    The job starts in CREATED at version 0 with an empty history.
    The customer is notified asynchronously.
    """
    service = get_lifecycle_service()

    job = service.open_job(
        customer_id=request.customer_id,
        organization_id=request.organization_id,
        technician_id=request.technician_id,
        attributes=request.attributes,
    )
    return _job_to_response(job)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    state: Optional[str] = Query(default=None, description="Filter by lifecycle state"),
    limit: int = Query(default=50, ge=1, le=200, description="Maximum jobs to return"),
):
    """
    List jobs, newest first.
    """
    service = get_lifecycle_service()

    try:
        jobs = service.list_jobs(state=state, limit=limit)
    except LifecycleError as e:
        raise to_http_error(e)

    return JobListResponse(
        jobs=[_job_to_response(job) for job in jobs],
        total=len(jobs),
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str):
    """
    Get a job snapshot by ID.
    """
    service = get_lifecycle_service()

    try:
        job = service.get_job(job_id)
    except LifecycleError as e:
        raise to_http_error(e)

    return _job_to_response(job)


@router.get("/{job_id}/history", response_model=HistoryResponse)
async def get_job_history(job_id: str):
    """
    Get the transition audit trail of a job, oldest first.
    """
    service = get_lifecycle_service()

    try:
        history = service.get_history(job_id)
    except LifecycleError as e:
        raise to_http_error(e)

    return HistoryResponse(
        job_id=job_id,
        history=[_entry_to_response(entry) for entry in history],
        total=len(history),
    )


@router.get("/{job_id}/report")
async def get_job_report(job_id: str):
    """
    Get a job snapshot with its current state description and next states.
    """
    service = get_lifecycle_service()

    try:
        return service.state_report(job_id)
    except LifecycleError as e:
        raise to_http_error(e)


# =============================================================================
# Transition Endpoints
# =============================================================================


@router.get("/{job_id}/transitions", response_model=AvailableTransitionsResponse)
async def get_available_transitions(
    job_id: str,
    role: str = Query(..., description="Role asking for its options"),
):
    """
    List the target states `role` may request for this job right now.
    """
    service = get_lifecycle_service()

    try:
        states = service.available_transitions(job_id, role)
        job = service.get_job(job_id)
        role_value = coerce_role(role).value
    except LifecycleError as e:
        raise to_http_error(e)

    return AvailableTransitionsResponse(
        job_id=job_id,
        state=job.state.value,
        role=role_value,
        available_states=[state.value for state in states],
    )


@router.post("/{job_id}/transitions", response_model=TransitionResponse)
async def request_transition(
    job_id: str,
    request: TransitionRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    """
    Request a state transition.

    Send the same Idempotency-Key to safely retry a request; the first
    committed result is returned with `replayed: true`.
    Omit expected_version to let the server retry version conflicts.
    """
    service = get_lifecycle_service()

    try:
        actor = Actor(actor_id=request.actor.actor_id, role=coerce_role(request.actor.role))
        result = service.transition(
            job_id,
            request.target_state,
            actor,
            payload=request.payload,
            expected_version=request.expected_version,
            idempotency_key=idempotency_key,
        )
    except LifecycleError as e:
        raise to_http_error(e)

    return _result_to_response(result)
