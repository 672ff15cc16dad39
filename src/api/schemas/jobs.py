"""
Job lifecycle API schemas.

Request/response models for /jobs and /workflow endpoints.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Requests
# =============================================================================


class ActorModel(BaseModel):
    """Who is requesting an operation."""

    actor_id: str = Field(..., min_length=1, description="User identifier")
    role: str = Field(
        ...,
        description="CUSTOMER, TECHNICIAN, ORG_MANAGER, ORG_OWNER or SAAS_ADMIN",
    )


class JobCreateRequest(BaseModel):
    """Request to open a new repair job in CREATED state."""

    customer_id: str = Field(..., min_length=1, description="Customer reference")
    organization_id: str = Field(..., min_length=1, description="Repair organization reference")
    technician_id: Optional[str] = Field(default=None, description="Pre-assigned technician")
    attributes: dict = Field(
        default_factory=dict,
        description="Booking details (device, issue, priority, ...)",
    )


class TransitionRequest(BaseModel):
    """Request to move a job to another state."""

    target_state: str = Field(..., description="Requested state, e.g. IN_DIAGNOSIS")
    actor: ActorModel
    payload: dict = Field(
        default_factory=dict,
        description="Edge-specific data (reason, diagnosis_notes, quality_checklist, ...)",
    )
    expected_version: Optional[int] = Field(
        default=None,
        ge=0,
        description="Version the client last saw; omitted = retry on conflict",
    )


# =============================================================================
# Responses
# =============================================================================


class HistoryEntryResponse(BaseModel):
    from_state: str
    to_state: str
    actor_id: str
    actor_role: str
    timestamp: str
    version: int
    reason: Optional[str] = None


class JobResponse(BaseModel):
    """Response representing a job snapshot."""

    job_id: str = Field(..., description="Unique job identifier")
    customer_id: str
    organization_id: str
    state: str = Field(..., description="Current lifecycle state")
    technician_id: Optional[str] = None
    quality_checklist: dict = Field(default_factory=dict)
    attributes: dict = Field(default_factory=dict)
    history: List[HistoryEntryResponse] = Field(default_factory=list)
    version: int = Field(..., description="Optimistic concurrency token")
    disputed_from: Optional[str] = None
    created_at: str = Field(..., description="Creation timestamp (ISO format)")
    updated_at: str = Field(..., description="Last transition timestamp (ISO format)")


class JobListResponse(BaseModel):
    jobs: List[JobResponse] = Field(default_factory=list)
    total: int = Field(..., description="Number of jobs returned")


class NotificationIntentResponse(BaseModel):
    intent_id: str
    job_id: str
    recipient_role: str
    template: str
    channel: str
    variables: dict = Field(default_factory=dict)


class TransitionResponse(BaseModel):
    """Committed transition with the notifications it triggered."""

    job: JobResponse
    side_effects: List[NotificationIntentResponse] = Field(default_factory=list)
    replayed: bool = Field(default=False, description="True when served from the idempotency cache")


class HistoryResponse(BaseModel):
    job_id: str
    history: List[HistoryEntryResponse] = Field(default_factory=list)
    total: int


class AvailableTransitionsResponse(BaseModel):
    job_id: str
    state: str
    role: str
    available_states: List[str] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """Body of 4xx lifecycle errors."""

    error: str = Field(..., description="Error kind")
    code: Optional[str] = Field(default=None, description="Validation code")
    field: Optional[str] = Field(default=None, description="Offending field")
    message: str
    expected_version: Optional[int] = Field(default=None, description="Version the client sent (409 only)")
    actual_version: Optional[int] = Field(default=None, description="Stored version (409 only)")


class WorkflowAnalyticsResponse(BaseModel):
    """Job counts per state for jobs created in a date range."""

    date_from: Optional[str] = Field(default=None, description="Inclusive lower bound (ISO, UTC)")
    date_to: Optional[str] = Field(default=None, description="Inclusive upper bound (ISO, UTC)")
    total: int = Field(..., description="Jobs created in the range")
    by_state: Dict[str, int] = Field(default_factory=dict, description="Count for every state")
