"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .jobs import (
    ActorModel,
    JobCreateRequest,
    TransitionRequest,
    HistoryEntryResponse,
    JobResponse,
    JobListResponse,
    NotificationIntentResponse,
    TransitionResponse,
    HistoryResponse,
    AvailableTransitionsResponse,
    ErrorDetail,
    WorkflowAnalyticsResponse,
)

__all__ = [
    "ActorModel",
    "JobCreateRequest",
    "TransitionRequest",
    "HistoryEntryResponse",
    "JobResponse",
    "JobListResponse",
    "NotificationIntentResponse",
    "TransitionResponse",
    "HistoryResponse",
    "AvailableTransitionsResponse",
    "ErrorDetail",
    "WorkflowAnalyticsResponse",
]
