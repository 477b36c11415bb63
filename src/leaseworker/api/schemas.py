"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from leaseworker.models import WorkItem, WorkStatus


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class StatsResponse(BaseModel):
    """Queue counts and process metrics."""

    counts: dict[str, int]
    metrics: dict[str, Any]


class EnqueueRequest(BaseModel):
    payloads: list[Any] = Field(..., min_length=1, description="One work item per payload")


class EnqueueResponse(BaseModel):
    ids: list[int]


class WorkItemResponse(BaseModel):
    """A work item as stored."""

    id: int
    payload: Any
    status: WorkStatus
    result: Optional[Any] = None
    error: Optional[str] = None
    lease_owner: Optional[str] = None
    lease_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, item: WorkItem) -> "WorkItemResponse":
        return cls(**item.model_dump())


class RequeueRequest(BaseModel):
    ids: Optional[list[int]] = Field(None, description="Failed item ids; omit to requeue every failed item")


class RequeueResponse(BaseModel):
    requeued: int


class ReclaimResponse(BaseModel):
    reclaimed: int
