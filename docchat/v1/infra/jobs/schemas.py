"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from docchat.v1.infra.jobs.models import JobType


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    payload: dict[str, Any]
    status: str
    attempts: int
    max_attempts: int
    last_error: str | None = None
    run_at: datetime

    # Worker coordination
    locked_at: datetime | None = None
    locked_by: str | None = None
    heartbeat_at: datetime | None = None

    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # pending + running
    failed_last_hour: int
    stuck_jobs: int


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    type: JobType = Field(..., description="Job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    run_at: datetime | None = Field(default=None, description="Scheduled run time")
    max_attempts: int | None = Field(
        default=None, ge=1, le=25, description="Attempt budget override"
    )


class JobRecoveryResponse(BaseModel):
    """Schema for the stale job recovery result."""

    requeued: int
    failed: int
