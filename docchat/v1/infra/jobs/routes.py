"""
Job management API endpoints.

Operator endpoints for enqueueing, monitoring and recovering jobs.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings, SettingsDep
from docchat.infra.database import get_session
from docchat.v1.core.exceptions import create_success_response
from docchat.v1.core.security import OperatorDep, Principal
from docchat.v1.infra.jobs.models import JobStatus
from docchat.v1.infra.jobs.schemas import (
    JobEnqueueRequest,
    JobListResponse,
    JobRecoveryResponse,
    JobResponse,
)
from docchat.v1.infra.jobs.service import JobService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Enqueue a new background job."""

    job = await JobService(settings).enqueue_job(
        session,
        job_request.type,
        job_request.payload,
        run_at=job_request.run_at,
        max_attempts=job_request.max_attempts,
    )

    logger.info(
        "Job enqueued via API",
        extra={
            "job_id": str(job.id),
            "type": job.type,
            "user_id": principal.user_id,
        },
    )

    return create_success_response(data=JobResponse.model_validate(job).model_dump())


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    type: str | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List jobs with filtering and pagination."""

    jobs, total = await JobService(settings).list_jobs(
        session, status=status, job_type=type, limit=limit, offset=offset
    )

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )

    return create_success_response(data=response_data.model_dump())


@router.get("/stats/overview", response_model=dict)
async def get_job_stats(
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get queue statistics."""

    stats = await JobService(settings).get_job_stats(session)

    return create_success_response(data=stats.model_dump())


@router.post("/recover", response_model=dict)
async def recover_stale_jobs(
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Reclaim running jobs whose worker stopped heartbeating."""

    requeued, failed = await JobService(settings).recover_stale_jobs(session)

    return create_success_response(
        data=JobRecoveryResponse(requeued=requeued, failed=failed).model_dump()
    )


@router.post("/cleanup", response_model=dict)
async def cleanup_old_jobs(
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Delete finished jobs older than the retention window."""

    deleted = await JobService(settings).cleanup_old_jobs(session)

    return create_success_response(data={"deleted": deleted})


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""

    job = await JobService(settings).get_job_by_id(session, job_id)

    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return create_success_response(data=JobResponse.model_validate(job).model_dump())


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(
    job_id: UUID,
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Retry a failed job."""

    success = await JobService(settings).retry_job(session, job_id)

    if not success:
        raise HTTPException(
            status_code=404, detail="Job not found or not eligible for retry"
        )

    logger.info(
        "Job retried via API",
        extra={"job_id": str(job_id), "user_id": principal.user_id},
    )

    return create_success_response(data={"success": True, "job_id": str(job_id)})
