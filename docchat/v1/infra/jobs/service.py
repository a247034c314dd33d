"""
Job store: enqueue, claim, complete and fail background jobs.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings
from docchat.v1.infra.jobs.models import Job, JobStatus, JobType
from docchat.v1.infra.jobs.schemas import JobStatsResponse

logger = logging.getLogger(__name__)


class JobService:
    """Service for managing background jobs."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def enqueue_job(
        self,
        session: AsyncSession,
        job_type: JobType | str,
        payload: dict[str, Any],
        run_at: datetime | None = None,
        max_attempts: int | None = None,
        commit: bool = True,
    ) -> Job:
        """
        Insert a pending job.

        Args:
            session: Database session
            job_type: Job type tag
            payload: Job parameters, shape agreed with the handler
            run_at: Earliest eligible time, defaults to now
            max_attempts: Attempt budget, defaults to JOB_MAX_ATTEMPTS
            commit: When False the insert is only flushed so that it joins
                the caller's unit of work

        Returns:
            The new job
        """
        now = datetime.now(UTC)
        job = Job(
            id=uuid.uuid4(),
            type=JobType(job_type).value,
            payload=payload,
            status=JobStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts or self.settings.job_max_attempts,
            run_at=run_at or now,
            created_at=now,
            updated_at=now,
        )
        session.add(job)

        if commit:
            await session.commit()
        else:
            await session.flush()

        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job.id),
                "type": job.type,
                "run_at": job.run_at.isoformat(),
            },
        )
        return job

    async def claim_next(self, session: AsyncSession, worker_id: str) -> Job | None:
        """
        Claim the oldest eligible pending job using SELECT FOR UPDATE SKIP LOCKED.

        Rows locked by a concurrent claimer are skipped instead of waited
        on. The status flip is additionally conditional on the row still
        being pending, so a backend without row locks cannot hand the same
        job to two callers either. Any error rolls the claim back.
        """
        now = datetime.now(UTC)

        try:
            result = await session.execute(
                select(Job)
                .where(
                    and_(Job.status == JobStatus.PENDING.value, Job.run_at <= now)
                )
                .order_by(Job.created_at)
                .limit(1)
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            job = result.scalar_one_or_none()

            if job is None:
                await session.rollback()
                return None

            claimed = await session.execute(
                update(Job)
                .where(and_(Job.id == job.id, Job.status == JobStatus.PENDING.value))
                .values(
                    status=JobStatus.RUNNING.value,
                    attempts=Job.attempts + 1,
                    locked_at=now,
                    locked_by=worker_id,
                    heartbeat_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                await session.rollback()
                return None

            await session.commit()
        except Exception:
            await session.rollback()
            raise

        await session.refresh(job)

        logger.info(
            "Claimed job",
            extra={
                "worker_id": worker_id,
                "job_id": str(job.id),
                "type": job.type,
                "attempts": job.attempts,
            },
        )
        return job

    def should_retry(self, job: Job) -> bool:
        """A failed job is rescheduled while its attempt budget lasts."""
        return job.can_retry()

    async def mark_done(
        self, session: AsyncSession, job_id: UUID, worker_id: str | None = None
    ) -> bool:
        """Mark a running job as done. Returns False if the job is no longer ours."""
        result = await session.execute(
            update(Job)
            .where(*self._owned_by(job_id, worker_id))
            .values(
                status=JobStatus.DONE.value,
                locked_at=None,
                locked_by=None,
                heartbeat_at=None,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return result.rowcount > 0

    async def mark_failed(
        self,
        session: AsyncSession,
        job_id: UUID,
        error: str,
        reschedule: bool,
        worker_id: str | None = None,
    ) -> bool:
        """
        Record a failed attempt.

        With reschedule the job goes back to pending after the fixed retry
        delay; otherwise it becomes failed for good. last_error is kept in
        both cases.
        """
        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "last_error": error,
            "locked_at": None,
            "locked_by": None,
            "heartbeat_at": None,
            "updated_at": now,
        }
        if reschedule:
            values["status"] = JobStatus.PENDING.value
            values["run_at"] = now + timedelta(seconds=self.settings.job_retry_delay_s)
        else:
            values["status"] = JobStatus.FAILED.value

        result = await session.execute(
            update(Job)
            .where(*self._owned_by(job_id, worker_id))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return result.rowcount > 0

    def _owned_by(self, job_id: UUID, worker_id: str | None) -> list[Any]:
        conditions = [Job.id == job_id, Job.status == JobStatus.RUNNING.value]
        if worker_id is not None:
            conditions.append(Job.locked_by == worker_id)
        return conditions

    async def heartbeat(
        self, session: AsyncSession, job_ids: set[UUID], worker_id: str
    ) -> int:
        """Refresh the lease of jobs this worker is still running."""
        if not job_ids:
            return 0

        result = await session.execute(
            update(Job)
            .where(
                and_(
                    Job.id.in_(job_ids),
                    Job.locked_by == worker_id,
                    Job.status == JobStatus.RUNNING.value,
                )
            )
            .values(heartbeat_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return result.rowcount

    async def recover_stale_jobs(self, session: AsyncSession) -> tuple[int, int]:
        """
        Reclaim running jobs whose worker stopped heartbeating.

        Jobs with attempts left go back to pending and run again; the rest
        are failed. Returns (requeued, failed).
        """
        timeout_seconds = self.settings.job_visibility_timeout_s
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=timeout_seconds)

        try:
            result = await session.execute(
                select(Job)
                .where(
                    and_(
                        Job.status == JobStatus.RUNNING.value,
                        Job.heartbeat_at < cutoff,
                    )
                )
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            stale_jobs = result.scalars().all()

            requeued = failed = 0
            for job in stale_jobs:
                job.last_error = f"Worker lease expired after {timeout_seconds}s"
                job.locked_at = None
                job.locked_by = None
                job.heartbeat_at = None
                job.updated_at = now
                if job.can_retry():
                    job.status = JobStatus.PENDING.value
                    job.run_at = now
                    requeued += 1
                else:
                    job.status = JobStatus.FAILED.value
                    failed += 1

            await session.commit()
        except Exception:
            await session.rollback()
            raise

        if stale_jobs:
            logger.warning(
                "Recovered stuck jobs",
                extra={
                    "requeued": requeued,
                    "failed": failed,
                    "timeout_seconds": timeout_seconds,
                },
            )

        return requeued, failed

    async def get_job_by_id(self, session: AsyncSession, job_id: UUID) -> Job | None:
        """Get job by ID."""
        result = await session.execute(
            select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        session: AsyncSession,
        status: list[JobStatus] | None = None,
        job_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """List jobs newest first, returning the page and the total count."""
        query = select(Job)
        if status:
            query = query.where(Job.status.in_([s.value for s in status]))
        if job_type:
            query = query.where(Job.type == job_type)

        total_result = await session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = total_result.scalar() or 0

        jobs_result = await session.execute(
            query.order_by(Job.created_at.desc()).offset(offset).limit(limit)
        )
        return list(jobs_result.scalars().all()), total

    async def get_job_stats(self, session: AsyncSession) -> JobStatsResponse:
        """Get queue statistics for operator tooling."""
        total_result = await session.execute(select(func.count(Job.id)))
        total_jobs = total_result.scalar() or 0

        status_result = await session.execute(
            select(Job.status, func.count(Job.id)).group_by(Job.status)
        )
        by_status = {row[0]: row[1] for row in status_result.all()}

        type_result = await session.execute(
            select(Job.type, func.count(Job.id)).group_by(Job.type)
        )
        by_type = {row[0]: row[1] for row in type_result.all()}

        queue_depth = by_status.get(JobStatus.PENDING.value, 0) + by_status.get(
            JobStatus.RUNNING.value, 0
        )

        now = datetime.now(UTC)
        failed_recent_result = await session.execute(
            select(func.count(Job.id)).where(
                and_(
                    Job.status == JobStatus.FAILED.value,
                    Job.updated_at >= now - timedelta(hours=1),
                )
            )
        )
        failed_last_hour = failed_recent_result.scalar() or 0

        stuck_cutoff = now - timedelta(seconds=self.settings.job_visibility_timeout_s)
        stuck_result = await session.execute(
            select(func.count(Job.id)).where(
                and_(
                    Job.status == JobStatus.RUNNING.value,
                    Job.heartbeat_at < stuck_cutoff,
                )
            )
        )
        stuck_jobs = stuck_result.scalar() or 0

        return JobStatsResponse(
            total_jobs=total_jobs,
            by_status=by_status,
            by_type=by_type,
            queue_depth=queue_depth,
            failed_last_hour=failed_last_hour,
            stuck_jobs=stuck_jobs,
        )

    async def retry_job(self, session: AsyncSession, job_id: UUID) -> bool:
        """
        Put a failed job back in the queue.

        attempts is left untouched; the budget is widened by one so the
        job gets exactly one more claim.
        """
        job = await self.get_job_by_id(session, job_id)
        if job is None or job.status != JobStatus.FAILED.value:
            return False

        now = datetime.now(UTC)
        job.status = JobStatus.PENDING.value
        job.max_attempts = max(job.max_attempts, job.attempts + 1)
        job.run_at = now
        job.updated_at = now
        await session.commit()

        logger.info("Job retried", extra={"job_id": str(job_id)})
        return True

    async def cleanup_old_jobs(self, session: AsyncSession) -> int:
        """Delete finished jobs older than the retention window."""
        retention_days = self.settings.job_cleanup_after_days
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)

        result = await session.execute(
            delete(Job).where(
                and_(
                    Job.status.in_([JobStatus.DONE.value, JobStatus.FAILED.value]),
                    Job.updated_at < cutoff,
                )
            )
        )
        deleted_count = result.rowcount
        await session.commit()

        if deleted_count > 0:
            logger.info(
                "Cleaned up old jobs",
                extra={
                    "deleted_count": deleted_count,
                    "retention_days": retention_days,
                },
            )

        return deleted_count
