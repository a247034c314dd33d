"""
Postgres-backed job worker with heartbeats and stuck job recovery.
"""

import asyncio
import os
import socket
from uuid import UUID

from docchat.config.logging import get_logger
from docchat.config.settings import Settings
from docchat.infra.database import Database
from docchat.v1.core.exceptions import NonRetryableJobError
from docchat.v1.core.registries import JobRegistry, job_registry
from docchat.v1.infra.jobs.models import Job
from docchat.v1.infra.jobs.service import JobService

logger = get_logger(__name__)


class JobWorker:
    """
    Polling job worker.

    Features:
    - One claim per iteration via SELECT FOR UPDATE SKIP LOCKED
    - JOB_CONCURRENCY independent polling loops per process
    - Backlog is drained before idling; empty polls sleep JOB_POLL_INTERVAL_MS
    - Heartbeats and visibility timeout for stuck job recovery

    The database handle is the only shared state. Any number of workers,
    in any number of processes, may run against the same queue.
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        registry: JobRegistry = job_registry,
    ):
        self.settings = settings
        self.database = database
        self.registry = registry
        self.job_service = JobService(settings)
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self.active_jobs: set[UUID] = set()

    async def start(self) -> None:
        """Start the polling loops and the lease maintenance loops."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        logger.info(
            "Starting job worker",
            worker_id=self.worker_id,
            concurrency=self.settings.job_concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            handlers=self.registry.list(),
        )

        maintenance = [
            asyncio.create_task(self._heartbeat_loop()),
            asyncio.create_task(self._stuck_job_recovery_loop()),
        ]
        try:
            # Polling loops only return between jobs, so nothing is in flight
            # once they are all done
            await asyncio.gather(
                *(
                    self._worker_loop(loop_index)
                    for loop_index in range(self.settings.job_concurrency)
                )
            )
        finally:
            self.running = False
            for task in maintenance:
                task.cancel()
            await asyncio.gather(*maintenance, return_exceptions=True)

    async def stop(self, timeout_seconds: int = 30) -> None:
        """Stop claiming new jobs and wait for in-flight ones to finish."""
        logger.info("Stopping job worker", worker_id=self.worker_id)
        self.running = False

        waited = 0
        while self.active_jobs and waited < timeout_seconds:
            await asyncio.sleep(1)
            waited += 1

        if self.active_jobs:
            logger.warning(
                "Worker stopped with active jobs",
                worker_id=self.worker_id,
                active_jobs=len(self.active_jobs),
            )

    async def run_once(self) -> bool:
        """
        Claim and process at most one job.

        Returns True if a job was claimed. Handler failures are recorded on
        the job; only infrastructure errors (store unreachable) propagate.
        """
        async with self.database.SessionLocal() as session:
            job = await self.job_service.claim_next(session, self.worker_id)

        if job is None:
            return False

        await self._process_job(job)
        return True

    async def _worker_loop(self, loop_index: int) -> None:
        """Claim, process, repeat; sleep only when the queue is empty or broken."""
        while self.running:
            try:
                processed = await self.run_once()
            except Exception:
                logger.exception(
                    "Error in worker loop",
                    worker_id=self.worker_id,
                    loop_index=loop_index,
                )
                await asyncio.sleep(self.settings.job_error_backoff_s)
                continue

            if not processed:
                await asyncio.sleep(self.settings.job_poll_interval_ms / 1000)

    async def _process_job(self, job: Job) -> None:
        """Run the handler for a claimed job and persist the outcome."""
        job_logger = logger.bind(
            job_id=str(job.id), job_type=job.type, attempt=job.attempts
        )
        self.active_jobs.add(job.id)

        try:
            try:
                handler = self.registry.get(job.type)
                async with self.database.SessionLocal() as session:
                    result = await handler.handle(session, job.payload)

            except NonRetryableJobError as e:
                job_logger.error("Job failed permanently", error=str(e))
                await self._record_failure(job, str(e), reschedule=False)
                return

            except Exception as e:
                reschedule = self.job_service.should_retry(job)
                job_logger.warning(
                    "Job processing failed",
                    error=str(e),
                    reschedule=reschedule,
                    max_attempts=job.max_attempts,
                    exc_info=True,
                )
                await self._record_failure(
                    job, str(e) or e.__class__.__name__, reschedule
                )
                return

            async with self.database.SessionLocal() as session:
                owned = await self.job_service.mark_done(
                    session, job.id, self.worker_id
                )

            if owned:
                job_logger.info("Job completed", result=result)
            else:
                job_logger.warning("Job lease was lost before completion")

        finally:
            self.active_jobs.discard(job.id)

    async def _record_failure(self, job: Job, error: str, reschedule: bool) -> None:
        async with self.database.SessionLocal() as session:
            owned = await self.job_service.mark_failed(
                session, job.id, error, reschedule, self.worker_id
            )

        if not owned:
            logger.warning(
                "Job lease was lost before failure could be recorded",
                job_id=str(job.id),
            )

    async def _heartbeat_loop(self) -> None:
        """Update heartbeats for active jobs."""
        while self.running:
            try:
                if self.active_jobs:
                    async with self.database.SessionLocal() as session:
                        await self.job_service.heartbeat(
                            session, set(self.active_jobs), self.worker_id
                        )

                await asyncio.sleep(self.settings.job_heartbeat_interval_s)

            except Exception:
                logger.exception(
                    "Error updating heartbeats", worker_id=self.worker_id
                )
                await asyncio.sleep(self.settings.job_heartbeat_interval_s)

    async def _stuck_job_recovery_loop(self) -> None:
        """Recover jobs that are stuck due to worker crashes."""
        while self.running:
            try:
                async with self.database.SessionLocal() as session:
                    await self.job_service.recover_stale_jobs(session)

                await asyncio.sleep(self.settings.job_recovery_interval_s)

            except Exception:
                logger.exception("Error in stuck job recovery")
                await asyncio.sleep(self.settings.job_recovery_interval_s)
