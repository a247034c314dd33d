"""Tests for the job store: enqueue, claim, complete, fail and recover."""

from datetime import UTC, datetime, timedelta

from unittest.mock import patch

import pytest
from sqlalchemy import select, update

from docchat.infra.database import as_utc
from docchat.v1.infra.jobs.models import Job, JobStatus, JobType
from docchat.v1.infra.jobs.service import JobService


async def _get_job(database, job_id) -> Job:
    async with database.SessionLocal() as session:
        result = await session.execute(select(Job).where(Job.id == job_id))
        return result.scalar_one()


async def _claim(database, service, worker_id="worker-a") -> Job | None:
    async with database.SessionLocal() as session:
        return await service.claim_next(session, worker_id)


@pytest.mark.asyncio
async def test_enqueue_job_defaults(settings, db_session):
    service = JobService(settings)

    job = await service.enqueue_job(
        db_session, JobType.DELIVER_WEBHOOK, {"delivery_id": "abc"}
    )

    assert job.status == JobStatus.PENDING.value
    assert job.type == "deliver-webhook"
    assert job.attempts == 0
    assert job.max_attempts == settings.job_max_attempts
    assert job.payload == {"delivery_id": "abc"}
    assert job.last_error is None


@pytest.mark.asyncio
async def test_enqueue_job_rejects_unknown_type(settings, db_session):
    with pytest.raises(ValueError):
        await JobService(settings).enqueue_job(db_session, "mystery", {})


@pytest.mark.asyncio
async def test_claim_next_oldest_first(settings, database, db_session):
    service = JobService(settings)
    first = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {"n": 1})
    second = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {"n": 2})

    claimed = await _claim(database, service)

    assert claimed.id == first.id
    assert claimed.status == JobStatus.RUNNING.value
    assert claimed.attempts == 1
    assert claimed.locked_by == "worker-a"
    assert claimed.heartbeat_at is not None

    claimed_again = await _claim(database, service, "worker-b")
    assert claimed_again.id == second.id

    assert await _claim(database, service) is None


@pytest.mark.asyncio
async def test_claim_next_respects_run_at(settings, database, db_session):
    service = JobService(settings)
    await service.enqueue_job(
        db_session,
        JobType.DELIVER_WEBHOOK,
        {},
        run_at=datetime.now(UTC) + timedelta(minutes=5),
    )

    assert await _claim(database, service) is None


@pytest.mark.asyncio
async def test_claim_race_hands_job_to_one_worker(settings, database, db_session):
    service = JobService(settings)
    job = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    rival_claims = []

    async with database.SessionLocal() as session:
        original_execute = session.execute

        async def execute_with_rival(statement, *args, **kwargs):
            result = await original_execute(statement, *args, **kwargs)
            if not rival_claims:
                # A second worker claims between our select and our update
                async with database.SessionLocal() as rival_session:
                    rival_claims.append(
                        await service.claim_next(rival_session, "worker-b")
                    )
            return result

        with patch.object(session, "execute", new=execute_with_rival):
            own_claim = await service.claim_next(session, "worker-a")

    claims = [c for c in (own_claim, rival_claims[0]) if c is not None]
    assert len(claims) == 1
    assert claims[0].id == job.id

    stored = await _get_job(database, job.id)
    assert stored.status == JobStatus.RUNNING.value
    assert stored.attempts == 1
    assert stored.locked_by == claims[0].locked_by


@pytest.mark.asyncio
async def test_mark_done_requires_ownership(settings, database, db_session):
    service = JobService(settings)
    job = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    await _claim(database, service, "worker-a")

    async with database.SessionLocal() as session:
        assert await service.mark_done(session, job.id, "worker-b") is False

    async with database.SessionLocal() as session:
        assert await service.mark_done(session, job.id, "worker-a") is True

    stored = await _get_job(database, job.id)
    assert stored.status == JobStatus.DONE.value
    assert stored.locked_by is None
    assert stored.heartbeat_at is None

    # A done job is no longer running, so nobody owns it
    async with database.SessionLocal() as session:
        assert await service.mark_done(session, job.id, "worker-a") is False


@pytest.mark.asyncio
async def test_mark_failed_reschedules_or_fails(settings, database, db_session):
    settings.job_retry_delay_s = 60
    service = JobService(settings)
    job = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    await _claim(database, service)

    before = datetime.now(UTC)
    async with database.SessionLocal() as session:
        assert await service.mark_failed(
            session, job.id, "boom", reschedule=True, worker_id="worker-a"
        )

    stored = await _get_job(database, job.id)
    assert stored.status == JobStatus.PENDING.value
    assert stored.last_error == "boom"
    assert as_utc(stored.run_at) >= before + timedelta(seconds=59)
    assert stored.attempts == 1

    # Not eligible until the retry delay has passed
    assert await _claim(database, service) is None

    async with database.SessionLocal() as session:
        await session.execute(
            update(Job).where(Job.id == job.id).values(run_at=datetime.now(UTC))
        )
        await session.commit()

    await _claim(database, service)
    async with database.SessionLocal() as session:
        assert await service.mark_failed(
            session, job.id, "boom again", reschedule=False, worker_id="worker-a"
        )

    stored = await _get_job(database, job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.last_error == "boom again"
    assert stored.attempts == 2


@pytest.mark.asyncio
async def test_heartbeat_only_touches_own_jobs(settings, database, db_session):
    service = JobService(settings)
    job = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    await _claim(database, service, "worker-a")

    async with database.SessionLocal() as session:
        assert await service.heartbeat(session, {job.id}, "worker-b") == 0
        assert await service.heartbeat(session, {job.id}, "worker-a") == 1
        assert await service.heartbeat(session, set(), "worker-a") == 0


async def _expire_lease(database, job_id):
    async with database.SessionLocal() as session:
        await session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(heartbeat_at=datetime.now(UTC) - timedelta(hours=1))
        )
        await session.commit()


@pytest.mark.asyncio
async def test_recover_stale_jobs(settings, database, db_session):
    service = JobService(settings)
    retryable = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    exhausted = await service.enqueue_job(
        db_session, JobType.DISPATCH_WEBHOOKS, {}, max_attempts=1
    )
    healthy = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    for _ in range(3):
        await _claim(database, service)

    await _expire_lease(database, retryable.id)
    await _expire_lease(database, exhausted.id)

    async with database.SessionLocal() as session:
        requeued, failed = await service.recover_stale_jobs(session)

    assert (requeued, failed) == (1, 1)

    stored = await _get_job(database, retryable.id)
    assert stored.status == JobStatus.PENDING.value
    assert stored.locked_by is None
    assert "lease expired" in stored.last_error

    assert (await _get_job(database, exhausted.id)).status == JobStatus.FAILED.value
    assert (await _get_job(database, healthy.id)).status == JobStatus.RUNNING.value

    # The original owner can no longer complete a reclaimed job
    async with database.SessionLocal() as session:
        assert await service.mark_done(session, retryable.id, "worker-a") is False


@pytest.mark.asyncio
async def test_retry_job(settings, database, db_session):
    service = JobService(settings)
    job = await service.enqueue_job(
        db_session, JobType.DISPATCH_WEBHOOKS, {}, max_attempts=1
    )
    await _claim(database, service)

    async with database.SessionLocal() as session:
        assert await service.retry_job(session, job.id) is False

    async with database.SessionLocal() as session:
        await service.mark_failed(session, job.id, "boom", reschedule=False)

    async with database.SessionLocal() as session:
        assert await service.retry_job(session, job.id) is True

    stored = await _get_job(database, job.id)
    assert stored.status == JobStatus.PENDING.value
    assert stored.attempts == 1
    assert stored.max_attempts == 2


@pytest.mark.asyncio
async def test_list_jobs_and_stats(settings, database, db_session):
    service = JobService(settings)
    for _ in range(3):
        await service.enqueue_job(db_session, JobType.DELIVER_WEBHOOK, {})
    await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    await _claim(database, service)

    async with database.SessionLocal() as session:
        jobs, total = await service.list_jobs(session, status=[JobStatus.PENDING])
        assert total == 3
        assert all(job.status == "pending" for job in jobs)

        jobs, total = await service.list_jobs(
            session, job_type="dispatch-webhooks", limit=10
        )
        assert total == 1
        assert jobs[0].type == "dispatch-webhooks"

        page, total = await service.list_jobs(session, limit=2, offset=1)
        assert total == 4
        assert len(page) == 2

        stats = await service.get_job_stats(session)

    assert stats.total_jobs == 4
    assert stats.by_status == {"pending": 3, "running": 1}
    assert stats.by_type == {"deliver-webhook": 3, "dispatch-webhooks": 1}
    assert stats.queue_depth == 4
    assert stats.stuck_jobs == 0


@pytest.mark.asyncio
async def test_cleanup_old_jobs(settings, database, db_session):
    service = JobService(settings)
    old = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    recent = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    pending = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})

    long_ago = datetime.now(UTC) - timedelta(days=settings.job_cleanup_after_days + 1)
    async with database.SessionLocal() as session:
        await session.execute(
            update(Job)
            .where(Job.id == old.id)
            .values(status=JobStatus.DONE.value, updated_at=long_ago)
        )
        await session.execute(
            update(Job).where(Job.id == recent.id).values(status=JobStatus.FAILED.value)
        )
        await session.execute(
            update(Job).where(Job.id == pending.id).values(updated_at=long_ago)
        )
        await session.commit()

    async with database.SessionLocal() as session:
        assert await service.cleanup_old_jobs(session) == 1

    async with database.SessionLocal() as session:
        remaining = (await session.execute(select(Job.id))).scalars().all()

    assert set(remaining) == {recent.id, pending.id}
