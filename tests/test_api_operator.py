"""Tests for the operator endpoints: jobs, events and webhooks."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from docchat.v1.core.security import Principal, get_principal
from docchat.v1.infra.jobs.models import Job, JobStatus, JobType
from docchat.v1.infra.jobs.service import JobService
from docchat.v1.webhooks.models import DeliveryStatus, WebhookDelivery


@pytest.mark.asyncio
async def test_enqueue_and_get_job(async_client: AsyncClient):
    response = await async_client.post(
        "/v1/jobs",
        json={"type": "dispatch-webhooks", "payload": {"event_id": "e1"}, "max_attempts": 2},
    )

    assert response.status_code == 200
    job = response.json()["data"]
    assert job["type"] == "dispatch-webhooks"
    assert job["status"] == "pending"
    assert job["attempts"] == 0
    assert job["max_attempts"] == 2

    response = await async_client.get(f"/v1/jobs/{job['id']}")
    assert response.status_code == 200
    assert response.json()["data"]["payload"] == {"event_id": "e1"}


@pytest.mark.asyncio
async def test_enqueue_unknown_job_type_rejected(async_client: AsyncClient):
    response = await async_client.post("/v1/jobs", json={"type": "mystery"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_missing_job(async_client: AsyncClient):
    response = await async_client.get(f"/v1/jobs/{uuid4()}")

    assert response.status_code == 404
    data = response.json()
    assert data["ok"] is False
    assert data["error"]["message"] == "Job not found"


@pytest.mark.asyncio
async def test_list_jobs_filters(async_client: AsyncClient, settings, db_session):
    service = JobService(settings)
    await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    await service.enqueue_job(db_session, JobType.DELIVER_WEBHOOK, {})
    await service.enqueue_job(db_session, JobType.DELIVER_WEBHOOK, {})

    response = await async_client.get(
        "/v1/jobs", params={"type": "deliver-webhook", "limit": 1}
    )

    data = response.json()["data"]
    assert data["total"] == 2
    assert len(data["jobs"]) == 1
    assert data["limit"] == 1

    response = await async_client.get("/v1/jobs", params={"status": ["done", "failed"]})
    assert response.json()["data"]["total"] == 0


@pytest.mark.asyncio
async def test_job_stats(async_client: AsyncClient, settings, db_session):
    await JobService(settings).enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})

    response = await async_client.get("/v1/jobs/stats/overview")

    stats = response.json()["data"]
    assert stats["total_jobs"] == 1
    assert stats["by_status"] == {"pending": 1}
    assert stats["queue_depth"] == 1


@pytest.mark.asyncio
async def test_retry_and_recover(async_client: AsyncClient, settings, db_session):
    service = JobService(settings)
    failed = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    pending = await service.enqueue_job(db_session, JobType.DISPATCH_WEBHOOKS, {})
    await db_session.execute(
        update(Job)
        .where(Job.id == failed.id)
        .values(status=JobStatus.FAILED.value, attempts=3, last_error="boom")
    )
    await db_session.commit()

    response = await async_client.post(f"/v1/jobs/{failed.id}/retry")
    assert response.status_code == 200
    assert response.json()["data"] == {"success": True, "job_id": str(failed.id)}

    response = await async_client.post(f"/v1/jobs/{pending.id}/retry")
    assert response.status_code == 404

    response = await async_client.post("/v1/jobs/recover")
    assert response.json()["data"] == {"requeued": 0, "failed": 0}

    response = await async_client.post("/v1/jobs/cleanup")
    assert response.json()["data"] == {"deleted": 0}


@pytest.mark.asyncio
async def test_events_listing(async_client: AsyncClient, make_event):
    event = await make_event(event_type="resume_analysis_completed")

    response = await async_client.get("/v1/events")

    [listed] = response.json()["data"]["events"]
    assert listed["id"] == str(event.id)
    assert listed["type"] == "resume_analysis_completed"


@pytest.mark.asyncio
async def test_subscription_lifecycle(async_client: AsyncClient):
    response = await async_client.post(
        "/v1/webhooks/subscriptions",
        json={"url": "https://hooks.example.com/in", "secret": "s3cret"},
    )

    assert response.status_code == 201
    subscription = response.json()["data"]
    assert subscription["url"] == "https://hooks.example.com/in"
    assert subscription["is_active"] is True
    assert "secret" not in subscription

    response = await async_client.patch(
        f"/v1/webhooks/subscriptions/{subscription['id']}", json={"is_active": False}
    )
    assert response.status_code == 200
    assert response.json()["data"]["is_active"] is False

    response = await async_client.get("/v1/webhooks/subscriptions")
    [listed] = response.json()["data"]["subscriptions"]
    assert listed["id"] == subscription["id"]
    assert listed["is_active"] is False
    assert "secret" not in listed


@pytest.mark.asyncio
async def test_subscription_validation(async_client: AsyncClient):
    response = await async_client.post(
        "/v1/webhooks/subscriptions", json={"url": "ftp://nope", "secret": "s"}
    )
    assert response.status_code == 422

    response = await async_client.post(
        "/v1/webhooks/subscriptions", json={"url": "https://ok.example.com", "secret": ""}
    )
    assert response.status_code == 422

    response = await async_client.post(
        "/v1/webhooks/subscriptions",
        json={"url": "http://hooks.example.com:abc/hook", "secret": "s"},
    )
    assert response.status_code == 422

    response = await async_client.post(
        "/v1/webhooks/subscriptions", json={"url": "https://", "secret": "s"}
    )
    assert response.status_code == 422

    response = await async_client.patch(
        f"/v1/webhooks/subscriptions/{uuid4()}", json={"is_active": True}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_deliveries_and_redeliver(
    async_client: AsyncClient, db_session, make_event, make_subscription
):
    subscription = await make_subscription()
    event = await make_event()
    now = datetime.now(UTC)
    for status in (DeliveryStatus.PENDING, DeliveryStatus.FAILED):
        db_session.add(
            WebhookDelivery(
                subscription_id=subscription.id,
                event_id=event.id,
                status=status.value,
                attempts=5 if status == DeliveryStatus.FAILED else 1,
                max_attempts=5,
                last_error="HTTP 500",
                next_attempt_at=now - timedelta(seconds=1),
            )
        )
    await db_session.commit()

    response = await async_client.get(
        "/v1/webhooks/deliveries", params={"status": "failed"}
    )
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["deliveries"][0]["status"] == "failed"
    assert data["deliveries"][0]["last_error"] == "HTTP 500"

    response = await async_client.post("/v1/webhooks/redeliver")
    assert response.status_code == 200
    assert response.json()["data"] == {"enqueued": 1}

    response = await async_client.get(
        "/v1/jobs", params={"type": JobType.DELIVER_WEBHOOK.value}
    )
    assert response.json()["data"]["total"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/v1/jobs"),
        ("get", "/v1/jobs/stats/overview"),
        ("post", "/v1/jobs/recover"),
        ("get", "/v1/events"),
        ("get", "/v1/webhooks/subscriptions"),
        ("get", "/v1/webhooks/deliveries"),
        ("post", "/v1/webhooks/redeliver"),
    ],
)
async def test_operator_role_required(app, async_client: AsyncClient, method, path):
    app.dependency_overrides[get_principal] = lambda: Principal(
        user_id="someone", roles=["viewer"]
    )

    response = await getattr(async_client, method)(path)

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Operator role required"


@pytest.mark.asyncio
async def test_healthz_is_public(app, async_client: AsyncClient):
    app.dependency_overrides[get_principal] = lambda: Principal(
        user_id="someone", roles=[]
    )

    response = await async_client.get("/v1/healthz")

    assert response.status_code == 200
