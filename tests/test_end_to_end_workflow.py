"""
End-to-end workflow: a processed document reaches a webhook subscriber.

document job -> ready + event -> dispatch job -> delivery job -> signed POST
"""

import json
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import select

from docchat.v1.core.registries import JobRegistry
from docchat.v1.documents.handlers import ProcessDocumentHandler
from docchat.v1.documents.models import Document, DocumentStatus, RagType
from docchat.v1.documents.pipeline import LocalDocumentPipeline
from docchat.v1.events.models import EventType
from docchat.v1.infra.jobs.models import Job, JobStatus, JobType
from docchat.v1.infra.jobs.service import JobService
from docchat.v1.infra.jobs.worker import JobWorker
from docchat.v1.webhooks.delivery import WebhookDeliveryExecutor
from docchat.v1.webhooks.dispatcher import WebhookDispatcher
from docchat.v1.webhooks.models import DeliveryStatus, WebhookDelivery
from docchat.v1.webhooks.signing import verify_webhook_signature


@pytest.fixture
def worker(settings, database, receiver) -> JobWorker:
    registry = JobRegistry()
    registry.register(
        JobType.PROCESS_RESUME.value,
        ProcessDocumentHandler(
            settings,
            RagType.RESUME,
            EventType.RESUME_ANALYSIS_COMPLETED,
            pipeline=LocalDocumentPipeline(settings),
        ),
    )
    registry.register(JobType.DISPATCH_WEBHOOKS.value, WebhookDispatcher(settings))
    registry.register(
        JobType.DELIVER_WEBHOOK.value,
        WebhookDeliveryExecutor(settings, client_factory=receiver.client_factory),
    )
    return JobWorker(settings, database, registry)


async def drain(worker: JobWorker) -> int:
    processed = 0
    while await worker.run_once():
        processed += 1
    return processed


@pytest.mark.asyncio
async def test_resume_processing_notifies_subscribers(
    settings, database, db_session, tmp_path, worker, receiver, make_subscription
):
    await make_subscription(url="https://ats.example.com/hooks", secret="ats-secret")
    await make_subscription(url="https://crm.example.com/hooks", secret="crm-secret")
    await make_subscription(url="https://old.example.com/hooks", is_active=False)

    resume = tmp_path / "resume.txt"
    resume.write_text("Senior Python engineer. Ten years of async services.")
    document = Document(
        id=uuid4(),
        user_id=uuid4(),
        rag_type=RagType.RESUME.value,
        file_path=str(resume),
        file_type="text/plain",
        file_size=resume.stat().st_size,
    )
    db_session.add(document)
    await db_session.commit()
    await JobService(settings).enqueue_job(
        db_session, JobType.PROCESS_RESUME, {"document_id": str(document.id)}
    )

    # process-resume, dispatch-webhooks, then one deliver-webhook per subscriber
    assert await drain(worker) == 4

    async with database.SessionLocal() as session:
        stored = await session.get(Document, document.id)
        jobs = (await session.execute(select(Job))).scalars().all()
        deliveries = (await session.execute(select(WebhookDelivery))).scalars().all()

    assert stored.status == DocumentStatus.READY.value
    assert {job.status for job in jobs} == {JobStatus.DONE.value}
    assert len(deliveries) == 2
    assert {d.status for d in deliveries} == {DeliveryStatus.SUCCESS.value}

    secrets = {
        "ats.example.com": "ats-secret",
        "crm.example.com": "crm-secret",
    }
    assert {request.url.host for request in receiver.requests} == set(secrets)
    for request in receiver.requests:
        body = json.loads(request.content)
        assert body["type"] == "resume_analysis_completed"
        assert body["payload"] == {"document_id": str(document.id), "rag_type": "resume"}
        assert verify_webhook_signature(
            request.content,
            secrets[request.url.host],
            request.headers["X-Webhook-Signature"],
        )


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others(
    settings, database, worker, make_event, make_subscription
):
    await make_subscription(url="https://up.example.com/hooks")
    await make_subscription(url="https://down.example.com/hooks")
    event = await make_event()

    def respond(request):
        status = 500 if request.url.host == "down.example.com" else 200
        return httpx.Response(status)

    executor = worker.registry.get(JobType.DELIVER_WEBHOOK.value)
    executor.client_factory = lambda: httpx.AsyncClient(
        transport=httpx.MockTransport(respond)
    )

    async with database.SessionLocal() as session:
        await JobService(settings).enqueue_job(
            session, JobType.DISPATCH_WEBHOOKS, {"event_id": str(event.id)}
        )

    # The retry for the broken subscriber is scheduled a minute out
    assert await drain(worker) == 3

    async with database.SessionLocal() as session:
        deliveries = (await session.execute(select(WebhookDelivery))).scalars().all()
        pending_jobs = (
            await session.execute(select(Job).where(Job.status == JobStatus.PENDING.value))
        ).scalars().all()

    assert sorted(d.status for d in deliveries) == ["pending", "success"]
    assert len(pending_jobs) == 1
    assert pending_jobs[0].type == JobType.DELIVER_WEBHOOK.value
