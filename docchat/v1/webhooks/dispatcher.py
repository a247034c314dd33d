"""
Webhook dispatcher: fans one event out to every active subscription.
"""

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings
from docchat.v1.events.models import Event
from docchat.v1.infra.jobs.models import JobType
from docchat.v1.infra.jobs.payloads import parse_payload_uuid
from docchat.v1.infra.jobs.service import JobService
from docchat.v1.webhooks.models import (
    DeliveryStatus,
    WebhookDelivery,
    WebhookSubscription,
)

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """
    Job handler for `dispatch-webhooks`.

    Payload expected:
    {
        "event_id": "uuid-string"
    }

    Every active subscription gets its own delivery row and its own
    delivery job, so a slow or broken subscriber never holds up another.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.job_service = JobService(settings)

    async def handle(
        self, session: AsyncSession, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        return await self.dispatch(session, payload)

    async def dispatch(
        self, session: AsyncSession, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """Create one pending delivery, and one delivery job, per active subscription."""
        event_id = parse_payload_uuid(payload, "event_id")

        result = await session.execute(select(Event).where(Event.id == event_id))
        event = result.scalar_one_or_none()
        if event is None:
            # The event may have been pruned; nothing to fan out
            logger.info("Event not found for dispatch", extra={"event_id": str(event_id)})
            return {"status": "skipped", "reason": "event_not_found"}

        subscriptions = (
            await session.execute(
                select(WebhookSubscription).where(WebhookSubscription.is_active.is_(True))
            )
        ).scalars().all()

        now = datetime.now(UTC)
        delivery_ids = []
        try:
            for subscription in subscriptions:
                delivery = WebhookDelivery(
                    id=uuid.uuid4(),
                    subscription_id=subscription.id,
                    event_id=event.id,
                    status=DeliveryStatus.PENDING.value,
                    attempts=0,
                    max_attempts=self.settings.webhook_max_attempts,
                    created_at=now,
                    updated_at=now,
                )
                session.add(delivery)
                await session.flush()
                await self.job_service.enqueue_job(
                    session,
                    JobType.DELIVER_WEBHOOK,
                    {"delivery_id": str(delivery.id)},
                    commit=False,
                )
                delivery_ids.append(str(delivery.id))

            await session.commit()
        except Exception:
            await session.rollback()
            raise

        logger.info(
            "Event dispatched",
            extra={
                "event_id": str(event.id),
                "type": event.type,
                "deliveries": len(delivery_ids),
            },
        )
        return {"status": "dispatched", "delivery_ids": delivery_ids}

