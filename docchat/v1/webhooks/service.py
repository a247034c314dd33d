"""
Webhook subscriptions, delivery listings and the operator redelivery sweep.
"""

import logging
import uuid
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings
from docchat.infra.database import as_utc
from docchat.v1.core.exceptions import ValidationError
from docchat.v1.infra.jobs.models import JobType
from docchat.v1.infra.jobs.service import JobService
from docchat.v1.webhooks.models import (
    DeliveryStatus,
    WebhookDelivery,
    WebhookSubscription,
)

logger = logging.getLogger(__name__)


class WebhookService:
    """Operator-facing webhook management."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.job_service = JobService(settings)

    async def create_subscription(
        self, session: AsyncSession, url: str, secret: str
    ) -> WebhookSubscription:
        if not url or not secret:
            raise ValidationError("url and secret are required")

        subscription = WebhookSubscription(
            id=uuid.uuid4(),
            url=url,
            secret=secret,
            is_active=True,
            created_at=datetime.now(UTC),
        )
        session.add(subscription)
        await session.commit()

        logger.info(
            "Webhook subscription created",
            extra={"subscription_id": str(subscription.id), "url": url},
        )
        return subscription

    async def list_subscriptions(
        self, session: AsyncSession
    ) -> list[WebhookSubscription]:
        """List subscriptions newest first."""
        result = await session.execute(
            select(WebhookSubscription).order_by(WebhookSubscription.created_at.desc())
        )
        return list(result.scalars().all())

    async def set_active(
        self, session: AsyncSession, subscription_id: UUID, is_active: bool
    ) -> WebhookSubscription | None:
        """Enable or disable a subscription. Returns None if it does not exist."""
        result = await session.execute(
            select(WebhookSubscription).where(WebhookSubscription.id == subscription_id)
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            return None

        subscription.is_active = is_active
        await session.commit()

        logger.info(
            "Webhook subscription toggled",
            extra={"subscription_id": str(subscription_id), "is_active": is_active},
        )
        return subscription

    async def list_deliveries(
        self,
        session: AsyncSession,
        status: list[DeliveryStatus] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[WebhookDelivery], int]:
        """List deliveries newest first, returning the page and the total count."""
        query = select(WebhookDelivery)
        if status:
            query = query.where(WebhookDelivery.status.in_([s.value for s in status]))

        total_result = await session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = total_result.scalar() or 0

        result = await session.execute(
            query.order_by(WebhookDelivery.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    async def redeliver_pending(
        self, session: AsyncSession, limit: int | None = None
    ) -> int:
        """
        Re-enqueue a delivery job for pending deliveries, oldest first.

        Safety net for deliveries whose job was lost. A delivery that
        already has a live job is harmless to re-enqueue: only one of the
        jobs can move it to running. Jobs for deliveries waiting on a
        backoff are scheduled at next_attempt_at rather than now.
        """
        batch_size = limit or self.settings.webhook_redelivery_batch_size

        result = await session.execute(
            select(WebhookDelivery.id, WebhookDelivery.next_attempt_at)
            .where(WebhookDelivery.status == DeliveryStatus.PENDING.value)
            .order_by(WebhookDelivery.created_at)
            .limit(batch_size)
        )
        pending = result.all()

        now = datetime.now(UTC)
        try:
            for delivery_id, next_attempt_at in pending:
                next_attempt_at = as_utc(next_attempt_at)
                await self.job_service.enqueue_job(
                    session,
                    JobType.DELIVER_WEBHOOK,
                    {"delivery_id": str(delivery_id)},
                    run_at=max(now, next_attempt_at) if next_attempt_at else now,
                    commit=False,
                )
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        logger.info(
            "Pending webhook deliveries re-enqueued",
            extra={"enqueued": len(pending), "batch_size": batch_size},
        )
        return len(pending)
