"""
Webhook delivery executor.

Each delivery job makes at most one signed HTTP attempt. Failed attempts are
rescheduled as a new job with an increasing delay until the delivery's
attempt budget runs out.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings
from docchat.infra.database import as_utc
from docchat.v1.core.exceptions import WebhookDeliveryError
from docchat.v1.events.models import Event
from docchat.v1.infra.jobs.models import JobType
from docchat.v1.infra.jobs.service import JobService
from docchat.v1.infra.jobs.payloads import parse_payload_uuid
from docchat.v1.webhooks.models import (
    DeliveryStatus,
    WebhookDelivery,
    WebhookSubscription,
)
from docchat.v1.webhooks.signing import (
    SIGNATURE_HEADER,
    build_webhook_body,
    sign_webhook_body,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], httpx.AsyncClient]


def next_delay(attempts: int) -> timedelta:
    """Backoff before the next attempt: 1, 5, then 15 minutes."""
    if attempts <= 1:
        return timedelta(minutes=1)
    if attempts == 2:
        return timedelta(minutes=5)
    return timedelta(minutes=15)


class WebhookDeliveryExecutor:
    """
    Job handler for `deliver-webhook`.

    Payload expected:
    {
        "delivery_id": "uuid-string"
    }
    """

    def __init__(self, settings: Settings, client_factory: ClientFactory | None = None):
        self.settings = settings
        self.job_service = JobService(settings)
        self.client_factory = client_factory or self._default_client

    def _default_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.webhook_timeout_s)

    async def handle(
        self, session: AsyncSession, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        return await self.deliver(session, payload)

    async def deliver(
        self, session: AsyncSession, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Make one delivery attempt.

        Returns a small result dict describing what happened. HTTP failures
        are recorded on the delivery row and never raised.
        """
        delivery_id = parse_payload_uuid(payload, "delivery_id")

        result = await session.execute(
            select(WebhookDelivery, WebhookSubscription, Event)
            .join(
                WebhookSubscription,
                WebhookSubscription.id == WebhookDelivery.subscription_id,
            )
            .join(Event, Event.id == WebhookDelivery.event_id)
            .where(WebhookDelivery.id == delivery_id)
            .execution_options(populate_existing=True)
        )
        row = result.one_or_none()
        if row is None:
            return {"status": "skipped", "reason": "delivery_not_found"}

        delivery, subscription, event = row
        if delivery.is_final():
            return {"status": "skipped", "reason": f"already_{delivery.status}"}

        now = datetime.now(UTC)
        next_attempt_at = as_utc(delivery.next_attempt_at)
        if next_attempt_at is not None and next_attempt_at > now:
            return {"status": "skipped", "reason": "not_due"}

        attempts = await self._start_attempt(session, delivery, now)
        if attempts is None:
            # Another job already owns this attempt
            return {"status": "skipped", "reason": "in_progress"}

        body = build_webhook_body(event.id, event.type, event.payload, event.created_at)
        signature = sign_webhook_body(body, subscription.secret)

        try:
            await self._post(subscription.url, body, signature)
        except WebhookDeliveryError as e:
            return await self._record_failure(
                session, delivery, attempts, str(e)
            )

        if not await self._finish(
            session,
            delivery,
            attempts,
            status=DeliveryStatus.SUCCESS.value,
            delivered_at=datetime.now(UTC),
            last_error=None,
        ):
            return {"status": "skipped", "reason": "superseded"}
        logger.info(
            "Webhook delivered",
            extra={
                "delivery_id": str(delivery.id),
                "event_id": str(event.id),
                "url": subscription.url,
                "attempts": attempts,
            },
        )
        return {"status": DeliveryStatus.SUCCESS.value, "attempts": attempts}

    async def _start_attempt(
        self, session: AsyncSession, delivery: WebhookDelivery, now: datetime
    ) -> int | None:
        """
        Move the delivery to running and count the attempt.

        Only succeeds from pending, or from a running row that has been
        abandoned for longer than the visibility timeout. Returns the new
        attempt count, or None when another executor got there first.
        """
        abandoned_before = now - timedelta(
            seconds=self.settings.job_visibility_timeout_s
        )
        try:
            started = await session.execute(
                update(WebhookDelivery)
                .where(
                    and_(
                        WebhookDelivery.id == delivery.id,
                        or_(
                            WebhookDelivery.status == DeliveryStatus.PENDING.value,
                            and_(
                                WebhookDelivery.status == DeliveryStatus.RUNNING.value,
                                WebhookDelivery.updated_at < abandoned_before,
                            ),
                        ),
                        or_(
                            WebhookDelivery.next_attempt_at.is_(None),
                            WebhookDelivery.next_attempt_at <= now,
                        ),
                    )
                )
                .values(
                    status=DeliveryStatus.RUNNING.value,
                    attempts=WebhookDelivery.attempts + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if started.rowcount != 1:
                await session.rollback()
                return None

            await session.commit()
        except Exception:
            await session.rollback()
            raise

        await session.refresh(delivery)
        return delivery.attempts

    async def _post(self, url: str, body: bytes, signature: str) -> None:
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: signature,
        }
        try:
            async with self.client_factory() as client:
                response = await client.post(url, content=body, headers=headers)
        except Exception as e:
            raise WebhookDeliveryError(str(e) or e.__class__.__name__) from e

        if not response.is_success:
            raise WebhookDeliveryError(f"HTTP {response.status_code}")

    async def _record_failure(
        self,
        session: AsyncSession,
        delivery: WebhookDelivery,
        attempts: int,
        error: str,
    ) -> dict[str, Any]:
        if attempts < delivery.max_attempts:
            next_attempt_at = datetime.now(UTC) + next_delay(attempts)
            try:
                rescheduled = await session.execute(
                    update(WebhookDelivery)
                    .where(self._owned_attempt(delivery, attempts))
                    .values(
                        status=DeliveryStatus.PENDING.value,
                        last_error=error,
                        next_attempt_at=next_attempt_at,
                        updated_at=datetime.now(UTC),
                    )
                    .execution_options(synchronize_session=False)
                )
                if rescheduled.rowcount != 1:
                    await session.rollback()
                    return {"status": "skipped", "reason": "superseded"}

                await self.job_service.enqueue_job(
                    session,
                    JobType.DELIVER_WEBHOOK,
                    {"delivery_id": str(delivery.id)},
                    run_at=next_attempt_at,
                    commit=False,
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

            logger.warning(
                "Webhook delivery failed, retry scheduled",
                extra={
                    "delivery_id": str(delivery.id),
                    "attempts": attempts,
                    "max_attempts": delivery.max_attempts,
                    "next_attempt_at": next_attempt_at.isoformat(),
                    "error": error,
                },
            )
            return {
                "status": DeliveryStatus.PENDING.value,
                "attempts": attempts,
                "next_attempt_at": next_attempt_at.isoformat(),
                "error": error,
            }

        if not await self._finish(
            session,
            delivery,
            attempts,
            status=DeliveryStatus.FAILED.value,
            last_error=error,
        ):
            return {"status": "skipped", "reason": "superseded"}
        logger.error(
            "Webhook delivery failed permanently",
            extra={
                "delivery_id": str(delivery.id),
                "attempts": attempts,
                "error": error,
            },
        )
        return {"status": DeliveryStatus.FAILED.value, "attempts": attempts, "error": error}

    @staticmethod
    def _owned_attempt(delivery: WebhookDelivery, attempts: int):
        """Match the delivery only while this attempt still owns it."""
        return and_(
            WebhookDelivery.id == delivery.id,
            WebhookDelivery.status == DeliveryStatus.RUNNING.value,
            WebhookDelivery.attempts == attempts,
        )

    async def _finish(
        self,
        session: AsyncSession,
        delivery: WebhookDelivery,
        attempts: int,
        **values: Any,
    ) -> bool:
        """Record the outcome of this attempt. Returns False if it was taken over."""
        try:
            finished = await session.execute(
                update(WebhookDelivery)
                .where(self._owned_attempt(delivery, attempts))
                .values(updated_at=datetime.now(UTC), **values)
                .execution_options(synchronize_session=False)
            )
            if finished.rowcount != 1:
                await session.rollback()
                logger.warning(
                    "Webhook delivery taken over by a later attempt",
                    extra={"delivery_id": str(delivery.id), "attempts": attempts},
                )
                return False

            await session.commit()
        except Exception:
            await session.rollback()
            raise
