"""
Event publisher.
"""

import logging
import uuid
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings
from docchat.v1.events.models import Event
from docchat.v1.infra.jobs.models import JobType
from docchat.v1.infra.jobs.service import JobService

logger = logging.getLogger(__name__)


class EventService:
    """Records domain events and schedules their webhook fan-out."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.job_service = JobService(settings)

    async def publish_event(
        self,
        session: AsyncSession,
        event_type: str,
        payload: dict[str, Any],
        user_id: UUID | None = None,
        commit: bool = True,
    ) -> Event:
        """
        Insert an event and its dispatch job in one transaction.

        Either both rows exist or neither does, so an event is never left
        without a dispatch job. With commit=False both rows are only flushed
        and join the caller's transaction.
        """
        event = Event(
            id=uuid.uuid4(),
            type=event_type,
            payload=payload,
            user_id=user_id,
            created_at=datetime.now(UTC),
        )

        try:
            session.add(event)
            await session.flush()
            await self.job_service.enqueue_job(
                session,
                JobType.DISPATCH_WEBHOOKS,
                {"event_id": str(event.id)},
                commit=False,
            )
            if commit:
                await session.commit()
        except Exception:
            await session.rollback()
            raise

        logger.info(
            "Event published",
            extra={"event_id": str(event.id), "type": event_type},
        )
        return event

    async def get_event(self, session: AsyncSession, event_id: UUID) -> Event | None:
        result = await session.execute(select(Event).where(Event.id == event_id))
        return result.scalar_one_or_none()

    async def list_events(
        self, session: AsyncSession, limit: int = 50, offset: int = 0
    ) -> list[Event]:
        """List events newest first."""
        result = await session.execute(
            select(Event).order_by(Event.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())
