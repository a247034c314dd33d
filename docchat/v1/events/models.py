"""
Domain event model.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from docchat.infra.database import Base


class EventType:
    """Event types published by the document handlers."""

    DOCUMENT_PROCESSED = "document_processed"
    RESUME_ANALYSIS_COMPLETED = "resume_analysis_completed"
    MONTHLY_EXPENSE_SUMMARY_READY = "monthly_expense_summary_ready"


class Event(Base):
    """
    Something that happened, fanned out to webhook subscribers.

    Rows are written once and never updated; deliveries only reference them.
    """

    __tablename__ = "events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(Text, nullable=False, comment="Event type")
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Event body"
    )
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, nullable=True, comment="User the event concerns"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("ix_events_created_at", "created_at"),)

    def __repr__(self):
        return f"<Event(id={self.id}, type={self.type})>"
