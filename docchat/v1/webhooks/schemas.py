"""
Webhook Pydantic schemas.

Subscription secrets are write-only: they are accepted on create and never
returned by any response schema.
"""

from datetime import datetime
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from docchat.v1.webhooks.models import DeliveryStatus


class SubscriptionCreate(BaseModel):
    """Schema for registering a webhook endpoint."""

    url: str = Field(..., min_length=1, description="Endpoint receiving event POSTs")
    secret: str = Field(..., min_length=1, description="HMAC-SHA256 signing secret")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as e:
            raise ValueError(f"url is not valid: {e}") from e
        if url.scheme not in ("http", "https"):
            raise ValueError("url must start with http:// or https://")
        if not url.host:
            raise ValueError("url must include a host")
        return v


class SubscriptionUpdate(BaseModel):
    """Schema for enabling or disabling a subscription."""

    is_active: bool


class SubscriptionResponse(BaseModel):
    """Schema for subscription API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    url: str
    is_active: bool
    created_at: datetime


class DeliveryResponse(BaseModel):
    """Schema for delivery API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    event_id: UUID
    status: DeliveryStatus
    attempts: int
    max_attempts: int
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class DeliveryListResponse(BaseModel):
    """Schema for delivery list API response."""

    deliveries: list[DeliveryResponse]
    total: int
    limit: int
    offset: int


class RedeliveryResponse(BaseModel):
    """Schema for the redelivery sweep result."""

    enqueued: int
