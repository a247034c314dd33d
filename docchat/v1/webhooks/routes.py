"""
Webhook subscription, delivery and redelivery endpoints for operators.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings, SettingsDep
from docchat.infra.database import get_session
from docchat.v1.core.exceptions import NotFoundError, create_success_response
from docchat.v1.core.security import OperatorDep, Principal
from docchat.v1.webhooks.models import DeliveryStatus
from docchat.v1.webhooks.schemas import (
    DeliveryListResponse,
    DeliveryResponse,
    RedeliveryResponse,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionUpdate,
)
from docchat.v1.webhooks.service import WebhookService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/subscriptions", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    request: SubscriptionCreate,
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Register a webhook endpoint."""

    subscription = await WebhookService(settings).create_subscription(
        session, request.url, request.secret
    )

    return create_success_response(
        data=SubscriptionResponse.model_validate(subscription).model_dump()
    )


@router.get("/subscriptions", response_model=dict)
async def list_subscriptions(
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List webhook subscriptions."""

    subscriptions = await WebhookService(settings).list_subscriptions(session)

    return create_success_response(
        data={
            "subscriptions": [
                SubscriptionResponse.model_validate(s).model_dump()
                for s in subscriptions
            ]
        }
    )


@router.patch("/subscriptions/{subscription_id}", response_model=dict)
async def toggle_subscription(
    subscription_id: UUID,
    request: SubscriptionUpdate,
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Enable or disable a webhook subscription."""

    subscription = await WebhookService(settings).set_active(
        session, subscription_id, request.is_active
    )
    if subscription is None:
        raise NotFoundError(
            "Subscription not found", {"subscription_id": str(subscription_id)}
        )

    return create_success_response(
        data=SubscriptionResponse.model_validate(subscription).model_dump()
    )


@router.get("/deliveries", response_model=dict)
async def list_deliveries(
    status: list[DeliveryStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List webhook deliveries with filtering and pagination."""

    deliveries, total = await WebhookService(settings).list_deliveries(
        session, status, limit, offset
    )

    response_data = DeliveryListResponse(
        deliveries=[DeliveryResponse.model_validate(d) for d in deliveries],
        total=total,
        limit=limit,
        offset=offset,
    )
    return create_success_response(data=response_data.model_dump())


@router.post("/redeliver", response_model=dict)
async def redeliver_pending(
    limit: int | None = Query(
        default=None, ge=1, le=1000, description="Batch size override"
    ),
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Re-enqueue delivery jobs for pending deliveries, oldest first."""

    enqueued = await WebhookService(settings).redeliver_pending(session, limit)

    logger.info(
        "Redelivery sweep triggered via API",
        extra={"enqueued": enqueued, "user_id": principal.user_id},
    )

    return create_success_response(
        data=RedeliveryResponse(enqueued=enqueued).model_dump()
    )
