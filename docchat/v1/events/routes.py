"""
Event listing endpoint for operator tooling.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings, SettingsDep
from docchat.infra.database import get_session
from docchat.v1.core.exceptions import create_success_response
from docchat.v1.core.security import OperatorDep, Principal
from docchat.v1.events.schemas import EventResponse
from docchat.v1.events.service import EventService

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=dict)
async def list_events(
    limit: int = Query(default=50, ge=1, le=500, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List published events, newest first."""

    events = await EventService(settings).list_events(session, limit, offset)

    return create_success_response(
        data={
            "events": [
                EventResponse.model_validate(event).model_dump()
                for event in events
            ]
        }
    )
