"""Meetings API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from mentorhub.modules.facade.service import SchedulingFacade, get_scheduling_facade
from mentorhub.modules.identity.schemas import Principal
from mentorhub.modules.identity.service import get_current_principal
from mentorhub.modules.meetings.schemas import JoinInfo

router = APIRouter(prefix="/meetings", tags=["meetings"])


@router.get("/{booking_id}/join", response_model=JoinInfo)
async def join_meeting(
    booking_id: UUID,
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> JoinInfo:
    """Issue join info to a booking participant inside the join window."""
    return await facade.join_meeting(principal, booking_id)
