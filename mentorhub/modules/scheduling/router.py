"""Scheduling API router."""

from __future__ import annotations

from datetime import date, time
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from mentorhub.modules.facade.service import SchedulingFacade, get_scheduling_facade
from mentorhub.modules.identity.schemas import Principal
from mentorhub.modules.identity.service import get_current_principal
from mentorhub.modules.scheduling.schemas import SlotCreate, SlotRead, SlotSearchFilters, SlotUpdate
from mentorhub.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/scheduling", tags=["scheduling"])


@router.get("/slots/available", response_model=Page[SlotRead])
async def list_available_slots(
    mentor_id: UUID | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    time_from: time | None = Query(default=None),
    time_to: time | None = Query(default=None),
    pagination=Depends(get_pagination_params),
    facade: SchedulingFacade = Depends(get_scheduling_facade),
) -> Page[SlotRead]:
    """List bookable slots."""
    try:
        filters = SlotSearchFilters(
            mentor_id=mentor_id,
            date_from=date_from,
            date_to=date_to,
            time_from=time_from,
            time_to=time_to,
        )
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc
    items, total = await facade.search_slots(filters, pagination.limit, pagination.offset)
    serialized = [SlotRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/slots/mine", response_model=Page[SlotRead])
async def list_my_slots(
    include_inactive: bool = Query(default=False),
    pagination=Depends(get_pagination_params),
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> Page[SlotRead]:
    """Mentor's own schedule including booked slots."""
    items, total = await facade.list_my_slots(principal, include_inactive, pagination.limit, pagination.offset)
    serialized = [SlotRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.post("/slots", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> SlotRead:
    """Create availability slot."""
    slot = await facade.create_slot(principal, payload)
    return SlotRead.model_validate(slot)


@router.patch("/slots/{slot_id}", response_model=SlotRead)
async def update_slot(
    slot_id: UUID,
    payload: SlotUpdate,
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> SlotRead:
    slot = await facade.update_slot(principal, slot_id, payload)
    return SlotRead.model_validate(slot)


@router.delete("/slots/{slot_id}", response_model=SlotRead)
async def deactivate_slot(
    slot_id: UUID,
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> SlotRead:
    """Soft-delete a slot that no live booking references."""
    slot = await facade.deactivate_slot(principal, slot_id)
    return SlotRead.model_validate(slot)
