"""Booking API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from mentorhub.core.enums import BookingScopeEnum, BookingStatusEnum
from mentorhub.modules.booking.schemas import (
    BookingCancelRequest,
    BookingCreate,
    BookingRead,
    PaymentSessionRead,
    PaymentStatusRead,
    SweepResult,
)
from mentorhub.modules.facade.service import SchedulingFacade, get_scheduling_facade
from mentorhub.modules.identity.schemas import Principal
from mentorhub.modules.identity.service import get_current_principal
from mentorhub.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/booking", tags=["booking"])


@router.post("", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def book_slot(
    payload: BookingCreate,
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Reserve a slot and open a pending booking."""
    booking = await facade.book_slot(principal, payload)
    return BookingRead.model_validate(booking)


@router.get("/my", response_model=Page[BookingRead])
async def list_my_bookings(
    booking_status: BookingStatusEnum | None = Query(default=None, alias="status"),
    scope: BookingScopeEnum | None = Query(default=None),
    pagination=Depends(get_pagination_params),
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> Page[BookingRead]:
    """List bookings for current user; scope=upcoming|past splits by session end."""
    items, total = await facade.list_my_bookings(
        principal,
        booking_status,
        pagination.limit,
        pagination.offset,
        scope,
    )
    serialized = [BookingRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.post("/maintenance/sweep", response_model=SweepResult)
async def run_sweeps(
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> SweepResult:
    """Expire stale pending bookings and complete finished ones (admin task endpoint)."""
    return await facade.run_sweeps(principal)


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(
    booking_id: UUID,
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    booking = await facade.get_booking(principal, booking_id)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/payment", response_model=PaymentSessionRead)
async def start_payment(
    booking_id: UUID,
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> PaymentSessionRead:
    """Create a checkout session for a pending booking."""
    return await facade.start_payment(principal, booking_id)


@router.get("/{booking_id}/payment-status", response_model=PaymentStatusRead)
async def get_payment_status(
    booking_id: UUID,
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> PaymentStatusRead:
    return await facade.get_payment_status(principal, booking_id)


@router.post("/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    booking_id: UUID,
    payload: BookingCancelRequest,
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Cancel booking; paid bookings record a refund request."""
    booking = await facade.cancel_booking(principal, booking_id, payload.reason)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/complete", response_model=BookingRead)
async def acknowledge_completion(
    booking_id: UUID,
    facade: SchedulingFacade = Depends(get_scheduling_facade),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Participant sign-off; the booking completes once mentor and learner have both signed off."""
    booking = await facade.acknowledge_completion(principal, booking_id)
    return BookingRead.model_validate(booking)
