"""Scheduling facade: the coarse-grained contract for the API layer and workers."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mentorhub.core.config import get_settings
from mentorhub.core.database import get_db_session
from mentorhub.core.enums import BookingScopeEnum, BookingStatusEnum, RoleEnum
from mentorhub.modules.booking.models import Booking
from mentorhub.modules.booking.schemas import (
    BookingCreate,
    PaymentSessionRead,
    PaymentStatusRead,
    SweepResult,
)
from mentorhub.modules.booking.service import BookingStateMachine, build_state_machine
from mentorhub.modules.identity.schemas import Principal
from mentorhub.modules.meetings.schemas import JoinInfo
from mentorhub.modules.meetings.service import MeetingRoomBinder
from mentorhub.modules.payments.provider import PaymentProvider, get_payment_provider
from mentorhub.modules.scheduling.models import Slot
from mentorhub.modules.scheduling.schemas import SlotCreate, SlotSearchFilters, SlotUpdate
from mentorhub.shared.exceptions import (
    ExpiredException,
    NotAuthorizedException,
    UnauthorizedException,
)
from mentorhub.shared.utils import ensure_utc, utc_now

settings = get_settings()
logger = logging.getLogger(__name__)


class SchedulingFacade:
    """Every call receives the caller's principal explicitly."""

    def __init__(
        self,
        state_machine: BookingStateMachine,
        payment_provider: PaymentProvider,
        room_binder: MeetingRoomBinder,
    ) -> None:
        self.state_machine = state_machine
        self.slot_store = state_machine.slot_store
        self.payment_provider = payment_provider
        self.room_binder = room_binder

    @staticmethod
    def _require_role(actor: Principal, *roles: RoleEnum) -> None:
        if actor.role not in roles:
            raise UnauthorizedException("Operation not permitted for your role")

    @staticmethod
    def _ensure_participant(booking: Booking, actor: Principal) -> None:
        if actor.is_admin:
            return
        if actor.user_id in (booking.user_id, booking.mentor_id):
            return
        raise NotAuthorizedException("You are not a participant of this booking")

    async def _owned_slot(self, actor: Principal, slot_id: UUID) -> Slot:
        self._require_role(actor, RoleEnum.MENTOR, RoleEnum.ADMIN)
        slot = await self.slot_store.get_slot(slot_id)
        if not actor.is_admin and slot.mentor_id != actor.user_id:
            raise UnauthorizedException("You can only manage your own slots")
        return slot

    # Slots

    async def search_slots(self, filters: SlotSearchFilters, limit: int, offset: int) -> tuple[list[Slot], int]:
        return await self.slot_store.list_available(filters, limit, offset)

    async def list_my_slots(
        self,
        actor: Principal,
        include_inactive: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[Slot], int]:
        self._require_role(actor, RoleEnum.MENTOR)
        return await self.slot_store.list_mentor_slots(actor.user_id, include_inactive, limit, offset)

    async def create_slot(self, actor: Principal, payload: SlotCreate) -> Slot:
        self._require_role(actor, RoleEnum.MENTOR)
        return await self.slot_store.create_slot(actor.user_id, payload)

    async def update_slot(self, actor: Principal, slot_id: UUID, payload: SlotUpdate) -> Slot:
        await self._owned_slot(actor, slot_id)
        return await self.slot_store.update_slot(slot_id, payload)

    async def deactivate_slot(self, actor: Principal, slot_id: UUID) -> Slot:
        await self._owned_slot(actor, slot_id)
        return await self.slot_store.deactivate(slot_id)

    # Bookings

    async def book_slot(self, actor: Principal, payload: BookingCreate) -> Booking:
        self._require_role(actor, RoleEnum.LEARNER)
        return await self.state_machine.create(actor, payload)

    async def start_payment(self, actor: Principal, booking_id: UUID) -> PaymentSessionRead:
        """Open a provider checkout for the caller's pending booking."""
        booking = await self.state_machine.get_for_update(booking_id)
        if booking.user_id != actor.user_id:
            raise NotAuthorizedException("Only the booking's learner can pay for it")
        if booking.status == BookingStatusEnum.PENDING and ensure_utc(booking.payment_expires_at) <= utc_now():
            raise ExpiredException("Payment window has closed")
        await self.state_machine.mark_payment_pending(booking)

        session = await self.payment_provider.create_checkout_session(
            order_id=booking.correlation_key,
            amount=booking.amount,
            currency=booking.currency,
            customer_id=str(booking.user_id),
            return_url=settings.payment_return_url,
        )
        logger.info("Checkout session opened: booking_id=%s order_id=%s", booking.id, session.order_id)
        return PaymentSessionRead(
            booking_id=booking.id,
            order_id=session.order_id,
            checkout_url=session.checkout_url,
            amount=session.amount,
            currency=session.currency,
            payment_status=booking.payment_status,
            payment_expires_at=booking.payment_expires_at,
        )

    async def get_payment_status(self, actor: Principal, booking_id: UUID) -> PaymentStatusRead:
        booking = await self.get_booking(actor, booking_id)
        return PaymentStatusRead(
            booking_id=booking.id,
            status=booking.status,
            payment_status=booking.payment_status,
            payment_expires_at=booking.payment_expires_at,
            needs_reconciliation=booking.needs_reconciliation,
        )

    async def cancel_booking(self, actor: Principal, booking_id: UUID, reason: str | None) -> Booking:
        booking = await self.state_machine.get_for_update(booking_id)
        self._ensure_participant(booking, actor)
        return await self.state_machine.request_cancel(booking, actor.role, reason)

    async def get_booking(self, actor: Principal, booking_id: UUID) -> Booking:
        booking = await self.state_machine.get(booking_id)
        self._ensure_participant(booking, actor)
        return booking

    async def list_my_bookings(
        self,
        actor: Principal,
        status: BookingStatusEnum | None,
        limit: int,
        offset: int,
        scope: BookingScopeEnum | None = None,
    ) -> tuple[list[Booking], int]:
        return await self.state_machine.list_bookings(actor, status, limit, offset, scope)

    async def acknowledge_completion(self, actor: Principal, booking_id: UUID) -> Booking:
        """Mentor or learner signs off a finished session."""
        booking = await self.state_machine.get_for_update(booking_id)
        if actor.user_id == booking.mentor_id:
            by_role = RoleEnum.MENTOR
        elif actor.user_id == booking.user_id:
            by_role = RoleEnum.LEARNER
        else:
            raise NotAuthorizedException("Only the session participants can sign it off")
        return await self.state_machine.acknowledge_completion(booking, by_role)

    # Meetings

    async def join_meeting(self, actor: Principal, booking_id: UUID, now: datetime | None = None) -> JoinInfo:
        booking = await self.state_machine.get(booking_id)
        return self.room_binder.join_info(booking, actor, now or utc_now())

    # Maintenance

    async def run_sweeps(self, actor: Principal) -> SweepResult:
        self._require_role(actor, RoleEnum.ADMIN)
        now = utc_now()
        expired = await self.state_machine.expire_stale(now)
        completed = await self.state_machine.complete_finished(now)
        return SweepResult(expired=expired, completed=completed)


async def get_scheduling_facade(
    session: AsyncSession = Depends(get_db_session),
    payment_provider: PaymentProvider = Depends(get_payment_provider),
) -> SchedulingFacade:
    """Dependency provider for scheduling facade."""
    return SchedulingFacade(
        state_machine=build_state_machine(session),
        payment_provider=payment_provider,
        room_binder=MeetingRoomBinder(),
    )
