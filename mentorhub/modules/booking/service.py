"""Booking state machine: the only writer of booking status and slot reservation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from mentorhub.core.config import get_settings
from mentorhub.core.enums import BookingScopeEnum, BookingStatusEnum, PaymentStatusEnum, RoleEnum
from mentorhub.core.metrics import record_booking_transition
from mentorhub.modules.audit.repository import AuditRepository
from mentorhub.modules.booking.models import Booking
from mentorhub.modules.booking.repository import BookingRepository
from mentorhub.modules.booking.schemas import BookingCreate
from mentorhub.modules.booking.state_machine import ensure_consistent, ensure_transition
from mentorhub.modules.identity.schemas import Principal
from mentorhub.modules.meetings.service import room_for
from mentorhub.modules.scheduling.repository import SchedulingRepository
from mentorhub.modules.scheduling.schemas import ReservationToken
from mentorhub.modules.scheduling.service import SlotStore
from mentorhub.shared.exceptions import (
    BusinessRuleException,
    InvalidAmountException,
    InvalidTransitionException,
    NotFoundException,
    SlotUnavailableException,
)
from mentorhub.shared.utils import ensure_utc, generate_order_id, utc_now

settings = get_settings()
logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
SWEEP_BATCH_SIZE = 200


def validate_amount(amount: Decimal) -> Decimal:
    """Positive, at most two decimal places, within the configured ceiling."""
    try:
        if not amount.is_finite() or amount != amount.quantize(CENT):
            raise InvalidAmountException("Amount must have at most two decimal places")
    except InvalidOperation as exc:
        raise InvalidAmountException("Amount is not a valid number") from exc
    if amount <= 0:
        raise InvalidAmountException("Amount must be greater than zero")
    if amount > settings.booking_max_amount:
        raise InvalidAmountException(f"Amount exceeds the maximum of {settings.booking_max_amount}")
    return amount.quantize(CENT)


class BookingStateMachine:
    """Booking lifecycle with slot reservation in the same transaction."""

    def __init__(
        self,
        booking_repository: BookingRepository,
        slot_store: SlotStore,
        audit_repository: AuditRepository,
    ) -> None:
        self.booking_repository = booking_repository
        self.slot_store = slot_store
        self.audit_repository = audit_repository

    def _set_state(
        self,
        booking: Booking,
        status: BookingStatusEnum,
        payment_status: PaymentStatusEnum,
    ) -> None:
        ensure_consistent(status, payment_status)
        changed = booking.status != status
        booking.status = status
        booking.payment_status = payment_status
        if changed:
            record_booking_transition(status.value)

    async def _emit(self, booking: Booking, event_type: str, **extra) -> None:
        payload = {
            "booking_id": str(booking.id),
            "slot_id": str(booking.slot_id),
            "mentor_id": str(booking.mentor_id),
            "user_id": str(booking.user_id),
            "status": booking.status.value,
            "payment_status": booking.payment_status.value,
            "starts_at": ensure_utc(booking.starts_at).isoformat(),
            "ends_at": ensure_utc(booking.ends_at).isoformat(),
        }
        payload.update(extra)
        await self.audit_repository.create_outbox_event(
            aggregate_type="booking",
            aggregate_id=str(booking.id),
            event_type=event_type,
            payload=payload,
        )

    async def get(self, booking_id: UUID) -> Booking:
        booking = await self.booking_repository.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        return booking

    async def get_for_update(self, booking_id: UUID) -> Booking:
        """Load the booking under a row lock held until commit."""
        booking = await self.booking_repository.get_booking_by_id(booking_id, for_update=True)
        if booking is None:
            raise NotFoundException("Booking not found")
        return booking

    async def create(self, actor: Principal, payload: BookingCreate) -> Booking:
        """Reserve the slot and open a pending booking awaiting payment."""
        amount = validate_amount(payload.amount)

        slot = await self.slot_store.find_slot(payload.slot_id)
        if slot is None:
            raise SlotUnavailableException("Slot is no longer available")
        if slot.mentor_id == actor.user_id:
            raise BusinessRuleException("Mentors cannot book their own slots")

        token = await self.slot_store.reserve(payload.slot_id)

        now = utc_now()
        booking = await self.booking_repository.create_booking(
            slot_id=token.slot_id,
            mentor_id=token.mentor_id,
            user_id=actor.user_id,
            amount=amount,
            currency=settings.payment_currency,
            correlation_key=generate_order_id("BOOKING"),
            payment_expires_at=now + timedelta(minutes=settings.booking_payment_window_minutes),
            starts_at=token.starts_at,
            ends_at=token.ends_at,
            notes=payload.notes,
        )
        record_booking_transition(BookingStatusEnum.PENDING.value)
        await self._emit(
            booking,
            "booking.created",
            amount=str(booking.amount),
            currency=booking.currency,
            payment_expires_at=booking.payment_expires_at.isoformat(),
        )
        logger.info(
            "Booking created: booking_id=%s slot_id=%s user_id=%s",
            booking.id,
            booking.slot_id,
            actor.user_id,
        )
        return booking

    async def mark_payment_pending(self, booking: Booking) -> Booking:
        """unpaid -> pending once a checkout session exists; status is unchanged."""
        if booking.status == BookingStatusEnum.PENDING and booking.payment_status == PaymentStatusEnum.PENDING:
            return booking
        if booking.status != BookingStatusEnum.PENDING or booking.payment_status != PaymentStatusEnum.UNPAID:
            raise InvalidTransitionException(
                f"Cannot start payment for a {booking.status} booking with {booking.payment_status} payment",
            )
        self._set_state(booking, BookingStatusEnum.PENDING, PaymentStatusEnum.PENDING)
        return await self.booking_repository.save(booking)

    async def confirm(self, booking: Booking) -> Booking:
        """pending -> confirmed/paid; idempotent when already confirmed."""
        if booking.status == BookingStatusEnum.CONFIRMED:
            return booking
        ensure_transition(booking.status, BookingStatusEnum.CONFIRMED)

        self._set_state(booking, BookingStatusEnum.CONFIRMED, PaymentStatusEnum.PAID)
        booking.confirmed_at = utc_now()
        booking.meeting_room = room_for(booking.id)
        await self.booking_repository.save(booking)
        await self._emit(booking, "booking.confirmed", meeting_room=booking.meeting_room)
        return booking

    async def fail(self, booking: Booking, reason: str) -> Booking:
        """pending -> cancelled/failed and release the slot."""
        if booking.status == BookingStatusEnum.CANCELLED and booking.payment_status == PaymentStatusEnum.FAILED:
            return booking
        if booking.status != BookingStatusEnum.PENDING:
            raise InvalidTransitionException(f"Cannot fail payment of a {booking.status} booking")
        ensure_transition(booking.status, BookingStatusEnum.CANCELLED)

        self._set_state(booking, BookingStatusEnum.CANCELLED, PaymentStatusEnum.FAILED)
        booking.cancelled_at = utc_now()
        booking.cancellation_reason = reason[:512]
        await self.slot_store.release(booking.slot_id)
        await self.booking_repository.save(booking)
        await self._emit(booking, "booking.cancelled", reason=booking.cancellation_reason)
        return booking

    async def expire(self, booking: Booking, now: datetime | None = None) -> Booking:
        """pending -> expired once the payment window has passed."""
        if booking.status == BookingStatusEnum.EXPIRED:
            return booking
        ensure_transition(booking.status, BookingStatusEnum.EXPIRED)
        now = now or utc_now()
        if ensure_utc(booking.payment_expires_at) > now:
            raise BusinessRuleException("Payment window is still open")

        self._set_state(booking, BookingStatusEnum.EXPIRED, booking.payment_status)
        await self.slot_store.release(booking.slot_id)
        await self.booking_repository.save(booking)
        await self._emit(booking, "booking.expired")
        return booking

    async def complete(self, booking: Booking, now: datetime | None = None) -> Booking:
        """confirmed -> completed after the session has ended."""
        if booking.status == BookingStatusEnum.COMPLETED:
            return booking
        ensure_transition(booking.status, BookingStatusEnum.COMPLETED)
        now = now or utc_now()
        if ensure_utc(booking.ends_at) > now:
            raise BusinessRuleException("Session has not ended yet")

        self._set_state(booking, BookingStatusEnum.COMPLETED, booking.payment_status)
        booking.completed_at = now
        await self.booking_repository.save(booking)
        await self._emit(
            booking,
            "booking.completed",
            amount=str(booking.amount),
            currency=booking.currency,
            acknowledged_by=[
                role.value
                for role, acknowledged_at in (
                    (RoleEnum.MENTOR, booking.mentor_completed_at),
                    (RoleEnum.LEARNER, booking.learner_completed_at),
                )
                if acknowledged_at is not None
            ],
        )
        return booking

    async def acknowledge_completion(
        self,
        booking: Booking,
        by_role: RoleEnum,
        now: datetime | None = None,
    ) -> Booking:
        """Record one participant's sign-off; the second sign-off completes a confirmed booking."""
        if by_role not in (RoleEnum.MENTOR, RoleEnum.LEARNER):
            raise BusinessRuleException("Only the mentor or the learner can sign off a session")
        if booking.status not in (BookingStatusEnum.CONFIRMED, BookingStatusEnum.COMPLETED):
            raise InvalidTransitionException(f"Cannot sign off a {booking.status} booking")
        now = now or utc_now()
        if ensure_utc(booking.ends_at) > now:
            raise BusinessRuleException("Session has not ended yet")

        if by_role == RoleEnum.MENTOR:
            first_ack = booking.mentor_completed_at is None
            if first_ack:
                booking.mentor_completed_at = now
        else:
            first_ack = booking.learner_completed_at is None
            if first_ack:
                booking.learner_completed_at = now
        if first_ack:
            await self.booking_repository.save(booking)
            await self._emit(booking, "booking.completion.acknowledged", acknowledged_by=by_role.value)

        both_signed = booking.mentor_completed_at is not None and booking.learner_completed_at is not None
        if booking.status == BookingStatusEnum.CONFIRMED and both_signed:
            await self.complete(booking, now)
            logger.info("Booking completed by both participants: booking_id=%s", booking.id)
        return booking

    async def request_cancel(self, booking: Booking, by_role: RoleEnum, reason: str | None = None) -> Booking:
        """Cancel a pending or confirmed booking; a paid booking records a refund obligation."""
        ensure_transition(booking.status, BookingStatusEnum.CANCELLED)

        now = utc_now()
        self._set_state(booking, BookingStatusEnum.CANCELLED, booking.payment_status)
        booking.cancelled_at = now
        booking.cancelled_by = by_role
        booking.cancellation_reason = reason
        await self.slot_store.release(booking.slot_id)

        refund_owed = booking.payment_status == PaymentStatusEnum.PAID
        if refund_owed:
            booking.refund_requested_at = now
        await self.booking_repository.save(booking)

        await self._emit(booking, "booking.cancelled", cancelled_by=by_role.value, reason=reason)
        if refund_owed:
            await self._emit(
                booking,
                "booking.refund.requested",
                amount=str(booking.amount),
                currency=booking.currency,
                correlation_key=booking.correlation_key,
            )
        return booking

    async def reconfirm_after_late_payment(self, booking: Booking, token: ReservationToken) -> Booking:
        """Revive an expired/cancelled booking whose slot was re-reserved after a late success."""
        if token.slot_id != booking.slot_id:
            raise BusinessRuleException("Reservation does not match the booking's slot")
        ensure_transition(booking.status, BookingStatusEnum.CONFIRMED, late_payment=True)

        previous_status = booking.status
        self._set_state(booking, BookingStatusEnum.CONFIRMED, PaymentStatusEnum.PAID)
        booking.confirmed_at = utc_now()
        booking.meeting_room = room_for(booking.id)
        booking.cancelled_at = None
        booking.cancelled_by = None
        booking.cancellation_reason = None
        booking.refund_requested_at = None
        await self.booking_repository.save(booking)
        await self._emit(
            booking,
            "booking.confirmed",
            meeting_room=booking.meeting_room,
            late_payment=True,
            previous_status=previous_status.value,
        )
        return booking

    async def flag_for_reconciliation(
        self,
        booking: Booking,
        reason: str,
        *,
        paid: bool,
    ) -> Booking:
        """Mark a booking for manual follow-up; a terminal booking that got paid owes a refund."""
        if paid:
            if booking.status not in (BookingStatusEnum.CANCELLED, BookingStatusEnum.EXPIRED):
                raise InvalidTransitionException("Only terminal bookings can be flagged as paid")
            self._set_state(booking, booking.status, PaymentStatusEnum.PAID)
            booking.refund_requested_at = utc_now()
        booking.needs_reconciliation = True
        await self.booking_repository.save(booking)

        await self._emit(booking, "payment.reconciliation.required", reason=reason)
        if paid:
            await self._emit(
                booking,
                "booking.refund.requested",
                amount=str(booking.amount),
                currency=booking.currency,
                correlation_key=booking.correlation_key,
                reason=reason,
            )
        return booking

    async def mark_refunded(self, booking: Booking) -> bool:
        """Apply a provider refund; returns False when there is nothing to change."""
        if booking.payment_status != PaymentStatusEnum.PAID:
            return False

        if booking.status == BookingStatusEnum.CONFIRMED:
            self._set_state(booking, BookingStatusEnum.CANCELLED, PaymentStatusEnum.REFUNDED)
            booking.cancelled_at = utc_now()
            booking.cancellation_reason = "Refunded by payment provider"
            await self.slot_store.release(booking.slot_id)
            await self.booking_repository.save(booking)
            await self._emit(booking, "booking.cancelled", reason=booking.cancellation_reason)
            return True

        if booking.status in (BookingStatusEnum.CANCELLED, BookingStatusEnum.EXPIRED):
            self._set_state(booking, booking.status, PaymentStatusEnum.REFUNDED)
            booking.needs_reconciliation = False
            await self.booking_repository.save(booking)
            return True

        return False

    async def expire_stale(self, now: datetime | None = None, batch_size: int = SWEEP_BATCH_SIZE) -> int:
        """Expire pending bookings past their deadline; rows locked elsewhere wait for the next run."""
        now = now or utc_now()
        expired = 0
        for booking in await self.booking_repository.lock_stale_pending(now, batch_size):
            if booking.status != BookingStatusEnum.PENDING or ensure_utc(booking.payment_expires_at) > now:
                continue
            await self.expire(booking, now)
            expired += 1
        if expired:
            logger.info("Expired %s stale pending bookings", expired)
        return expired

    async def complete_finished(self, now: datetime | None = None, batch_size: int = SWEEP_BATCH_SIZE) -> int:
        now = now or utc_now()
        completed = 0
        for booking in await self.booking_repository.lock_finished_confirmed(now, batch_size):
            if booking.status != BookingStatusEnum.CONFIRMED or ensure_utc(booking.ends_at) > now:
                continue
            await self.complete(booking, now)
            completed += 1
        if completed:
            logger.info("Completed %s finished bookings", completed)
        return completed

    async def list_bookings(
        self,
        actor: Principal,
        status: BookingStatusEnum | None,
        limit: int,
        offset: int,
        scope: BookingScopeEnum | None = None,
    ) -> tuple[list[Booking], int]:
        """List bookings visible to the caller's role, optionally only upcoming or past sessions."""
        return await self.booking_repository.list_bookings(
            actor.user_id,
            actor.role,
            status,
            limit,
            offset,
            scope=scope,
            now=utc_now(),
        )


def build_state_machine(session: AsyncSession) -> BookingStateMachine:
    return BookingStateMachine(
        booking_repository=BookingRepository(session),
        slot_store=SlotStore(SchedulingRepository(session)),
        audit_repository=AuditRepository(session),
    )

