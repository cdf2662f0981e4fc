"""Payment reconciler: applies provider events to bookings exactly once."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import Depends
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from mentorhub.core.config import get_settings
from mentorhub.core.database import get_db_session
from mentorhub.core.enums import (
    BookingStatusEnum,
    PaymentEventOutcomeEnum,
    PaymentEventTypeEnum,
    PaymentStatusEnum,
)
from mentorhub.core.metrics import record_payment_event
from mentorhub.core.security import verify_webhook_signature
from mentorhub.modules.audit.repository import AuditRepository
from mentorhub.modules.booking.models import Booking
from mentorhub.modules.booking.repository import BookingRepository
from mentorhub.modules.booking.service import BookingStateMachine
from mentorhub.modules.payments.models import PaymentEvent
from mentorhub.modules.payments.repository import PaymentEventRepository
from mentorhub.modules.payments.schemas import PaymentWebhookEvent, ReconcileResult
from mentorhub.modules.scheduling.repository import SchedulingRepository
from mentorhub.modules.scheduling.service import SlotStore
from mentorhub.shared.exceptions import InvalidWebhookSignatureException, SlotUnavailableException

settings = get_settings()
logger = logging.getLogger(__name__)

Outcome = tuple[PaymentEventOutcomeEnum, str | None]


class PaymentReconciler:
    """Ledger-first webhook application, serialised per booking by a row lock."""

    def __init__(
        self,
        ledger: PaymentEventRepository,
        booking_repository: BookingRepository,
        state_machine: BookingStateMachine,
        audit_repository: AuditRepository,
    ) -> None:
        self.ledger = ledger
        self.booking_repository = booking_repository
        self.state_machine = state_machine
        self.audit_repository = audit_repository

    async def handle_webhook(self, body: bytes, signature: str | None) -> ReconcileResult:
        """Authenticate and parse a raw webhook body, then apply it."""
        if settings.payment_webhook_verify_signature and not verify_webhook_signature(
            body,
            signature,
            settings.payment_webhook_secret,
        ):
            logger.warning("Rejected payment webhook with invalid signature")
            raise InvalidWebhookSignatureException("Webhook signature verification failed")

        try:
            event = PaymentWebhookEvent.model_validate_json(body)
        except ValidationError as exc:
            raise RequestValidationError(exc.errors()) from exc
        return await self.apply(event)

    async def apply(self, event: PaymentWebhookEvent) -> ReconcileResult:
        """Apply one provider event; a known event id returns its recorded outcome untouched."""
        recorded = await self.ledger.get_by_event_id(event.event_id)
        if recorded is not None:
            return self._replayed(recorded)

        booking = await self.booking_repository.get_booking_by_correlation_key(
            event.correlation_key,
            for_update=True,
        )
        # A duplicate delivery may have committed while this one waited for the row lock.
        recorded = await self.ledger.get_by_event_id(event.event_id)
        if recorded is not None:
            return self._replayed(recorded)

        if booking is None:
            outcome, detail = await self._record_unmatched(event)
        elif event.event_type == PaymentEventTypeEnum.SUCCEEDED:
            outcome, detail = await self._apply_success(event, booking)
        elif event.event_type == PaymentEventTypeEnum.FAILED:
            outcome, detail = await self._apply_failure(event, booking)
        else:
            outcome, detail = await self._apply_refund(booking)

        await self.ledger.record(
            event_id=event.event_id,
            correlation_key=event.correlation_key,
            event_type=event.event_type,
            amount=event.amount,
            currency=event.currency,
            provider_timestamp=event.timestamp,
            booking_id=booking.id if booking is not None else None,
            outcome=outcome,
            detail=detail,
            payload=event.model_dump(mode="json"),
        )
        record_payment_event(event.event_type.value, outcome.value)
        logger.info(
            "Payment event applied: event_id=%s type=%s outcome=%s",
            event.event_id,
            event.event_type,
            outcome,
        )
        return ReconcileResult(
            event_id=event.event_id,
            outcome=outcome,
            booking_id=booking.id if booking is not None else None,
            detail=detail,
        )

    def _replayed(self, recorded: PaymentEvent) -> ReconcileResult:
        logger.info("Payment event replayed: event_id=%s outcome=%s", recorded.event_id, recorded.outcome)
        return ReconcileResult(
            event_id=recorded.event_id,
            outcome=recorded.outcome,
            booking_id=recorded.booking_id,
            replayed=True,
            detail=recorded.detail,
        )

    def _amount_shortfall(self, event: PaymentWebhookEvent, booking: Booking) -> str | None:
        if event.amount is None:
            return "Payment amount missing from provider event"
        if event.currency is not None and event.currency != booking.currency:
            return f"Paid in {event.currency}, booking is in {booking.currency}"
        if event.amount < booking.amount:
            return f"Partial payment: received {event.amount}, expected {booking.amount}"
        return None

    async def _apply_success(self, event: PaymentWebhookEvent, booking: Booking) -> Outcome:
        if booking.status == BookingStatusEnum.PENDING:
            shortfall = self._amount_shortfall(event, booking)
            if shortfall is not None:
                await self._flag(booking, event, shortfall, paid=False)
                return PaymentEventOutcomeEnum.FLAGGED, shortfall
            await self.state_machine.confirm(booking)
            if booking.needs_reconciliation:
                logger.warning(
                    "Booking confirmed with reconciliation flag outstanding: booking_id=%s event_id=%s",
                    booking.id,
                    event.event_id,
                )
                return PaymentEventOutcomeEnum.CONFIRMED, "Confirmed; earlier flagged payment still needs review"
            return PaymentEventOutcomeEnum.CONFIRMED, None

        if booking.status in (BookingStatusEnum.CONFIRMED, BookingStatusEnum.COMPLETED):
            return PaymentEventOutcomeEnum.NOOP, "Booking already paid"

        if booking.payment_status in (PaymentStatusEnum.PAID, PaymentStatusEnum.REFUNDED):
            detail = f"Additional success for {booking.status} booking already marked {booking.payment_status}"
            await self._flag(booking, event, detail, paid=False)
            return PaymentEventOutcomeEnum.FLAGGED, detail

        return await self._apply_late_success(event, booking)

    async def _apply_late_success(self, event: PaymentWebhookEvent, booking: Booking) -> Outcome:
        """Honour a success after expiry/cancellation if the slot can still be reserved."""
        shortfall = self._amount_shortfall(event, booking)
        if shortfall is None:
            try:
                token = await self.state_machine.slot_store.reserve(booking.slot_id)
            except SlotUnavailableException:
                shortfall = f"Late payment for {booking.status} booking; slot is no longer available"
            else:
                previous_status = booking.status
                await self.state_machine.reconfirm_after_late_payment(booking, token)
                return PaymentEventOutcomeEnum.RECONFIRMED, f"Late payment revived {previous_status} booking"

        await self._flag(booking, event, shortfall, paid=True)
        return PaymentEventOutcomeEnum.FLAGGED, shortfall

    async def _apply_failure(self, event: PaymentWebhookEvent, booking: Booking) -> Outcome:
        if booking.status == BookingStatusEnum.PENDING:
            await self.state_machine.fail(booking, f"Payment failed (event {event.event_id})")
            return PaymentEventOutcomeEnum.FAILED, None
        if booking.status in (BookingStatusEnum.CANCELLED, BookingStatusEnum.EXPIRED):
            return PaymentEventOutcomeEnum.NOOP, f"Booking already {booking.status}"

        logger.warning(
            "Stale failure event ignored: event_id=%s booking_id=%s status=%s",
            event.event_id,
            booking.id,
            booking.status,
        )
        return PaymentEventOutcomeEnum.IGNORED, f"Failure arrived after booking became {booking.status}"

    async def _apply_refund(self, booking: Booking) -> Outcome:
        if await self.state_machine.mark_refunded(booking):
            return PaymentEventOutcomeEnum.REFUNDED, None
        return PaymentEventOutcomeEnum.NOOP, f"Nothing to refund on {booking.status}/{booking.payment_status} booking"

    async def _flag(self, booking: Booking, event: PaymentWebhookEvent, reason: str, *, paid: bool) -> None:
        logger.warning(
            "Booking flagged for reconciliation: booking_id=%s event_id=%s reason=%s",
            booking.id,
            event.event_id,
            reason,
        )
        await self.state_machine.flag_for_reconciliation(booking, reason, paid=paid)
        await self.audit_repository.create_audit_log(
            actor_id=None,
            action="payment.reconciliation.flagged",
            entity_type="booking",
            entity_id=str(booking.id),
            payload={
                "event_id": event.event_id,
                "event_type": event.event_type.value,
                "correlation_key": event.correlation_key,
                "amount": str(event.amount) if event.amount is not None else None,
                "status": booking.status.value,
                "payment_status": booking.payment_status.value,
                "reason": reason,
            },
        )

    async def _record_unmatched(self, event: PaymentWebhookEvent) -> Outcome:
        detail = f"No booking for correlation key {event.correlation_key}"
        logger.warning("Unmatched payment event: event_id=%s %s", event.event_id, detail)
        payload = {
            "event_id": event.event_id,
            "event_type": event.event_type.value,
            "correlation_key": event.correlation_key,
            "amount": str(event.amount) if event.amount is not None else None,
            "reason": detail,
        }
        await self.audit_repository.create_audit_log(
            actor_id=None,
            action="payment.event.unmatched",
            entity_type="payment_event",
            entity_id=event.event_id,
            payload=payload,
        )
        await self.audit_repository.create_outbox_event(
            aggregate_type="payment",
            aggregate_id=event.event_id,
            event_type="payment.reconciliation.required",
            payload=payload,
        )
        return PaymentEventOutcomeEnum.UNMATCHED, detail

    async def list_events(
        self,
        outcome: PaymentEventOutcomeEnum | None,
        booking_id: UUID | None,
        limit: int,
        offset: int,
    ) -> tuple[list[PaymentEvent], int]:
        return await self.ledger.list_events(outcome, booking_id, limit, offset)


def build_reconciler(session: AsyncSession) -> PaymentReconciler:
    booking_repository = BookingRepository(session)
    audit_repository = AuditRepository(session)
    return PaymentReconciler(
        ledger=PaymentEventRepository(session),
        booking_repository=booking_repository,
        state_machine=BookingStateMachine(
            booking_repository=booking_repository,
            slot_store=SlotStore(SchedulingRepository(session)),
            audit_repository=audit_repository,
        ),
        audit_repository=audit_repository,
    )


async def get_payment_reconciler(session: AsyncSession = Depends(get_db_session)) -> PaymentReconciler:
    """Dependency provider for payment reconciler."""
    return build_reconciler(session)
