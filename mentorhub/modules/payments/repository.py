"""Payment ledger repository layer."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mentorhub.core.enums import PaymentEventOutcomeEnum, PaymentEventTypeEnum
from mentorhub.modules.payments.models import PaymentEvent


class PaymentEventRepository:
    """Insert-and-read access to the payment event ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_event_id(self, event_id: str) -> PaymentEvent | None:
        stmt = select(PaymentEvent).where(PaymentEvent.event_id == event_id)
        return await self.session.scalar(stmt)

    async def record(
        self,
        *,
        event_id: str,
        correlation_key: str,
        event_type: PaymentEventTypeEnum,
        amount: Decimal | None,
        currency: str | None,
        provider_timestamp: datetime | None,
        booking_id: UUID | None,
        outcome: PaymentEventOutcomeEnum,
        detail: str | None,
        payload: dict,
    ) -> PaymentEvent:
        # A concurrent duplicate fails here on uq_payment_events_event_id and rolls back.
        event = PaymentEvent(
            event_id=event_id,
            correlation_key=correlation_key,
            event_type=event_type,
            amount=amount,
            currency=currency,
            provider_timestamp=provider_timestamp,
            booking_id=booking_id,
            outcome=outcome,
            detail=detail,
            payload=payload,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_events(
        self,
        outcome: PaymentEventOutcomeEnum | None,
        booking_id: UUID | None,
        limit: int,
        offset: int,
    ) -> tuple[list[PaymentEvent], int]:
        base_stmt: Select[tuple[PaymentEvent]] = select(PaymentEvent)
        if outcome is not None:
            base_stmt = base_stmt.where(PaymentEvent.outcome == outcome)
        if booking_id is not None:
            base_stmt = base_stmt.where(PaymentEvent.booking_id == booking_id)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(PaymentEvent.recorded_at.desc()).limit(limit).offset(offset)
        items = (await self.session.scalars(stmt)).all()
        return items, total
