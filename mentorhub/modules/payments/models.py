"""Payment event ledger ORM model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from mentorhub.core.database import Base, BaseModelMixin, str_enum
from mentorhub.core.enums import PaymentEventOutcomeEnum, PaymentEventTypeEnum
from mentorhub.shared.utils import utc_now


class PaymentEvent(BaseModelMixin, Base):
    """Append-only idempotency ledger; one row per provider event id."""

    __tablename__ = "payment_events"

    event_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    correlation_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[PaymentEventTypeEnum] = mapped_column(
        str_enum(PaymentEventTypeEnum, "payment_event_type_enum"),
        nullable=False,
    )
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    provider_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    booking_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    outcome: Mapped[PaymentEventOutcomeEnum] = mapped_column(
        str_enum(PaymentEventOutcomeEnum, "payment_event_outcome_enum"),
        nullable=False,
        index=True,
    )
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict] = mapped_column(JSONB, default=dict, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
