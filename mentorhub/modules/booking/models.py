"""Booking ORM models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from mentorhub.core.database import Base, BaseModelMixin, str_enum
from mentorhub.core.enums import BookingStatusEnum, PaymentStatusEnum, RoleEnum

LIVE_STATUSES = (BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED)


class Booking(BaseModelMixin, Base):
    """Learner booking of one mentor slot."""

    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            "uq_bookings_live_slot",
            "slot_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'confirmed')"),
        ),
        Index("ix_bookings_status_payment_expires_at", "status", "payment_expires_at"),
    )

    slot_id: Mapped[UUID] = mapped_column(
        ForeignKey("mentor_slots.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    mentor_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[BookingStatusEnum] = mapped_column(
        str_enum(BookingStatusEnum, "booking_status_enum"),
        default=BookingStatusEnum.PENDING,
        nullable=False,
        index=True,
    )
    payment_status: Mapped[PaymentStatusEnum] = mapped_column(
        str_enum(PaymentStatusEnum, "payment_status_enum"),
        default=PaymentStatusEnum.UNPAID,
        nullable=False,
    )
    correlation_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    payment_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    meeting_room: Mapped[str | None] = mapped_column(String(128), nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mentor_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    learner_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    cancelled_by: Mapped[RoleEnum | None] = mapped_column(
        str_enum(RoleEnum, "role_enum"),
        nullable=True,
    )
    refund_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    needs_reconciliation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
