"""Booking schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from mentorhub.core.enums import BookingStatusEnum, PaymentStatusEnum, RoleEnum


class BookingCreate(BaseModel):
    """Book a slot request."""

    slot_id: UUID
    amount: Decimal
    notes: str | None = Field(default=None, max_length=2000)


class BookingCancelRequest(BaseModel):
    """Cancel booking request."""

    reason: str | None = Field(default=None, max_length=512)


class BookingRead(BaseModel):
    """Booking response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    slot_id: UUID
    mentor_id: UUID
    user_id: UUID
    amount: Decimal
    currency: str
    status: BookingStatusEnum
    payment_status: PaymentStatusEnum
    correlation_key: str
    payment_expires_at: datetime
    starts_at: datetime
    ends_at: datetime
    meeting_room: str | None
    confirmed_at: datetime | None
    cancelled_at: datetime | None
    completed_at: datetime | None
    mentor_completed_at: datetime | None
    learner_completed_at: datetime | None
    cancellation_reason: str | None
    cancelled_by: RoleEnum | None
    refund_requested_at: datetime | None
    needs_reconciliation: bool
    notes: str | None
    created_at: datetime
    updated_at: datetime


class PaymentSessionRead(BaseModel):
    """Checkout session handed to the client."""

    booking_id: UUID
    order_id: str
    checkout_url: str
    amount: Decimal
    currency: str
    payment_status: PaymentStatusEnum
    payment_expires_at: datetime


class PaymentStatusRead(BaseModel):
    booking_id: UUID
    status: BookingStatusEnum
    payment_status: PaymentStatusEnum
    payment_expires_at: datetime
    needs_reconciliation: bool


class SweepResult(BaseModel):
    expired: int
    completed: int
