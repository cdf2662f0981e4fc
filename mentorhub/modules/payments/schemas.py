"""Payment schemas."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mentorhub.core.enums import PaymentEventOutcomeEnum, PaymentEventTypeEnum


class PaymentWebhookEvent(BaseModel):
    """Provider event delivered at least once, possibly out of order."""

    event_type: PaymentEventTypeEnum
    correlation_key: str = Field(min_length=1, max_length=64)
    amount: Decimal | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    event_id: str = Field(min_length=1, max_length=128)
    timestamp: datetime | None = None

    @field_validator("event_type", mode="before")
    @classmethod
    def normalize_event_type(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str | None) -> str | None:
        return value.upper() if value else value


class ReconcileResult(BaseModel):
    """Outcome returned to the provider and to callers of apply()."""

    event_id: str
    outcome: PaymentEventOutcomeEnum
    booking_id: UUID | None = None
    replayed: bool = False
    detail: str | None = None


class PaymentEventRead(BaseModel):
    """Ledger row response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_id: str
    correlation_key: str
    event_type: PaymentEventTypeEnum
    amount: Decimal | None
    currency: str | None
    provider_timestamp: datetime | None
    booking_id: UUID | None
    outcome: PaymentEventOutcomeEnum
    detail: str | None
    recorded_at: datetime


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    """Hosted checkout created by a payment provider."""

    order_id: str
    checkout_url: str
    amount: Decimal
    currency: str
