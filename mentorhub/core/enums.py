"""Core enums used across modules."""

from enum import StrEnum


class RoleEnum(StrEnum):
    """Caller roles carried in the signed identity token."""

    LEARNER = "learner"
    MENTOR = "mentor"
    ADMIN = "admin"


class BookingStatusEnum(StrEnum):
    """Booking lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentStatusEnum(StrEnum):
    """Payment state of a booking."""

    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentEventTypeEnum(StrEnum):
    """Provider webhook event kinds."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentEventOutcomeEnum(StrEnum):
    """Recorded effect of applying a payment event."""

    CONFIRMED = "confirmed"
    RECONFIRMED = "reconfirmed"
    FAILED = "failed"
    REFUNDED = "refunded"
    NOOP = "noop"
    IGNORED = "ignored"
    FLAGGED = "flagged"
    UNMATCHED = "unmatched"


class BookingScopeEnum(StrEnum):
    """Time window of a booking listing."""

    UPCOMING = "upcoming"
    PAST = "past"


class OutboxStatusEnum(StrEnum):
    """Outbox event status for integration publishing."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
