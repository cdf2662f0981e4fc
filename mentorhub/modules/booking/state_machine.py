"""Closed booking lifecycle tables."""

from __future__ import annotations

from mentorhub.core.enums import BookingStatusEnum, PaymentStatusEnum
from mentorhub.shared.exceptions import InvalidTransitionException

TERMINAL_STATUSES = frozenset(
    {BookingStatusEnum.COMPLETED, BookingStatusEnum.CANCELLED, BookingStatusEnum.EXPIRED},
)

ALLOWED_TRANSITIONS: dict[BookingStatusEnum, frozenset[BookingStatusEnum]] = {
    BookingStatusEnum.PENDING: frozenset(
        {BookingStatusEnum.CONFIRMED, BookingStatusEnum.CANCELLED, BookingStatusEnum.EXPIRED},
    ),
    BookingStatusEnum.CONFIRMED: frozenset(
        {BookingStatusEnum.COMPLETED, BookingStatusEnum.CANCELLED},
    ),
    BookingStatusEnum.COMPLETED: frozenset(),
    BookingStatusEnum.CANCELLED: frozenset(),
    BookingStatusEnum.EXPIRED: frozenset(),
}

# A late provider success revives an expired/cancelled booking; nothing else leaves a terminal state.
LATE_PAYMENT_TRANSITIONS: dict[BookingStatusEnum, frozenset[BookingStatusEnum]] = {
    BookingStatusEnum.EXPIRED: frozenset({BookingStatusEnum.CONFIRMED}),
    BookingStatusEnum.CANCELLED: frozenset({BookingStatusEnum.CONFIRMED}),
}

_ANY_PAYMENT = frozenset(PaymentStatusEnum)

ALLOWED_PAYMENT_STATUSES: dict[BookingStatusEnum, frozenset[PaymentStatusEnum]] = {
    BookingStatusEnum.PENDING: frozenset({PaymentStatusEnum.UNPAID, PaymentStatusEnum.PENDING}),
    BookingStatusEnum.CONFIRMED: frozenset({PaymentStatusEnum.PAID}),
    BookingStatusEnum.COMPLETED: frozenset({PaymentStatusEnum.PAID}),
    BookingStatusEnum.CANCELLED: _ANY_PAYMENT,
    BookingStatusEnum.EXPIRED: _ANY_PAYMENT,
}


def can_transition(current: BookingStatusEnum, target: BookingStatusEnum) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(
    current: BookingStatusEnum,
    target: BookingStatusEnum,
    *,
    late_payment: bool = False,
) -> None:
    """Raise InvalidTransitionException unless current -> target is in the table."""
    allowed = ALLOWED_TRANSITIONS[current]
    if late_payment:
        allowed = allowed | LATE_PAYMENT_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionException(f"Booking cannot move from {current} to {target}")


def ensure_consistent(status: BookingStatusEnum, payment_status: PaymentStatusEnum) -> None:
    """Guard the status/payment_status pairing before a write."""
    if payment_status not in ALLOWED_PAYMENT_STATUSES[status]:
        raise InvalidTransitionException(
            f"Payment status {payment_status} is not valid for a {status} booking",
        )
