from __future__ import annotations

import asyncio
from datetime import time, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from mentorhub.core.enums import BookingScopeEnum, BookingStatusEnum, PaymentStatusEnum, RoleEnum
from mentorhub.modules.booking.models import LIVE_STATUSES
from mentorhub.modules.booking.schemas import BookingCreate
from mentorhub.modules.booking.service import validate_amount
from mentorhub.modules.booking.state_machine import (
    TERMINAL_STATUSES,
    can_transition,
    ensure_consistent,
    ensure_transition,
)
from mentorhub.modules.meetings.service import room_for
from mentorhub.shared.exceptions import (
    BusinessRuleException,
    InvalidAmountException,
    InvalidTransitionException,
    SlotUnavailableException,
)


def test_transition_table_is_closed() -> None:
    assert can_transition(BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED)
    assert can_transition(BookingStatusEnum.CONFIRMED, BookingStatusEnum.COMPLETED)
    assert not can_transition(BookingStatusEnum.CONFIRMED, BookingStatusEnum.EXPIRED)
    for status in TERMINAL_STATUSES:
        for target in BookingStatusEnum:
            assert not can_transition(status, target)


def test_late_payment_only_reopens_expired_and_cancelled() -> None:
    ensure_transition(BookingStatusEnum.EXPIRED, BookingStatusEnum.CONFIRMED, late_payment=True)
    ensure_transition(BookingStatusEnum.CANCELLED, BookingStatusEnum.CONFIRMED, late_payment=True)
    with pytest.raises(InvalidTransitionException):
        ensure_transition(BookingStatusEnum.COMPLETED, BookingStatusEnum.CONFIRMED, late_payment=True)
    with pytest.raises(InvalidTransitionException):
        ensure_transition(BookingStatusEnum.EXPIRED, BookingStatusEnum.CONFIRMED)


def test_confirmed_booking_requires_paid_payment() -> None:
    ensure_consistent(BookingStatusEnum.CONFIRMED, PaymentStatusEnum.PAID)
    with pytest.raises(InvalidTransitionException):
        ensure_consistent(BookingStatusEnum.CONFIRMED, PaymentStatusEnum.PENDING)
    with pytest.raises(InvalidTransitionException):
        ensure_consistent(BookingStatusEnum.PENDING, PaymentStatusEnum.PAID)


@pytest.mark.parametrize("amount", ["0", "-5.00", "10.001", "100000.01", "NaN"])
def test_validate_amount_rejects_bad_values(amount: str) -> None:
    with pytest.raises(InvalidAmountException):
        validate_amount(Decimal(amount))


def test_validate_amount_normalizes_to_cents() -> None:
    assert validate_amount(Decimal("25")) == Decimal("25.00")
    assert str(validate_amount(Decimal("25"))) == "25.00"


@pytest.mark.asyncio
async def test_create_reserves_slot_and_opens_pending_booking(world, learner) -> None:
    slot = world.add_slot()

    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))

    assert booking.status == BookingStatusEnum.PENDING
    assert booking.payment_status == PaymentStatusEnum.UNPAID
    assert booking.mentor_id == slot.mentor_id
    assert booking.user_id == learner.user_id
    assert booking.payment_expires_at == world.clock.now + timedelta(minutes=15)
    assert booking.starts_at.hour == 9
    assert booking.correlation_key.startswith("BOOKING_")
    assert slot.is_booked is True
    assert world.audit_repo.event_types() == ["booking.created"]


@pytest.mark.asyncio
async def test_concurrent_creates_yield_exactly_one_pending_booking(world, principal_factory) -> None:
    slot = world.add_slot()
    learners = [principal_factory(RoleEnum.LEARNER) for _ in range(12)]

    results = await asyncio.gather(
        *(
            world.state_machine.create(actor, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))
            for actor in learners
        ),
        return_exceptions=True,
    )

    created = [result for result in results if not isinstance(result, BaseException)]
    rejected = [result for result in results if isinstance(result, BaseException)]
    assert len(created) == 1
    assert len(rejected) == 11
    assert all(isinstance(error, SlotUnavailableException) for error in rejected)
    live = [booking for booking in world.bookings.values() if booking.status in LIVE_STATUSES]
    assert [booking.id for booking in live] == [created[0].id]
    assert slot.is_booked is True


@pytest.mark.asyncio
async def test_create_rejects_missing_inactive_and_past_slots(world, learner) -> None:
    inactive = world.add_slot(is_active=False)
    past = world.add_slot(start=time(6, 0), end=time(7, 0))

    for slot_id in (uuid4(), inactive.id, past.id):
        with pytest.raises(SlotUnavailableException):
            await world.state_machine.create(learner, BookingCreate(slot_id=slot_id, amount=Decimal("10.00")))
    assert world.bookings == {}


@pytest.mark.asyncio
async def test_mentor_cannot_book_own_slot(world, principal_factory) -> None:
    mentor = principal_factory(RoleEnum.MENTOR)
    slot = world.add_slot(mentor.user_id)

    with pytest.raises(BusinessRuleException):
        await world.state_machine.create(mentor, BookingCreate(slot_id=slot.id, amount=Decimal("10.00")))
    assert slot.is_booked is False


@pytest.mark.asyncio
async def test_invalid_amount_does_not_touch_slot(world, learner) -> None:
    slot = world.add_slot()

    with pytest.raises(InvalidAmountException):
        await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("0")))
    assert slot.is_booked is False


@pytest.mark.asyncio
async def test_confirm_is_idempotent_and_binds_room(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))

    await world.state_machine.confirm(booking)
    await world.state_machine.confirm(booking)

    assert booking.status == BookingStatusEnum.CONFIRMED
    assert booking.payment_status == PaymentStatusEnum.PAID
    assert booking.meeting_room == room_for(booking.id)
    assert world.audit_repo.event_types().count("booking.confirmed") == 1


@pytest.mark.asyncio
async def test_cancel_pending_releases_slot_for_next_learner(world, learner, principal_factory) -> None:
    slot = world.add_slot()
    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))

    await world.state_machine.request_cancel(booking, RoleEnum.LEARNER, "changed plans")

    assert booking.status == BookingStatusEnum.CANCELLED
    assert booking.cancelled_by == RoleEnum.LEARNER
    assert booking.refund_requested_at is None
    assert slot.is_booked is False

    other = principal_factory(RoleEnum.LEARNER)
    rebooked = await world.state_machine.create(other, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))
    assert rebooked.status == BookingStatusEnum.PENDING
    assert slot.is_booked is True


@pytest.mark.asyncio
async def test_cancel_paid_booking_requests_refund(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))
    await world.state_machine.confirm(booking)

    await world.state_machine.request_cancel(booking, RoleEnum.MENTOR)

    assert booking.status == BookingStatusEnum.CANCELLED
    assert booking.payment_status == PaymentStatusEnum.PAID
    assert booking.refund_requested_at == world.clock.now
    assert slot.is_booked is False
    assert world.audit_repo.event_types()[-2:] == ["booking.cancelled", "booking.refund.requested"]


@pytest.mark.asyncio
async def test_terminal_booking_cannot_be_cancelled_again(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))
    await world.state_machine.request_cancel(booking, RoleEnum.LEARNER)

    with pytest.raises(InvalidTransitionException):
        await world.state_machine.request_cancel(booking, RoleEnum.LEARNER)


@pytest.mark.asyncio
async def test_expire_before_deadline_is_rejected(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))

    with pytest.raises(BusinessRuleException):
        await world.state_machine.expire(booking)
    assert booking.status == BookingStatusEnum.PENDING
    assert slot.is_booked is True


@pytest.mark.asyncio
async def test_expire_stale_frees_slots_past_deadline(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))

    assert await world.state_machine.expire_stale() == 0
    world.clock.advance(minutes=16)
    assert await world.state_machine.expire_stale() == 1
    assert await world.state_machine.expire_stale() == 0

    assert booking.status == BookingStatusEnum.EXPIRED
    assert booking.payment_status == PaymentStatusEnum.UNPAID
    assert slot.is_booked is False
    assert "booking.expired" in world.audit_repo.event_types()


@pytest.mark.asyncio
async def test_complete_finished_only_after_session_end(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))
    await world.state_machine.confirm(booking)

    world.clock.advance(minutes=90)
    assert await world.state_machine.complete_finished() == 0
    with pytest.raises(BusinessRuleException):
        await world.state_machine.complete(booking)

    world.clock.advance(minutes=60)
    assert await world.state_machine.complete_finished() == 1
    assert booking.status == BookingStatusEnum.COMPLETED
    assert booking.payment_status == PaymentStatusEnum.PAID
    assert booking.completed_at == world.clock.now
    assert slot.is_booked is True


@pytest.mark.asyncio
async def test_sign_off_by_both_participants_completes_booking(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))
    await world.state_machine.confirm(booking)
    world.clock.advance(minutes=150)

    await world.state_machine.acknowledge_completion(booking, RoleEnum.MENTOR)
    signed_at = booking.mentor_completed_at
    world.clock.advance(minutes=5)
    await world.state_machine.acknowledge_completion(booking, RoleEnum.MENTOR)

    assert booking.status == BookingStatusEnum.CONFIRMED
    assert booking.mentor_completed_at == signed_at
    assert booking.learner_completed_at is None
    assert world.audit_repo.event_types().count("booking.completion.acknowledged") == 1

    await world.state_machine.acknowledge_completion(booking, RoleEnum.LEARNER)

    assert booking.status == BookingStatusEnum.COMPLETED
    assert booking.payment_status == PaymentStatusEnum.PAID
    assert booking.learner_completed_at == world.clock.now
    assert booking.completed_at == world.clock.now
    completed = [event for event in world.audit_repo.events if event.event_type == "booking.completed"]
    assert len(completed) == 1
    assert completed[0].payload["acknowledged_by"] == ["mentor", "learner"]
    assert completed[0].payload["amount"] == "40.00"


@pytest.mark.asyncio
async def test_sign_off_requires_finished_confirmed_session(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))

    with pytest.raises(InvalidTransitionException):
        await world.state_machine.acknowledge_completion(booking, RoleEnum.LEARNER)

    await world.state_machine.confirm(booking)
    world.clock.advance(minutes=90)
    with pytest.raises(BusinessRuleException):
        await world.state_machine.acknowledge_completion(booking, RoleEnum.LEARNER)

    world.clock.advance(minutes=60)
    with pytest.raises(BusinessRuleException):
        await world.state_machine.acknowledge_completion(booking, RoleEnum.ADMIN)
    assert booking.learner_completed_at is None


@pytest.mark.asyncio
async def test_sign_off_after_sweep_completion_is_recorded_without_second_completion(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.state_machine.create(learner, BookingCreate(slot_id=slot.id, amount=Decimal("40.00")))
    await world.state_machine.confirm(booking)
    world.clock.advance(minutes=150)
    await world.state_machine.complete_finished()

    await world.state_machine.acknowledge_completion(booking, RoleEnum.MENTOR)
    await world.state_machine.acknowledge_completion(booking, RoleEnum.LEARNER)

    assert booking.status == BookingStatusEnum.COMPLETED
    assert booking.mentor_completed_at == world.clock.now
    assert booking.learner_completed_at == world.clock.now
    assert world.audit_repo.event_types().count("booking.completed") == 1


@pytest.mark.asyncio
async def test_slot_flag_matches_live_bookings_after_mixed_operations(world, principal_factory) -> None:
    slots = [world.add_slot(start=time(9 + index, 0), end=time(9 + index, 45)) for index in range(4)]
    bookings = []
    for slot in slots:
        actor = principal_factory(RoleEnum.LEARNER)
        bookings.append(
            await world.state_machine.create(actor, BookingCreate(slot_id=slot.id, amount=Decimal("15.00"))),
        )

    await world.state_machine.confirm(bookings[0])
    await world.state_machine.fail(bookings[1], "card declined")
    await world.state_machine.request_cancel(bookings[2], RoleEnum.ADMIN)

    for slot in slots:
        has_live = any(
            booking.slot_id == slot.id and booking.status in LIVE_STATUSES for booking in world.bookings.values()
        )
        assert slot.is_booked is has_live


@pytest.mark.asyncio
async def test_list_bookings_scopes_by_role(world, principal_factory) -> None:
    mentor = principal_factory(RoleEnum.MENTOR)
    first = principal_factory(RoleEnum.LEARNER)
    second = principal_factory(RoleEnum.LEARNER)
    admin = principal_factory(RoleEnum.ADMIN)
    for actor, start in ((first, time(9, 0)), (second, time(11, 0))):
        slot = world.add_slot(mentor.user_id, start=start, end=time(start.hour + 1, 0))
        await world.state_machine.create(actor, BookingCreate(slot_id=slot.id, amount=Decimal("10.00")))

    _, learner_total = await world.state_machine.list_bookings(first, None, 20, 0)
    _, mentor_total = await world.state_machine.list_bookings(mentor, None, 20, 0)
    _, admin_total = await world.state_machine.list_bookings(admin, BookingStatusEnum.PENDING, 20, 0)

    assert learner_total == 1
    assert mentor_total == 2
    assert admin_total == 2


@pytest.mark.asyncio
async def test_list_bookings_splits_upcoming_and_past_by_session_end(world, learner) -> None:
    bookings = {}
    for start in (time(9, 0), time(11, 0), time(13, 0)):
        slot = world.add_slot(start=start, end=time(start.hour + 1, 0))
        bookings[start.hour] = await world.state_machine.create(
            learner,
            BookingCreate(slot_id=slot.id, amount=Decimal("10.00")),
        )
    world.clock.advance(hours=3, minutes=30)

    upcoming, upcoming_total = await world.state_machine.list_bookings(learner, None, 20, 0, BookingScopeEnum.UPCOMING)
    past, past_total = await world.state_machine.list_bookings(learner, None, 20, 0, BookingScopeEnum.PAST)
    _, everything = await world.state_machine.list_bookings(learner, None, 20, 0)

    assert [booking.id for booking in upcoming] == [bookings[11].id, bookings[13].id]
    assert [booking.id for booking in past] == [bookings[9].id]
    assert upcoming_total + past_total == everything == 3
