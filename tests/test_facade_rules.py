from __future__ import annotations

from datetime import time, timedelta
from decimal import Decimal
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

import pytest

from mentorhub.core.enums import BookingScopeEnum, BookingStatusEnum, PaymentStatusEnum, RoleEnum
from mentorhub.modules.booking.schemas import BookingCreate
from mentorhub.modules.scheduling.schemas import SlotCreate, SlotSearchFilters, SlotUpdate
from mentorhub.shared.exceptions import (
    ExpiredException,
    InvalidTransitionException,
    NotAuthorizedException,
    UnauthorizedException,
)


@pytest.mark.asyncio
async def test_only_mentors_publish_slots(world, learner, principal_factory) -> None:
    payload = SlotCreate(
        slot_date=world.clock.now.date() + timedelta(days=1),
        start_time=time(9, 0),
        end_time=time(10, 0),
    )

    with pytest.raises(UnauthorizedException):
        await world.facade.create_slot(learner, payload)

    mentor = principal_factory(RoleEnum.MENTOR)
    slot = await world.facade.create_slot(mentor, payload)
    assert slot.mentor_id == mentor.user_id


@pytest.mark.asyncio
async def test_mentor_cannot_manage_another_mentors_slot(world, principal_factory) -> None:
    owner = principal_factory(RoleEnum.MENTOR)
    intruder = principal_factory(RoleEnum.MENTOR)
    admin = principal_factory(RoleEnum.ADMIN)
    slot = world.add_slot(owner.user_id)

    with pytest.raises(UnauthorizedException):
        await world.facade.update_slot(intruder, slot.id, SlotUpdate(end_time=time(10, 30)))
    with pytest.raises(UnauthorizedException):
        await world.facade.deactivate_slot(intruder, slot.id)

    deactivated = await world.facade.deactivate_slot(admin, slot.id)
    assert deactivated.is_active is False


@pytest.mark.asyncio
async def test_only_learners_book_slots(world, principal_factory) -> None:
    slot = world.add_slot()
    mentor = principal_factory(RoleEnum.MENTOR)

    with pytest.raises(UnauthorizedException):
        await world.facade.book_slot(mentor, BookingCreate(slot_id=slot.id, amount=Decimal("30.00")))
    assert slot.is_booked is False


@pytest.mark.asyncio
async def test_search_slots_excludes_reserved_slot(world, learner) -> None:
    slot = world.add_slot()
    free = world.add_slot(start=time(11, 0), end=time(12, 0))
    await world.facade.book_slot(learner, BookingCreate(slot_id=slot.id, amount=Decimal("30.00")))

    items, total = await world.facade.search_slots(SlotSearchFilters(), 20, 0)

    assert total == 1
    assert items[0].id == free.id


@pytest.mark.asyncio
async def test_start_payment_opens_checkout_for_owner(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.facade.book_slot(learner, BookingCreate(slot_id=slot.id, amount=Decimal("30.00")))

    session = await world.facade.start_payment(learner, booking.id)
    again = await world.facade.start_payment(learner, booking.id)

    query = parse_qs(urlparse(session.checkout_url).query)
    assert query["order_id"] == [booking.correlation_key]
    assert query["amount"] == ["30.00"]
    assert session.payment_status == PaymentStatusEnum.PENDING
    assert again.order_id == session.order_id
    assert booking.status == BookingStatusEnum.PENDING


@pytest.mark.asyncio
async def test_start_payment_rejects_strangers_and_closed_windows(world, learner, principal_factory) -> None:
    slot = world.add_slot()
    booking = await world.facade.book_slot(learner, BookingCreate(slot_id=slot.id, amount=Decimal("30.00")))

    with pytest.raises(NotAuthorizedException):
        await world.facade.start_payment(principal_factory(RoleEnum.LEARNER), booking.id)

    world.clock.advance(minutes=15)
    with pytest.raises(ExpiredException):
        await world.facade.start_payment(learner, booking.id)


@pytest.mark.asyncio
async def test_start_payment_after_confirmation_is_invalid(world, learner) -> None:
    slot = world.add_slot()
    booking = await world.facade.book_slot(learner, BookingCreate(slot_id=slot.id, amount=Decimal("30.00")))
    await world.state_machine.confirm(booking)

    with pytest.raises(InvalidTransitionException):
        await world.facade.start_payment(learner, booking.id)


@pytest.mark.asyncio
async def test_booking_visible_to_participants_and_admin_only(world, learner, principal_factory) -> None:
    mentor = principal_factory(RoleEnum.MENTOR)
    slot = world.add_slot(mentor.user_id)
    booking = await world.facade.book_slot(learner, BookingCreate(slot_id=slot.id, amount=Decimal("30.00")))

    assert (await world.facade.get_booking(learner, booking.id)).id == booking.id
    assert (await world.facade.get_booking(mentor, booking.id)).id == booking.id
    assert (await world.facade.get_booking(principal_factory(RoleEnum.ADMIN), booking.id)).id == booking.id
    with pytest.raises(NotAuthorizedException):
        await world.facade.get_booking(principal_factory(RoleEnum.LEARNER), booking.id)

    status = await world.facade.get_payment_status(learner, booking.id)
    assert status.status == BookingStatusEnum.PENDING
    assert status.payment_status == PaymentStatusEnum.UNPAID
    assert status.needs_reconciliation is False


@pytest.mark.asyncio
async def test_cancel_booking_records_caller_role(world, learner, principal_factory) -> None:
    mentor = principal_factory(RoleEnum.MENTOR)
    slot = world.add_slot(mentor.user_id)
    booking = await world.facade.book_slot(learner, BookingCreate(slot_id=slot.id, amount=Decimal("30.00")))

    with pytest.raises(NotAuthorizedException):
        await world.facade.cancel_booking(principal_factory(RoleEnum.MENTOR), booking.id, None)

    cancelled = await world.facade.cancel_booking(mentor, booking.id, "mentor unavailable")
    assert cancelled.status == BookingStatusEnum.CANCELLED
    assert cancelled.cancelled_by == RoleEnum.MENTOR
    assert cancelled.cancellation_reason == "mentor unavailable"
    assert slot.is_booked is False


@pytest.mark.asyncio
async def test_run_sweeps_requires_admin(world, learner, principal_factory) -> None:
    slot = world.add_slot()
    await world.facade.book_slot(learner, BookingCreate(slot_id=slot.id, amount=Decimal("30.00")))
    world.clock.advance(minutes=20)

    with pytest.raises(UnauthorizedException):
        await world.facade.run_sweeps(learner)

    result = await world.facade.run_sweeps(principal_factory(RoleEnum.ADMIN))
    assert result.expired == 1
    assert result.completed == 0
    assert slot.is_booked is False


@pytest.mark.asyncio
async def test_list_my_slots_is_mentor_only(world, learner, principal_factory) -> None:
    mentor = principal_factory(RoleEnum.MENTOR)
    world.add_slot(mentor.user_id)
    world.add_slot(mentor.user_id, start=time(11, 0), end=time(12, 0), is_active=False)
    world.add_slot(uuid4(), start=time(13, 0), end=time(14, 0))

    with pytest.raises(UnauthorizedException):
        await world.facade.list_my_slots(learner, False, 20, 0)

    _, active_total = await world.facade.list_my_slots(mentor, False, 20, 0)
    _, all_total = await world.facade.list_my_slots(mentor, True, 20, 0)
    assert active_total == 1
    assert all_total == 2


@pytest.mark.asyncio
async def test_participants_sign_off_session_through_facade(world, learner, principal_factory) -> None:
    mentor = principal_factory(RoleEnum.MENTOR)
    slot = world.add_slot(mentor.user_id)
    booking = await world.facade.book_slot(learner, BookingCreate(slot_id=slot.id, amount=Decimal("30.00")))
    await world.state_machine.confirm(booking)
    world.clock.advance(hours=3)

    with pytest.raises(NotAuthorizedException):
        await world.facade.acknowledge_completion(principal_factory(RoleEnum.ADMIN), booking.id)
    with pytest.raises(NotAuthorizedException):
        await world.facade.acknowledge_completion(principal_factory(RoleEnum.LEARNER), booking.id)

    signed = await world.facade.acknowledge_completion(mentor, booking.id)
    assert signed.status == BookingStatusEnum.CONFIRMED
    assert signed.mentor_completed_at == world.clock.now

    completed = await world.facade.acknowledge_completion(learner, booking.id)
    assert completed.status == BookingStatusEnum.COMPLETED
    assert completed.learner_completed_at == world.clock.now


@pytest.mark.asyncio
async def test_my_bookings_history_and_upcoming_views(world, learner, principal_factory) -> None:
    mentor = principal_factory(RoleEnum.MENTOR)
    early = world.add_slot(mentor.user_id)
    late = world.add_slot(mentor.user_id, slot_date=world.clock.now.date() + timedelta(days=1))
    finished = await world.facade.book_slot(learner, BookingCreate(slot_id=early.id, amount=Decimal("30.00")))
    ahead = await world.facade.book_slot(learner, BookingCreate(slot_id=late.id, amount=Decimal("30.00")))
    world.clock.advance(hours=4)

    for actor in (learner, mentor):
        upcoming, _ = await world.facade.list_my_bookings(actor, None, 20, 0, BookingScopeEnum.UPCOMING)
        history, _ = await world.facade.list_my_bookings(actor, None, 20, 0, BookingScopeEnum.PAST)
        assert [booking.id for booking in upcoming] == [ahead.id]
        assert [booking.id for booking in history] == [finished.id]
