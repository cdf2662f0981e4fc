from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

import mentorhub.modules.booking.service as booking_service_module
import mentorhub.modules.facade.service as facade_service_module
import mentorhub.modules.scheduling.service as scheduling_service_module
from mentorhub.core.enums import (
    BookingScopeEnum,
    BookingStatusEnum,
    OutboxStatusEnum,
    PaymentEventOutcomeEnum,
    PaymentStatusEnum,
    RoleEnum,
)
from mentorhub.modules.booking.models import LIVE_STATUSES
from mentorhub.modules.booking.service import BookingStateMachine
from mentorhub.modules.facade.service import SchedulingFacade
from mentorhub.modules.identity.schemas import Principal
from mentorhub.modules.meetings.service import MeetingRoomBinder
from mentorhub.modules.payments.provider import HostedCheckoutProvider
from mentorhub.modules.payments.service import PaymentReconciler
from mentorhub.modules.scheduling.service import SlotStore

FIXED_NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class FakeSlot:
    mentor_id: UUID
    slot_date: date
    start_time: time
    end_time: time
    is_active: bool = True
    is_booked: bool = False
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class FakeBooking:
    slot_id: UUID
    mentor_id: UUID
    user_id: UUID
    amount: Decimal
    currency: str
    correlation_key: str
    payment_expires_at: datetime
    starts_at: datetime
    ends_at: datetime
    status: BookingStatusEnum = BookingStatusEnum.PENDING
    payment_status: PaymentStatusEnum = PaymentStatusEnum.UNPAID
    meeting_room: str | None = None
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    mentor_completed_at: datetime | None = None
    learner_completed_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: RoleEnum | None = None
    refund_requested_at: datetime | None = None
    needs_reconciliation: bool = False
    notes: str | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class FakeLedgerRow:
    event_id: str
    correlation_key: str
    event_type: object
    amount: Decimal | None
    currency: str | None
    provider_timestamp: datetime | None
    booking_id: UUID | None
    outcome: PaymentEventOutcomeEnum
    detail: str | None
    payload: dict
    id: UUID = field(default_factory=uuid4)
    recorded_at: datetime = field(default_factory=_now)


@dataclass
class FakeOutboxEvent:
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: dict
    status: OutboxStatusEnum = OutboxStatusEnum.PENDING
    retries: int = 0
    id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    processed_at: datetime | None = None
    error_message: str | None = None


class FakeSchedulingRepository:
    def __init__(self, slots: dict[UUID, FakeSlot], bookings: dict[UUID, FakeBooking]) -> None:
        self.slots = slots
        self.bookings = bookings
        self.locked_mentors: list[UUID] = []

    async def lock_mentor_schedule(self, mentor_id: UUID) -> None:
        self.locked_mentors.append(mentor_id)

    async def create_slot(self, mentor_id: UUID, slot_date: date, start_time: time, end_time: time) -> FakeSlot:
        slot = FakeSlot(mentor_id=mentor_id, slot_date=slot_date, start_time=start_time, end_time=end_time)
        self.slots[slot.id] = slot
        return slot

    async def get_slot_by_id(self, slot_id: UUID, *, for_update: bool = False) -> FakeSlot | None:
        return self.slots.get(slot_id)

    async def has_overlap(
        self,
        mentor_id: UUID,
        slot_date: date,
        start_time: time,
        end_time: time,
        exclude_slot_id: UUID | None = None,
    ) -> bool:
        return any(
            slot.mentor_id == mentor_id
            and slot.is_active
            and slot.slot_date == slot_date
            and slot.start_time < end_time
            and slot.end_time > start_time
            and slot.id != exclude_slot_id
            for slot in self.slots.values()
        )

    @staticmethod
    def _starts_after(slot: FakeSlot, today: date, now_time: time) -> bool:
        return slot.slot_date > today or (slot.slot_date == today and slot.start_time > now_time)

    async def list_available(
        self,
        *,
        today: date,
        now_time: time,
        mentor_id: UUID | None,
        date_from: date | None,
        date_to: date | None,
        time_from: time | None,
        time_to: time | None,
        limit: int,
        offset: int,
    ) -> tuple[list[FakeSlot], int]:
        items = [
            slot
            for slot in self.slots.values()
            if slot.is_active
            and not slot.is_booked
            and self._starts_after(slot, today, now_time)
            and (mentor_id is None or slot.mentor_id == mentor_id)
            and (date_from is None or slot.slot_date >= date_from)
            and (date_to is None or slot.slot_date <= date_to)
            and (time_from is None or slot.start_time >= time_from)
            and (time_to is None or slot.end_time <= time_to)
        ]
        items.sort(key=lambda slot: (slot.slot_date, slot.start_time))
        return items[offset : offset + limit], len(items)

    async def list_mentor_slots(
        self,
        mentor_id: UUID,
        include_inactive: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[FakeSlot], int]:
        items = [
            slot
            for slot in self.slots.values()
            if slot.mentor_id == mentor_id and (include_inactive or slot.is_active)
        ]
        items.sort(key=lambda slot: (slot.slot_date, slot.start_time))
        return items[offset : offset + limit], len(items)

    async def reserve_slot(self, slot_id: UUID, today: date, now_time: time) -> FakeSlot | None:
        # Yield first so concurrent callers interleave; the check-and-set below has no await.
        await asyncio.sleep(0)
        slot = self.slots.get(slot_id)
        if slot is None or not slot.is_active or slot.is_booked or not self._starts_after(slot, today, now_time):
            return None
        slot.is_booked = True
        return slot

    async def release_slot(self, slot_id: UUID) -> None:
        slot = self.slots.get(slot_id)
        if slot is not None:
            slot.is_booked = False

    async def deactivate_slot(self, slot_id: UUID) -> FakeSlot | None:
        slot = self.slots.get(slot_id)
        if slot is None or slot.is_booked:
            return None
        slot.is_active = False
        return slot

    async def has_live_booking(self, slot_id: UUID) -> bool:
        return any(
            booking.slot_id == slot_id and booking.status in LIVE_STATUSES
            for booking in self.bookings.values()
        )

    async def save(self, slot: FakeSlot) -> FakeSlot:
        return slot


class FakeBookingRepository:
    def __init__(self, bookings: dict[UUID, FakeBooking]) -> None:
        self.bookings = bookings

    async def create_booking(self, **fields) -> FakeBooking:
        # Mirrors uq_bookings_live_slot.
        for existing in self.bookings.values():
            if existing.slot_id == fields["slot_id"] and existing.status in LIVE_STATUSES:
                raise AssertionError("live booking already references this slot")
        booking = FakeBooking(**fields)
        self.bookings[booking.id] = booking
        return booking

    async def get_booking_by_id(self, booking_id: UUID, *, for_update: bool = False) -> FakeBooking | None:
        return self.bookings.get(booking_id)

    async def get_booking_by_correlation_key(
        self,
        correlation_key: str,
        *,
        for_update: bool = False,
    ) -> FakeBooking | None:
        for booking in self.bookings.values():
            if booking.correlation_key == correlation_key:
                return booking
        return None

    async def list_bookings(
        self,
        user_id: UUID,
        role: RoleEnum,
        status: BookingStatusEnum | None,
        limit: int,
        offset: int,
        *,
        scope: BookingScopeEnum | None = None,
        now: datetime | None = None,
    ) -> tuple[list[FakeBooking], int]:
        items = [
            booking
            for booking in self.bookings.values()
            if (
                role == RoleEnum.ADMIN
                or booking.user_id == user_id
                or (role == RoleEnum.MENTOR and booking.mentor_id == user_id)
            )
            and (status is None or booking.status == status)
            and (scope != BookingScopeEnum.UPCOMING or booking.ends_at > now)
            and (scope != BookingScopeEnum.PAST or booking.ends_at <= now)
        ]
        items.sort(key=lambda booking: booking.starts_at, reverse=scope != BookingScopeEnum.UPCOMING)
        return items[offset : offset + limit], len(items)

    async def lock_stale_pending(self, now: datetime, limit: int) -> list[FakeBooking]:
        return [
            booking
            for booking in self.bookings.values()
            if booking.status == BookingStatusEnum.PENDING and booking.payment_expires_at <= now
        ][:limit]

    async def lock_finished_confirmed(self, now: datetime, limit: int) -> list[FakeBooking]:
        return [
            booking
            for booking in self.bookings.values()
            if booking.status == BookingStatusEnum.CONFIRMED and booking.ends_at <= now
        ][:limit]

    async def save(self, booking: FakeBooking) -> FakeBooking:
        self.bookings[booking.id] = booking
        return booking


class FakeAuditRepository:
    def __init__(self) -> None:
        self.logs: list[dict] = []
        self.events: list[FakeOutboxEvent] = []

    async def create_audit_log(
        self,
        actor_id: UUID | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict,
    ) -> dict:
        log = {
            "actor_id": actor_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "payload": payload,
        }
        self.logs.append(log)
        return log

    async def create_outbox_event(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
    ) -> FakeOutboxEvent:
        event = FakeOutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=payload,
        )
        self.events.append(event)
        return event

    def event_types(self) -> list[str]:
        return [event.event_type for event in self.events]


class FakePaymentEventRepository:
    def __init__(self) -> None:
        self.rows: dict[str, FakeLedgerRow] = {}

    async def get_by_event_id(self, event_id: str) -> FakeLedgerRow | None:
        return self.rows.get(event_id)

    async def record(self, **fields) -> FakeLedgerRow:
        # Mirrors uq_payment_events_event_id.
        if fields["event_id"] in self.rows:
            raise AssertionError("duplicate event_id")
        row = FakeLedgerRow(**fields)
        self.rows[row.event_id] = row
        return row

    async def list_events(self, outcome, booking_id, limit: int, offset: int) -> tuple[list[FakeLedgerRow], int]:
        items = [
            row
            for row in self.rows.values()
            if (outcome is None or row.outcome == outcome) and (booking_id is None or row.booking_id == booking_id)
        ]
        return items[offset : offset + limit], len(items)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class World:
    """In-memory wiring of slot store, state machine, reconciler and facade."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.slots: dict[UUID, FakeSlot] = {}
        self.bookings: dict[UUID, FakeBooking] = {}
        self.scheduling_repo = FakeSchedulingRepository(self.slots, self.bookings)
        self.booking_repo = FakeBookingRepository(self.bookings)
        self.audit_repo = FakeAuditRepository()
        self.ledger = FakePaymentEventRepository()
        self.slot_store = SlotStore(self.scheduling_repo)
        self.state_machine = BookingStateMachine(
            booking_repository=self.booking_repo,
            slot_store=self.slot_store,
            audit_repository=self.audit_repo,
        )
        self.reconciler = PaymentReconciler(
            ledger=self.ledger,
            booking_repository=self.booking_repo,
            state_machine=self.state_machine,
            audit_repository=self.audit_repo,
        )
        self.facade = SchedulingFacade(
            state_machine=self.state_machine,
            payment_provider=HostedCheckoutProvider("https://pay.example.test/checkout"),
            room_binder=MeetingRoomBinder(domain="meet.example.test", early_minutes=10, grace_minutes=15),
        )

    def add_slot(
        self,
        mentor_id: UUID | None = None,
        *,
        slot_date: date | None = None,
        start: time = time(9, 0),
        end: time = time(10, 0),
        is_active: bool = True,
    ) -> FakeSlot:
        slot = FakeSlot(
            mentor_id=mentor_id or uuid4(),
            slot_date=slot_date or self.clock.now.date(),
            start_time=start,
            end_time=end,
            is_active=is_active,
        )
        self.slots[slot.id] = slot
        return slot


def make_principal(role: RoleEnum = RoleEnum.LEARNER, user_id: UUID | None = None, name: str | None = None) -> Principal:
    return Principal(user_id=user_id or uuid4(), role=role, display_name=name)


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    fake = FakeClock(FIXED_NOW)
    for module in (scheduling_service_module, booking_service_module, facade_service_module):
        monkeypatch.setattr(module, "utc_now", fake)
    return fake


@pytest.fixture
def world(clock: FakeClock) -> World:
    return World(clock)


@pytest.fixture
def learner() -> Principal:
    return make_principal(RoleEnum.LEARNER, name="Asha Learner")


@pytest.fixture
def principal_factory():
    return make_principal
