"""Scheduling repository layer."""

from __future__ import annotations

from datetime import date, time
from uuid import UUID

from sqlalchemy import Select, and_, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mentorhub.modules.booking.models import LIVE_STATUSES, Booking
from mentorhub.modules.scheduling.models import Slot


def _starts_after(today: date, now_time: time):
    return or_(
        Slot.slot_date > today,
        and_(Slot.slot_date == today, Slot.start_time > now_time),
    )


class SchedulingRepository:
    """DB access for mentor slots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def lock_mentor_schedule(self, mentor_id: UUID) -> None:
        """Serialise slot writes of one mentor until the transaction ends."""
        await self.session.execute(
            select(func.pg_advisory_xact_lock(func.hashtext(str(mentor_id)))),
        )

    async def create_slot(self, mentor_id: UUID, slot_date: date, start_time: time, end_time: time) -> Slot:
        slot = Slot(
            mentor_id=mentor_id,
            slot_date=slot_date,
            start_time=start_time,
            end_time=end_time,
            is_active=True,
            is_booked=False,
        )
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def get_slot_by_id(self, slot_id: UUID, *, for_update: bool = False) -> Slot | None:
        stmt = select(Slot).where(Slot.id == slot_id)
        if for_update:
            stmt = stmt.with_for_update()
        return await self.session.scalar(stmt)

    async def has_overlap(
        self,
        mentor_id: UUID,
        slot_date: date,
        start_time: time,
        end_time: time,
        exclude_slot_id: UUID | None = None,
    ) -> bool:
        # Half-open ranges: touching slots do not overlap.
        conditions = [
            Slot.mentor_id == mentor_id,
            Slot.is_active.is_(True),
            Slot.slot_date == slot_date,
            Slot.start_time < end_time,
            Slot.end_time > start_time,
        ]
        if exclude_slot_id is not None:
            conditions.append(Slot.id != exclude_slot_id)
        return bool(await self.session.scalar(select(exists().where(*conditions))))

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
    ) -> tuple[list[Slot], int]:
        base_stmt: Select[tuple[Slot]] = select(Slot).where(
            Slot.is_active.is_(True),
            Slot.is_booked.is_(False),
            _starts_after(today, now_time),
        )
        if mentor_id is not None:
            base_stmt = base_stmt.where(Slot.mentor_id == mentor_id)
        if date_from is not None:
            base_stmt = base_stmt.where(Slot.slot_date >= date_from)
        if date_to is not None:
            base_stmt = base_stmt.where(Slot.slot_date <= date_to)
        if time_from is not None:
            base_stmt = base_stmt.where(Slot.start_time >= time_from)
        if time_to is not None:
            base_stmt = base_stmt.where(Slot.end_time <= time_to)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = (
            base_stmt.order_by(Slot.slot_date.asc(), Slot.start_time.asc())
            .limit(limit)
            .offset(offset)
        )
        items = (await self.session.scalars(stmt)).all()
        return items, total

    async def list_mentor_slots(
        self,
        mentor_id: UUID,
        include_inactive: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[Slot], int]:
        base_stmt: Select[tuple[Slot]] = select(Slot).where(Slot.mentor_id == mentor_id)
        if not include_inactive:
            base_stmt = base_stmt.where(Slot.is_active.is_(True))

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = (
            base_stmt.order_by(Slot.slot_date.asc(), Slot.start_time.asc())
            .limit(limit)
            .offset(offset)
        )
        items = (await self.session.scalars(stmt)).all()
        return items, total

    async def reserve_slot(self, slot_id: UUID, today: date, now_time: time) -> Slot | None:
        """Flip is_booked in one conditional UPDATE; None when the slot is not reservable."""
        stmt = (
            update(Slot)
            .where(
                Slot.id == slot_id,
                Slot.is_active.is_(True),
                Slot.is_booked.is_(False),
                _starts_after(today, now_time),
            )
            .values(is_booked=True, updated_at=func.now())
            .returning(Slot)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        return (await self.session.scalars(stmt)).one_or_none()

    async def release_slot(self, slot_id: UUID) -> None:
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.is_booked.is_(True))
            .values(is_booked=False, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def deactivate_slot(self, slot_id: UUID) -> Slot | None:
        """Soft-delete an unbooked slot; None when it is currently booked."""
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.is_booked.is_(False))
            .values(is_active=False, updated_at=func.now())
            .returning(Slot)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        return (await self.session.scalars(stmt)).one_or_none()

    async def has_live_booking(self, slot_id: UUID) -> bool:
        stmt = select(
            exists().where(Booking.slot_id == slot_id, Booking.status.in_(LIVE_STATUSES)),
        )
        return bool(await self.session.scalar(stmt))

    async def save(self, slot: Slot) -> Slot:
        await self.session.flush()
        return slot
