"""Booking repository layer."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mentorhub.core.enums import BookingScopeEnum, BookingStatusEnum, PaymentStatusEnum, RoleEnum
from mentorhub.modules.booking.models import Booking


class BookingRepository:
    """DB operations for booking domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_booking(
        self,
        *,
        slot_id: UUID,
        mentor_id: UUID,
        user_id: UUID,
        amount: Decimal,
        currency: str,
        correlation_key: str,
        payment_expires_at: datetime,
        starts_at: datetime,
        ends_at: datetime,
        notes: str | None,
    ) -> Booking:
        booking = Booking(
            slot_id=slot_id,
            mentor_id=mentor_id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            status=BookingStatusEnum.PENDING,
            payment_status=PaymentStatusEnum.UNPAID,
            correlation_key=correlation_key,
            payment_expires_at=payment_expires_at,
            starts_at=starts_at,
            ends_at=ends_at,
            needs_reconciliation=False,
            notes=notes,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_booking_by_id(self, booking_id: UUID, *, for_update: bool = False) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return await self.session.scalar(stmt)

    async def get_booking_by_correlation_key(
        self,
        correlation_key: str,
        *,
        for_update: bool = False,
    ) -> Booking | None:
        stmt = select(Booking).where(Booking.correlation_key == correlation_key)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return await self.session.scalar(stmt)

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
    ) -> tuple[list[Booking], int]:
        """Upcoming is soonest first and includes sessions in progress; otherwise newest first."""
        base_stmt: Select[tuple[Booking]] = select(Booking)

        if role == RoleEnum.LEARNER:
            base_stmt = base_stmt.where(Booking.user_id == user_id)
        elif role == RoleEnum.MENTOR:
            base_stmt = base_stmt.where(or_(Booking.mentor_id == user_id, Booking.user_id == user_id))
        if status is not None:
            base_stmt = base_stmt.where(Booking.status == status)
        order_by = Booking.starts_at.desc()
        if scope == BookingScopeEnum.UPCOMING:
            base_stmt = base_stmt.where(Booking.ends_at > now)
            order_by = Booking.starts_at.asc()
        elif scope == BookingScopeEnum.PAST:
            base_stmt = base_stmt.where(Booking.ends_at <= now)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(order_by).limit(limit).offset(offset)
        items = (await self.session.scalars(stmt)).all()
        return items, total

    async def lock_stale_pending(self, now: datetime, limit: int) -> list[Booking]:
        """Pending bookings past their payment deadline; rows held by others are skipped."""
        stmt = (
            select(Booking)
            .where(
                Booking.status == BookingStatusEnum.PENDING,
                Booking.payment_expires_at <= now,
            )
            .order_by(Booking.payment_expires_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        return (await self.session.scalars(stmt)).all()

    async def lock_finished_confirmed(self, now: datetime, limit: int) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(
                Booking.status == BookingStatusEnum.CONFIRMED,
                Booking.ends_at <= now,
            )
            .order_by(Booking.ends_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        return (await self.session.scalars(stmt)).all()

    async def save(self, booking: Booking) -> Booking:
        await self.session.flush()
        return booking
