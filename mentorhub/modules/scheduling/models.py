"""Scheduling ORM models."""

from __future__ import annotations

from datetime import date, time
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, Index, Time
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from mentorhub.core.database import Base, BaseModelMixin


class Slot(BaseModelMixin, Base):
    """Mentor availability window, the unit of reservation."""

    __tablename__ = "mentor_slots"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="end_after_start"),
        Index("ix_mentor_slots_mentor_date", "mentor_id", "slot_date"),
    )

    mentor_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    slot_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_booked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
