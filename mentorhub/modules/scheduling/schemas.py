"""Scheduling schemas."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator


def _wall_clock(value: time | None) -> time | None:
    # Slot times are wall-clock values in the schedule zone.
    if value is not None and value.tzinfo is not None:
        raise ValueError("Slot times must not carry a UTC offset")
    return value


class SlotCreate(BaseModel):
    """Create availability slot request."""

    slot_date: date
    start_time: time
    end_time: time

    @field_validator("start_time", "end_time")
    @classmethod
    def reject_utc_offset(cls, value: time | None) -> time | None:
        return _wall_clock(value)


class SlotUpdate(BaseModel):
    """Re-time an unbooked slot; omitted fields keep their value."""

    slot_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def reject_utc_offset(cls, value: time | None) -> time | None:
        return _wall_clock(value)


class SlotSearchFilters(BaseModel):
    """Availability search filters."""

    mentor_id: UUID | None = None
    date_from: date | None = None
    date_to: date | None = None
    time_from: time | None = None
    time_to: time | None = None

    @field_validator("time_from", "time_to")
    @classmethod
    def reject_utc_offset(cls, value: time | None) -> time | None:
        return _wall_clock(value)


class SlotRead(BaseModel):
    """Slot response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    mentor_id: UUID
    slot_date: date
    start_time: time
    end_time: time
    is_active: bool
    is_booked: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class ReservationToken:
    """Proof that a slot was reserved for a new or revived booking."""

    slot_id: UUID
    mentor_id: UUID
    starts_at: datetime
    ends_at: datetime
    reserved_at: datetime
