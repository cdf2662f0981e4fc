"""Slot store: mentor availability and the reservation primitive."""

from __future__ import annotations

import logging
from datetime import date, time
from uuid import UUID

from mentorhub.core.config import get_settings
from mentorhub.core.metrics import record_reservation_conflict
from mentorhub.modules.scheduling.models import Slot
from mentorhub.modules.scheduling.repository import SchedulingRepository
from mentorhub.modules.scheduling.schemas import ReservationToken, SlotCreate, SlotSearchFilters, SlotUpdate
from mentorhub.shared.exceptions import (
    BusinessRuleException,
    NotFoundException,
    SlotInUseException,
    SlotUnavailableException,
)
from mentorhub.shared.utils import combine_local, utc_now

settings = get_settings()
logger = logging.getLogger(__name__)


class SlotStore:
    """Owns slot rows; is_booked is only flipped through reserve/release."""

    def __init__(self, repository: SchedulingRepository) -> None:
        self.repository = repository

    def _local_now(self) -> tuple[date, time]:
        local = utc_now().astimezone(settings.schedule_zone)
        return local.date(), local.time().replace(tzinfo=None)

    def _validate_window(self, slot_date: date, start_time: time, end_time: time) -> None:
        for value in (start_time, end_time):
            if value.second or value.microsecond:
                raise BusinessRuleException("Slot times must be whole minutes")
        if end_time <= start_time:
            raise BusinessRuleException("Slot end_time must be after start_time")
        if combine_local(slot_date, start_time, settings.schedule_zone) <= utc_now():
            raise BusinessRuleException("Slot must start in the future")

    async def find_slot(self, slot_id: UUID) -> Slot | None:
        return await self.repository.get_slot_by_id(slot_id)

    async def get_slot(self, slot_id: UUID) -> Slot:
        slot = await self.repository.get_slot_by_id(slot_id)
        if slot is None:
            raise NotFoundException("Slot not found")
        return slot

    async def list_available(
        self,
        filters: SlotSearchFilters,
        limit: int,
        offset: int,
    ) -> tuple[list[Slot], int]:
        """Active, unbooked, future slots ordered by date then start time."""
        today, now_time = self._local_now()
        return await self.repository.list_available(
            today=today,
            now_time=now_time,
            mentor_id=filters.mentor_id,
            date_from=filters.date_from,
            date_to=filters.date_to,
            time_from=filters.time_from,
            time_to=filters.time_to,
            limit=limit,
            offset=offset,
        )

    async def list_mentor_slots(
        self,
        mentor_id: UUID,
        include_inactive: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[Slot], int]:
        return await self.repository.list_mentor_slots(mentor_id, include_inactive, limit, offset)

    async def create_slot(self, mentor_id: UUID, payload: SlotCreate) -> Slot:
        """Create a slot after checking the window and overlap with the mentor's schedule."""
        self._validate_window(payload.slot_date, payload.start_time, payload.end_time)

        await self.repository.lock_mentor_schedule(mentor_id)
        if await self.repository.has_overlap(
            mentor_id,
            payload.slot_date,
            payload.start_time,
            payload.end_time,
        ):
            raise BusinessRuleException("Slot overlaps an existing slot")

        slot = await self.repository.create_slot(
            mentor_id,
            payload.slot_date,
            payload.start_time,
            payload.end_time,
        )
        logger.info("Slot created: slot_id=%s mentor_id=%s", slot.id, mentor_id)
        return slot

    async def update_slot(self, slot_id: UUID, payload: SlotUpdate) -> Slot:
        """Re-time an unbooked active slot."""
        slot = await self.repository.get_slot_by_id(slot_id, for_update=True)
        if slot is None:
            raise NotFoundException("Slot not found")
        if not slot.is_active:
            raise BusinessRuleException("Inactive slots cannot be edited")
        if slot.is_booked or await self.repository.has_live_booking(slot.id):
            raise SlotInUseException("Slot is reserved by a live booking")

        slot_date = payload.slot_date or slot.slot_date
        start_time = payload.start_time or slot.start_time
        end_time = payload.end_time or slot.end_time
        self._validate_window(slot_date, start_time, end_time)

        await self.repository.lock_mentor_schedule(slot.mentor_id)
        if await self.repository.has_overlap(
            slot.mentor_id,
            slot_date,
            start_time,
            end_time,
            exclude_slot_id=slot.id,
        ):
            raise BusinessRuleException("Slot overlaps an existing slot")

        slot.slot_date = slot_date
        slot.start_time = start_time
        slot.end_time = end_time
        return await self.repository.save(slot)

    async def deactivate(self, slot_id: UUID) -> Slot:
        """Soft-delete; idempotent for already inactive slots."""
        slot = await self.get_slot(slot_id)
        if not slot.is_active:
            return slot
        if await self.repository.has_live_booking(slot.id):
            raise SlotInUseException("Slot is reserved by a live booking")

        deactivated = await self.repository.deactivate_slot(slot.id)
        if deactivated is None:
            raise SlotInUseException("Slot is reserved by a live booking")
        logger.info("Slot deactivated: slot_id=%s", slot.id)
        return deactivated

    async def reserve(self, slot_id: UUID) -> ReservationToken:
        """Atomically claim a slot; of concurrent callers exactly one wins."""
        today, now_time = self._local_now()
        slot = await self.repository.reserve_slot(slot_id, today, now_time)
        if slot is None:
            record_reservation_conflict()
            raise SlotUnavailableException("Slot is no longer available")

        zone = settings.schedule_zone
        return ReservationToken(
            slot_id=slot.id,
            mentor_id=slot.mentor_id,
            starts_at=combine_local(slot.slot_date, slot.start_time, zone),
            ends_at=combine_local(slot.slot_date, slot.end_time, zone),
            reserved_at=utc_now(),
        )

    async def release(self, slot_id: UUID) -> None:
        """Return a reserved slot to the pool; used by the booking state machine only."""
        await self.repository.release_slot(slot_id)

