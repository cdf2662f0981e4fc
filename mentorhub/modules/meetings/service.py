"""Meeting room binding for confirmed bookings."""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import lru_cache
from urllib.parse import quote, urlencode
from uuid import UUID

from mentorhub.core.config import get_settings
from mentorhub.core.enums import BookingStatusEnum
from mentorhub.modules.booking.models import Booking
from mentorhub.modules.identity.schemas import Principal
from mentorhub.modules.meetings.schemas import JoinInfo
from mentorhub.shared.exceptions import ExpiredException, NotAuthorizedException, NotYetOpenException
from mentorhub.shared.utils import ensure_utc

settings = get_settings()

ROOM_CONFIG = {
    "startWithAudioMuted": True,
    "startWithVideoMuted": True,
    "requireDisplayName": True,
    "disableInviteFunctions": True,
    "enableWelcomePage": False,
}


@lru_cache(maxsize=4096)
def room_for(booking_id: UUID) -> str:
    """Deterministic room name; equal booking ids give equal rooms, distinct ids never collide."""
    return f"{settings.meeting_app_id}-booking-{booking_id.hex}"


class MeetingRoomBinder:
    """Compute room names and participant join info."""

    def __init__(
        self,
        *,
        domain: str | None = None,
        early_minutes: int | None = None,
        grace_minutes: int | None = None,
    ) -> None:
        self.domain = domain or settings.meeting_domain
        self.early = timedelta(
            minutes=settings.meeting_join_early_minutes if early_minutes is None else early_minutes,
        )
        self.grace = timedelta(
            minutes=settings.meeting_join_grace_minutes if grace_minutes is None else grace_minutes,
        )

    def room_for(self, booking_id: UUID) -> str:
        return room_for(booking_id)

    def join_info(self, booking: Booking, principal: Principal, now: datetime) -> JoinInfo:
        """Return join info for a booking participant inside the join window."""
        if principal.user_id == booking.mentor_id:
            role = "mentor"
        elif principal.user_id == booking.user_id:
            role = "learner"
        else:
            raise NotAuthorizedException("Only the booking's mentor and learner can join")

        if booking.status == BookingStatusEnum.PENDING:
            raise NotYetOpenException("Booking is awaiting payment")
        if booking.status in (BookingStatusEnum.CANCELLED, BookingStatusEnum.EXPIRED):
            raise ExpiredException(f"Booking is {booking.status}")

        now = ensure_utc(now)
        opens_at = ensure_utc(booking.starts_at) - self.early
        closes_at = ensure_utc(booking.ends_at) + self.grace
        if now < opens_at:
            raise NotYetOpenException(f"Meeting opens at {opens_at.isoformat()}")
        if now > closes_at:
            raise ExpiredException("Meeting window has closed")

        room_name = booking.meeting_room or room_for(booking.id)
        display_name = principal.display_name or role.capitalize()
        query = urlencode({"userInfo": display_name}, quote_via=quote)
        return JoinInfo(
            room_name=room_name,
            room_url=f"https://{self.domain}/{room_name}?{query}",
            role=role,
            display_name=display_name,
            opens_at=opens_at,
            closes_at=closes_at,
            config=dict(ROOM_CONFIG),
        )
