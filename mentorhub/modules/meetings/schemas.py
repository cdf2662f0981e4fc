"""Meeting schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class JoinInfo(BaseModel):
    """Role-scoped join metadata for one participant."""

    room_name: str
    room_url: str
    role: str
    display_name: str
    opens_at: datetime
    closes_at: datetime
    config: dict = Field(default_factory=dict)
