"""Shared utility functions."""

from __future__ import annotations

import time
from datetime import date, datetime, time as dt_time, timezone
from uuid import uuid4
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalize datetime to UTC timezone."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def combine_local(day: date, at: dt_time, zone: ZoneInfo) -> datetime:
    """Wall-clock date + time in the schedule zone, as aware UTC."""
    return datetime.combine(day, at, tzinfo=zone).astimezone(timezone.utc)


def generate_order_id(prefix: str) -> str:
    """Provider order id: PREFIX_<epoch ms>_<8 upper hex>."""
    stamp = int(time.time() * 1000)
    return f"{prefix}_{stamp}_{uuid4().hex[:8].upper()}"
