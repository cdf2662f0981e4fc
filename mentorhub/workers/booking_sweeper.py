"""Executable worker that enforces the payment window and completes finished sessions."""

from __future__ import annotations

import asyncio
import logging
import os

from mentorhub.core.config import get_settings
from mentorhub.core.database import close_engine, session_scope
from mentorhub.modules.booking.service import build_state_machine
from mentorhub.shared.utils import utc_now

logger = logging.getLogger(__name__)


async def run_cycle(batch_size: int) -> dict[str, int]:
    """Expire and complete in separate transactions so one failure does not undo the other."""
    now = utc_now()
    async with session_scope() as session:
        expired = await build_state_machine(session).expire_stale(now, batch_size)
    async with session_scope() as session:
        completed = await build_state_machine(session).complete_finished(now, batch_size)
    return {"expired": expired, "completed": completed}


async def main() -> None:
    """Run once or keep polling according to worker mode."""
    logging.basicConfig(level=get_settings().log_level)
    mode = os.getenv("BOOKING_SWEEPER_MODE", "once").strip().lower()
    poll_seconds = int(os.getenv("BOOKING_SWEEPER_POLL_SECONDS", "30"))
    batch_size = int(os.getenv("BOOKING_SWEEPER_BATCH_SIZE", "200"))

    try:
        if mode == "once":
            stats = await run_cycle(batch_size)
            logger.info("Booking sweeper stats: %s", stats)
            return

        while True:
            try:
                stats = await run_cycle(batch_size)
                logger.info("Booking sweeper stats: %s", stats)
            except Exception:
                logger.exception("Booking sweeper cycle failed")
            await asyncio.sleep(poll_seconds)
    finally:
        await close_engine()


if __name__ == "__main__":
    asyncio.run(main())
