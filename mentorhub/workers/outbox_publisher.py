"""Executable worker for outbox event publishing."""

from __future__ import annotations

import asyncio
import logging
import os

import httpx

from mentorhub.core.config import get_settings
from mentorhub.core.database import close_engine, session_scope
from mentorhub.modules.audit.outbox_publisher import HttpEventSubscriber, OutboxPublisher
from mentorhub.modules.audit.repository import AuditRepository

logger = logging.getLogger(__name__)


async def run_cycle(http: httpx.AsyncClient) -> dict[str, int]:
    """Run a single publishing cycle in one DB transaction."""
    settings = get_settings()
    async with session_scope() as session:
        publisher = OutboxPublisher(
            audit_repository=AuditRepository(session),
            subscriber=HttpEventSubscriber(settings.event_subscriber_urls, http),
            batch_size=int(os.getenv("OUTBOX_PUBLISHER_BATCH_SIZE", "100")),
            max_retries=int(os.getenv("OUTBOX_PUBLISHER_MAX_RETRIES", "5")),
            base_backoff_seconds=int(os.getenv("OUTBOX_PUBLISHER_BASE_BACKOFF_SECONDS", "30")),
            max_backoff_seconds=int(os.getenv("OUTBOX_PUBLISHER_MAX_BACKOFF_SECONDS", "300")),
        )
        return await publisher.run_once()


async def main() -> None:
    """Run once or keep polling according to worker mode."""
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    mode = os.getenv("OUTBOX_PUBLISHER_MODE", "once").strip().lower()
    poll_seconds = int(os.getenv("OUTBOX_PUBLISHER_POLL_SECONDS", "10"))

    if not settings.event_subscriber_urls:
        logger.warning("EVENT_SUBSCRIBER_URLS is empty; events will be marked processed without delivery")

    async with httpx.AsyncClient(timeout=settings.event_publish_timeout_seconds) as http:
        try:
            if mode == "once":
                stats = await run_cycle(http)
                logger.info("Outbox publisher stats: %s", stats)
                return

            while True:
                try:
                    stats = await run_cycle(http)
                    logger.info("Outbox publisher stats: %s", stats)
                except Exception:
                    logger.exception("Outbox publisher cycle failed")
                await asyncio.sleep(poll_seconds)
        finally:
            await close_engine()


if __name__ == "__main__":
    asyncio.run(main())
