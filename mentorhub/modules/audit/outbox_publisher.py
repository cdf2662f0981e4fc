"""Outbox publisher that delivers domain events to HTTP subscribers."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Protocol

import httpx

from mentorhub.modules.audit.models import OutboxEvent
from mentorhub.modules.audit.repository import AuditRepository
from mentorhub.shared.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class EventSubscriber(Protocol):
    async def deliver(self, envelope: dict) -> None: ...


def build_envelope(event: OutboxEvent) -> dict:
    return {
        "id": str(event.id),
        "event_type": event.event_type,
        "aggregate_type": event.aggregate_type,
        "aggregate_id": event.aggregate_id,
        "occurred_at": ensure_utc(event.occurred_at).isoformat(),
        "payload": event.payload or {},
    }


class HttpEventSubscriber:
    """POST each envelope as JSON to every configured URL; any non-2xx fails the delivery."""

    def __init__(self, urls: tuple[str, ...], http: httpx.AsyncClient) -> None:
        self.urls = urls
        self.http = http

    async def deliver(self, envelope: dict) -> None:
        for url in self.urls:
            response = await self.http.post(
                url,
                json=envelope,
                headers={"X-Event-Type": envelope["event_type"]},
            )
            response.raise_for_status()


class OutboxPublisher:
    """Publish pending outbox events; failures back off exponentially up to max_retries."""

    def __init__(
        self,
        audit_repository: AuditRepository,
        subscriber: EventSubscriber,
        *,
        batch_size: int = 100,
        max_retries: int = 5,
        base_backoff_seconds: int = 30,
        max_backoff_seconds: int = 300,
        now_provider=utc_now,
    ) -> None:
        self.audit_repository = audit_repository
        self.subscriber = subscriber
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.now_provider = now_provider

    async def run_once(self) -> dict[str, int]:
        """Run one publishing cycle."""
        stats = {"requeued": 0, "processed": 0, "failed": 0}
        stats["requeued"] = await self._requeue_retryable_failed_events()

        events = await self.audit_repository.list_pending_outbox(limit=self.batch_size, for_update=True)
        for event in events:
            try:
                await self.subscriber.deliver(build_envelope(event))
            except httpx.HTTPError as exc:
                logger.warning("Outbox delivery failed: event_id=%s type=%s error=%s", event.id, event.event_type, exc)
                await self.audit_repository.mark_outbox_failed(event, str(exc) or exc.__class__.__name__)
                stats["failed"] += 1
                continue
            await self.audit_repository.mark_outbox_processed(event, self.now_provider())
            stats["processed"] += 1
        return stats

    async def _requeue_retryable_failed_events(self) -> int:
        now = self.now_provider()
        failed_events = await self.audit_repository.list_failed_outbox(
            limit=self.batch_size,
            max_retries=self.max_retries,
        )
        requeued = 0
        for event in failed_events:
            if self._is_backoff_elapsed(event, now):
                await self.audit_repository.mark_outbox_pending(event)
                requeued += 1
        return requeued

    def _is_backoff_elapsed(self, event: OutboxEvent, now: datetime) -> bool:
        retries = max(event.retries, 1)
        backoff_seconds = min(
            self.max_backoff_seconds,
            self.base_backoff_seconds * (2 ** (retries - 1)),
        )
        last_attempt_at = event.updated_at or event.occurred_at
        return now >= ensure_utc(last_attempt_at) + timedelta(seconds=backoff_seconds)
