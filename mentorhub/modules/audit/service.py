"""Operator views over the audit trail and the event outbox."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mentorhub.core.database import get_db_session
from mentorhub.core.enums import OutboxStatusEnum
from mentorhub.modules.audit.models import AuditLog, OutboxEvent
from mentorhub.modules.audit.repository import AuditRepository
from mentorhub.modules.identity.schemas import Principal
from mentorhub.shared.exceptions import BusinessRuleException, NotFoundException, UnauthorizedException

logger = logging.getLogger(__name__)


class AuditService:
    """Admin-only access to reconciliation flags and undelivered events."""

    def __init__(self, repository: AuditRepository) -> None:
        self.repository = repository

    @staticmethod
    def _require_admin(actor: Principal) -> None:
        if not actor.is_admin:
            raise UnauthorizedException("Only admin can inspect the audit trail")

    async def list_logs(
        self,
        actor: Principal,
        *,
        action: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[AuditLog], int]:
        self._require_admin(actor)
        return await self.repository.list_audit_logs(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            limit=limit,
            offset=offset,
        )

    async def list_outbox(
        self,
        actor: Principal,
        *,
        status: OutboxStatusEnum | None = None,
        aggregate_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[OutboxEvent], int]:
        self._require_admin(actor)
        return await self.repository.list_outbox(
            status=status,
            aggregate_id=aggregate_id,
            limit=limit,
            offset=offset,
        )

    async def retry_outbox_event(self, actor: Principal, event_id: UUID) -> OutboxEvent:
        """Requeue a failed event, including one that used up its automatic retries."""
        self._require_admin(actor)
        event = await self.repository.get_outbox_event(event_id, for_update=True)
        if event is None:
            raise NotFoundException("Outbox event not found")
        if event.status != OutboxStatusEnum.FAILED:
            raise BusinessRuleException(f"Only failed events can be retried, this one is {event.status}")

        await self.repository.create_audit_log(
            actor_id=actor.user_id,
            action="outbox.event.retried",
            entity_type="outbox_event",
            entity_id=str(event.id),
            payload={"event_type": event.event_type, "retries": event.retries, "error": event.error_message},
        )
        logger.info("Outbox event requeued by operator: event_id=%s retries=%s", event.id, event.retries)
        return await self.repository.reset_outbox_retries(event)


async def get_audit_service(session: AsyncSession = Depends(get_db_session)) -> AuditService:
    """Dependency provider for audit service."""
    return AuditService(AuditRepository(session))
