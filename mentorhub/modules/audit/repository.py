"""Audit log and transactional outbox persistence."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mentorhub.core.enums import OutboxStatusEnum
from mentorhub.modules.audit.models import AuditLog, OutboxEvent

ERROR_MESSAGE_LIMIT = 2000


async def _paginate(session: AsyncSession, stmt: Select, order_by, limit: int, offset: int) -> tuple[list, int]:
    total = int((await session.scalar(select(func.count()).select_from(stmt.subquery()))) or 0)
    items = (await session.scalars(stmt.order_by(order_by).limit(limit).offset(offset))).all()
    return list(items), total


class AuditRepository:
    """Writes share the caller's transaction; the booking change and its event commit together."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_audit_log(
        self,
        actor_id: UUID | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict,
    ) -> AuditLog:
        entry = AuditLog(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_audit_logs(
        self,
        *,
        action: str | None,
        entity_type: str | None,
        entity_id: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[AuditLog], int]:
        stmt: Select[tuple[AuditLog]] = select(AuditLog)
        if action is not None:
            stmt = stmt.where(AuditLog.action == action)
        if entity_type is not None:
            stmt = stmt.where(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditLog.entity_id == entity_id)
        return await _paginate(self.session, stmt, AuditLog.created_at.desc(), limit, offset)

    async def create_outbox_event(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
    ) -> OutboxEvent:
        event = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=payload,
            status=OutboxStatusEnum.PENDING,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def get_outbox_event(self, event_id: UUID, *, for_update: bool = False) -> OutboxEvent | None:
        stmt = select(OutboxEvent).where(OutboxEvent.id == event_id)
        if for_update:
            stmt = stmt.with_for_update()
        return await self.session.scalar(stmt)

    async def list_outbox(
        self,
        *,
        status: OutboxStatusEnum | None,
        aggregate_id: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[OutboxEvent], int]:
        stmt: Select[tuple[OutboxEvent]] = select(OutboxEvent)
        if status is not None:
            stmt = stmt.where(OutboxEvent.status == status)
        if aggregate_id is not None:
            stmt = stmt.where(OutboxEvent.aggregate_id == aggregate_id)
        return await _paginate(self.session, stmt, OutboxEvent.occurred_at.asc(), limit, offset)

    async def list_pending_outbox(self, limit: int, *, for_update: bool = False) -> list[OutboxEvent]:
        """Oldest first; publishers running side by side skip each other's rows."""
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatusEnum.PENDING)
            .order_by(OutboxEvent.occurred_at.asc())
            .limit(limit)
        )
        if for_update:
            stmt = stmt.with_for_update(skip_locked=True)
        return list((await self.session.scalars(stmt)).all())

    async def list_failed_outbox(self, limit: int, max_retries: int) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.status == OutboxStatusEnum.FAILED,
                OutboxEvent.retries < max_retries,
            )
            .order_by(OutboxEvent.updated_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list((await self.session.scalars(stmt)).all())

    async def mark_outbox_pending(self, event: OutboxEvent) -> OutboxEvent:
        event.status = OutboxStatusEnum.PENDING
        event.error_message = None
        event.processed_at = None
        await self.session.flush()
        return event

    async def mark_outbox_processed(self, event: OutboxEvent, processed_at: datetime) -> OutboxEvent:
        event.status = OutboxStatusEnum.PROCESSED
        event.processed_at = processed_at
        event.error_message = None
        await self.session.flush()
        return event

    async def mark_outbox_failed(self, event: OutboxEvent, error_message: str) -> OutboxEvent:
        event.status = OutboxStatusEnum.FAILED
        event.retries += 1
        event.error_message = error_message[:ERROR_MESSAGE_LIMIT]
        event.processed_at = None
        await self.session.flush()
        return event

    async def reset_outbox_retries(self, event: OutboxEvent) -> OutboxEvent:
        """Give an exhausted event a fresh retry budget and queue it again."""
        event.retries = 0
        return await self.mark_outbox_pending(event)
