"""Audit API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from mentorhub.core.enums import OutboxStatusEnum
from mentorhub.modules.audit.schemas import AuditLogRead, OutboxEventRead
from mentorhub.modules.audit.service import AuditService, get_audit_service
from mentorhub.modules.identity.schemas import Principal
from mentorhub.modules.identity.service import get_current_principal
from mentorhub.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/logs", response_model=Page[AuditLogRead])
async def list_logs(
    action: str | None = Query(default=None),
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    pagination=Depends(get_pagination_params),
    service: AuditService = Depends(get_audit_service),
    principal: Principal = Depends(get_current_principal),
) -> Page[AuditLogRead]:
    """Reconciliation flags and unmatched payment events, newest first."""
    items, total = await service.list_logs(
        principal,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return build_page([AuditLogRead.model_validate(item) for item in items], total, pagination)


@router.get("/outbox", response_model=Page[OutboxEventRead])
async def list_outbox(
    outbox_status: OutboxStatusEnum | None = Query(default=None, alias="status"),
    aggregate_id: str | None = Query(default=None),
    pagination=Depends(get_pagination_params),
    service: AuditService = Depends(get_audit_service),
    principal: Principal = Depends(get_current_principal),
) -> Page[OutboxEventRead]:
    items, total = await service.list_outbox(
        principal,
        status=outbox_status,
        aggregate_id=aggregate_id,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return build_page([OutboxEventRead.model_validate(item) for item in items], total, pagination)


@router.post("/outbox/{event_id}/retry", response_model=OutboxEventRead)
async def retry_outbox_event(
    event_id: UUID,
    service: AuditService = Depends(get_audit_service),
    principal: Principal = Depends(get_current_principal),
) -> OutboxEventRead:
    """Requeue a failed outbox event for the publisher."""
    return OutboxEventRead.model_validate(await service.retry_outbox_event(principal, event_id))
