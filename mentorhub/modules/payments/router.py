"""Payments API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request

from mentorhub.core.enums import PaymentEventOutcomeEnum, RoleEnum
from mentorhub.modules.identity.service import require_roles
from mentorhub.modules.payments.schemas import PaymentEventRead, ReconcileResult
from mentorhub.modules.payments.service import PaymentReconciler, get_payment_reconciler
from mentorhub.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook", response_model=ReconcileResult)
async def payment_webhook(
    request: Request,
    x_payment_signature: str | None = Header(default=None),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> ReconcileResult:
    """Provider callback; unmatched and replayed events are acknowledged with 200."""
    body = await request.body()
    return await reconciler.handle_webhook(body, x_payment_signature)


@router.get("/events", response_model=Page[PaymentEventRead])
async def list_payment_events(
    outcome: PaymentEventOutcomeEnum | None = Query(default=None),
    booking_id: UUID | None = Query(default=None),
    pagination=Depends(get_pagination_params),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
    _=Depends(require_roles(RoleEnum.ADMIN)),
) -> Page[PaymentEventRead]:
    """List ledger rows for manual reconciliation."""
    items, total = await reconciler.list_events(outcome, booking_id, pagination.limit, pagination.offset)
    serialized = [PaymentEventRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)
