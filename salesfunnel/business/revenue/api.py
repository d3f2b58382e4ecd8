from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from salesfunnel.api.deps import get_current_actor
from salesfunnel.business.revenue.orders import get_order, list_orders
from salesfunnel.business.revenue.schemas import (
    BatchIdsRequest,
    BatchResult,
    QuoteApprovalRead,
    QuoteCreate,
    QuoteDecision,
    QuoteItemsReplace,
    QuoteRead,
    QuoteRejection,
    RevenueOrderRead,
)
from salesfunnel.business.revenue.service import quote_service
from salesfunnel.core.database import get_db
from salesfunnel.platform.security.context import Actor


router = APIRouter(prefix="/api/funnel/quotes", tags=["funnel.quotes"])
orders_router = APIRouter(prefix="/api/funnel/orders", tags=["funnel.orders"])


@router.post("", response_model=QuoteRead, status_code=status.HTTP_201_CREATED)
def create_quote(
    payload: QuoteCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> QuoteRead:
    return quote_service.create_quote(db, actor, payload)


@router.get("", response_model=list[QuoteRead])
def list_quotes(
    status_filter: str | None = Query(default=None, alias="status"),
    customer_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[QuoteRead]:
    return quote_service.list_quotes(db, status=status_filter, customer_id=customer_id)


@router.get("/pending-approval", response_model=list[QuoteRead])
def list_pending_approval(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[QuoteRead]:
    return quote_service.list_pending_approval(db)


@router.post("/batch-submit", response_model=BatchResult)
def batch_submit(
    payload: BatchIdsRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> BatchResult:
    return quote_service.batch_submit(db, actor, payload.ids)


@router.post("/batch-delete", response_model=BatchResult)
def batch_delete(
    payload: BatchIdsRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> BatchResult:
    return quote_service.batch_delete(db, actor, payload.ids)


@router.get("/{quote_id}", response_model=QuoteRead)
def get_quote(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> QuoteRead:
    return quote_service.get_quote(db, quote_id)


@router.put("/{quote_id}/items", response_model=QuoteRead)
def replace_items(
    quote_id: uuid.UUID,
    payload: QuoteItemsReplace,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> QuoteRead:
    return quote_service.replace_items(db, actor, quote_id, payload.items)


@router.post("/{quote_id}/submit", response_model=QuoteRead)
def submit_quote(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> QuoteRead:
    return quote_service.submit(db, actor, quote_id)


@router.post("/{quote_id}/approve", response_model=QuoteRead)
def approve_quote(
    quote_id: uuid.UUID,
    payload: QuoteDecision | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> QuoteRead:
    return quote_service.approve(db, actor, quote_id, payload.comment if payload else None)


@router.post("/{quote_id}/reject", response_model=QuoteRead)
def reject_quote(
    quote_id: uuid.UUID,
    payload: QuoteRejection,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> QuoteRead:
    return quote_service.reject(db, actor, quote_id, payload.reason)


@router.post("/{quote_id}/escalate", response_model=QuoteRead)
def escalate_quote(
    quote_id: uuid.UUID,
    payload: QuoteDecision | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> QuoteRead:
    return quote_service.escalate(db, actor, quote_id, payload.comment if payload else None)


@router.post("/{quote_id}/reopen", response_model=QuoteRead)
def reopen_quote(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> QuoteRead:
    return quote_service.reopen(db, actor, quote_id)


@router.post("/{quote_id}/convert-to-order", response_model=RevenueOrderRead, status_code=status.HTTP_201_CREATED)
def convert_to_order(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> RevenueOrderRead:
    return quote_service.convert_to_order(db, actor, quote_id)


@router.post("/{quote_id}/copy", response_model=QuoteRead, status_code=status.HTTP_201_CREATED)
def copy_quote(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> QuoteRead:
    return quote_service.copy(db, actor, quote_id)


@router.delete("/{quote_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_quote(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Response:
    quote_service.delete_quote(db, actor, quote_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{quote_id}/approval-logs", response_model=list[QuoteApprovalRead])
def approval_logs(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[QuoteApprovalRead]:
    return quote_service.get_approval_logs(db, quote_id)


@orders_router.get("", response_model=list[RevenueOrderRead])
def list_revenue_orders(
    customer_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[RevenueOrderRead]:
    return list_orders(db, customer_id=customer_id)


@orders_router.get("/{order_id}", response_model=RevenueOrderRead)
def get_revenue_order(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> RevenueOrderRead:
    return get_order(db, order_id)
