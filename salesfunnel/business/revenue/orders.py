from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Protocol

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.orm import Session

from salesfunnel.business.errors import NotFoundError
from salesfunnel.business.revenue.models import RevenueOrder
from salesfunnel.business.revenue.schemas import RevenueOrderRead
from salesfunnel.otel import funnel_span


tracer = trace.get_tracer("salesfunnel.revenue.orders")

_NUMBER_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_number(session: Session, prefix: str, column: Any) -> str:
    """Return ``PREFIX-YYYYMMDD-XXXXXX`` not yet present in ``column``."""
    day = datetime.now(timezone.utc).strftime("%Y%m%d")
    while True:
        suffix = "".join(secrets.choice(_NUMBER_ALPHABET) for _ in range(6))
        candidate = f"{prefix}-{day}-{suffix}"
        if session.scalar(select(column).where(column == candidate)) is None:
            return candidate


class OrderCreator(Protocol):
    def create_order(
        self,
        session: Session,
        *,
        customer_id: uuid.UUID,
        opportunity_id: uuid.UUID | None,
        quote_id: uuid.UUID,
        total_amount: Decimal,
        created_by: str,
    ) -> RevenueOrder: ...


class LocalOrderCreator:
    """Writes the order in the caller's session so it commits together with the quote flip."""

    def create_order(
        self,
        session: Session,
        *,
        customer_id: uuid.UUID,
        opportunity_id: uuid.UUID | None,
        quote_id: uuid.UUID,
        total_amount: Decimal,
        created_by: str,
    ) -> RevenueOrder:
        with funnel_span(tracer, "revenue.create_order", quote_id=quote_id) as span:
            order = RevenueOrder(
                order_number=generate_number(session, "ORD", RevenueOrder.order_number),
                quote_id=quote_id,
                opportunity_id=opportunity_id,
                customer_id=customer_id,
                total_amount=total_amount,
                created_by=created_by,
            )
            session.add(order)
            session.flush()
            span.set_attribute("order_id", str(order.id))
            return order


def get_order(session: Session, order_id: uuid.UUID) -> RevenueOrderRead:
    order = session.get(RevenueOrder, order_id)
    if order is None:
        raise NotFoundError("order not found", details={"order_id": str(order_id)})
    return RevenueOrderRead.model_validate(order)


def list_orders(session: Session, *, customer_id: uuid.UUID | None = None) -> list[RevenueOrderRead]:
    stmt = select(RevenueOrder)
    if customer_id is not None:
        stmt = stmt.where(RevenueOrder.customer_id == customer_id)
    rows = session.scalars(stmt.order_by(RevenueOrder.created_at.desc())).all()
    return [RevenueOrderRead.model_validate(row) for row in rows]


local_order_creator = LocalOrderCreator()
