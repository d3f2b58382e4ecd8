from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from opentelemetry import trace
from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from salesfunnel import events
from salesfunnel.business.catalog.pricing import ProductPricing
from salesfunnel.business.catalog.service import CatalogService, catalog_service
from salesfunnel.business.coordinator import FunnelCoordinator, funnel_coordinator
from salesfunnel.business.errors import (
    ConflictError,
    ForbiddenError,
    FunnelError,
    HasDependentsError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from salesfunnel.business.revenue.models import RevenueOrder, RevenueQuote, RevenueQuoteLine
from salesfunnel.business.revenue.orders import LocalOrderCreator, OrderCreator, generate_number
from salesfunnel.business.revenue.repository import RevenueQuoteApprovalRepository, RevenueQuoteRepository
from salesfunnel.business.revenue.schemas import (
    BatchResult,
    QuoteApprovalRead,
    QuoteCreate,
    QuoteItemInput,
    QuoteRead,
    RevenueOrderRead,
)
from salesfunnel.core.config import get_settings
from salesfunnel.core.database import run_in_transaction
from salesfunnel.core.rbac import ROLE_ADMIN, ROLE_SALES_MANAGER, ROLE_SALES_REP, ensure_role
from salesfunnel.metrics import observe_quote_decision
from salesfunnel.otel import funnel_span
from salesfunnel.platform.security.context import Actor


logger = logging.getLogger("salesfunnel.revenue")
tracer = trace.get_tracer("salesfunnel.revenue")


QUOTE_DRAFT = "DRAFT"
QUOTE_PENDING_MANAGER = "PENDING_MANAGER"
QUOTE_PENDING_DIRECTOR = "PENDING_DIRECTOR"
QUOTE_APPROVED = "APPROVED"
QUOTE_REJECTED = "REJECTED"
QUOTE_SENT = "SENT"

VALID_QUOTE_TRANSITIONS: dict[str, set[str]] = {
    QUOTE_DRAFT: {QUOTE_PENDING_MANAGER},
    QUOTE_PENDING_MANAGER: {QUOTE_APPROVED, QUOTE_REJECTED, QUOTE_PENDING_DIRECTOR},
    QUOTE_PENDING_DIRECTOR: {QUOTE_APPROVED, QUOTE_REJECTED},
    QUOTE_APPROVED: {QUOTE_SENT},
    QUOTE_REJECTED: {QUOTE_DRAFT},
    QUOTE_SENT: set(),
}

# who may decide a quote waiting at a given approval level
DECISION_ROLES: dict[str, frozenset[str]] = {
    QUOTE_PENDING_MANAGER: frozenset({ROLE_SALES_MANAGER, ROLE_ADMIN}),
    QUOTE_PENDING_DIRECTOR: frozenset({ROLE_ADMIN}),
}

QUOTING_ROLES = frozenset({ROLE_ADMIN, ROLE_SALES_MANAGER, ROLE_SALES_REP})


def build_quote_lines(
    items: Sequence[QuoteItemInput],
    snapshot: Mapping[uuid.UUID, ProductPricing],
    epsilon: Decimal,
) -> tuple[list[dict[str, Any]], Decimal, bool]:
    """Price quote items against the catalog.

    Returns the line payloads in input order, the quote total and whether any line sits
    below its product's floor price. Lines without an entered unit price take the tier price.
    """
    lines: list[dict[str, Any]] = []
    total = Decimal("0")
    requires_approval = False
    for position, item in enumerate(items, start=1):
        pricing = snapshot.get(item.product_id)
        if pricing is None:
            raise NotFoundError("product not found", details={"product_id": str(item.product_id)})
        calculated = pricing.system_price(item.quantity)
        unit_price = Decimal(item.unit_price) if item.unit_price is not None else calculated
        if unit_price < 0:
            raise ValidationError("unit_price must not be negative", details={"position": position})

        line_total = unit_price * item.quantity
        if pricing.is_below_floor(unit_price):
            requires_approval = True
        lines.append(
            {
                "position": position,
                "product_id": item.product_id,
                "quantity": item.quantity,
                "unit_price": unit_price,
                "calculated_price": calculated,
                "line_total": line_total,
                "is_manual_price": abs(unit_price - calculated) > epsilon,
            }
        )
        total += line_total
    return lines, total, requires_approval


@dataclass(slots=True)
class QuoteService:
    quote_repository: RevenueQuoteRepository = RevenueQuoteRepository()
    approval_repository: RevenueQuoteApprovalRepository = RevenueQuoteApprovalRepository()
    order_creator: OrderCreator = LocalOrderCreator()
    catalog: CatalogService = field(default_factory=lambda: catalog_service)
    coordinator: FunnelCoordinator = field(default_factory=lambda: funnel_coordinator)

    def create_quote(self, session: Session, actor: Actor, dto: QuoteCreate) -> QuoteRead:
        ensure_role(actor.role, QUOTING_ROLES, "create quotes")
        if not dto.items:
            raise ValidationError("a quote needs at least one item")

        def work() -> uuid.UUID:
            self.coordinator.assert_quotable(session, dto.customer_id, dto.opportunity_id)
            lines, total, requires_approval = self._price(session, dto.items)
            quote = RevenueQuote(
                quote_number=generate_number(session, "QT", RevenueQuote.quote_number),
                customer_id=dto.customer_id,
                opportunity_id=dto.opportunity_id,
                status=QUOTE_PENDING_MANAGER if requires_approval else QUOTE_DRAFT,
                requires_approval=requires_approval,
                total_amount=total,
                created_by=actor.user_id,
            )
            quote.lines = [RevenueQuoteLine(**line) for line in lines]
            session.add(quote)
            session.flush()
            return quote.id

        quote_id = run_in_transaction(session, work, operation="revenue.quote.create")
        quote = self._load(session, quote_id)
        logger.info(
            "revenue.quote.created",
            extra={"quote_id": str(quote.id), "customer_id": str(quote.customer_id), "status": quote.status},
        )
        events.emit(
            "revenue.quote.created",
            actor.user_id,
            {"quote_id": str(quote.id), "status": quote.status, "requires_approval": quote.requires_approval},
        )
        return QuoteRead.model_validate(quote)

    def get_quote(self, session: Session, quote_id: uuid.UUID) -> QuoteRead:
        return QuoteRead.model_validate(self._load(session, quote_id))

    def list_quotes(
        self,
        session: Session,
        *,
        status: str | None = None,
        customer_id: uuid.UUID | None = None,
    ) -> list[QuoteRead]:
        stmt: Select[tuple[RevenueQuote]] = select(RevenueQuote).options(selectinload(RevenueQuote.lines))
        if status is not None:
            stmt = stmt.where(RevenueQuote.status == status)
        if customer_id is not None:
            stmt = stmt.where(RevenueQuote.customer_id == customer_id)
        rows = session.scalars(stmt.order_by(RevenueQuote.created_at.desc())).all()
        return [QuoteRead.model_validate(row) for row in rows]

    def list_pending_approval(self, session: Session) -> list[QuoteRead]:
        rows = session.scalars(
            select(RevenueQuote)
            .options(selectinload(RevenueQuote.lines))
            .where(RevenueQuote.status.in_((QUOTE_PENDING_MANAGER, QUOTE_PENDING_DIRECTOR)))
            .order_by(RevenueQuote.created_at.asc())
        ).all()
        return [QuoteRead.model_validate(row) for row in rows]

    def get_approval_logs(self, session: Session, quote_id: uuid.UUID) -> list[QuoteApprovalRead]:
        return [QuoteApprovalRead.model_validate(row) for row in self.approval_repository.list_for_quote(session, quote_id)]

    def replace_items(self, session: Session, actor: Actor, quote_id: uuid.UUID, items: list[QuoteItemInput]) -> QuoteRead:
        """Swap the quote's items; total and approval flag are recomputed in the same transaction."""
        if not items:
            raise ValidationError("a quote needs at least one item")

        def work() -> None:
            quote = self._load(session, quote_id)
            self._ensure_creator_or_admin(actor, quote, "edit")
            if quote.status != QUOTE_DRAFT:
                raise InvalidTransitionError("quote", quote.status, "EDIT")
            lines, total, requires_approval = self._price(session, items)
            self.quote_repository.replace_lines(session, quote_id, lines)
            quote.total_amount = total
            quote.requires_approval = requires_approval
            quote.row_version += 1

        run_in_transaction(session, work, operation="revenue.quote.replace_items")
        return self.get_quote(session, quote_id)

    def submit(self, session: Session, actor: Actor, quote_id: uuid.UUID) -> QuoteRead:
        return self._owner_transition(session, actor, quote_id, QUOTE_PENDING_MANAGER, "submit")

    def reopen(self, session: Session, actor: Actor, quote_id: uuid.UUID) -> QuoteRead:
        # requires_approval stays as last computed; only an item edit recomputes it
        return self._owner_transition(session, actor, quote_id, QUOTE_DRAFT, "reopen", rejection_reason=None)

    def approve(self, session: Session, approver: Actor, quote_id: uuid.UUID, comment: str | None = None) -> QuoteRead:
        return self._decide(
            session, approver, quote_id, "approve", QUOTE_APPROVED, comment, approved_by=approver.user_id
        )

    def reject(self, session: Session, approver: Actor, quote_id: uuid.UUID, reason: str) -> QuoteRead:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("a rejection reason is required", details={"quote_id": str(quote_id)})
        return self._decide(session, approver, quote_id, "reject", QUOTE_REJECTED, reason, rejection_reason=reason)

    def escalate(self, session: Session, approver: Actor, quote_id: uuid.UUID, comment: str | None = None) -> QuoteRead:
        return self._decide(session, approver, quote_id, "escalate", QUOTE_PENDING_DIRECTOR, comment)

    def convert_to_order(self, session: Session, actor: Actor, quote_id: uuid.UUID) -> RevenueOrderRead:
        """Create the order for an APPROVED quote and mark the quote SENT, atomically."""
        closed_opportunity: dict[str, Any] = {}

        def work() -> uuid.UUID:
            with funnel_span(tracer, "revenue.quote.convert_to_order", quote_id=quote_id) as span:
                quote = self._load(session, quote_id)
                if quote.status != QUOTE_APPROVED:
                    raise InvalidTransitionError("quote", quote.status, QUOTE_SENT)
                if not self.quote_repository.transition_if(session, quote_id, QUOTE_APPROVED, QUOTE_SENT):
                    raise ConflictError("quote status changed concurrently", details={"quote_id": str(quote_id)})
                order = self.order_creator.create_order(
                    session,
                    customer_id=quote.customer_id,
                    opportunity_id=quote.opportunity_id,
                    quote_id=quote.id,
                    total_amount=quote.total_amount,
                    created_by=actor.user_id,
                )
                if self.coordinator.on_order_created(session, quote, order):
                    closed_opportunity["opportunity_id"] = str(quote.opportunity_id)
                span.set_attribute("order_id", str(order.id))
                return order.id

        try:
            order_id = run_in_transaction(session, work, operation="revenue.quote.convert")
        except IntegrityError:
            raise ConflictError("quote already has an order", details={"quote_id": str(quote_id)})

        order = session.get(RevenueOrder, order_id)
        logger.info(
            "revenue.quote.converted",
            extra={"quote_id": str(quote_id), "order_id": str(order_id), "from_status": QUOTE_APPROVED, "to_status": QUOTE_SENT},
        )
        events.emit("revenue.quote.converted", actor.user_id, {"quote_id": str(quote_id), "order_id": str(order_id)})
        if closed_opportunity:
            events.emit(
                "crm.opportunity.stage_changed",
                actor.user_id,
                {**closed_opportunity, "to_stage": "CLOSED_WON", "order_id": str(order_id)},
            )
        return RevenueOrderRead.model_validate(order)

    def copy(self, session: Session, actor: Actor, quote_id: uuid.UUID) -> QuoteRead:
        """New DRAFT with the same customer, opportunity, lines and total as ``quote_id``.

        Line prices are carried over as stored; only the approval flag is re-checked against
        the current floor prices.
        """
        ensure_role(actor.role, QUOTING_ROLES, "copy quotes")
        original = self._load(session, quote_id)
        lines = [
            {
                "position": line.position,
                "product_id": line.product_id,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "calculated_price": line.calculated_price,
                "line_total": line.line_total,
                "is_manual_price": line.is_manual_price,
            }
            for line in original.lines
        ]
        customer_id, opportunity_id, total = original.customer_id, original.opportunity_id, original.total_amount

        def work() -> uuid.UUID:
            snapshot = self.catalog.pricing_snapshot(session, (line["product_id"] for line in lines))
            requires_approval = any(snapshot[line["product_id"]].is_below_floor(line["unit_price"]) for line in lines)
            quote = RevenueQuote(
                quote_number=generate_number(session, "QT", RevenueQuote.quote_number),
                customer_id=customer_id,
                opportunity_id=opportunity_id,
                status=QUOTE_DRAFT,
                requires_approval=requires_approval,
                total_amount=total,
                created_by=actor.user_id,
            )
            quote.lines = [RevenueQuoteLine(**line) for line in lines]
            session.add(quote)
            session.flush()
            return quote.id

        new_id = run_in_transaction(session, work, operation="revenue.quote.copy")
        logger.info("revenue.quote.copied", extra={"quote_id": str(new_id), "status": QUOTE_DRAFT})
        events.emit("revenue.quote.created", actor.user_id, {"quote_id": str(new_id), "copied_from": str(quote_id)})
        return self.get_quote(session, new_id)

    def delete_quote(self, session: Session, actor: Actor, quote_id: uuid.UUID) -> None:
        def work() -> None:
            quote = self._load(session, quote_id, with_lines=False)
            self._ensure_creator_or_admin(actor, quote, "delete")
            if quote.status != QUOTE_DRAFT:
                raise InvalidTransitionError("quote", quote.status, "DELETE")
            session.expunge(quote)
            if not self.quote_repository.delete_if_draft(session, quote_id):
                raise ConflictError("quote status changed concurrently", details={"quote_id": str(quote_id)})

        try:
            run_in_transaction(session, work, operation="revenue.quote.delete")
        except IntegrityError:
            raise HasDependentsError("quote", {"orders": 1})
        logger.info("revenue.quote.deleted", extra={"quote_id": str(quote_id)})

    def batch_submit(self, session: Session, actor: Actor, quote_ids: Iterable[uuid.UUID]) -> BatchResult:
        result = BatchResult()
        for quote_id in dict.fromkeys(quote_ids):
            try:
                self.submit(session, actor, quote_id)
            except FunnelError as exc:
                result.add_failure(exc.to_item(quote_id))
            else:
                result.succeeded.append(quote_id)
        return result

    def batch_delete(self, session: Session, actor: Actor, quote_ids: Iterable[uuid.UUID]) -> BatchResult:
        result = BatchResult()
        for quote_id in dict.fromkeys(quote_ids):
            try:
                self.delete_quote(session, actor, quote_id)
            except FunnelError as exc:
                result.add_failure(exc.to_item(quote_id))
            else:
                result.succeeded.append(quote_id)
        return result

    def _decide(
        self,
        session: Session,
        approver: Actor,
        quote_id: uuid.UUID,
        action: str,
        target: str,
        comment: str | None,
        **values: Any,
    ) -> QuoteRead:
        def work() -> str:
            with funnel_span(tracer, f"revenue.quote.{action}", quote_id=quote_id, approver_user_id=approver.user_id):
                quote = self._load(session, quote_id, with_lines=False)
                current = quote.status
                if target not in VALID_QUOTE_TRANSITIONS.get(current, set()):
                    raise InvalidTransitionError("quote", current, target)
                ensure_role(approver.role, DECISION_ROLES[current], f"{action} quotes at {current}")
                if not self.quote_repository.transition_if(session, quote_id, current, target, **values):
                    raise ConflictError("quote status changed concurrently", details={"quote_id": str(quote_id)})
                self.approval_repository.append(
                    session,
                    quote_id=quote_id,
                    approver_user_id=approver.user_id,
                    action=action,
                    from_status=current,
                    to_status=target,
                    comment=comment,
                    correlation_id=approver.correlation_id,
                )
                return current

        from_status = run_in_transaction(session, work, operation=f"revenue.quote.{action}")
        observe_quote_decision(action)
        logger.info(
            "revenue.quote.decided",
            extra={"quote_id": str(quote_id), "from_status": from_status, "to_status": target, "outcome": action},
        )
        event_name = {"approve": "approved", "reject": "rejected", "escalate": "escalated"}[action]
        events.emit(
            f"revenue.quote.{event_name}",
            approver.user_id,
            {"quote_id": str(quote_id), "from_status": from_status, "to_status": target},
        )
        return self.get_quote(session, quote_id)

    def _owner_transition(
        self,
        session: Session,
        actor: Actor,
        quote_id: uuid.UUID,
        target: str,
        verb: str,
        **values: Any,
    ) -> QuoteRead:
        def work() -> str:
            quote = self._load(session, quote_id, with_lines=False)
            self._ensure_creator_or_admin(actor, quote, verb)
            current = quote.status
            if target not in VALID_QUOTE_TRANSITIONS.get(current, set()):
                raise InvalidTransitionError("quote", current, target)
            if not self.quote_repository.transition_if(session, quote_id, current, target, **values):
                raise ConflictError("quote status changed concurrently", details={"quote_id": str(quote_id)})
            return current

        from_status = run_in_transaction(session, work, operation=f"revenue.quote.{verb}")
        logger.info("revenue.quote.status_changed", extra={"quote_id": str(quote_id), "from_status": from_status, "to_status": target})
        return self.get_quote(session, quote_id)

    def _price(self, session: Session, items: Sequence[QuoteItemInput]) -> tuple[list[dict[str, Any]], Decimal, bool]:
        snapshot = self.catalog.pricing_snapshot(session, (item.product_id for item in items))
        return build_quote_lines(items, snapshot, get_settings().manual_price_epsilon)

    @staticmethod
    def _ensure_creator_or_admin(actor: Actor, quote: RevenueQuote, verb: str) -> None:
        if not (actor.is_admin or quote.created_by == actor.user_id):
            raise ForbiddenError(f"only the creator or an administrator may {verb} this quote")

    def _load(self, session: Session, quote_id: uuid.UUID, *, with_lines: bool = True) -> RevenueQuote:
        quote = self.quote_repository.get(session, quote_id, with_lines=with_lines)
        if quote is None:
            raise NotFoundError("quote not found", details={"quote_id": str(quote_id)})
        return quote


quote_service = QuoteService()
