from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, selectinload

from salesfunnel.business.revenue.models import RevenueQuote, RevenueQuoteApproval, RevenueQuoteLine, utcnow


class RevenueQuoteRepository:
    resource = "revenue.quote"

    def get(self, session: Session, quote_id: uuid.UUID, *, with_lines: bool = True) -> RevenueQuote | None:
        stmt = select(RevenueQuote).where(RevenueQuote.id == quote_id).execution_options(populate_existing=True)
        if with_lines:
            stmt = stmt.options(selectinload(RevenueQuote.lines))
        return session.scalar(stmt)

    def transition_if(
        self,
        session: Session,
        quote_id: uuid.UUID,
        current: str,
        target: str,
        **values: Any,
    ) -> bool:
        """Move the quote from ``current`` to ``target`` only if it is still in ``current``."""
        result = session.execute(
            update(RevenueQuote)
            .where(RevenueQuote.id == quote_id, RevenueQuote.status == current)
            .values(status=target, updated_at=utcnow(), row_version=RevenueQuote.row_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def replace_lines(self, session: Session, quote_id: uuid.UUID, lines: list[dict[str, Any]]) -> None:
        session.execute(
            delete(RevenueQuoteLine)
            .where(RevenueQuoteLine.quote_id == quote_id)
            .execution_options(synchronize_session=False)
        )
        session.add_all(RevenueQuoteLine(quote_id=quote_id, **line) for line in lines)

    def delete_if_draft(self, session: Session, quote_id: uuid.UUID) -> bool:
        session.execute(
            delete(RevenueQuoteLine)
            .where(RevenueQuoteLine.quote_id == quote_id)
            .execution_options(synchronize_session=False)
        )
        result = session.execute(
            delete(RevenueQuote)
            .where(RevenueQuote.id == quote_id, RevenueQuote.status == "DRAFT")
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class RevenueQuoteApprovalRepository:
    resource = "revenue.quote_approval"

    def append(
        self,
        session: Session,
        *,
        quote_id: uuid.UUID,
        approver_user_id: str,
        action: str,
        from_status: str,
        to_status: str,
        comment: str | None,
        correlation_id: str | None,
    ) -> RevenueQuoteApproval:
        entry = RevenueQuoteApproval(
            quote_id=quote_id,
            approver_user_id=approver_user_id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            comment=comment,
            correlation_id=correlation_id,
        )
        session.add(entry)
        return entry

    def list_for_quote(self, session: Session, quote_id: uuid.UUID) -> list[RevenueQuoteApproval]:
        return list(
            session.scalars(
                select(RevenueQuoteApproval)
                .where(RevenueQuoteApproval.quote_id == quote_id)
                .order_by(RevenueQuoteApproval.created_at.asc())
            ).all()
        )
