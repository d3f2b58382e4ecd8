from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from salesfunnel.business.revenue.models import RevenueOrder, RevenueQuote, RevenueQuoteLine
from salesfunnel.crm.models import (
    CUSTOMER_STATUS_PRIVATE,
    CUSTOMER_STATUS_PUBLIC_POOL,
    CRMContact,
    CRMCustomer,
    CRMFollowUp,
    CRMOpportunity,
    CRMOwnerSlot,
    utcnow,
)


class CustomerRepository:
    """Statement-level access to customers for the pool allocator.

    Every state flip is a conditional UPDATE; callers read ``rowcount`` to learn whether they won.
    """

    resource = "crm.customer"

    def lock_owner_slot(self, session: Session, owner_user_id: str) -> None:
        # Postgres: the UPDATE takes a row lock held until commit.
        # SQLite: the connection already holds the database write lock from BEGIN IMMEDIATE.
        now = utcnow()
        dialect = session.get_bind().dialect.name
        if dialect in {"postgresql", "sqlite"}:
            insert_factory = pg_insert if dialect == "postgresql" else sqlite_insert
            session.execute(
                insert_factory(CRMOwnerSlot.__table__)
                .values(owner_user_id=owner_user_id, claim_sequence=0, updated_at=now)
                .on_conflict_do_nothing(index_elements=["owner_user_id"])
            )
        elif session.get(CRMOwnerSlot, owner_user_id) is None:
            session.add(CRMOwnerSlot(owner_user_id=owner_user_id, claim_sequence=0, updated_at=now))
            session.flush()

        session.execute(
            update(CRMOwnerSlot)
            .where(CRMOwnerSlot.owner_user_id == owner_user_id)
            .values(claim_sequence=CRMOwnerSlot.claim_sequence + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    def count_private(self, session: Session, owner_user_id: str) -> int:
        count = session.scalar(
            select(func.count())
            .select_from(CRMCustomer)
            .where(
                CRMCustomer.owner_user_id == owner_user_id,
                CRMCustomer.status == CUSTOMER_STATUS_PRIVATE,
            )
        )
        return int(count or 0)

    def claim_if_public(self, session: Session, customer_id: uuid.UUID, owner_user_id: str) -> bool:
        result = session.execute(
            update(CRMCustomer)
            .where(
                CRMCustomer.id == customer_id,
                CRMCustomer.status == CUSTOMER_STATUS_PUBLIC_POOL,
            )
            .values(
                status=CUSTOMER_STATUS_PRIVATE,
                owner_user_id=owner_user_id,
                updated_at=utcnow(),
                row_version=CRMCustomer.row_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def release_if_owned(self, session: Session, customer_id: uuid.UUID, expected_owner: str | None) -> bool:
        """Flip PRIVATE -> PUBLIC_POOL; with ``expected_owner`` only while that owner still holds it."""
        stmt = update(CRMCustomer).where(
            CRMCustomer.id == customer_id,
            CRMCustomer.status == CUSTOMER_STATUS_PRIVATE,
        )
        if expected_owner is not None:
            stmt = stmt.where(CRMCustomer.owner_user_id == expected_owner)
        result = session.execute(
            stmt.values(
                status=CUSTOMER_STATUS_PUBLIC_POOL,
                owner_user_id=None,
                updated_at=utcnow(),
                row_version=CRMCustomer.row_version + 1,
            ).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def touch_last_contact(self, session: Session, customer_id: uuid.UUID, at: datetime) -> None:
        session.execute(
            update(CRMCustomer)
            .where(CRMCustomer.id == customer_id)
            .values(last_contact_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )

    def count_dependents(self, session: Session, customer_id: uuid.UUID) -> dict[str, int]:
        def _count(model: type) -> int:
            return int(
                session.scalar(select(func.count()).select_from(model).where(model.customer_id == customer_id)) or 0
            )

        return {
            "opportunities": _count(CRMOpportunity),
            "quotes": _count(RevenueQuote),
            "orders": _count(RevenueOrder),
        }

    def delete_with_children(self, session: Session, customer_id: uuid.UUID, *, cascade: bool) -> int:
        """Delete the customer plus contacts and follow-ups, and with ``cascade`` its funnel records too.

        Returns the number of customer rows removed (0 or 1). Approval log entries are kept.
        """
        if cascade:
            quote_ids = select(RevenueQuote.id).where(RevenueQuote.customer_id == customer_id)
            session.execute(
                delete(RevenueOrder)
                .where(RevenueOrder.customer_id == customer_id)
                .execution_options(synchronize_session=False)
            )
            session.execute(
                delete(RevenueQuoteLine)
                .where(RevenueQuoteLine.quote_id.in_(quote_ids))
                .execution_options(synchronize_session=False)
            )
            session.execute(
                delete(RevenueQuote)
                .where(RevenueQuote.customer_id == customer_id)
                .execution_options(synchronize_session=False)
            )

        session.execute(
            delete(CRMFollowUp).where(CRMFollowUp.customer_id == customer_id).execution_options(synchronize_session=False)
        )
        if cascade:
            session.execute(
                delete(CRMOpportunity)
                .where(CRMOpportunity.customer_id == customer_id)
                .execution_options(synchronize_session=False)
            )
        session.execute(
            delete(CRMContact).where(CRMContact.customer_id == customer_id).execution_options(synchronize_session=False)
        )
        result = session.execute(
            delete(CRMCustomer).where(CRMCustomer.id == customer_id).execution_options(synchronize_session=False)
        )
        return result.rowcount


class OpportunityRepository:
    resource = "crm.opportunity"

    def count_dependents(self, session: Session, opportunity_id: uuid.UUID) -> dict[str, int]:
        quotes = session.scalar(
            select(func.count()).select_from(RevenueQuote).where(RevenueQuote.opportunity_id == opportunity_id)
        )
        orders = session.scalar(
            select(func.count()).select_from(RevenueOrder).where(RevenueOrder.opportunity_id == opportunity_id)
        )
        return {"quotes": int(quotes or 0), "orders": int(orders or 0)}
