from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from salesfunnel.business.errors import InvalidTransitionError, NotFoundError, ValidationError
from salesfunnel.business.revenue.models import RevenueOrder, RevenueQuote
from salesfunnel.core.config import get_settings
from salesfunnel.crm.models import CRMCustomer, CRMOpportunity
from salesfunnel.crm.service import CLOSED_STAGES, STAGE_CLOSED_WON, OpportunityService, opportunity_service


logger = logging.getLogger("salesfunnel.coordinator")


@dataclass(slots=True)
class FunnelCoordinator:
    """Keeps the CRM side consistent with quoting: which opportunities may be quoted and
    what happens to them once a quote becomes an order."""

    opportunities: OpportunityService = field(default_factory=lambda: opportunity_service)

    def assert_quotable(self, session: Session, customer_id: uuid.UUID, opportunity_id: uuid.UUID | None) -> None:
        if session.get(CRMCustomer, customer_id) is None:
            raise NotFoundError("customer not found", details={"customer_id": str(customer_id)})
        if opportunity_id is None:
            return

        opportunity = session.get(CRMOpportunity, opportunity_id)
        if opportunity is None:
            raise NotFoundError("opportunity not found", details={"opportunity_id": str(opportunity_id)})
        if opportunity.customer_id != customer_id:
            raise ValidationError(
                "opportunity does not belong to customer",
                details={"opportunity_id": str(opportunity_id), "customer_id": str(customer_id)},
            )
        if opportunity.stage in CLOSED_STAGES:
            raise InvalidTransitionError("opportunity", opportunity.stage, "QUOTE")

    def on_order_created(self, session: Session, quote: RevenueQuote, order: RevenueOrder) -> bool:
        """Close the quote's opportunity as won inside the conversion transaction.

        Returns whether the opportunity was closed. Runs as a system transition, so the
        opportunity owner check does not apply.
        """
        if quote.opportunity_id is None or not get_settings().close_opportunity_on_order:
            return False
        opportunity = session.get(CRMOpportunity, quote.opportunity_id, populate_existing=True)
        if opportunity is None or opportunity.stage in CLOSED_STAGES:
            return False

        from_stage = opportunity.stage
        self.opportunities.apply_transition(session, opportunity, STAGE_CLOSED_WON)
        logger.info(
            "coordinator.opportunity.closed_won",
            extra={
                "opportunity_id": str(opportunity.id),
                "order_id": str(order.id),
                "from_status": from_stage,
                "to_status": STAGE_CLOSED_WON,
            },
        )
        return True


funnel_coordinator = FunnelCoordinator()
