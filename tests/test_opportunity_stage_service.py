from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from salesfunnel import audit, events
from salesfunnel.business.errors import (
    ConflictError,
    ForbiddenError,
    HasDependentsError,
    InvalidTransitionError,
    LossReasonRequiredError,
    NotFoundError,
    ValidationError,
)
from salesfunnel.business.revenue.models import RevenueQuote
from salesfunnel.core.config import get_settings
from salesfunnel.core.database import Base, build_engine, build_sessionmaker
from salesfunnel.crm.schemas import CustomerCreate, OpportunityCreate, OpportunityUpdate
from salesfunnel.crm.service import STAGE_PROBABILITY, customer_pool_service, opportunity_service
from salesfunnel.platform.security.context import Actor


ADMIN = Actor(user_id="admin-1", role="admin")
OWNER = Actor(user_id="rep-a", role="sales_rep")
OTHER = Actor(user_id="rep-b", role="sales_rep")


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = build_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    SessionLocal = build_sessionmaker(engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def opportunity_id(db_session: Session) -> uuid.UUID:
    customer = customer_pool_service.create_customer(db_session, OWNER, CustomerCreate(company_name="Stage Co"))
    opportunity = opportunity_service.create_opportunity(
        db_session,
        OWNER,
        OpportunityCreate(customer_id=customer.id, name="Expansion", amount=Decimal("1200")),
    )
    return opportunity.id


def test_new_opportunity_starts_prospecting(db_session: Session, opportunity_id: uuid.UUID) -> None:
    opportunity = opportunity_service.get_opportunity(db_session, opportunity_id)
    assert opportunity.stage == "PROSPECTING"
    assert opportunity.probability == 10
    assert opportunity.owner_user_id == "rep-a"
    assert opportunity.closed_at is None


def test_create_opportunity_for_unknown_customer_is_not_found(db_session: Session) -> None:
    with pytest.raises(NotFoundError):
        opportunity_service.create_opportunity(db_session, OWNER, OpportunityCreate(customer_id=uuid.uuid4(), name="Ghost"))


@pytest.mark.parametrize("stage", ["QUALIFICATION", "PROPOSAL", "NEGOTIATION"])
def test_active_stage_sets_probability(db_session: Session, opportunity_id: uuid.UUID, stage: str) -> None:
    moved = opportunity_service.transition_stage(db_session, OWNER, opportunity_id, stage)
    assert moved.stage == stage
    assert moved.probability == STAGE_PROBABILITY[stage]
    assert moved.closed_at is None


def test_stages_may_move_backwards_while_active(db_session: Session, opportunity_id: uuid.UUID) -> None:
    opportunity_service.transition_stage(db_session, OWNER, opportunity_id, "NEGOTIATION")
    moved = opportunity_service.transition_stage(db_session, OWNER, opportunity_id, "qualification")
    assert moved.stage == "QUALIFICATION"
    assert moved.probability == 25


def test_closed_won_sets_probability_and_closed_at(db_session: Session, opportunity_id: uuid.UUID) -> None:
    won = opportunity_service.transition_stage(db_session, OWNER, opportunity_id, "CLOSED_WON")
    assert won.probability == 100
    assert won.closed_at is not None
    assert won.row_version == 2

    stage_events = [item for item in events.published_events if item["event_type"] == "crm.opportunity.stage_changed"]
    assert stage_events[-1]["payload"] == {
        "opportunity_id": str(opportunity_id),
        "from_stage": "PROSPECTING",
        "to_stage": "CLOSED_WON",
    }


def test_closed_lost_requires_loss_reason(db_session: Session, opportunity_id: uuid.UUID) -> None:
    with pytest.raises(LossReasonRequiredError):
        opportunity_service.transition_stage(db_session, OWNER, opportunity_id, "CLOSED_LOST")
    with pytest.raises(LossReasonRequiredError):
        opportunity_service.transition_stage(db_session, OWNER, opportunity_id, "CLOSED_LOST", "   ")
    assert opportunity_service.get_opportunity(db_session, opportunity_id).stage == "PROSPECTING"

    lost = opportunity_service.transition_stage(db_session, OWNER, opportunity_id, "CLOSED_LOST", "Budget cut")
    assert lost.probability == 0
    assert lost.loss_reason == "Budget cut"
    assert lost.closed_at is not None


@pytest.mark.parametrize("closed_stage", ["CLOSED_WON", "CLOSED_LOST"])
def test_closed_opportunities_are_terminal(db_session: Session, opportunity_id: uuid.UUID, closed_stage: str) -> None:
    opportunity_service.transition_stage(db_session, OWNER, opportunity_id, closed_stage, "Lost to competitor")

    with pytest.raises(InvalidTransitionError) as excinfo:
        opportunity_service.transition_stage(db_session, OWNER, opportunity_id, "PROPOSAL")
    assert excinfo.value.current == closed_stage

    with pytest.raises(ConflictError):
        opportunity_service.update_opportunity(db_session, OWNER, opportunity_id, OpportunityUpdate(name="Reopened"))


def test_transition_to_current_stage_is_invalid(db_session: Session, opportunity_id: uuid.UUID) -> None:
    with pytest.raises(InvalidTransitionError):
        opportunity_service.transition_stage(db_session, OWNER, opportunity_id, "PROSPECTING")


def test_unknown_stage_is_a_validation_error(db_session: Session, opportunity_id: uuid.UUID) -> None:
    with pytest.raises(ValidationError):
        opportunity_service.transition_stage(db_session, OWNER, opportunity_id, "WON_BIG")


def test_only_owner_or_admin_changes_stage(db_session: Session, opportunity_id: uuid.UUID) -> None:
    with pytest.raises(ForbiddenError):
        opportunity_service.transition_stage(db_session, OTHER, opportunity_id, "PROPOSAL")

    moved = opportunity_service.transition_stage(db_session, ADMIN, opportunity_id, "PROPOSAL")
    assert moved.stage == "PROPOSAL"
    assert audit.entries_for("crm.opportunity", str(opportunity_id))[-1]["actor_user_id"] == "admin-1"


def test_update_opportunity_bumps_row_version(db_session: Session, opportunity_id: uuid.UUID) -> None:
    updated = opportunity_service.update_opportunity(
        db_session, OWNER, opportunity_id, OpportunityUpdate(amount=Decimal("1500"))
    )
    assert updated.amount == Decimal("1500")
    assert updated.row_version == 2

    with pytest.raises(ForbiddenError):
        opportunity_service.update_opportunity(db_session, OTHER, opportunity_id, OpportunityUpdate(name="Mine now"))


def test_update_opportunity_refuses_clearing_required_fields(db_session: Session, opportunity_id: uuid.UUID) -> None:
    with pytest.raises(ValidationError) as excinfo:
        opportunity_service.update_opportunity(
            db_session, OWNER, opportunity_id, OpportunityUpdate(name=None, amount=None)
        )
    assert excinfo.value.details == {"fields": ["amount", "name"]}

    opportunity = opportunity_service.get_opportunity(db_session, opportunity_id)
    assert opportunity.name == "Expansion"
    assert opportunity.row_version == 1


def test_list_opportunities_filters_by_stage(db_session: Session, opportunity_id: uuid.UUID) -> None:
    opportunity_service.transition_stage(db_session, OWNER, opportunity_id, "PROPOSAL")
    assert [item.id for item in opportunity_service.list_opportunities(db_session, stage="PROPOSAL")] == [opportunity_id]
    assert opportunity_service.list_opportunities(db_session, stage="PROSPECTING") == []


def test_delete_opportunity_refuses_when_quoted(db_session: Session, opportunity_id: uuid.UUID) -> None:
    opportunity = opportunity_service.get_opportunity(db_session, opportunity_id)
    db_session.add(
        RevenueQuote(
            quote_number="QT-OPP-1",
            customer_id=opportunity.customer_id,
            opportunity_id=opportunity_id,
            status="DRAFT",
            total_amount=Decimal("0"),
            created_by="rep-a",
        )
    )
    db_session.commit()

    with pytest.raises(HasDependentsError) as excinfo:
        opportunity_service.delete_opportunity(db_session, OWNER, opportunity_id)
    assert excinfo.value.dependents == {"quotes": 1, "orders": 0}


def test_delete_opportunity_without_dependents(db_session: Session, opportunity_id: uuid.UUID) -> None:
    opportunity_service.delete_opportunity(db_session, OWNER, opportunity_id)
    with pytest.raises(NotFoundError):
        opportunity_service.get_opportunity(db_session, opportunity_id)
