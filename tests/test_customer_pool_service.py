from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from salesfunnel import audit, events
from salesfunnel.business.errors import (
    CapacityExceededError,
    ConflictError,
    ForbiddenError,
    HasDependentsError,
    NotFoundError,
    ValidationError,
)
from salesfunnel.business.revenue.models import RevenueQuote
from salesfunnel.core.config import get_settings
from salesfunnel.core.database import Base, build_engine, build_sessionmaker
from salesfunnel.crm.models import CRMContact, CRMCustomer, CRMFollowUp, CRMOpportunity, utcnow
from salesfunnel.crm.schemas import (
    ContactCreate,
    CustomerCreate,
    CustomerUpdate,
    FollowUpCreate,
    OpportunityCreate,
    PoolSettingsUpdate,
)
from salesfunnel.crm.service import customer_pool_service, opportunity_service
from salesfunnel.crm.settings import get_pool_settings, update_pool_settings
from salesfunnel.platform.security.context import Actor


ADMIN = Actor(user_id="admin-1", role="admin")
MANAGER = Actor(user_id="manager-1", role="sales_manager")
REP_A = Actor(user_id="rep-a", role="sales_rep")
REP_B = Actor(user_id="rep-b", role="sales_rep")


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


def _public_customer(db_session: Session, name: str = "Acme") -> uuid.UUID:
    return customer_pool_service.create_customer(db_session, REP_A, CustomerCreate(company_name=name)).id


def _count(db_session: Session, model: type) -> int:
    return int(db_session.scalar(select(func.count()).select_from(model)) or 0)


def test_create_customer_defaults_to_public_pool_with_primary_contact(db_session: Session) -> None:
    created = customer_pool_service.create_customer(
        db_session,
        REP_A,
        CustomerCreate(
            company_name="  Globex  ",
            industry="Manufacturing",
            source="website",
            primary_contact=ContactCreate(name="Hank", email="hank@globex.test"),
        ),
    )

    assert created.company_name == "Globex"
    assert created.status == "PUBLIC_POOL"
    assert created.owner_user_id is None
    contact = db_session.scalar(select(CRMContact).where(CRMContact.customer_id == created.id))
    assert contact is not None and contact.is_primary
    assert [item["event_type"] for item in events.published_events] == ["crm.customer.created"]


def test_create_customer_rejects_duplicate_name(db_session: Session) -> None:
    _public_customer(db_session, "Initech")
    with pytest.raises(ConflictError):
        customer_pool_service.create_customer(db_session, REP_B, CustomerCreate(company_name="Initech"))
    assert _count(db_session, CRMCustomer) == 1


def test_create_customer_with_owner_counts_against_capacity(db_session: Session) -> None:
    owned = customer_pool_service.create_customer(
        db_session, REP_A, CustomerCreate(company_name="Mine", owner_user_id=REP_A.user_id)
    )
    assert owned.status == "PRIVATE"
    assert owned.owner_user_id == "rep-a"

    update_pool_settings(db_session, ADMIN, PoolSettingsUpdate(customer_claim_limit=1))
    with pytest.raises(CapacityExceededError):
        customer_pool_service.create_customer(db_session, REP_A, CustomerCreate(company_name="Mine 2", owner_user_id="rep-a"))


def test_rep_cannot_create_customer_for_another_owner(db_session: Session) -> None:
    with pytest.raises(ForbiddenError):
        customer_pool_service.create_customer(db_session, REP_A, CustomerCreate(company_name="Theirs", owner_user_id="rep-b"))


def test_claim_moves_customer_to_private_pool(db_session: Session) -> None:
    customer_id = _public_customer(db_session)

    claimed = customer_pool_service.claim(db_session, REP_A, customer_id)

    assert claimed.status == "PRIVATE"
    assert claimed.owner_user_id == "rep-a"
    assert claimed.row_version == 2
    entries = audit.entries_for("crm.customer", str(customer_id))
    assert [entry["action"] for entry in entries] == ["create", "claim"]
    assert events.published_events[-1]["event_type"] == "crm.customer.claimed"


def test_second_claim_of_owned_customer_conflicts(db_session: Session) -> None:
    customer_id = _public_customer(db_session)
    customer_pool_service.claim(db_session, REP_A, customer_id)

    with pytest.raises(ConflictError) as excinfo:
        customer_pool_service.claim(db_session, REP_B, customer_id)

    assert excinfo.value.details["owner_user_id"] == "rep-a"
    assert customer_pool_service.get_customer(db_session, customer_id).owner_user_id == "rep-a"


def test_claim_unknown_customer_is_not_found(db_session: Session) -> None:
    with pytest.raises(NotFoundError):
        customer_pool_service.claim(db_session, REP_A, uuid.uuid4())


def test_claim_respects_capacity(db_session: Session) -> None:
    first = _public_customer(db_session, "One")
    second = _public_customer(db_session, "Two")
    third = _public_customer(db_session, "Three")

    customer_pool_service.claim(db_session, REP_A, first, claim_limit=2)
    customer_pool_service.claim(db_session, REP_A, second, claim_limit=2)
    with pytest.raises(CapacityExceededError) as excinfo:
        customer_pool_service.claim(db_session, REP_A, third, claim_limit=2)

    assert excinfo.value.count == 2
    assert excinfo.value.limit == 2
    assert customer_pool_service.get_customer(db_session, third).status == "PUBLIC_POOL"


def test_claim_limit_of_zero_refuses_every_claim(db_session: Session) -> None:
    customer_id = _public_customer(db_session)
    with pytest.raises(CapacityExceededError):
        customer_pool_service.claim(db_session, REP_A, customer_id, claim_limit=0)


def test_manager_may_claim_on_behalf_of_rep_but_rep_may_not(db_session: Session) -> None:
    first = _public_customer(db_session, "Assigned")
    second = _public_customer(db_session, "Refused")

    claimed = customer_pool_service.claim(db_session, MANAGER, first, "rep-b")
    assert claimed.owner_user_id == "rep-b"

    with pytest.raises(ForbiddenError):
        customer_pool_service.claim(db_session, REP_A, second, "rep-b")


def test_release_returns_customer_to_public_pool(db_session: Session) -> None:
    customer_id = _public_customer(db_session)
    customer_pool_service.claim(db_session, REP_A, customer_id)

    released = customer_pool_service.release(db_session, REP_A, customer_id)

    assert released.status == "PUBLIC_POOL"
    assert released.owner_user_id is None
    assert events.published_events[-1]["event_type"] == "crm.customer.released"
    assert events.published_events[-1]["payload"]["previous_owner_user_id"] == "rep-a"


def test_release_by_non_owner_is_forbidden_and_admin_may_release(db_session: Session) -> None:
    customer_id = _public_customer(db_session)
    customer_pool_service.claim(db_session, REP_A, customer_id)

    with pytest.raises(ForbiddenError):
        customer_pool_service.release(db_session, REP_B, customer_id)

    released = customer_pool_service.release(db_session, ADMIN, customer_id)
    assert released.status == "PUBLIC_POOL"


def test_release_of_public_customer_is_admin_only_no_op(db_session: Session) -> None:
    customer_id = _public_customer(db_session)

    with pytest.raises(ForbiddenError):
        customer_pool_service.release(db_session, REP_A, customer_id)

    events.published_events.clear()
    unchanged = customer_pool_service.release(db_session, ADMIN, customer_id)
    assert unchanged.status == "PUBLIC_POOL"
    assert unchanged.row_version == 1
    assert list(events.published_events) == []


def test_update_customer_enforces_ownership(db_session: Session) -> None:
    customer_id = _public_customer(db_session)
    customer_pool_service.claim(db_session, REP_A, customer_id)

    with pytest.raises(ForbiddenError):
        customer_pool_service.update_customer(db_session, REP_B, customer_id, CustomerUpdate(region="EMEA"))

    updated = customer_pool_service.update_customer(db_session, REP_A, customer_id, CustomerUpdate(region="EMEA"))
    assert updated.region == "EMEA"
    assert updated.row_version == 3


def test_update_customer_refuses_clearing_company_name(db_session: Session) -> None:
    customer_id = _public_customer(db_session)
    customer_pool_service.claim(db_session, REP_A, customer_id)

    with pytest.raises(ValidationError) as excinfo:
        customer_pool_service.update_customer(db_session, REP_A, customer_id, CustomerUpdate(company_name=None))
    assert excinfo.value.details == {"fields": ["company_name"]}

    customer = customer_pool_service.get_customer(db_session, customer_id)
    assert customer.company_name == "Acme"
    assert customer.row_version == 2


def test_follow_up_touches_last_contact(db_session: Session) -> None:
    customer_id = _public_customer(db_session)
    customer_pool_service.claim(db_session, REP_A, customer_id)

    follow_up = customer_pool_service.record_follow_up(
        db_session, REP_A, customer_id, FollowUpCreate(follow_up_type="call", content="Intro call")
    )

    assert follow_up.user_id == "rep-a"
    db_session.expire_all()
    assert customer_pool_service.get_customer(db_session, customer_id).last_contact_at is not None
    assert _count(db_session, CRMFollowUp) == 1


def _add_quote(db_session: Session, customer_id: uuid.UUID) -> None:
    db_session.add(
        RevenueQuote(
            quote_number="QT-TEST-1",
            customer_id=customer_id,
            status="DRAFT",
            total_amount=Decimal("10"),
            created_by="rep-a",
        )
    )
    db_session.commit()


def test_delete_without_force_reports_dependents(db_session: Session) -> None:
    customer_id = _public_customer(db_session)
    customer_pool_service.claim(db_session, REP_A, customer_id)
    opportunity_service.create_opportunity(db_session, REP_A, OpportunityCreate(customer_id=customer_id, name="Deal"))
    _add_quote(db_session, customer_id)

    with pytest.raises(HasDependentsError) as excinfo:
        customer_pool_service.delete(db_session, REP_A, customer_id)

    assert excinfo.value.dependents == {"opportunities": 1, "quotes": 1, "orders": 0}
    assert _count(db_session, CRMCustomer) == 1
    relations = customer_pool_service.check_relations(db_session, customer_id)
    assert relations.total == 2


def test_forced_delete_removes_customer_and_dependents(db_session: Session) -> None:
    customer_id = _public_customer(db_session)
    customer_pool_service.claim(db_session, REP_A, customer_id)
    opportunity_service.create_opportunity(db_session, REP_A, OpportunityCreate(customer_id=customer_id, name="Deal"))
    _add_quote(db_session, customer_id)

    customer_pool_service.delete(db_session, REP_A, customer_id, force=True)

    assert _count(db_session, CRMCustomer) == 0
    assert _count(db_session, CRMOpportunity) == 0
    assert _count(db_session, RevenueQuote) == 0
    assert events.published_events[-1]["event_type"] == "crm.customer.deleted"


def test_delete_of_someone_elses_customer_is_forbidden(db_session: Session) -> None:
    customer_id = _public_customer(db_session)
    customer_pool_service.claim(db_session, REP_A, customer_id)

    with pytest.raises(ForbiddenError):
        customer_pool_service.delete(db_session, REP_B, customer_id)


def test_batch_claim_reports_capacity_failures_per_id(db_session: Session) -> None:
    ids = [_public_customer(db_session, f"Batch {index}") for index in range(4)]
    customer_pool_service.claim(db_session, MANAGER, ids[0], "rep-b")

    result = customer_pool_service.batch_claim(db_session, REP_A, [ids[0], ids[1], ids[1], ids[2], ids[3]], claim_limit=2)

    assert result.succeeded == [ids[1]]
    failures = {failure.id: failure.code for failure in result.failed}
    assert failures == {ids[0]: "conflict", ids[2]: "capacity_exceeded", ids[3]: "capacity_exceeded"}


def test_batch_release_collects_failures(db_session: Session) -> None:
    mine = _public_customer(db_session, "Mine")
    theirs = _public_customer(db_session, "Theirs")
    customer_pool_service.claim(db_session, REP_A, mine)
    customer_pool_service.claim(db_session, REP_B, theirs)

    result = customer_pool_service.batch_release(db_session, REP_A, [mine, theirs, uuid.uuid4()])

    assert result.succeeded == [mine]
    assert sorted(failure.code for failure in result.failed) == ["forbidden", "not_found"]


def test_batch_delete_honours_force(db_session: Session) -> None:
    plain = _public_customer(db_session, "Plain")
    busy = _public_customer(db_session, "Busy")
    opportunity_service.create_opportunity(db_session, ADMIN, OpportunityCreate(customer_id=busy, name="Deal"))

    result = customer_pool_service.batch_delete(db_session, ADMIN, [plain, busy])
    assert result.succeeded == [plain]
    assert [failure.code for failure in result.failed] == ["has_dependents"]

    forced = customer_pool_service.batch_delete(db_session, ADMIN, [busy], force=True)
    assert forced.succeeded == [busy]
    assert _count(db_session, CRMCustomer) == 0


def _set_last_contact(db_session: Session, customer_id: uuid.UUID, days_ago: int | None) -> None:
    value = None if days_ago is None else utcnow() - timedelta(days=days_ago)
    db_session.execute(update(CRMCustomer).where(CRMCustomer.id == customer_id).values(last_contact_at=value))
    db_session.commit()
    db_session.expire_all()


def test_find_inactive_and_release_inactive(db_session: Session) -> None:
    stale = _public_customer(db_session, "Stale")
    fresh = _public_customer(db_session, "Fresh")
    never = _public_customer(db_session, "Never")
    for customer_id in (stale, fresh, never):
        customer_pool_service.claim(db_session, REP_A, customer_id)
    _set_last_contact(db_session, stale, 45)
    _set_last_contact(db_session, fresh, 2)
    _set_last_contact(db_session, never, None)

    found = {customer.id for customer in customer_pool_service.find_inactive(db_session, 30)}
    assert found == {stale, never}

    summary = customer_pool_service.release_inactive(db_session, 30)

    assert summary.threshold_days == 30
    assert summary.found == 2
    assert set(summary.released) == {stale, never}
    assert summary.failed == []
    db_session.expire_all()
    assert customer_pool_service.get_customer(db_session, fresh).status == "PRIVATE"
    assert customer_pool_service.get_customer(db_session, stale).status == "PUBLIC_POOL"
    released_events = [item for item in events.published_events if item["event_type"] == "crm.customer.released"]
    assert {item["actor_user_id"] for item in released_events} == {"system"}


def test_find_inactive_rejects_negative_threshold(db_session: Session) -> None:
    with pytest.raises(ValidationError):
        customer_pool_service.find_inactive(db_session, -1)


def test_pool_settings_override_process_defaults(db_session: Session) -> None:
    defaults = get_pool_settings(db_session)
    assert defaults.customer_claim_limit == get_settings().customer_claim_limit

    with pytest.raises(ForbiddenError):
        update_pool_settings(db_session, REP_A, PoolSettingsUpdate(customer_claim_limit=3))

    updated = update_pool_settings(db_session, ADMIN, PoolSettingsUpdate(customer_claim_limit=3, customer_inactive_days=7))
    assert updated.customer_claim_limit == 3
    assert updated.customer_inactive_days == 7
    assert get_pool_settings(db_session).customer_inactive_days == 7


def test_owner_at_default_limit_cannot_claim_more(db_session: Session) -> None:
    for index in range(50):
        customer_pool_service.create_customer(
            db_session, MANAGER, CustomerCreate(company_name=f"Owned {index}", owner_user_id="rep-a")
        )
    target = _public_customer(db_session, "One Too Many")

    with pytest.raises(CapacityExceededError):
        customer_pool_service.claim(db_session, REP_A, target)

    assert customer_pool_service.get_customer(db_session, target).status == "PUBLIC_POOL"
