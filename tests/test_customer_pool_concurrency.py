from __future__ import annotations

import threading
import uuid
from collections import Counter
from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from salesfunnel.business.errors import FunnelError
from salesfunnel.core.config import get_settings
from salesfunnel.core.database import Base, build_engine, build_sessionmaker
from salesfunnel.crm.models import CRMCustomer
from salesfunnel.crm.schemas import CustomerCreate
from salesfunnel.crm.service import customer_pool_service
from salesfunnel.platform.security.context import Actor


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    get_settings.cache_clear()
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'pool.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        get_settings.cache_clear()


@pytest.fixture()
def SessionLocal(engine: Engine) -> sessionmaker[Session]:
    return build_sessionmaker(engine)


def _seed(SessionLocal: sessionmaker[Session], count: int) -> list[uuid.UUID]:
    seeder = Actor(user_id="seeder", role="admin")
    with SessionLocal() as session:
        return [
            customer_pool_service.create_customer(session, seeder, CustomerCreate(company_name=f"Pool {index}")).id
            for index in range(count)
        ]


def _run_threads(targets: list[threading.Thread]) -> None:
    for thread in targets:
        thread.start()
    for thread in targets:
        thread.join(timeout=60)
    assert not any(thread.is_alive() for thread in targets)


def test_concurrent_claims_by_one_owner_never_exceed_capacity(SessionLocal: sessionmaker[Session]) -> None:
    customer_ids = _seed(SessionLocal, 12)
    limit = 5
    actor = Actor(user_id="rep-race", role="sales_rep")
    outcomes: list[str] = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(customer_ids))

    def worker(customer_id: uuid.UUID) -> None:
        barrier.wait()
        with SessionLocal() as session:
            try:
                customer_pool_service.claim(session, actor, customer_id, claim_limit=limit)
            except FunnelError as exc:
                outcome = exc.code
            else:
                outcome = "claimed"
        with lock:
            outcomes.append(outcome)

    _run_threads([threading.Thread(target=worker, args=(customer_id,)) for customer_id in customer_ids])

    tally = Counter(outcomes)
    assert tally["claimed"] == limit
    assert tally["capacity_exceeded"] == len(customer_ids) - limit
    with SessionLocal() as session:
        owned = session.scalar(
            select(func.count()).select_from(CRMCustomer).where(CRMCustomer.owner_user_id == "rep-race")
        )
    assert owned == limit


def test_concurrent_claims_of_one_customer_have_a_single_winner(SessionLocal: sessionmaker[Session]) -> None:
    (customer_id,) = _seed(SessionLocal, 1)
    actors = [Actor(user_id=f"rep-{index}", role="sales_rep") for index in range(8)]
    winners: list[str] = []
    losers: list[str] = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(actors))

    def worker(actor: Actor) -> None:
        barrier.wait()
        with SessionLocal() as session:
            try:
                customer_pool_service.claim(session, actor, customer_id)
            except FunnelError as exc:
                with lock:
                    losers.append(exc.code)
            else:
                with lock:
                    winners.append(actor.user_id)

    _run_threads([threading.Thread(target=worker, args=(actor,)) for actor in actors])

    assert len(winners) == 1
    assert losers == ["conflict"] * (len(actors) - 1)
    with SessionLocal() as session:
        customer = session.get(CRMCustomer, customer_id)
        assert customer is not None
        assert customer.status == "PRIVATE"
        assert customer.owner_user_id == winners[0]
