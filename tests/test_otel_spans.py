from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from salesfunnel.core.auth import issue_token
from salesfunnel.core.config import get_settings
from salesfunnel.core.database import Base, build_engine, build_sessionmaker, get_db
from salesfunnel.main import app
from salesfunnel.otel import setup_inmemory_otel


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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _headers(correlation_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token('rep-a', ['sales_rep'])}", "X-Correlation-Id": correlation_id}


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post("/api/funnel/customers", json={"company_name": "Span Co"}, headers=_headers("otel-corr-1"))
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_claim_span_carries_customer_and_owner(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    customer = client.post("/api/funnel/customers", json={"company_name": "Claim Span Co"}, headers=_headers("otel-2"))
    customer_id = customer.json()["id"]

    response = client.post(f"/api/funnel/customers/{customer_id}/claim", headers=_headers("otel-3"))
    assert response.status_code == 200

    claim_spans = [span for span in span_exporter.get_finished_spans() if span.name == "crm.customer.claim"]
    assert claim_spans
    assert claim_spans[-1].attributes.get("customer_id") == customer_id
    assert claim_spans[-1].attributes.get("owner_user_id") == "rep-a"
    assert claim_spans[-1].attributes.get("correlation_id") == "otel-3"
    assert claim_spans[-1].attributes.get("actor_user_id") == "rep-a"
