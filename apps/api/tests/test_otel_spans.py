from __future__ import annotations

import os
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import CRMLead
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.otel import setup_inmemory_otel
from app.platform.security.context import Principal
from app.platform.security.principal import get_current_principal, principal_from_user
from app.teams.models import User


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    db_session.add_all(
        [
            User(id=1, username="manager", full_name="Max Manager", email="max@example.com", role="sales_manager"),
            User(id=2, username="exec", full_name="Eve Exec", email="eve@example.com", role="sales_executive", manager_id=1),
        ]
    )
    db_session.commit()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_principal(request: Request) -> Principal:
        return principal_from_user(db_session.get(User, 1), getattr(request.state, "correlation_id", None))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_principal] = override_get_current_principal
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post("/api/crm/leads", json={"name": "Traced Lead"}, headers={"X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_assignment_span_records_target(
    client: TestClient,
    db_session: Session,
    span_exporter: InMemorySpanExporter,
) -> None:
    lead = CRMLead(name="Span Lead", status="new", created_by=1)
    db_session.add(lead)
    db_session.commit()

    response = client.patch(
        f"/api/crm/leads/{lead.id}/assign",
        json={"assigned_to": 2},
        headers={"X-Correlation-Id": "otel-assign-1"},
    )
    assert response.status_code == 200

    assign_spans = [span for span in span_exporter.get_finished_spans() if span.name == "security.assign"]
    assert assign_spans
    assert any(
        span.attributes.get("crm.resource") == "lead"
        and span.attributes.get("crm.record_id") == lead.id
        and span.attributes.get("crm.assignee_id") == 2
        for span in assign_spans
    )


def test_bulk_assignment_span_counts_failures(
    client: TestClient,
    db_session: Session,
    span_exporter: InMemorySpanExporter,
) -> None:
    lead = CRMLead(name="Bulk Span Lead", status="new", created_by=1)
    db_session.add(lead)
    db_session.commit()

    response = client.post("/api/crm/leads/bulk-assign", json={"lead_ids": [lead.id, 9999], "assigned_to": 2})
    assert response.status_code == 200

    bulk_spans = [span for span in span_exporter.get_finished_spans() if span.name == "security.bulk_assign"]
    assert bulk_spans
    assert bulk_spans[-1].attributes.get("crm.requested") == 2
    assert bulk_spans[-1].attributes.get("crm.failed") == 1
