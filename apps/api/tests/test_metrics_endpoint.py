from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import CRMLead
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[tuple[TestClient, Callable[[int], None]], None, None]:
    db_session.add_all(
        [
            User(id=1, username="admin", full_name="Ada Admin", email="ada@example.com", role="admin"),
            User(id=2, username="manager", full_name="Max Manager", email="max@example.com", role="sales_manager"),
            User(id=3, username="exec", full_name="Eve Exec", email="eve@example.com", role="sales_executive", manager_id=2),
        ]
    )
    db_session.commit()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": 1}

    def override_get_current_principal(request: Request) -> Principal:
        return principal_from_user(db_session.get(User, state["current"]), getattr(request.state, "correlation_id", None))

    def set_actor(user_id: int) -> None:
        state["current"] = user_id

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_principal] = override_get_current_principal

    with TestClient(app) as test_client:
        yield test_client, set_actor

    app.dependency_overrides.clear()


def _sample(name: str, **labels: str) -> float:
    # Counters are process-wide, so tests compare before/after values.
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_metrics_endpoint_exposes_security_and_http_metrics(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    lead = CRMLead(name="Metrics Lead", status="new", created_by=1)
    db_session.add(lead)
    db_session.commit()

    single = dict(resource="lead", mode="single", outcome="success")
    bulk = dict(resource="lead", mode="bulk", outcome="success")
    denied = dict(resource="lead", action="assign")
    single_before = _sample("assignments_total", **single)
    bulk_before = _sample("assignments_total", **bulk)
    denied_before = _sample("permission_denied_total", **denied)

    set_actor(2)
    assert test_client.get(f"/api/crm/leads/{lead.id}").status_code == 200
    assert test_client.patch(f"/api/crm/leads/{lead.id}/assign", json={"assigned_to": 3}).status_code == 200
    assert test_client.post("/api/crm/leads/bulk-assign", json={"lead_ids": [lead.id], "assigned_to": 2}).status_code == 200

    set_actor(3)
    assert test_client.patch(f"/api/crm/leads/{lead.id}/assign", json={"assigned_to": 3}).status_code == 403

    set_actor(1)
    response = test_client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")

    body = response.text
    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert 'path="/api/crm/leads/{id}"' in body
    assert "visibility_scope_evaluations_total" in body
    assert "bulk_assignment_records" in body
    assert _sample("assignments_total", **single) == single_before + 1
    assert _sample("assignments_total", **bulk) == bulk_before + 1
    assert _sample("permission_denied_total", **denied) == denied_before + 1


def test_metrics_endpoint_requires_admin(client: tuple[TestClient, Callable[[int], None]]) -> None:
    test_client, set_actor = client
    set_actor(2)

    response = test_client.get("/metrics")

    assert response.status_code == 403
    assert response.json()["code"] == "permission_denied"


def test_metrics_endpoint_hidden_when_disabled(
    client: tuple[TestClient, Callable[[int], None]],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()
    test_client, _set_actor = client

    response = test_client.get("/metrics")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"
