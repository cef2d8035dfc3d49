from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.context import reset_correlation_id, set_correlation_id
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import CRMLead
from app.logging import JsonLogFormatter, RequestContextFilter
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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


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


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get("/api/crm/leads/4242", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/crm/leads/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_assignment_logs_carry_actor_and_correlation(
    client: TestClient,
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    lead = CRMLead(name="Logged Lead", status="new", created_by=1)
    db_session.add(lead)
    db_session.commit()

    response = client.patch(
        f"/api/crm/leads/{lead.id}/assign",
        json={"assigned_to": 2},
        headers={"X-Correlation-Id": "assign-log-1"},
    )
    assert response.status_code == 200

    records = [record for record in caplog.records if record.name == "app.security"]
    assert any(
        record.getMessage() == "assignment.applied"
        and getattr(record, "correlation_id", None) == "assign-log-1"
        and getattr(record, "actor_id", None) == 1
        and getattr(record, "resource", None) == "lead"
        and getattr(record, "record_id", None) == lead.id
        and getattr(record, "assignee_id", None) == 2
        and getattr(record, "previous_assignee_id", None) is None
        for record in records
    )


def test_json_formatter_emits_known_fields_only() -> None:
    token = set_correlation_id("fmt-1")
    try:
        record = logging.makeLogRecord(
            {
                "name": "app.security",
                "levelname": "INFO",
                "msg": "assignment.applied",
                "resource": "lead",
                "record_id": 7,
                "password": "never-logged",
            }
        )
        RequestContextFilter().filter(record)
        payload = json.loads(JsonLogFormatter().format(record))
    finally:
        reset_correlation_id(token)

    assert payload["msg"] == "assignment.applied"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"] == {"resource": "lead", "record_id": 7}


def test_json_formatter_keeps_directory_fields() -> None:
    record = logging.makeLogRecord(
        {
            "name": "app.teams",
            "levelname": "INFO",
            "msg": "user.team_assigned",
            "record_id": 4,
            "team_id": None,
            "previous_team_id": 2,
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["fields"] == {"previous_team_id": 2, "record_id": 4}
