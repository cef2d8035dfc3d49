from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import CRMActivity, CRMLead
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.platform.security.context import Principal
from app.platform.security.principal import get_current_principal, principal_from_user
from app.teams.models import User


ADMIN, MANAGER, EXEC_A, EXEC_B, OUTSIDER = 1, 2, 3, 4, 5


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
    monkeypatch.setenv("BULK_ASSIGN_MAX_IDS", "5")
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.security_events.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def users(db_session: Session) -> None:
    db_session.add_all(
        [
            User(id=ADMIN, username="admin", full_name="Ada Admin", email="ada@example.com", role="admin"),
            User(id=MANAGER, username="manager", full_name="Max Manager", email="max@example.com", role="sales_manager"),
            User(
                id=EXEC_A,
                username="exec-a",
                full_name="Eve Exec",
                email="eve@example.com",
                role="sales_executive",
                manager_id=MANAGER,
            ),
            User(
                id=EXEC_B,
                username="exec-b",
                full_name="Ben Exec",
                email="ben@example.com",
                role="sales_executive",
                manager_id=MANAGER,
            ),
            User(
                id=OUTSIDER,
                username="outsider",
                full_name="Olly Outsider",
                email="olly@example.com",
                role="sales_executive",
            ),
        ]
    )
    db_session.commit()


@pytest.fixture()
def client(db_session: Session, users: None) -> Generator[tuple[TestClient, Callable[[int], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": ADMIN}

    def override_get_current_principal(request: Request) -> Principal:
        user = db_session.get(User, state["current"])
        return principal_from_user(user, getattr(request.state, "correlation_id", None))

    def set_actor(user_id: int) -> None:
        state["current"] = user_id

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_principal] = override_get_current_principal
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def _seed_leads(session: Session) -> dict[str, int]:
    leads = {
        "mine": CRMLead(name="Lead A", status="contacted", assigned_to=EXEC_A, created_by=ADMIN),
        "teammate": CRMLead(name="Lead B", status="contacted", assigned_to=EXEC_B, created_by=ADMIN),
        "unassigned": CRMLead(name="Lead C", status="contacted", assigned_to=None, created_by=ADMIN),
        "outsider": CRMLead(name="Lead D", status="contacted", assigned_to=OUTSIDER, created_by=ADMIN),
        "manager": CRMLead(name="Lead E", status="contacted", assigned_to=MANAGER, created_by=ADMIN),
    }
    session.add_all(leads.values())
    session.commit()
    return {key: lead.id for key, lead in leads.items()}


def _names(response) -> set[str]:  # type: ignore[no-untyped-def]
    return {item["name"] for item in response.json()}


def test_list_leads_scoped_by_role(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    _seed_leads(db_session)

    set_actor(ADMIN)
    assert _names(test_client.get("/api/crm/leads")) == {"Lead A", "Lead B", "Lead C", "Lead D", "Lead E"}

    set_actor(MANAGER)
    assert _names(test_client.get("/api/crm/leads")) == {"Lead A", "Lead B", "Lead C", "Lead E"}

    set_actor(EXEC_A)
    assert _names(test_client.get("/api/crm/leads")) == {"Lead A", "Lead C"}

    set_actor(OUTSIDER)
    assert _names(test_client.get("/api/crm/leads")) == {"Lead C", "Lead D"}


def test_list_leads_filters_and_pagination(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    _seed_leads(db_session)
    set_actor(ADMIN)

    unassigned = test_client.get("/api/crm/leads", params={"unassigned": "true"})
    assert _names(unassigned) == {"Lead C"}

    by_assignee = test_client.get("/api/crm/leads", params={"assigned_to": EXEC_B})
    assert _names(by_assignee) == {"Lead B"}

    first_page = test_client.get("/api/crm/leads", params={"limit": 2})
    second_page = test_client.get("/api/crm/leads", params={"limit": 2, "cursor": "2"})
    assert len(first_page.json()) == 2
    assert len(second_page.json()) == 2
    assert not _names(first_page) & _names(second_page)

    assert test_client.get("/api/crm/leads", params={"limit": 500}).status_code == 422


def test_hidden_lead_is_not_found(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)
    set_actor(EXEC_A)

    hidden = test_client.get(f"/api/crm/leads/{ids['outsider']}")
    assert hidden.status_code == 404
    body = hidden.json()
    assert body["code"] == "crm_lead_get_failed"
    assert body["message"] == "Lead not found"

    visible = test_client.get(f"/api/crm/leads/{ids['unassigned']}")
    assert visible.status_code == 200

    patch = test_client.patch(f"/api/crm/leads/{ids['outsider']}", json={"notes": "x"})
    assert patch.status_code == 404
    delete = test_client.delete(f"/api/crm/leads/{ids['outsider']}")
    assert delete.status_code == 404


def test_create_lead_defaults_and_assignment_rules(client: tuple[TestClient, Callable[[int], None]]) -> None:
    test_client, set_actor = client

    set_actor(EXEC_A)
    created = test_client.post("/api/crm/leads", json={"name": "City Clinic", "source": "referral"})
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "new"
    assert body["assigned_to"] is None
    assert body["created_by"] == EXEC_A

    self_assigned = test_client.post("/api/crm/leads", json={"name": "Self Clinic", "assigned_to": EXEC_A})
    assert self_assigned.status_code == 201
    assert self_assigned.json()["assigned_to"] == EXEC_A

    other_assigned = test_client.post("/api/crm/leads", json={"name": "Other Clinic", "assigned_to": EXEC_B})
    assert other_assigned.status_code == 403
    assert other_assigned.json()["message"] == "Permission denied"

    set_actor(MANAGER)
    managed = test_client.post("/api/crm/leads", json={"name": "Managed Clinic", "assigned_to": EXEC_B})
    assert managed.status_code == 201
    assert managed.json()["assigned_to"] == EXEC_B

    missing_user = test_client.post("/api/crm/leads", json={"name": "Ghost Clinic", "assigned_to": 999})
    assert missing_user.status_code == 422
    assert missing_user.json()["message"] == "User not found"

    missing_company = test_client.post("/api/crm/leads", json={"name": "Orphan", "company_id": 999})
    assert missing_company.status_code == 422
    assert missing_company.json()["message"] == "Company not found"

    assert test_client.post("/api/crm/leads", json={"source": "web"}).status_code == 422


def test_patch_ignores_assigned_to(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)
    set_actor(EXEC_A)

    response = test_client.patch(
        f"/api/crm/leads/{ids['mine']}",
        json={"status": "qualified", "assigned_to": OUTSIDER},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "qualified"
    assert body["assigned_to"] == EXEC_A


def test_soft_delete_hides_lead(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)
    set_actor(EXEC_A)

    response = test_client.delete(f"/api/crm/leads/{ids['mine']}")
    assert response.status_code == 200
    assert response.json() == {"status": "deleted"}

    assert test_client.get(f"/api/crm/leads/{ids['mine']}").status_code == 404
    lead = db_session.get(CRMLead, ids["mine"])
    assert lead is not None
    assert lead.deleted_at is not None


def test_executive_cannot_assign_lead(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)
    set_actor(EXEC_A)

    response = test_client.patch(f"/api/crm/leads/{ids['mine']}/assign", json={"assigned_to": EXEC_B})

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "crm_lead_assign_failed"
    assert body["message"] == "Permission denied"
    assert db_session.get(CRMLead, ids["mine"]).assigned_to == EXEC_A
    assert audit.security_events[-1]["action"] == "assignment.denied"


def test_manager_assigns_unassigned_lead(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)
    set_actor(MANAGER)

    response = test_client.patch(
        f"/api/crm/leads/{ids['unassigned']}/assign",
        json={"assigned_to": EXEC_B, "assignment_notes": "Territory handover"},
        headers={"X-Correlation-Id": "assign-corr-1"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["assigned_to"] == EXEC_B
    assert body["status"] == "new"

    activities = test_client.get(f"/api/crm/leads/{ids['unassigned']}/activities").json()
    assert [(item["type"], item["title"], item["description"]) for item in activities] == [
        ("assignment", "Lead assigned to Ben Exec", "Territory handover")
    ]

    assigned_events = [item for item in events.published_events if item["event_type"] == "crm.lead.assigned"]
    assert assigned_events[-1]["correlation_id"] == "assign-corr-1"


def test_assignment_is_not_limited_by_visibility(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)
    set_actor(MANAGER)

    # The outsider's lead is outside the manager's scope but the role gate alone decides.
    response = test_client.patch(f"/api/crm/leads/{ids['outsider']}/assign", json={"assigned_to": EXEC_A})

    assert response.status_code == 200
    assert response.json()["assigned_to"] == EXEC_A
    assert response.json()["status"] == "contacted"


def test_assign_missing_lead_then_missing_user(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)
    set_actor(ADMIN)

    missing_lead = test_client.patch("/api/crm/leads/9999/assign", json={"assigned_to": 9999})
    assert missing_lead.status_code == 404
    assert missing_lead.json()["message"] == "Lead not found"

    missing_user = test_client.patch(f"/api/crm/leads/{ids['mine']}/assign", json={"assigned_to": 9999})
    assert missing_user.status_code == 404
    assert missing_user.json()["message"] == "User not found"

    assert test_client.patch(f"/api/crm/leads/{ids['mine']}/assign", json={}).status_code == 422


def test_bulk_assign_reports_partial_failure(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)
    set_actor(MANAGER)

    response = test_client.post(
        "/api/crm/leads/bulk-assign",
        json={"lead_ids": [ids["unassigned"], 9999, ids["teammate"]], "assigned_to": EXEC_A},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["results"] == [
        {"id": ids["unassigned"], "success": True, "error": None},
        {"id": 9999, "success": False, "error": "Lead not found"},
        {"id": ids["teammate"], "success": True, "error": None},
    ]
    assert db_session.get(CRMLead, ids["unassigned"]).assigned_to == EXEC_A
    assert db_session.get(CRMLead, ids["teammate"]).assigned_to == EXEC_A

    activities = db_session.scalars(select(CRMActivity).where(CRMActivity.type == "assignment")).all()
    assert len(activities) == 2
    assert all(activity.description == "Bulk assignment by Max Manager" for activity in activities)


def test_bulk_assign_all_success(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)
    set_actor(ADMIN)

    response = test_client.post(
        "/api/crm/leads/bulk-assign",
        json={"lead_ids": [ids["mine"], ids["outsider"]], "assigned_to": EXEC_B, "notes": "Rebalance"},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_bulk_assign_rejections(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)

    set_actor(EXEC_A)
    denied = test_client.post("/api/crm/leads/bulk-assign", json={"lead_ids": [ids["mine"]], "assigned_to": EXEC_A})
    assert denied.status_code == 403

    set_actor(MANAGER)
    missing_user = test_client.post(
        "/api/crm/leads/bulk-assign",
        json={"lead_ids": [ids["mine"]], "assigned_to": 9999},
    )
    assert missing_user.status_code == 404
    assert missing_user.json()["message"] == "User not found"
    assert db_session.get(CRMLead, ids["mine"]).assigned_to == EXEC_A

    empty = test_client.post("/api/crm/leads/bulk-assign", json={"lead_ids": [], "assigned_to": EXEC_A})
    assert empty.status_code == 422

    too_many = test_client.post(
        "/api/crm/leads/bulk-assign",
        json={"lead_ids": [1, 2, 3, 4, 5, 6], "assigned_to": EXEC_A},
    )
    assert too_many.status_code == 422


def test_lead_sub_listings_respect_visibility(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    ids = _seed_leads(db_session)

    set_actor(ADMIN)
    opportunity = test_client.post(
        "/api/crm/opportunities",
        json={"name": "Lead C Deal", "lead_id": ids["unassigned"], "assigned_to": OUTSIDER},
    )
    assert opportunity.status_code == 201
    task = test_client.post(
        "/api/crm/tasks",
        json={"title": "Call Lead C", "related_to": "lead", "related_id": ids["unassigned"], "assigned_to": EXEC_A},
    )
    assert task.status_code == 201

    set_actor(EXEC_A)
    assert test_client.get(f"/api/crm/leads/{ids['unassigned']}/opportunities").json() == []
    tasks = test_client.get(f"/api/crm/leads/{ids['unassigned']}/tasks").json()
    assert [item["title"] for item in tasks] == ["Call Lead C"]

    assert test_client.get(f"/api/crm/leads/{ids['outsider']}/tasks").status_code == 404
