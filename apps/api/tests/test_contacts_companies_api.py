from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime, timezone

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import CRMCompany, CRMContact, CRMLead, CRMOpportunity
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
    get_settings.cache_clear()
    reset_rate_limiter()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[tuple[TestClient, Callable[[int], None]], None, None]:
    db_session.add_all(
        [
            User(id=ADMIN, username="admin", full_name="Ada Admin", email="ada@example.com", role="admin"),
            User(id=MANAGER, username="manager", full_name="Max Manager", email="max@example.com", role="sales_manager"),
            User(id=EXEC_A, username="exec-a", full_name="Eve Exec", email="eve@example.com", role="sales_executive", manager_id=MANAGER),
            User(id=EXEC_B, username="exec-b", full_name="Ben Exec", email="ben@example.com", role="sales_executive", manager_id=MANAGER),
            User(id=OUTSIDER, username="outsider", full_name="Olly Outsider", email="olly@example.com", role="sales_executive"),
        ]
    )
    db_session.commit()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": ADMIN}

    def override_get_current_principal(request: Request) -> Principal:
        return principal_from_user(db_session.get(User, state["current"]), getattr(request.state, "correlation_id", None))

    def set_actor(user_id: int) -> None:
        state["current"] = user_id

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_principal] = override_get_current_principal
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


@pytest.fixture()
def pipeline(db_session: Session, client: tuple[TestClient, Callable[[int], None]]) -> dict[str, int]:
    company = CRMCompany(name="St. Mary Hospital", industry="hospital", created_by=ADMIN)
    other_company = CRMCompany(name="Northside Clinic", industry="clinic", created_by=ADMIN)
    db_session.add_all([company, other_company])
    db_session.flush()

    linked_contact = CRMContact(first_name="Carla", last_name="Cruz", company_id=company.id, created_by=ADMIN)
    unlinked_contact = CRMContact(first_name="Dan", last_name="Doe", company_id=company.id, created_by=ADMIN)
    db_session.add_all([linked_contact, unlinked_contact])
    db_session.flush()

    lead = CRMLead(
        name="Ward upgrade",
        status="new",
        assigned_to=EXEC_A,
        contact_id=linked_contact.id,
        company_id=company.id,
        created_by=ADMIN,
    )
    opportunity = CRMOpportunity(
        name="Northside imaging",
        stage="proposal",
        assigned_to=OUTSIDER,
        company_id=other_company.id,
        created_by=ADMIN,
    )
    db_session.add_all([lead, opportunity])
    db_session.commit()
    return {
        "company": company.id,
        "other_company": other_company.id,
        "linked_contact": linked_contact.id,
        "unlinked_contact": unlinked_contact.id,
        "lead": lead.id,
        "opportunity": opportunity.id,
    }


def _ids(response) -> set[int]:  # type: ignore[no-untyped-def]
    return {item["id"] for item in response.json()}


def test_contacts_visible_through_visible_leads(
    client: tuple[TestClient, Callable[[int], None]],
    pipeline: dict[str, int],
) -> None:
    test_client, set_actor = client

    set_actor(EXEC_A)
    assert _ids(test_client.get("/api/crm/contacts")) == {pipeline["linked_contact"]}
    assert test_client.get(f"/api/crm/contacts/{pipeline['linked_contact']}").status_code == 200

    hidden = test_client.get(f"/api/crm/contacts/{pipeline['unlinked_contact']}")
    assert hidden.status_code == 404
    assert hidden.json()["code"] == "crm_contact_get_failed"
    assert hidden.json()["message"] == "Contact not found"

    set_actor(MANAGER)
    assert _ids(test_client.get("/api/crm/contacts")) == {pipeline["linked_contact"]}

    set_actor(EXEC_B)
    assert test_client.get("/api/crm/contacts").json() == []

    set_actor(ADMIN)
    assert _ids(test_client.get("/api/crm/contacts")) == {pipeline["linked_contact"], pipeline["unlinked_contact"]}


def test_companies_visible_through_leads_and_opportunities(
    client: tuple[TestClient, Callable[[int], None]],
    pipeline: dict[str, int],
) -> None:
    test_client, set_actor = client

    set_actor(EXEC_A)
    assert _ids(test_client.get("/api/crm/companies")) == {pipeline["company"]}

    set_actor(OUTSIDER)
    assert _ids(test_client.get("/api/crm/companies")) == {pipeline["other_company"]}
    assert test_client.get(f"/api/crm/companies/{pipeline['company']}").status_code == 404

    set_actor(MANAGER)
    assert _ids(test_client.get("/api/crm/companies")) == {pipeline["company"]}


def test_own_contacts_stay_private_to_the_creator(client: tuple[TestClient, Callable[[int], None]]) -> None:
    test_client, set_actor = client

    set_actor(EXEC_A)
    created = test_client.post(
        "/api/crm/contacts",
        json={"first_name": "Nora", "last_name": "Nurse", "email": "nora@example.com"},
    )
    assert created.status_code == 201
    contact_id = created.json()["id"]
    assert created.json()["created_by"] == EXEC_A

    set_actor(EXEC_B)
    assert test_client.get(f"/api/crm/contacts/{contact_id}").status_code == 404

    set_actor(MANAGER)
    assert test_client.get(f"/api/crm/contacts/{contact_id}").status_code == 200


def test_soft_deleted_lead_no_longer_links_contact(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
    pipeline: dict[str, int],
) -> None:
    test_client, set_actor = client
    lead = db_session.get(CRMLead, pipeline["lead"])
    lead.deleted_at = datetime.now(timezone.utc)
    db_session.commit()

    set_actor(EXEC_A)

    assert test_client.get("/api/crm/contacts").json() == []
    assert test_client.get("/api/crm/companies").json() == []


def test_unassigned_lead_links_contact_for_everyone(
    client: tuple[TestClient, Callable[[int], None]],
    db_session: Session,
    pipeline: dict[str, int],
) -> None:
    test_client, set_actor = client
    db_session.add(CRMLead(name="Walk-in", status="new", contact_id=pipeline["unlinked_contact"], created_by=ADMIN))
    db_session.commit()

    set_actor(OUTSIDER)

    assert _ids(test_client.get("/api/crm/contacts")) == {pipeline["unlinked_contact"]}


def test_company_sub_listings_are_filtered(
    client: tuple[TestClient, Callable[[int], None]],
    pipeline: dict[str, int],
) -> None:
    test_client, set_actor = client

    set_actor(EXEC_A)
    contacts = test_client.get(f"/api/crm/companies/{pipeline['company']}/contacts")
    assert contacts.status_code == 200
    assert _ids(contacts) == {pipeline["linked_contact"]}
    assert test_client.get(f"/api/crm/companies/{pipeline['company']}/opportunities").json() == []

    leads = test_client.get(f"/api/crm/contacts/{pipeline['linked_contact']}/leads")
    assert _ids(leads) == {pipeline["lead"]}

    missing = test_client.get(f"/api/crm/companies/{pipeline['other_company']}/contacts")
    assert missing.status_code == 404
    assert missing.json()["code"] == "crm_company_contacts_failed"


def test_contact_references_are_validated(client: tuple[TestClient, Callable[[int], None]]) -> None:
    test_client, set_actor = client
    set_actor(EXEC_A)

    response = test_client.post(
        "/api/crm/contacts",
        json={"first_name": "Ivy", "last_name": "Intern", "company_id": 9999},
    )

    assert response.status_code == 422
    assert response.json()["message"] == "Company not found"
    assert test_client.post("/api/crm/contacts", json={"first_name": "Ivy", "last_name": "Intern", "email": "bad"}).status_code == 422


def test_company_update_and_delete(client: tuple[TestClient, Callable[[int], None]]) -> None:
    test_client, set_actor = client
    set_actor(EXEC_A)

    created = test_client.post("/api/crm/companies", json={"name": "Lakeside Hospital", "hospital_size": "200 beds"})
    assert created.status_code == 201
    company_id = created.json()["id"]

    updated = test_client.patch(f"/api/crm/companies/{company_id}", json={"industry": "hospital"})
    assert updated.status_code == 200
    assert updated.json()["industry"] == "hospital"
    assert updated.json()["name"] == "Lakeside Hospital"

    set_actor(EXEC_B)
    assert test_client.delete(f"/api/crm/companies/{company_id}").status_code == 404

    set_actor(EXEC_A)
    assert test_client.delete(f"/api/crm/companies/{company_id}").json() == {"status": "deleted"}
    assert test_client.get(f"/api/crm/companies/{company_id}").status_code == 404

    event_types = [item["event_type"] for item in events.published_events]
    assert event_types[-3:] == ["crm.company.created", "crm.company.updated", "crm.company.deleted"]
