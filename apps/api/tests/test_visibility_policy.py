from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy import Integer, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.platform.security.context import Principal, Role
from app.platform.security.visibility import (
    ResourceDescriptor,
    apply_visibility_filter,
    filter_visible,
    resolve_scope,
    unassigned_is_visible,
    visibility_clause,
)


LEAD = ResourceDescriptor(name="lead", label="Lead", owner_field="assigned_to", owner_nullable=True)
COMPANY = ResourceDescriptor(name="company", label="Company", owner_field="created_by")


class Base(DeclarativeBase):
    pass


class DemoLead(Base):
    __tablename__ = "demo_lead"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assigned_to: Mapped[int | None] = mapped_column(Integer, nullable=True)


class DemoCompany(Base):
    __tablename__ = "demo_company"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_by: Mapped[int] = mapped_column(Integer)


@dataclass
class Record:
    id: int
    assigned_to: int | None


LEADS = [
    Record(id=1, assigned_to=10),
    Record(id=2, assigned_to=11),
    Record(id=3, assigned_to=None),
    Record(id=4, assigned_to=12),
    Record(id=5, assigned_to=99),
]


def _ids(records: list[Record]) -> list[int]:
    return [record.id for record in records]


def test_admin_sees_every_record() -> None:
    admin = Principal(id=1, role=Role.ADMIN)

    assert filter_visible(admin, LEADS, LEAD) == LEADS


def test_executive_sees_own_and_unassigned_records() -> None:
    executive = Principal(id=10, role=Role.SALES_EXECUTIVE)

    assert _ids(filter_visible(executive, LEADS, LEAD)) == [1, 3]


def test_manager_sees_team_members_self_and_unassigned() -> None:
    manager = Principal(id=12, role=Role.SALES_MANAGER)

    visible = filter_visible(manager, LEADS, LEAD, team_member_ids={10, 11})

    assert _ids(visible) == [1, 2, 3, 4]


def test_manager_without_reports_sees_only_own_and_unassigned() -> None:
    manager = Principal(id=12, role=Role.SALES_MANAGER)

    assert _ids(filter_visible(manager, LEADS, LEAD)) == [3, 4]


def test_unknown_role_fails_closed_to_executive_scope() -> None:
    principal = Principal(id=10, role="regional_director")  # type: ignore[arg-type]

    assert principal.role == Role.SALES_EXECUTIVE
    assert _ids(filter_visible(principal, LEADS, LEAD, team_member_ids={11, 12})) == [1, 3]


@pytest.mark.parametrize("raw", [None, "", "ADMIN ", "Admin", "Sales_Manager", " sales_manager", 42])
def test_role_parse_accepts_exact_values_only(raw: object) -> None:
    assert Role.parse(raw) == Role.SALES_EXECUTIVE


@pytest.mark.parametrize("raw", ["admin", "sales_manager", "sales_executive"])
def test_role_parse_known_values(raw: str) -> None:
    assert Role.parse(raw).value == raw


@pytest.mark.parametrize("raw", ["ADMIN ", "Sales_Manager"])
def test_near_miss_role_gets_executive_visibility(raw: str) -> None:
    near_miss = Principal(id=10, role=raw)  # type: ignore[arg-type]
    executive = Principal(id=10, role=Role.SALES_EXECUTIVE)

    assert near_miss.role == Role.SALES_EXECUTIVE
    assert _ids(filter_visible(near_miss, LEADS, LEAD, team_member_ids={11, 12})) == _ids(
        filter_visible(executive, LEADS, LEAD)
    )


def test_filter_visible_is_order_preserving_subset() -> None:
    executive = Principal(id=11, role=Role.SALES_EXECUTIVE)
    shuffled = [LEADS[4], LEADS[2], LEADS[1], LEADS[0]]

    visible = filter_visible(executive, shuffled, LEAD)

    assert _ids(visible) == [3, 2]
    assert all(record in shuffled for record in visible)


def test_filter_visible_accepts_mappings_and_linked_ids() -> None:
    executive = Principal(id=10, role=Role.SALES_EXECUTIVE)
    companies = [
        {"id": 100, "created_by": 10},
        {"id": 101, "created_by": 20},
        {"id": 102, "created_by": 20},
    ]

    visible = filter_visible(executive, companies, COMPANY, linked_ids={102})

    assert [item["id"] for item in visible] == [100, 102]


def test_empty_input_yields_empty_output() -> None:
    executive = Principal(id=10, role=Role.SALES_EXECUTIVE)

    assert filter_visible(executive, [], LEAD) == []


def test_unassigned_rule_is_explicit() -> None:
    assert unassigned_is_visible(None)
    assert not unassigned_is_visible(0)
    assert not unassigned_is_visible(7)


def test_resolve_scope_per_role() -> None:
    admin_scope = resolve_scope(Principal(id=1, role=Role.ADMIN), [5])
    manager_scope = resolve_scope(Principal(id=2, role=Role.SALES_MANAGER), [3, 4])
    executive_scope = resolve_scope(Principal(id=3, role=Role.SALES_EXECUTIVE), [8, 9])

    assert admin_scope.unrestricted
    assert manager_scope.user_ids == frozenset({2, 3, 4})
    assert executive_scope.user_ids == frozenset({3})


def test_sql_clause_includes_null_owner_only_for_nullable_owner() -> None:
    scope = resolve_scope(Principal(id=3, role=Role.SALES_EXECUTIVE))

    lead_sql = str(apply_visibility_filter(select(DemoLead), DemoLead, LEAD, scope))
    company_sql = str(apply_visibility_filter(select(DemoCompany), DemoCompany, COMPANY, scope))

    assert "demo_lead.assigned_to IN" in lead_sql
    assert "demo_lead.assigned_to IS NULL" in lead_sql
    assert "demo_company.created_by IN" in company_sql
    assert "IS NULL" not in company_sql


def test_sql_clause_is_absent_for_admin() -> None:
    scope = resolve_scope(Principal(id=1, role=Role.ADMIN))

    assert visibility_clause(DemoLead, LEAD, scope) is None
    assert "WHERE" not in str(apply_visibility_filter(select(DemoLead), DemoLead, LEAD, scope))
