from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from sqlalchemy import false, or_
from sqlalchemy.sql import ColumnElement, Select

from app.metrics import observe_visibility_scope
from app.platform.security.context import Principal, Role


RecordT = TypeVar("RecordT")


@dataclass(frozen=True, slots=True)
class ResourceDescriptor:
    """How a resource participates in visibility and assignment decisions."""

    name: str
    label: str
    owner_field: str
    owner_nullable: bool = False
    assignee_field: str | None = None
    status_field: str | None = None
    reset_status: str | None = None

    @property
    def assignable(self) -> bool:
        return self.assignee_field is not None


@dataclass(frozen=True, slots=True)
class VisibilityScope:
    role: Role
    user_ids: frozenset[int]
    unrestricted: bool = False

    def allows_owner(self, owner_id: Any) -> bool:
        if self.unrestricted:
            return True
        if unassigned_is_visible(owner_id):
            return True
        try:
            return int(owner_id) in self.user_ids
        except (TypeError, ValueError):
            return False


def unassigned_is_visible(owner_id: Any) -> bool:
    """New or unclaimed records stay discoverable by every authenticated caller."""

    return owner_id is None


def _admin_scope(principal: Principal, team_member_ids: frozenset[int]) -> VisibilityScope:
    return VisibilityScope(role=Role.ADMIN, user_ids=frozenset(), unrestricted=True)


def _manager_scope(principal: Principal, team_member_ids: frozenset[int]) -> VisibilityScope:
    return VisibilityScope(role=Role.SALES_MANAGER, user_ids=team_member_ids | {principal.id})


def _executive_scope(principal: Principal, team_member_ids: frozenset[int]) -> VisibilityScope:
    return VisibilityScope(role=Role.SALES_EXECUTIVE, user_ids=frozenset({principal.id}))


_SCOPE_BUILDERS: dict[Role, Callable[[Principal, frozenset[int]], VisibilityScope]] = {
    Role.ADMIN: _admin_scope,
    Role.SALES_MANAGER: _manager_scope,
    Role.SALES_EXECUTIVE: _executive_scope,
}


def resolve_scope(principal: Principal, team_member_ids: Iterable[int] = ()) -> VisibilityScope:
    role = Role.parse(principal.role)
    builder = _SCOPE_BUILDERS.get(role, _executive_scope)
    return builder(principal, frozenset(int(item) for item in team_member_ids))


def _read_field(record: Any, field_name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(field_name)
    return getattr(record, field_name, None)


def is_record_visible(
    scope: VisibilityScope,
    record: Any,
    descriptor: ResourceDescriptor,
    linked_ids: frozenset[int] = frozenset(),
) -> bool:
    if scope.allows_owner(_read_field(record, descriptor.owner_field)):
        return True
    record_id = _read_field(record, "id")
    return record_id is not None and record_id in linked_ids


def filter_visible(
    principal: Principal,
    records: Sequence[RecordT],
    descriptor: ResourceDescriptor,
    *,
    team_member_ids: Iterable[int] = (),
    linked_ids: Iterable[int] = (),
) -> list[RecordT]:
    """Return the subset of ``records`` the principal may see, preserving order.

    ``linked_ids`` carries ids made visible through another visible record
    (e.g. a contact referenced by a visible lead).
    """

    scope = resolve_scope(principal, team_member_ids)
    observe_visibility_scope(resource=descriptor.name, role=scope.role.value)
    if scope.unrestricted:
        return list(records)
    linked = frozenset(linked_ids)
    return [record for record in records if is_record_visible(scope, record, descriptor, linked)]


def visibility_clause(
    model: Any,
    descriptor: ResourceDescriptor,
    scope: VisibilityScope,
    extra_clauses: Iterable[ColumnElement[bool]] = (),
) -> ColumnElement[bool] | None:
    """SQL form of the policy; ``None`` means no restriction."""

    if scope.unrestricted:
        return None

    owner_column = getattr(model, descriptor.owner_field)
    clauses: list[ColumnElement[bool]] = []
    if scope.user_ids:
        clauses.append(owner_column.in_(sorted(scope.user_ids)))
    if descriptor.owner_nullable:
        clauses.append(owner_column.is_(None))
    clauses.extend(extra_clauses)
    if not clauses:
        return false()
    return or_(*clauses)


def apply_visibility_filter(
    query: Select[Any],
    model: Any,
    descriptor: ResourceDescriptor,
    scope: VisibilityScope,
    extra_clauses: Iterable[ColumnElement[bool]] = (),
) -> Select[Any]:
    observe_visibility_scope(resource=descriptor.name, role=scope.role.value)
    clause = visibility_clause(model, descriptor, scope, extra_clauses)
    if clause is None:
        return query
    return query.where(clause)
