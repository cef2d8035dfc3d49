from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.sql import ColumnElement, Select

from app.platform.security.context import Principal
from app.platform.security.hierarchy import team_hierarchy_resolver
from app.platform.security.visibility import (
    ResourceDescriptor,
    VisibilityScope,
    apply_visibility_filter,
    resolve_scope,
)


class BaseRepository:
    model: Any = None
    descriptor: ResourceDescriptor

    def resolve_scope(self, session: Session, principal: Principal) -> VisibilityScope:
        team_member_ids = team_hierarchy_resolver.team_member_ids_for(session, principal)
        return resolve_scope(principal, team_member_ids)

    def linked_clauses(
        self,
        session: Session,
        principal: Principal,
        scope: VisibilityScope,
    ) -> list[ColumnElement[bool]]:
        """Extra OR-clauses that make records visible through another visible record."""

        return []

    def apply_scope_query(self, query: Select[Any], session: Session, principal: Principal) -> Select[Any]:
        scope = self.resolve_scope(session, principal)
        extra = [] if scope.unrestricted else self.linked_clauses(session, principal, scope)
        return apply_visibility_filter(query, self.model, self.descriptor, scope, extra)

    def visible_ids(self, session: Session, principal: Principal) -> Select[Any]:
        """Sub-select of the ids the principal may see, evaluated at query time."""

        query = select(self.model.id).where(self.model.deleted_at.is_(None))
        return self.apply_scope_query(query, session, principal)

    def base_query(self) -> Select[Any]:
        return select(self.model).where(self.model.deleted_at.is_(None))

    def get_visible(self, session: Session, principal: Principal, record_id: int) -> Any | None:
        query = self.base_query().where(self.model.id == record_id)
        return session.scalar(self.apply_scope_query(query, session, principal))

    def list_visible(
        self,
        session: Session,
        principal: Principal,
        query: Select[Any] | None = None,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Sequence[Any]:
        stmt = self.apply_scope_query(query if query is not None else self.base_query(), session, principal)
        stmt = stmt.order_by(self.model.created_at.desc(), self.model.id.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return session.scalars(stmt).all()
