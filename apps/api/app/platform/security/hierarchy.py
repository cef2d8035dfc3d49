from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.platform.security.context import Principal, Role
from app.teams.models import User


class TeamHierarchyResolver:
    """Resolves the users reporting to a manager along the ``manager_id`` chain."""

    CACHE_KEY = "security.team_member_ids"

    def __init__(self, *, transitive: bool | None = None) -> None:
        self._transitive = transitive

    @property
    def transitive(self) -> bool:
        if self._transitive is None:
            return get_settings().team_hierarchy_transitive
        return self._transitive

    def get_team_member_ids(self, session: Session, manager_id: int) -> set[int]:
        """Return ids of users who report to ``manager_id``. The manager is never included."""

        member_ids: set[int] = set()
        frontier: set[int] = {manager_id}
        visited: set[int] = {manager_id}
        while frontier:
            reports = self._direct_reports(session, frontier)
            fresh = {user_id for user_id in reports if user_id not in visited}
            member_ids.update(fresh)
            if not self.transitive:
                break
            visited.update(fresh)
            frontier = fresh
        member_ids.discard(manager_id)
        return member_ids

    def team_member_ids_for(self, session: Session, principal: Principal) -> frozenset[int]:
        """Per-request cached team members for a principal; empty for non-managers."""

        cached = principal._cache.get(self.CACHE_KEY)
        if isinstance(cached, frozenset):
            return cached

        if principal.role != Role.SALES_MANAGER:
            resolved: frozenset[int] = frozenset()
        else:
            resolved = frozenset(self.get_team_member_ids(session, principal.id))
        principal._cache[self.CACHE_KEY] = resolved
        return resolved

    @staticmethod
    def _direct_reports(session: Session, manager_ids: Iterable[int]) -> set[int]:
        rows = session.scalars(select(User.id).where(User.manager_id.in_(sorted(manager_ids)))).all()
        return {int(row) for row in rows}


team_hierarchy_resolver = TeamHierarchyResolver()


def get_team_member_ids(session: Session, manager_id: int) -> set[int]:
    return team_hierarchy_resolver.get_team_member_ids(session, manager_id)
