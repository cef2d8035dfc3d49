from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.auth import hash_password
from app.core.database import transaction_scope
from app.crm.models import CRMActivity, CRMLead, CRMOpportunity
from app.crm.repositories import lead_repository, opportunity_repository
from app.crm.schemas import LeadRead, OpportunityRead
from app.crm.service import publish_crm_event, visible_for_team
from app.metrics import observe_permission_denied
from app.platform.security.context import MANAGERIAL_ROLES, Principal, Role
from app.platform.security.hierarchy import get_team_member_ids
from app.teams.models import Team, User
from app.teams.schemas import (
    AssignManagerRequest,
    AssignTeamRequest,
    TeamCreate,
    TeamRead,
    TeamUpdate,
    UserCreate,
    UserRead,
)


logger = logging.getLogger("app.teams")


def _forbidden(resource: str, action: str) -> HTTPException:
    observe_permission_denied(resource=resource, action=action)
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permission denied")


class UserService:
    def list_users(self, session: Session) -> list[UserRead]:
        rows = session.scalars(select(User).order_by(User.id.asc())).all()
        return [UserRead.model_validate(row) for row in rows]

    def get_user(self, session: Session, user_id: int) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user

    def create_user(self, session: Session, principal: Principal, dto: UserCreate) -> UserRead:
        if session.scalar(select(User.id).where(User.username == dto.username)) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")
        if dto.team_id is not None:
            self._require_team(session, dto.team_id)
        if dto.manager_id is not None:
            self._require_manager(session, dto.manager_id)

        with transaction_scope(session):
            user = User(
                username=dto.username,
                password_hash=hash_password(dto.password) if dto.password else None,
                full_name=dto.full_name,
                email=str(dto.email),
                role=dto.role,
                team_id=dto.team_id,
                manager_id=dto.manager_id,
            )
            session.add(user)

        logger.info("user.created", extra={"actor_id": principal.id, "record_id": user.id, "role": user.role})
        publish_crm_event("user.created", principal, {"user_id": user.id, "role": user.role})
        return UserRead.model_validate(user)

    def list_manager_members(self, session: Session, principal: Principal, manager_id: int) -> list[UserRead]:
        if not principal.is_admin and principal.id != manager_id:
            raise _forbidden("user", "list_members")

        manager = self.get_user(session, manager_id)
        if Role.parse(manager.role) != Role.SALES_MANAGER and not principal.is_admin:
            raise _forbidden("user", "list_members")

        member_ids = get_team_member_ids(session, manager.id)
        if not member_ids:
            return []
        rows = session.scalars(select(User).where(User.id.in_(sorted(member_ids))).order_by(User.id.asc())).all()
        return [UserRead.model_validate(row) for row in rows]

    def assign_team(self, session: Session, principal: Principal, user_id: int, dto: AssignTeamRequest) -> UserRead:
        user = self.get_user(session, user_id)
        team = self._require_team(session, dto.team_id) if dto.team_id is not None else None

        with transaction_scope(session):
            previous_team_id = user.team_id
            user.team_id = team.id if team is not None else None
            title = f"{user.full_name} assigned to team {team.name}" if team is not None else f"{user.full_name} removed from team"
            session.add(self._activity("team_assignment", title, principal, user))

        logger.info(
            "user.team_assigned",
            extra={
                "actor_id": principal.id,
                "record_id": user.id,
                "team_id": user.team_id,
                "previous_team_id": previous_team_id,
            },
        )
        publish_crm_event(
            "user.team_assigned",
            principal,
            {"user_id": user.id, "team_id": user.team_id, "previous_team_id": previous_team_id},
        )
        return UserRead.model_validate(user)

    def assign_manager(
        self,
        session: Session,
        principal: Principal,
        user_id: int,
        dto: AssignManagerRequest,
    ) -> UserRead:
        user = self.get_user(session, user_id)
        manager = self._require_manager(session, dto.manager_id)
        if manager.id == user.id:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="A user cannot manage themselves")

        with transaction_scope(session):
            previous_manager_id = user.manager_id
            user.manager_id = manager.id
            session.add(
                self._activity("manager_assignment", f"{user.full_name} now reports to {manager.full_name}", principal, user)
            )

        logger.info(
            "user.manager_assigned",
            extra={
                "actor_id": principal.id,
                "record_id": user.id,
                "manager_id": manager.id,
                "previous_manager_id": previous_manager_id,
            },
        )
        publish_crm_event(
            "user.manager_assigned",
            principal,
            {"user_id": user.id, "manager_id": manager.id, "previous_manager_id": previous_manager_id},
        )
        return UserRead.model_validate(user)

    @staticmethod
    def _activity(activity_type: str, title: str, principal: Principal, user: User) -> CRMActivity:
        return CRMActivity(
            type=activity_type,
            title=title,
            description=f"Changed by {principal.display_name}",
            related_to="user",
            related_id=user.id,
            created_by=principal.id,
            completed_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _require_team(session: Session, team_id: int) -> Team:
        team = session.get(Team, team_id)
        if team is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Team not found")
        return team

    @staticmethod
    def _require_manager(session: Session, manager_id: int) -> User:
        manager = session.get(User, manager_id)
        if manager is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Manager not found")
        if Role.parse(manager.role) != Role.SALES_MANAGER:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Manager must have the sales_manager role",
            )
        return manager


class TeamService:
    def list_teams(self, session: Session) -> list[TeamRead]:
        rows = session.scalars(select(Team).order_by(Team.name.asc(), Team.id.asc())).all()
        return [TeamRead.model_validate(row) for row in rows]

    def get_team(self, session: Session, principal: Principal, team_id: int) -> TeamRead:
        return TeamRead.model_validate(self._accessible(session, principal, team_id))

    def create_team(self, session: Session, principal: Principal, dto: TeamCreate) -> TeamRead:
        self._ensure_unique_name(session, dto.name)
        with transaction_scope(session):
            team = Team(name=dto.name, description=dto.description, created_by=principal.id)
            session.add(team)

        logger.info("team.created", extra={"actor_id": principal.id, "record_id": team.id})
        publish_crm_event("team.created", principal, {"team_id": team.id})
        return TeamRead.model_validate(team)

    def update_team(self, session: Session, principal: Principal, team_id: int, dto: TeamUpdate) -> TeamRead:
        team = self._load(session, team_id)
        payload = dto.model_dump(exclude_unset=True)
        if payload.get("name") and payload["name"] != team.name:
            self._ensure_unique_name(session, payload["name"])
        with transaction_scope(session):
            for field_name, value in payload.items():
                setattr(team, field_name, value)

        publish_crm_event("team.updated", principal, {"team_id": team.id, "changed_fields": sorted(payload)})
        return TeamRead.model_validate(team)

    def delete_team(self, session: Session, principal: Principal, team_id: int) -> None:
        team = self._load(session, team_id)
        with transaction_scope(session):
            # Reporting tags are cleared; ownership and visibility are unaffected.
            session.execute(update(User).where(User.team_id == team.id).values(team_id=None))
            session.execute(update(CRMLead).where(CRMLead.team_id == team.id).values(team_id=None))
            session.execute(update(CRMOpportunity).where(CRMOpportunity.team_id == team.id).values(team_id=None))
            session.delete(team)

        logger.info("team.deleted", extra={"actor_id": principal.id, "record_id": team_id})
        publish_crm_event("team.deleted", principal, {"team_id": team_id})

    def list_members(self, session: Session, principal: Principal, team_id: int) -> list[UserRead]:
        team = self._accessible(session, principal, team_id)
        rows = session.scalars(select(User).where(User.team_id == team.id).order_by(User.id.asc())).all()
        return [UserRead.model_validate(row) for row in rows]

    def list_leads(self, session: Session, principal: Principal, team_id: int) -> list[LeadRead]:
        team = self._accessible(session, principal, team_id)
        rows = visible_for_team(session, principal, lead_repository, team.id)
        return [LeadRead.model_validate(row) for row in rows]

    def list_opportunities(self, session: Session, principal: Principal, team_id: int) -> list[OpportunityRead]:
        team = self._accessible(session, principal, team_id)
        rows = visible_for_team(session, principal, opportunity_repository, team.id)
        return [OpportunityRead.model_validate(row) for row in rows]

    def _accessible(self, session: Session, principal: Principal, team_id: int) -> Team:
        team = self._load(session, team_id)
        if principal.role not in MANAGERIAL_ROLES and principal.team_id != team.id:
            raise _forbidden("team", "read")
        return team

    @staticmethod
    def _load(session: Session, team_id: int) -> Team:
        team = session.get(Team, team_id)
        if team is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
        return team

    @staticmethod
    def _ensure_unique_name(session: Session, name: str) -> None:
        if session.scalar(select(Team.id).where(Team.name == name)) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Team name already exists")


user_service = UserService()
team_service = TeamService()
