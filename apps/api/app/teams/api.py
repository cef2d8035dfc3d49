from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.core.database import get_db
from app.core.rbac import require_roles
from app.crm.schemas import LeadRead, OpportunityRead
from app.platform.security.context import Principal, Role
from app.platform.security.principal import get_current_principal
from app.teams.schemas import (
    AssignManagerRequest,
    AssignTeamRequest,
    TeamCreate,
    TeamRead,
    TeamUpdate,
    UserCreate,
    UserRead,
)
from app.teams.service import team_service, user_service


users_router = APIRouter(prefix="/api", tags=["users"])
teams_router = APIRouter(prefix="/api", tags=["teams"])

_require_admin = require_roles(Role.ADMIN, resource="user")
_require_manager_or_admin = require_roles(Role.ADMIN, Role.SALES_MANAGER, resource="user")
_require_team_admin = require_roles(Role.ADMIN, resource="team")
_require_team_reader = require_roles(Role.ADMIN, Role.SALES_MANAGER, resource="team")


@users_router.get("/users", response_model=list[UserRead])
def list_users(
    request: Request,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(_require_manager_or_admin),
) -> list[UserRead] | JSONResponse:
    try:
        return user_service.list_users(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "user_list_failed")


@users_router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    dto: UserCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(_require_admin),
) -> UserRead | JSONResponse:
    try:
        return user_service.create_user(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "user_create_failed")


@users_router.get("/managers/{manager_id}/members", response_model=list[UserRead])
def list_manager_members(
    request: Request,
    manager_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[UserRead] | JSONResponse:
    try:
        return user_service.list_manager_members(db, principal, manager_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "user_members_failed")


@users_router.patch("/users/{user_id}/assign-team", response_model=UserRead)
def assign_user_team(
    request: Request,
    user_id: int,
    dto: AssignTeamRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(_require_admin),
) -> UserRead | JSONResponse:
    try:
        return user_service.assign_team(db, principal, user_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "user_assign_team_failed")


@users_router.patch("/users/{user_id}/assign-manager", response_model=UserRead)
def assign_user_manager(
    request: Request,
    user_id: int,
    dto: AssignManagerRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(_require_admin),
) -> UserRead | JSONResponse:
    try:
        return user_service.assign_manager(db, principal, user_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "user_assign_manager_failed")


@teams_router.get("/teams", response_model=list[TeamRead])
def list_teams(
    request: Request,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(_require_team_reader),
) -> list[TeamRead] | JSONResponse:
    try:
        return team_service.list_teams(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "team_list_failed")


@teams_router.post("/teams", response_model=TeamRead, status_code=status.HTTP_201_CREATED)
def create_team(
    request: Request,
    dto: TeamCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(_require_team_admin),
) -> TeamRead | JSONResponse:
    try:
        return team_service.create_team(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "team_create_failed")


@teams_router.get("/teams/{team_id}", response_model=TeamRead)
def get_team(
    request: Request,
    team_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TeamRead | JSONResponse:
    try:
        return team_service.get_team(db, principal, team_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "team_get_failed")


@teams_router.patch("/teams/{team_id}", response_model=TeamRead)
def patch_team(
    request: Request,
    team_id: int,
    dto: TeamUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(_require_team_admin),
) -> TeamRead | JSONResponse:
    try:
        return team_service.update_team(db, principal, team_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "team_update_failed")


@teams_router.delete("/teams/{team_id}", response_model=None)
def delete_team(
    request: Request,
    team_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(_require_team_admin),
) -> dict[str, str] | JSONResponse:
    try:
        team_service.delete_team(db, principal, team_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "team_delete_failed")


@teams_router.get("/teams/{team_id}/members", response_model=list[UserRead])
def list_team_members(
    request: Request,
    team_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[UserRead] | JSONResponse:
    try:
        return team_service.list_members(db, principal, team_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "team_members_failed")


@teams_router.get("/teams/{team_id}/leads", response_model=list[LeadRead])
def list_team_leads(
    request: Request,
    team_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[LeadRead] | JSONResponse:
    try:
        return team_service.list_leads(db, principal, team_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "team_leads_failed")


@teams_router.get("/teams/{team_id}/opportunities", response_model=list[OpportunityRead])
def list_team_opportunities(
    request: Request,
    team_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[OpportunityRead] | JSONResponse:
    try:
        return team_service.list_opportunities(db, principal, team_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "team_opportunities_failed")


routers = [users_router, teams_router]
