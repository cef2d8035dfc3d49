from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.context import get_correlation_id, set_actor_id
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.platform.security.context import Principal, Role
from app.teams.models import User


def principal_from_user(user: User, correlation_id: str | None = None) -> Principal:
    return Principal(
        id=user.id,
        role=Role.parse(user.role),
        team_id=user.team_id,
        manager_id=user.manager_id,
        full_name=user.full_name,
        correlation_id=correlation_id,
    )


def get_current_principal(
    request: Request,
    auth_user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Principal:
    """Resolve the JWT subject to an active user; anything else is unauthenticated."""

    try:
        user_id = int(auth_user.sub)
    except ValueError:
        user_id = None

    user = db.get(User, user_id) if user_id is not None else None
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    set_actor_id(user.id)
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    return principal_from_user(user, correlation_id)
