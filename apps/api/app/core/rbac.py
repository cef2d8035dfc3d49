from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from app.metrics import observe_permission_denied
from app.platform.security.context import Principal, Role
from app.platform.security.principal import get_current_principal


def has_role(principal: Principal, *roles: Role) -> bool:
    return principal.role in roles


def require_roles(*roles: Role, resource: str = "api") -> Callable[[Principal], Principal]:
    async def checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not has_role(principal, *roles):
            observe_permission_denied(resource=resource, action="role_check")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permission denied")
        return principal

    return checker
