from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.core.config import get_settings
from app.core.rbac import require_roles
from app.crm.api import routers as crm_routers
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.security.context import Principal, Role
from app.platform.security.principal import get_current_principal
from app.teams.api import routers as teams_routers

router = APIRouter()
for crm_router in crm_routers:
    router.include_router(crm_router)
for teams_router in teams_routers:
    router.include_router(teams_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(principal: Principal = Depends(get_current_principal)) -> dict[str, str | int | None]:
    return {
        "id": principal.id,
        "role": principal.role.value,
        "team_id": principal.team_id,
        "manager_id": principal.manager_id,
        "full_name": principal.full_name,
    }


@router.get("/metrics", tags=["system"])
def metrics(_principal: Principal = Depends(require_roles(Role.ADMIN, resource="metrics"))) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
