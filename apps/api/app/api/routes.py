from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, Response

from app.core.auth import require_principal
from app.core.config import get_settings
from app.crm.api import routers as crm_routers
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.security.context import Principal
from app.platform.security.errors import ForbiddenError
from app.platform.security.roles import Role, has_permission

router = APIRouter()
for crm_router in crm_routers:
    router.include_router(crm_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
@router.get("/api/auth/me", tags=["auth"])
async def me(principal: Principal = Depends(require_principal)) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "success": True,
            "data": {
                "id": principal.id,
                "email": principal.email,
                "role": principal.role.value,
                "first_name": principal.first_name,
                "last_name": principal.last_name,
            },
        },
    )


@router.get("/metrics", tags=["system"])
def metrics(principal: Principal = Depends(require_principal)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"success": False, "error": "Not found"})
    if not has_permission(principal, Role.ADMIN):
        raise ForbiddenError("Insufficient permissions", resource="metrics", operation="read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
