from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from hookbridge.accounts.api import admin_router, auth_router
from hookbridge.bitrix.api import router as bitrix_router
from hookbridge.core.auth import AuthUser
from hookbridge.core.config import get_settings
from hookbridge.core.rbac import require_admin
from hookbridge.metrics import generate_metrics_payload, metrics_content_type
from hookbridge.projects.api import connections_router, router as projects_router
from hookbridge.webhooks.api import router as webhooks_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(admin_router)
router.include_router(projects_router)
router.include_router(connections_router)
router.include_router(bitrix_router)
router.include_router(webhooks_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(_user: AuthUser = Depends(require_admin)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
