from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from salesfunnel.business.catalog.api import router as products_router
from salesfunnel.business.revenue.api import orders_router, router as quotes_router
from salesfunnel.core.auth import AuthUser, get_current_user
from salesfunnel.core.config import get_settings
from salesfunnel.core.rbac import ROLE_ADMIN, primary_role
from salesfunnel.crm.api import jobs_router, opportunities_router, router as customers_router, settings_router
from salesfunnel.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(customers_router)
router.include_router(opportunities_router)
router.include_router(products_router)
router.include_router(quotes_router)
router.include_router(orders_router)
router.include_router(settings_router)
router.include_router(jobs_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {
        "sub": user.sub,
        "role": primary_role(user.roles),
        "roles": user.roles,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if primary_role(user.roles) != ROLE_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing role: {ROLE_ADMIN}")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
