from fastapi import APIRouter

from app.flipstore.core.config import settings
from app.flipstore.routers.features import router as features_router
from app.flipstore.routers.groups import router as groups_router
from app.flipstore.routers.health import router as health_router
from app.flipstore.routers.metrics import router as metrics_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(features_router, prefix="/flipstore", tags=["features"])
api_router.include_router(groups_router, prefix="/flipstore", tags=["groups"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
