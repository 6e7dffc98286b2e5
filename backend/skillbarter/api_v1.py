"""API v1 router: all JSON endpoints under /api/v1 prefix."""

from fastapi import APIRouter

from .matching.routes import router as matches_router
from .notifications.routes import router as notifications_router
from .sessions.routes import router as sessions_router

api_v1_router = APIRouter(prefix="/api/v1", tags=["api-v1"])

api_v1_router.include_router(matches_router)
api_v1_router.include_router(sessions_router)
api_v1_router.include_router(notifications_router)
