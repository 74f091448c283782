"""Top-level API router."""

from fastapi import APIRouter

from practice_forecast.api.routes.cache import router as cache_router
from practice_forecast.api.routes.events import router as events_router
from practice_forecast.api.routes.exports import router as exports_router
from practice_forecast.api.routes.health import router as health_router
from practice_forecast.api.routes.matrix import router as matrix_router
from practice_forecast.api.routes.reports import router as reports_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(matrix_router)
api_router.include_router(reports_router)
api_router.include_router(exports_router)
api_router.include_router(cache_router)
api_router.include_router(events_router)
