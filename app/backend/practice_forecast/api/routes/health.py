"""Health check endpoints."""

from fastapi import APIRouter, Depends

from practice_forecast.api.dependencies import get_result_cache
from practice_forecast.services.result_cache import ResultCache

router = APIRouter()


@router.get("/health")
def health(cache: ResultCache = Depends(get_result_cache)) -> dict[str, object]:
    """Liveness endpoint with the current cache size."""

    return {"status": "ok", "cache_entries": len(cache)}
