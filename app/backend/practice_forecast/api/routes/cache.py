"""Cache inspection and manual invalidation endpoints."""

from __future__ import annotations

import re

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from practice_forecast.api.dependencies import get_result_cache
from practice_forecast.services.result_cache import ResultCache

router = APIRouter(prefix="/cache", tags=["cache"])


class CacheInvalidatePayload(BaseModel):
    key: str | None = None
    pattern: str | None = None


@router.get("/stats")
def cache_stats(cache: ResultCache = Depends(get_result_cache)) -> dict[str, object]:
    return cache.serialize_stats(cache.stats())


@router.post("/invalidate")
def invalidate_cache(
    payload: CacheInvalidatePayload,
    cache: ResultCache = Depends(get_result_cache),
) -> dict[str, object]:
    if (payload.key is None) == (payload.pattern is None):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Provide exactly one of key or pattern.",
        )
    if payload.key is not None:
        return {"removed": 1 if cache.invalidate(payload.key) else 0}
    try:
        compiled = re.compile(payload.pattern)
    except re.error as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid pattern: {exc}",
        ) from exc
    return {"removed": cache.invalidate_pattern(compiled)}
