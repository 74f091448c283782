"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from practice_forecast.api.router import api_router
from practice_forecast.core.config import Settings, get_settings
from practice_forecast.core.errors import ClientNotFoundError, DataSourceError
from practice_forecast.core.events import EventBus
from practice_forecast.core.logging_setup import configure_logging
from practice_forecast.db.dependencies import get_session_factory
from practice_forecast.services.cache_invalidation import DebouncedRefresher, register_cache_invalidation
from practice_forecast.services.data_sources import SqlForecastDataSource
from practice_forecast.services.matrix_generator import MatrixGenerator
from practice_forecast.services.result_cache import ResultCache

logger = logging.getLogger(__name__)


def _build_refresher(settings: Settings, cache: ResultCache) -> DebouncedRefresher:
    data_source = SqlForecastDataSource(get_session_factory())
    generator = MatrixGenerator.from_settings(data_source, data_source, cache, settings)
    return DebouncedRefresher(
        cache,
        lambda: generator.warm_up_entries(date.today()),
        delay_seconds=settings.matrix_refresh_debounce_seconds,
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""

    settings = get_settings()
    configure_logging(settings.log_level)

    cache = ResultCache(
        default_ttl_seconds=settings.cache_default_ttl_seconds,
        max_entries=settings.cache_max_entries,
    )
    event_bus = EventBus()
    refresher = _build_refresher(settings, cache) if settings.matrix_warm_up_on_change else None
    register_cache_invalidation(event_bus, cache, refresher)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if refresher is not None:
            refresher.cancel()
        cache.clear()

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=lifespan,
    )
    app.state.result_cache = cache
    app.state.event_bus = event_bus

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DataSourceError)
    async def data_source_error_handler(_: Request, exc: DataSourceError) -> JSONResponse:
        logger.error("Request failed on data source: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Task or staff data is temporarily unavailable.", "operation": exc.operation},
        )

    @app.exception_handler(ClientNotFoundError)
    async def client_not_found_handler(_: Request, exc: ClientNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/", tags=["system"])
    def root() -> dict[str, str]:
        return {"service": settings.app_name, "status": "running"}

    return app


app = create_app()
