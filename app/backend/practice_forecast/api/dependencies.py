"""Request-scoped providers for pipeline services."""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from practice_forecast.core.config import get_settings
from practice_forecast.core.events import EventBus
from practice_forecast.db.dependencies import get_session_factory
from practice_forecast.services.client_aggregation import ClientAggregationService
from practice_forecast.services.data_sources import SqlForecastDataSource
from practice_forecast.services.matrix_generator import MatrixGenerator
from practice_forecast.services.matrix_query import MatrixQueryService
from practice_forecast.services.matrix_revenue import MatrixRevenueService
from practice_forecast.services.result_cache import ResultCache


def get_result_cache(request: Request) -> ResultCache:
    return request.app.state.result_cache


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_data_source(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> SqlForecastDataSource:
    return SqlForecastDataSource(session_factory)


def get_matrix_generator(
    data_source: SqlForecastDataSource = Depends(get_data_source),
    cache: ResultCache = Depends(get_result_cache),
) -> MatrixGenerator:
    return MatrixGenerator.from_settings(data_source, data_source, cache, get_settings())


def get_matrix_query_service(
    generator: MatrixGenerator = Depends(get_matrix_generator),
) -> MatrixQueryService:
    return MatrixQueryService(generator, tolerance=get_settings().validation_tolerance)


def get_client_aggregation_service(
    data_source: SqlForecastDataSource = Depends(get_data_source),
    cache: ResultCache = Depends(get_result_cache),
) -> ClientAggregationService:
    return ClientAggregationService.from_settings(data_source, cache, get_settings())


def get_matrix_revenue_service(
    generator: MatrixGenerator = Depends(get_matrix_generator),
    data_source: SqlForecastDataSource = Depends(get_data_source),
) -> MatrixRevenueService:
    return MatrixRevenueService.from_settings(generator, data_source, data_source, get_settings())
