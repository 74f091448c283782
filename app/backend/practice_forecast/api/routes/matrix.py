"""Capacity matrix read endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from practice_forecast.api.dependencies import get_matrix_query_service, get_matrix_revenue_service
from practice_forecast.services.matrix_analytics import analyze_matrix, serialize_analytics
from practice_forecast.services.matrix_export import build_print_table, serialize_print_table
from practice_forecast.services.matrix_query import MatrixQueryService, MatrixRequest, MatrixView, skill_selection
from practice_forecast.services.matrix_revenue import MatrixRevenue, MatrixRevenueService, serialize_revenue

router = APIRouter(prefix="/matrix", tags=["matrix"])


def matrix_request(
    forecast_type: str = Query(default="virtual"),
    as_of: date | None = Query(default=None),
    client_id: list[str] | None = Query(default=None),
    skill: list[str] | None = Query(default=None),
    no_skills: bool = Query(default=False),
    month_start: int | None = Query(default=None),
    month_end: int | None = Query(default=None),
    preferred_staff: list[str] | None = Query(default=None),
) -> MatrixRequest:
    return MatrixRequest(
        forecast_type=forecast_type.strip().lower(),
        as_of=as_of or date.today(),
        client_ids=client_id or None,
        skills=skill_selection(skill, no_skills),
        month_start=month_start,
        month_end=month_end,
        preferred_staff_ids=preferred_staff or None,
    )


async def view_revenue(view: MatrixView, revenue_service: MatrixRevenueService) -> MatrixRevenue:
    request = view.request
    return await revenue_service.revenue_for(
        view.matrix,
        request.forecast_type,
        request.as_of,
        request.client_filter,
        request.preferred_staff,
    )


@router.get("")
async def get_matrix(
    include_analytics: bool = Query(default=False),
    include_revenue: bool = Query(default=False),
    request: MatrixRequest = Depends(matrix_request),
    service: MatrixQueryService = Depends(get_matrix_query_service),
    revenue_service: MatrixRevenueService = Depends(get_matrix_revenue_service),
) -> dict[str, object]:
    view = await service.read_matrix(request)
    payload = service.serialize_view(view)
    if include_analytics:
        payload["analytics"] = serialize_analytics(analyze_matrix(view.matrix))
    if include_revenue:
        payload["revenue"] = serialize_revenue(await view_revenue(view, revenue_service))
    return payload


@router.get("/revenue")
async def get_matrix_revenue(
    request: MatrixRequest = Depends(matrix_request),
    service: MatrixQueryService = Depends(get_matrix_query_service),
    revenue_service: MatrixRevenueService = Depends(get_matrix_revenue_service),
) -> dict[str, object]:
    view = await service.read_matrix(request)
    return {
        "forecast_type": request.forecast_type,
        "filters": service.serialize_filters(request),
        "months": [bucket.key for bucket in view.matrix.months],
        "revenue": serialize_revenue(await view_revenue(view, revenue_service)),
    }


@router.get("/print")
async def get_matrix_print(
    request: MatrixRequest = Depends(matrix_request),
    service: MatrixQueryService = Depends(get_matrix_query_service),
) -> dict[str, object]:
    view = await service.read_matrix(request)
    return {
        "forecast_type": request.forecast_type,
        "filters": service.serialize_filters(request),
        "table": serialize_print_table(build_print_table(view.matrix)),
        "validation_issue_count": len(view.issues),
    }
