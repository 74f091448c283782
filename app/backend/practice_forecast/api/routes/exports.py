"""Export endpoint for capacity matrices."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from practice_forecast.api.dependencies import get_matrix_query_service, get_matrix_revenue_service
from practice_forecast.api.routes.matrix import matrix_request, view_revenue
from practice_forecast.services.matrix_export import export_matrix
from practice_forecast.services.matrix_model import month_key
from practice_forecast.services.matrix_query import MatrixQueryService, MatrixRequest
from practice_forecast.services.matrix_revenue import MatrixRevenueService

router = APIRouter(prefix="/exports", tags=["exports"])


@router.get("/matrix")
async def export_capacity_matrix(
    format: str = Query(default="csv"),
    include_analytics: bool = Query(default=False),
    include_revenue: bool = Query(default=False),
    request: MatrixRequest = Depends(matrix_request),
    service: MatrixQueryService = Depends(get_matrix_query_service),
    revenue_service: MatrixRevenueService = Depends(get_matrix_revenue_service),
) -> Response:
    view = await service.read_matrix(request)
    revenue = await view_revenue(view, revenue_service) if include_revenue else None
    exported = export_matrix(
        view.matrix,
        format,
        include_analytics=include_analytics,
        revenue=revenue,
        filename_stem=f"capacity-matrix-{request.forecast_type}-{month_key(request.as_of)}",
    )
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )
