"""Client and staff-liaison reporting endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status

from practice_forecast.api.dependencies import get_client_aggregation_service
from practice_forecast.services.client_aggregation import ClientAggregationService, DateRange

router = APIRouter(prefix="/reports", tags=["reports"])


def _date_range(date_from: date | None, date_to: date | None) -> DateRange | None:
    if date_from is None and date_to is None:
        return None
    if date_from is not None and date_to is not None and date_from > date_to:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="date_from must be less than or equal to date_to.",
        )
    return DateRange(start=date_from, end=date_to)


@router.get("/clients/{client_id}/summary")
async def client_summary(
    client_id: str,
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    service: ClientAggregationService = Depends(get_client_aggregation_service),
) -> dict[str, object]:
    summary = await service.summarize_cached(client_id, _date_range(date_from, date_to))
    return service.serialize_summary(summary)


@router.get("/staff-liaisons")
async def staff_liaison_report(
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    service: ClientAggregationService = Depends(get_client_aggregation_service),
) -> dict[str, object]:
    report = await service.summarize_staff_liaisons_cached(_date_range(date_from, date_to))
    return service.serialize_liaison_report(report)
