"""Read path used by the HTTP layer: generate (cached), validate, filter."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from fastapi import HTTPException, status

from practice_forecast.services.capacity import FORECAST_TYPES
from practice_forecast.services.data_sources import ClientFilter, PreferredStaffFilter
from practice_forecast.services.matrix_filter import MonthRange, filter_matrix
from practice_forecast.services.matrix_generator import MatrixGenerator
from practice_forecast.services.matrix_model import MatrixData, month_key
from practice_forecast.services.matrix_validator import validate_matrix


@dataclass(slots=True)
class MatrixRequest:
    forecast_type: str
    as_of: date
    client_ids: list[str] | None = None
    skills: list[str] | None = None
    month_start: int | None = None
    month_end: int | None = None
    preferred_staff_ids: list[str] | None = None

    @property
    def client_filter(self) -> ClientFilter | None:
        return ClientFilter.of(self.client_ids)

    @property
    def preferred_staff(self) -> PreferredStaffFilter | None:
        return PreferredStaffFilter.of(self.preferred_staff_ids)


@dataclass(slots=True)
class MatrixView:
    request: MatrixRequest
    matrix: MatrixData
    issues: list[str]


class MatrixQueryService:
    def __init__(self, generator: MatrixGenerator, *, tolerance: float = 1e-6) -> None:
        self.generator = generator
        self.tolerance = tolerance

    @staticmethod
    def _validate_request(request: MatrixRequest) -> None:
        if request.forecast_type not in FORECAST_TYPES:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"forecast_type must be one of: {', '.join(FORECAST_TYPES)}.",
            )

    @staticmethod
    def month_range(request: MatrixRequest, month_count: int) -> MonthRange | None:
        if request.month_start is None and request.month_end is None:
            return None
        start = request.month_start if request.month_start is not None else 0
        end = request.month_end if request.month_end is not None else month_count - 1
        return MonthRange(start=start, end=end)

    async def read_matrix(self, request: MatrixRequest) -> MatrixView:
        """Generated matrix narrowed to the requested skills and months.

        Validation runs on the full generated matrix; its issues are
        returned alongside the view rather than raised. Out-of-range or
        inverted month bounds are clamped, so they yield an empty view.
        """

        self._validate_request(request)
        generated = await self.generator.generate_cached(
            request.forecast_type,
            request.as_of,
            request.client_filter,
            request.preferred_staff,
        )
        issues = validate_matrix(
            generated,
            expected_months=self.generator.horizon_months,
            tolerance=self.tolerance,
        )
        view = filter_matrix(
            generated,
            request.skills,
            self.month_range(request, len(generated.months)),
        )
        return MatrixView(request=request, matrix=view, issues=issues)

    @staticmethod
    def serialize_filters(request: MatrixRequest) -> dict[str, object]:
        return {
            "client_ids": sorted(set(request.client_ids)) if request.client_ids else None,
            "skills": list(request.skills) if request.skills is not None else None,
            "month_start": request.month_start,
            "month_end": request.month_end,
            "preferred_staff_ids": sorted(set(request.preferred_staff_ids)) if request.preferred_staff_ids else None,
        }

    @classmethod
    def serialize_view(cls, view: MatrixView) -> dict[str, object]:
        return {
            "forecast_type": view.request.forecast_type,
            "as_of": month_key(view.request.as_of),
            "matrix": MatrixData.serialize(view.matrix),
            "validation": {
                "valid": not view.issues,
                "issue_count": len(view.issues),
                "issues": list(view.issues),
            },
            "filters": cls.serialize_filters(view.request),
        }


def skill_selection(skills: Sequence[str] | None, include_none: bool) -> list[str] | None:
    """Query-string skills: absent means every skill, ``include_none`` means none."""

    if include_none:
        return []
    return list(skills) if skills else None
