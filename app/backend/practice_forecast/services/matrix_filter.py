"""Skill and month-range views over a matrix."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from practice_forecast.services.matrix_model import MatrixData


@dataclass(frozen=True, slots=True)
class MonthRange:
    """Inclusive, 0-based indexes into ``MatrixData.months``."""

    start: int
    end: int


def filter_matrix(
    matrix: MatrixData,
    selected_skills: Sequence[str] | None = None,
    month_range: MonthRange | None = None,
) -> MatrixData:
    """Return a new matrix restricted to the selected skills and months.

    ``selected_skills=None`` keeps every skill; an empty selection keeps
    none. Negative bounds clamp to 0 and out-of-range slices yield an
    empty month list. Totals are recomputed from the kept points.
    """

    if month_range is None:
        months = matrix.months
    else:
        months = matrix.months[max(month_range.start, 0) : max(month_range.end + 1, 0)]

    if selected_skills is None:
        skills = matrix.skills
    else:
        wanted = set(selected_skills)
        skills = tuple(skill for skill in matrix.skills if skill in wanted)

    kept_skills = set(skills)
    kept_months = {bucket.key for bucket in months}
    data_points = [
        point
        for point in matrix.data_points
        if point.skill_type in kept_skills and point.month in kept_months
    ]
    return MatrixData.build(skills=skills, months=months, data_points=data_points)
