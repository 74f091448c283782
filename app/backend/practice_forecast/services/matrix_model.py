"""Value objects for the skill x month capacity matrix.

``MatrixDataPoint`` instances are only built through ``MatrixDataPoint.of``
so ``gap`` and ``utilization_percent`` always follow from demand and
capacity. ``MatrixData`` totals are recomputed by every constructor path
that changes the points.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date

HOURS_PRECISION = 2
TOTALS_PRECISION = 6


def round_hours(value: float) -> float:
    rounded = round(float(value), HOURS_PRECISION)
    # Normalize -0.0 so serialized output stays stable.
    return rounded + 0.0


def month_start(value: date) -> date:
    return value.replace(day=1)


def add_months(value: date, months: int) -> date:
    index = value.year * 12 + (value.month - 1) + months
    year, month_index = divmod(index, 12)
    return date(year, month_index + 1, 1)


def month_end(value: date) -> date:
    return date(value.year, value.month, calendar.monthrange(value.year, value.month)[1])


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def month_label(value: date) -> str:
    return f"{calendar.month_abbr[value.month]} {value.year:04d}"


def parse_month_key(key: str) -> date:
    """Parse ``YYYY-MM`` into the first day of that month.

    Raises ``ValueError`` for anything else.
    """

    year_text, sep, month_text = key.partition("-")
    if sep != "-" or len(year_text) != 4 or len(month_text) != 2:
        raise ValueError(f"Invalid month key: {key!r}")
    return date(int(year_text), int(month_text), 1)


@dataclass(frozen=True, slots=True)
class MonthBucket:
    key: str
    label: str

    @classmethod
    def for_date(cls, value: date) -> MonthBucket:
        return cls(key=month_key(value), label=month_label(value))

    @property
    def start(self) -> date:
        return parse_month_key(self.key)


def month_buckets(as_of: date, count: int = 12) -> tuple[MonthBucket, ...]:
    """Consecutive month buckets starting at ``as_of``'s month."""

    first = month_start(as_of)
    return tuple(MonthBucket.for_date(add_months(first, offset)) for offset in range(count))


@dataclass(frozen=True, slots=True)
class MatrixDataPoint:
    skill_type: str
    month: str
    month_label: str
    demand_hours: float
    capacity_hours: float
    gap: float
    utilization_percent: float

    @classmethod
    def of(
        cls,
        skill_type: str,
        month: MonthBucket,
        *,
        demand_hours: float,
        capacity_hours: float,
    ) -> MatrixDataPoint:
        demand = round_hours(demand_hours)
        capacity = round_hours(capacity_hours)
        if demand < 0 or capacity < 0:
            raise ValueError("demand_hours and capacity_hours must be non-negative.")
        return cls(
            skill_type=skill_type,
            month=month.key,
            month_label=month.label,
            demand_hours=demand,
            capacity_hours=capacity,
            gap=capacity - demand,
            utilization_percent=utilization_percent(demand, capacity),
        )


def utilization_percent(demand_hours: float, capacity_hours: float) -> float:
    if capacity_hours <= 0:
        return 0.0
    return demand_hours / capacity_hours * 100


@dataclass(frozen=True, slots=True)
class MatrixTotals:
    total_demand: float
    total_capacity: float
    total_gap: float


def compute_totals(points: Iterable[MatrixDataPoint]) -> MatrixTotals:
    demand = 0.0
    capacity = 0.0
    gap = 0.0
    for point in points:
        demand += point.demand_hours
        capacity += point.capacity_hours
        gap += point.gap
    return MatrixTotals(
        total_demand=round(demand, TOTALS_PRECISION) + 0.0,
        total_capacity=round(capacity, TOTALS_PRECISION) + 0.0,
        total_gap=round(gap, TOTALS_PRECISION) + 0.0,
    )


@dataclass(frozen=True, slots=True)
class MatrixData:
    skills: tuple[str, ...]
    months: tuple[MonthBucket, ...]
    data_points: tuple[MatrixDataPoint, ...]
    total_demand: float
    total_capacity: float
    total_gap: float

    @classmethod
    def build(
        cls,
        *,
        skills: Sequence[str],
        months: Sequence[MonthBucket],
        data_points: Sequence[MatrixDataPoint],
    ) -> MatrixData:
        totals = compute_totals(data_points)
        return cls(
            skills=tuple(skills),
            months=tuple(months),
            data_points=tuple(data_points),
            total_demand=totals.total_demand,
            total_capacity=totals.total_capacity,
            total_gap=totals.total_gap,
        )

    def point(self, skill_type: str, month: str) -> MatrixDataPoint | None:
        for data_point in self.data_points:
            if data_point.skill_type == skill_type and data_point.month == month:
                return data_point
        return None

    def points_for_skill(self, skill_type: str) -> list[MatrixDataPoint]:
        return [data_point for data_point in self.data_points if data_point.skill_type == skill_type]

    @staticmethod
    def serialize(matrix: MatrixData) -> dict[str, object]:
        return {
            "skills": list(matrix.skills),
            "months": [{"key": bucket.key, "label": bucket.label} for bucket in matrix.months],
            "data_points": [
                {
                    "skill_type": data_point.skill_type,
                    "month": data_point.month,
                    "month_label": data_point.month_label,
                    "demand_hours": data_point.demand_hours,
                    "capacity_hours": data_point.capacity_hours,
                    "gap": data_point.gap,
                    "utilization_percent": data_point.utilization_percent,
                }
                for data_point in matrix.data_points
            ],
            "total_demand": matrix.total_demand,
            "total_capacity": matrix.total_capacity,
            "total_gap": matrix.total_gap,
        }
