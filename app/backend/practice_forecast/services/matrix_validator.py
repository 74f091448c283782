"""Structural and arithmetic checks over a generated matrix.

Validation is advisory: it reports human-readable issues and never raises.
"""

from __future__ import annotations

import math
from collections import Counter

from practice_forecast.services.matrix_model import MatrixData, add_months, parse_month_key, utilization_percent

DEFAULT_TOLERANCE = 1e-6


def _close(left: float, right: float, tolerance: float) -> bool:
    return math.isclose(left, right, rel_tol=0.0, abs_tol=tolerance)


def validate_matrix(
    matrix: MatrixData,
    *,
    expected_months: int | None = 12,
    tolerance: float = DEFAULT_TOLERANCE,
) -> list[str]:
    issues: list[str] = []

    skill_counts = Counter(matrix.skills)
    for skill, count in skill_counts.items():
        if count > 1:
            issues.append(f"Skill '{skill}' is listed {count} times.")

    month_keys = [bucket.key for bucket in matrix.months]
    for key, count in Counter(month_keys).items():
        if count > 1:
            issues.append(f"Month {key} is listed {count} times.")

    parsed_months = []
    for key in month_keys:
        try:
            parsed_months.append(parse_month_key(key))
        except ValueError:
            issues.append(f"Month key '{key}' is not in YYYY-MM format.")
    if expected_months is not None:
        if len(month_keys) != expected_months:
            issues.append(f"Expected {expected_months} months, found {len(month_keys)}.")
        elif len(parsed_months) == len(month_keys):
            for previous, current in zip(parsed_months, parsed_months[1:]):
                if add_months(previous, 1) != current:
                    issues.append(f"Months are not consecutive between {previous:%Y-%m} and {current:%Y-%m}.")
                    break

    known_skills = set(matrix.skills)
    known_months = set(month_keys)
    pair_counts: Counter[tuple[str, str]] = Counter()
    for point in matrix.data_points:
        pair = (point.skill_type, point.month)
        pair_counts[pair] += 1
        if point.skill_type not in known_skills:
            issues.append(f"Data point references unknown skill '{point.skill_type}'.")
        if point.month not in known_months:
            issues.append(f"Data point for '{point.skill_type}' references unknown month {point.month}.")
        if point.demand_hours < 0:
            issues.append(f"Negative demand for '{point.skill_type}' in {point.month}.")
        if point.capacity_hours < 0:
            issues.append(f"Negative capacity for '{point.skill_type}' in {point.month}.")
        if not _close(point.gap, point.capacity_hours - point.demand_hours, tolerance):
            issues.append(f"Gap for '{point.skill_type}' in {point.month} does not equal capacity - demand.")
        expected_utilization = utilization_percent(point.demand_hours, point.capacity_hours)
        if not _close(point.utilization_percent, expected_utilization, tolerance):
            issues.append(f"Utilization for '{point.skill_type}' in {point.month} is inconsistent.")

    for (skill, month), count in pair_counts.items():
        if count > 1:
            issues.append(f"Duplicate data points for '{skill}' in {month}.")

    for skill in skill_counts:
        if not any(point_skill == skill for point_skill, _ in pair_counts):
            issues.append(f"Skill '{skill}' has no data points.")
            continue
        missing = [key for key in dict.fromkeys(month_keys) if (skill, key) not in pair_counts]
        if missing:
            issues.append(f"Skill '{skill}' is missing data for {len(missing)} month(s): {', '.join(missing)}.")

    demand = sum(point.demand_hours for point in matrix.data_points)
    capacity = sum(point.capacity_hours for point in matrix.data_points)
    gap = sum(point.gap for point in matrix.data_points)
    if not _close(matrix.total_demand, demand, tolerance):
        issues.append(f"Total demand {matrix.total_demand} does not match sum of data points {demand:.6f}.")
    if not _close(matrix.total_capacity, capacity, tolerance):
        issues.append(f"Total capacity {matrix.total_capacity} does not match sum of data points {capacity:.6f}.")
    if not _close(matrix.total_gap, gap, tolerance):
        issues.append(f"Total gap {matrix.total_gap} does not match sum of data points {gap:.6f}.")

    return issues
