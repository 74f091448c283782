from __future__ import annotations

from datetime import date

import pytest

from practice_forecast.services.matrix_filter import MonthRange, filter_matrix
from practice_forecast.services.matrix_model import (
    MatrixDataPoint,
    MonthBucket,
    month_buckets,
    parse_month_key,
)


@pytest.fixture()
def matrix(build_matrix):
    return build_matrix(
        {
            "Junior": [(100, 120), (110, 100), (90, 0)],
            "Senior": [(40, 80), (60, 60), (20, 30)],
            "CPA": [(10, 20), (0, 20), (15, 10)],
        }
    )


def test_month_buckets_cover_consecutive_months_across_year_end() -> None:
    buckets = month_buckets(date(2025, 11, 20), 3)

    assert [bucket.key for bucket in buckets] == ["2025-11", "2025-12", "2026-01"]
    assert [bucket.label for bucket in buckets] == ["Nov 2025", "Dec 2025", "Jan 2026"]
    assert buckets[2].start == date(2026, 1, 1)


def test_parse_month_key_rejects_malformed_keys() -> None:
    assert parse_month_key("2025-02") == date(2025, 2, 1)
    with pytest.raises(ValueError):
        parse_month_key("2025/02")


def test_data_point_derives_gap_and_utilization() -> None:
    bucket = MonthBucket.for_date(date(2025, 3, 1))

    shortage = MatrixDataPoint.of("Junior", bucket, demand_hours=150, capacity_hours=120)
    idle = MatrixDataPoint.of("Junior", bucket, demand_hours=12, capacity_hours=0)

    assert shortage.gap == shortage.capacity_hours - shortage.demand_hours == -30
    assert shortage.utilization_percent == pytest.approx(125.0)
    assert idle.gap == -12
    assert idle.utilization_percent == 0


def test_data_point_rejects_negative_hours() -> None:
    with pytest.raises(ValueError):
        MatrixDataPoint.of("Junior", MonthBucket.for_date(date(2025, 1, 1)), demand_hours=-1, capacity_hours=0)


def test_totals_equal_sums_over_points(matrix) -> None:
    assert matrix.total_demand == pytest.approx(sum(point.demand_hours for point in matrix.data_points))
    assert matrix.total_capacity == pytest.approx(sum(point.capacity_hours for point in matrix.data_points))
    assert matrix.total_gap == pytest.approx(matrix.total_capacity - matrix.total_demand)


def test_filter_single_skill_and_month(matrix) -> None:
    filtered = filter_matrix(matrix, ["Junior"], MonthRange(start=1, end=1))

    assert filtered.skills == ("Junior",)
    assert [bucket.key for bucket in filtered.months] == ["2025-02"]
    assert len(filtered.data_points) == 1
    point = filtered.data_points[0]
    assert (point.demand_hours, point.capacity_hours) == (110, 100)
    assert filtered.total_demand == 110
    assert filtered.total_capacity == 100
    assert filtered.total_gap == -10


def test_filter_keeps_original_skill_order(matrix) -> None:
    filtered = filter_matrix(matrix, ["CPA", "Junior", "Unknown"])

    assert filtered.skills == ("Junior", "CPA")
    assert len(filtered.data_points) == 6


def test_filter_with_empty_selection_still_slices_months(matrix) -> None:
    filtered = filter_matrix(matrix, [], MonthRange(start=0, end=1))

    assert filtered.skills == ()
    assert filtered.data_points == ()
    assert len(filtered.months) == 2
    assert (filtered.total_demand, filtered.total_capacity, filtered.total_gap) == (0, 0, 0)


def test_filter_clamps_and_tolerates_out_of_range_months(matrix) -> None:
    clamped = filter_matrix(matrix, None, MonthRange(start=-4, end=0))
    beyond = filter_matrix(matrix, None, MonthRange(start=5, end=9))

    assert [bucket.key for bucket in clamped.months] == ["2025-01"]
    assert len(clamped.data_points) == 3
    assert beyond.months == ()
    assert beyond.data_points == ()
    assert beyond.total_demand == 0


def test_filter_is_pure_and_composes(matrix) -> None:
    month_range = MonthRange(start=1, end=2)

    once = filter_matrix(matrix, ["Senior", "CPA"], month_range)
    again = filter_matrix(matrix, ["Senior", "CPA"], month_range)
    by_skill_then_month = filter_matrix(filter_matrix(matrix, ["Senior", "CPA"]), None, month_range)

    assert once == again
    assert by_skill_then_month == once
    assert filter_matrix(once, ["Senior", "CPA"]) == once
    assert len(matrix.data_points) == 9


@pytest.mark.parametrize(
    ("first", "second"),
    [
        (["Junior", "Senior"], ["Senior", "CPA"]),
        (["Junior", "Senior", "CPA"], ["CPA"]),
        (["Senior"], ["Senior"]),
        (["Junior"], ["CPA"]),
        (["Junior"], []),
    ],
)
def test_intersected_skill_selection_is_a_subset_of_either_selection(matrix, first, second) -> None:
    month_range = MonthRange(start=0, end=1)
    both = [skill for skill in first if skill in second]

    wide = filter_matrix(matrix, first, month_range)
    narrow = filter_matrix(matrix, both, month_range)

    assert all(point in wide.data_points for point in narrow.data_points)
    assert set(narrow.skills) <= set(wide.skills)
    assert narrow.total_demand <= wide.total_demand
    assert filter_matrix(wide, second) == narrow
    assert narrow.months == wide.months


def test_disjoint_skill_selections_compose_to_an_empty_view(matrix) -> None:
    junior_only = filter_matrix(matrix, ["Junior"], MonthRange(start=1, end=2))

    nothing = filter_matrix(junior_only, ["CPA"])

    assert nothing.skills == ()
    assert nothing.data_points == ()
    assert [bucket.key for bucket in nothing.months] == ["2025-02", "2025-03"]
    assert (nothing.total_demand, nothing.total_capacity) == (0, 0)
    assert filter_matrix(nothing, None, MonthRange(start=0, end=0)).data_points == ()


def test_narrowing_the_month_range_keeps_a_subset_of_points(matrix) -> None:
    wide = filter_matrix(matrix, ["Junior", "CPA"], MonthRange(start=0, end=2))
    narrow = filter_matrix(matrix, ["Junior", "CPA"], MonthRange(start=1, end=1))

    assert all(point in wide.data_points for point in narrow.data_points)
    assert filter_matrix(wide, None, MonthRange(start=1, end=1)) == narrow
