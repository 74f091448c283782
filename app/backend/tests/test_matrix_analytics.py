from __future__ import annotations

import pytest

from practice_forecast.services.matrix_analytics import (
    AlertThresholds,
    analyze_matrix,
    analyze_trends,
    classify_point,
    generate_alerts,
    serialize_analytics,
    summarize_by_skill,
)


def test_rising_demand_is_reported_with_predictions(build_matrix) -> None:
    matrix = build_matrix({"Junior": [(10, 50), (20, 50), (30, 50), (40, 50)]})

    trend = analyze_trends(matrix)[0]

    assert trend.trend == "increasing"
    assert trend.trend_percent == pytest.approx(40)
    assert trend.next_month_prediction == pytest.approx(50)
    assert trend.next_quarter_prediction == pytest.approx(70)


def test_short_or_flat_series_is_stable(build_matrix) -> None:
    short = build_matrix({"Junior": [(10, 50), (40, 50)]})
    flat = build_matrix({"Junior": [(20, 50), (20.5, 50), (20, 50)]})

    short_trend = analyze_trends(short)[0]
    assert short_trend.trend == "stable"
    assert short_trend.next_month_prediction == 40
    assert analyze_trends(flat)[0].trend == "stable"


def test_skill_summary_totals(build_matrix) -> None:
    matrix = build_matrix({"Junior": [(10, 50), (20, 50), (30, 50), (40, 50)]})

    summary = summarize_by_skill(matrix)[0]

    assert (summary.total_demand, summary.total_capacity, summary.total_gap) == (100, 200, 100)
    assert summary.average_utilization == 50
    assert summary.month_count == 4


def test_point_classification_thresholds(build_matrix) -> None:
    matrix = build_matrix(
        {
            "A": [(150, 100)],
            "B": [(120, 100)],
            "C": [(60, 100)],
            "D": [(100, 160)],
            "E": [(10, 0)],
            "F": [(90, 100)],
        }
    )
    classified = {point.skill_type: classify_point(point) for point in matrix.data_points}

    assert classified == {
        "A": ("critical", "shortage"),
        "B": ("warning", "shortage"),
        "C": ("info", "underutilization"),
        "D": ("info", "surplus"),
        "E": None,
        "F": None,
    }
    strict = AlertThresholds(warning_shortage=85.0)
    assert classify_point(matrix.point("F", "2025-01"), strict) == ("warning", "shortage")


def test_alerts_are_ordered_by_severity(build_matrix) -> None:
    matrix = build_matrix({"Junior": [(30, 100), (160, 100)], "Senior": [(125, 100), (80, 100)]})

    alerts = generate_alerts(matrix)

    assert [(alert.severity, alert.skill, alert.month) for alert in alerts] == [
        ("critical", "Junior", "2025-02"),
        ("warning", "Senior", "2025-01"),
        ("info", "Junior", "2025-01"),
    ]
    assert "60.0h short" in alerts[0].message
    assert alerts[0].gap == -60


def test_recommendations_by_priority(build_matrix) -> None:
    matrix = build_matrix(
        {
            "Senior": [(90, 100)] * 3,
            "Junior": [(40, 100), (30, 100), (20, 100)],
            "CPA": [(130, 100)] * 3,
        }
    )

    analytics = analyze_matrix(matrix)

    assert [(item.skill, item.action, item.priority) for item in analytics.recommendations] == [
        ("CPA", "hire", "high"),
        ("Junior", "optimize", "medium"),
        ("Senior", "maintain", "low"),
    ]
    assert analytics.trend_for("Junior").trend == "decreasing"
    assert analytics.trend_for("Unknown") is None

    payload = serialize_analytics(analytics)
    assert set(payload) == {"skill_summaries", "trends", "alerts", "recommendations"}
    assert payload["recommendations"][0]["skill"] == "CPA"
