"""Per-skill roll-ups, demand trends, alerts and staffing recommendations."""

from __future__ import annotations

from dataclasses import dataclass, field

from practice_forecast.services.matrix_model import MatrixData, MatrixDataPoint, round_hours

TREND_INCREASING = "increasing"
TREND_DECREASING = "decreasing"
TREND_STABLE = "stable"
TREND_THRESHOLD_PERCENT = 5.0
MIN_TREND_POINTS = 3

SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}
PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass(frozen=True, slots=True)
class AlertThresholds:
    critical_shortage: float = 150.0
    warning_shortage: float = 120.0
    low_utilization: float = 60.0
    high_surplus: float = 50.0


@dataclass(frozen=True, slots=True)
class SkillSummary:
    skill: str
    total_demand: float
    total_capacity: float
    total_gap: float
    average_utilization: float
    month_count: int


@dataclass(frozen=True, slots=True)
class SkillTrend:
    skill: str
    trend: str
    trend_percent: float
    next_month_prediction: float
    next_quarter_prediction: float


@dataclass(frozen=True, slots=True)
class CapacityAlert:
    skill: str
    month: str
    severity: str
    alert_type: str
    message: str
    utilization_percent: float
    gap: float


@dataclass(frozen=True, slots=True)
class Recommendation:
    skill: str
    action: str
    priority: str
    message: str


@dataclass(frozen=True, slots=True)
class MatrixAnalytics:
    summaries: list[SkillSummary] = field(default_factory=list)
    trends: list[SkillTrend] = field(default_factory=list)
    alerts: list[CapacityAlert] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)

    def trend_for(self, skill: str) -> SkillTrend | None:
        return next((trend for trend in self.trends if trend.skill == skill), None)


def summarize_by_skill(matrix: MatrixData) -> list[SkillSummary]:
    summaries: list[SkillSummary] = []
    for skill in matrix.skills:
        points = matrix.points_for_skill(skill)
        count = len(points)
        summaries.append(
            SkillSummary(
                skill=skill,
                total_demand=round_hours(sum(point.demand_hours for point in points)),
                total_capacity=round_hours(sum(point.capacity_hours for point in points)),
                total_gap=round_hours(sum(point.gap for point in points)),
                average_utilization=round_hours(
                    sum(point.utilization_percent for point in points) / count if count else 0.0
                ),
                month_count=count,
            )
        )
    return summaries


def _linear_slope(values: list[float]) -> float:
    n = len(values)
    sum_x = n * (n - 1) / 2
    sum_x2 = (n - 1) * n * (2 * n - 1) / 6
    sum_y = sum(values)
    sum_xy = sum(index * value for index, value in enumerate(values))
    denominator = n * sum_x2 - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def _demand_series(matrix: MatrixData, skill: str) -> list[float]:
    by_month = {point.month: point.demand_hours for point in matrix.points_for_skill(skill)}
    return [by_month[bucket.key] for bucket in matrix.months if bucket.key in by_month]


def analyze_trends(matrix: MatrixData) -> list[SkillTrend]:
    """Least-squares demand trend per skill.

    Fewer than three months is reported as stable with flat predictions.
    """

    trends: list[SkillTrend] = []
    for skill in matrix.skills:
        values = _demand_series(matrix, skill)
        last = values[-1] if values else 0.0
        if len(values) < MIN_TREND_POINTS:
            trends.append(SkillTrend(skill, TREND_STABLE, 0.0, last, last))
            continue

        slope = _linear_slope(values)
        average = sum(values) / len(values)
        percent = slope / average * 100 if average > 0 else 0.0
        if percent > TREND_THRESHOLD_PERCENT:
            trend = TREND_INCREASING
        elif percent < -TREND_THRESHOLD_PERCENT:
            trend = TREND_DECREASING
        else:
            trend = TREND_STABLE
        trends.append(
            SkillTrend(
                skill=skill,
                trend=trend,
                trend_percent=round_hours(percent),
                next_month_prediction=round_hours(max(0.0, last + slope)),
                next_quarter_prediction=round_hours(max(0.0, last + 3 * slope)),
            )
        )
    return trends


def classify_point(point: MatrixDataPoint, thresholds: AlertThresholds = AlertThresholds()) -> tuple[str, str] | None:
    """(severity, alert_type) for a data point, or None when it is healthy."""

    utilization = point.utilization_percent
    if utilization >= thresholds.critical_shortage:
        return "critical", "shortage"
    if utilization >= thresholds.warning_shortage:
        return "warning", "shortage"
    if point.capacity_hours > 0 and utilization <= thresholds.low_utilization:
        return "info", "underutilization"
    if point.gap >= thresholds.high_surplus:
        return "info", "surplus"
    return None


def alert_level(point: MatrixDataPoint, thresholds: AlertThresholds = AlertThresholds()) -> str:
    classified = classify_point(point, thresholds)
    return classified[0] if classified else "none"


def generate_alerts(matrix: MatrixData, thresholds: AlertThresholds = AlertThresholds()) -> list[CapacityAlert]:
    alerts: list[CapacityAlert] = []
    for point in matrix.data_points:
        classified = classify_point(point, thresholds)
        if classified is None:
            continue
        severity, alert_type = classified
        if alert_type == "shortage":
            message = (
                f"{point.skill_type} is at {point.utilization_percent:.1f}% utilization in "
                f"{point.month_label} ({-point.gap:.1f}h short)."
            )
        elif alert_type == "underutilization":
            message = f"{point.skill_type} is only {point.utilization_percent:.1f}% utilized in {point.month_label}."
        else:
            message = f"{point.skill_type} has {point.gap:.1f}h of surplus capacity in {point.month_label}."
        alerts.append(
            CapacityAlert(
                skill=point.skill_type,
                month=point.month,
                severity=severity,
                alert_type=alert_type,
                message=message,
                utilization_percent=round_hours(point.utilization_percent),
                gap=round_hours(point.gap),
            )
        )
    alerts.sort(key=lambda alert: (SEVERITY_ORDER[alert.severity], alert.skill, alert.month))
    return alerts


def generate_recommendations(
    summaries: list[SkillSummary],
    trends: list[SkillTrend],
) -> list[Recommendation]:
    trend_by_skill = {trend.skill: trend.trend for trend in trends}
    recommendations: list[Recommendation] = []
    for summary in summaries:
        if summary.month_count == 0:
            continue
        average_gap = summary.total_gap / summary.month_count
        utilization = summary.average_utilization
        trend = trend_by_skill.get(summary.skill, TREND_STABLE)

        if average_gap < -20 and utilization > 120:
            recommendations.append(
                Recommendation(
                    summary.skill,
                    "hire",
                    "high",
                    f"Add {summary.skill} capacity: average shortfall {-average_gap:.1f}h/month "
                    f"at {utilization:.1f}% utilization.",
                )
            )
        elif average_gap < -10 and trend == TREND_INCREASING:
            recommendations.append(
                Recommendation(
                    summary.skill,
                    "hire",
                    "medium",
                    f"Plan {summary.skill} hiring: demand is rising with a {-average_gap:.1f}h/month shortfall.",
                )
            )
        elif average_gap > 20 and trend == TREND_DECREASING:
            recommendations.append(
                Recommendation(
                    summary.skill,
                    "optimize",
                    "medium",
                    f"Reassign {summary.skill} capacity: {average_gap:.1f}h/month surplus while demand falls.",
                )
            )
        elif 80 <= utilization <= 100:
            recommendations.append(
                Recommendation(
                    summary.skill,
                    "maintain",
                    "low",
                    f"{summary.skill} is balanced at {utilization:.1f}% utilization.",
                )
            )
    recommendations.sort(key=lambda item: (PRIORITY_ORDER[item.priority], item.skill))
    return recommendations


def analyze_matrix(matrix: MatrixData, thresholds: AlertThresholds = AlertThresholds()) -> MatrixAnalytics:
    summaries = summarize_by_skill(matrix)
    trends = analyze_trends(matrix)
    return MatrixAnalytics(
        summaries=summaries,
        trends=trends,
        alerts=generate_alerts(matrix, thresholds),
        recommendations=generate_recommendations(summaries, trends),
    )


def serialize_analytics(analytics: MatrixAnalytics) -> dict[str, object]:
    return {
        "skill_summaries": [
            {
                "skill": summary.skill,
                "total_demand": summary.total_demand,
                "total_capacity": summary.total_capacity,
                "total_gap": summary.total_gap,
                "average_utilization": summary.average_utilization,
                "month_count": summary.month_count,
            }
            for summary in analytics.summaries
        ],
        "trends": [
            {
                "skill": trend.skill,
                "trend": trend.trend,
                "trend_percent": trend.trend_percent,
                "next_month_prediction": trend.next_month_prediction,
                "next_quarter_prediction": trend.next_quarter_prediction,
            }
            for trend in analytics.trends
        ],
        "alerts": [
            {
                "skill": alert.skill,
                "month": alert.month,
                "severity": alert.severity,
                "alert_type": alert.alert_type,
                "message": alert.message,
                "utilization_percent": alert.utilization_percent,
                "gap": alert.gap,
            }
            for alert in analytics.alerts
        ],
        "recommendations": [
            {
                "skill": item.skill,
                "action": item.action,
                "priority": item.priority,
                "message": item.message,
            }
            for item in analytics.recommendations
        ],
    }
