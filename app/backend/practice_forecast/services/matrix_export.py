"""CSV/JSON/XLSX serialization and print layout for capacity matrices."""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass

from fastapi import HTTPException, status

from practice_forecast.services.matrix_analytics import (
    AlertThresholds,
    MatrixAnalytics,
    alert_level,
    analyze_matrix,
    serialize_analytics,
)
from practice_forecast.services.matrix_model import MatrixData, MatrixDataPoint, MonthBucket, round_hours
from practice_forecast.services.matrix_revenue import MatrixRevenue, round_money, serialize_revenue

SERIALIZE_FORMATS = ("csv", "json")
EXPORT_FORMATS = ("csv", "json", "xlsx")

ROW_DATA = "data"
ROW_SKILL_TOTAL = "skill_total"
ROW_TOTAL = "total"

CSV_FIELDS = [
    "row_type",
    "skill",
    "month",
    "month_label",
    "demand_hours",
    "capacity_hours",
    "gap_hours",
    "utilization_percent",
]
CSV_ANALYTICS_FIELDS = ["trend", "alert_level"]
CSV_REVENUE_FIELDS = ["fee_rate", "suggested_revenue"]


@dataclass(slots=True)
class ExportFilePayload:
    media_type: str
    filename: str
    content: bytes


def _normalize_format(format_name: str, allowed: tuple[str, ...]) -> str:
    normalized = format_name.strip().lower()
    if normalized not in allowed:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"format must be one of: {', '.join(allowed)}.",
        )
    return normalized


def _utilization(demand: float, capacity: float) -> float:
    return round_hours(demand / capacity * 100) if capacity > 0 else 0.0


# ---------- Tabular rows ----------
def _fieldnames(analytics: bool, revenue: bool) -> list[str]:
    return (
        CSV_FIELDS
        + (CSV_ANALYTICS_FIELDS if analytics else [])
        + (CSV_REVENUE_FIELDS if revenue else [])
    )


def matrix_rows(
    matrix: MatrixData,
    analytics: MatrixAnalytics | None = None,
    thresholds: AlertThresholds = AlertThresholds(),
    revenue: MatrixRevenue | None = None,
) -> list[dict[str, object]]:
    """Flat export rows: one per data point, plus totals when analytics are on.

    With ``revenue`` every row also carries the skill fee rate and the
    suggested revenue of its demand hours.
    """

    rows: list[dict[str, object]] = []
    for point in matrix.data_points:
        row: dict[str, object] = {
            "row_type": ROW_DATA,
            "skill": point.skill_type,
            "month": point.month,
            "month_label": point.month_label,
            "demand_hours": point.demand_hours,
            "capacity_hours": point.capacity_hours,
            "gap_hours": round_hours(point.gap),
            "utilization_percent": round_hours(point.utilization_percent),
        }
        if analytics is not None:
            trend = analytics.trend_for(point.skill_type)
            row["trend"] = trend.trend if trend else ""
            row["alert_level"] = alert_level(point, thresholds)
        if revenue is not None:
            skill_revenue = revenue.skill(point.skill_type)
            rate = skill_revenue.fee_rate if skill_revenue else 0.0
            row["fee_rate"] = rate
            row["suggested_revenue"] = round_money(point.demand_hours * rate)
        rows.append(row)

    if analytics is None:
        return rows

    for summary in analytics.summaries:
        trend = analytics.trend_for(summary.skill)
        row = {
            "row_type": ROW_SKILL_TOTAL,
            "skill": summary.skill,
            "month": "",
            "month_label": "",
            "demand_hours": summary.total_demand,
            "capacity_hours": summary.total_capacity,
            "gap_hours": summary.total_gap,
            "utilization_percent": _utilization(summary.total_demand, summary.total_capacity),
            "trend": trend.trend if trend else "",
            "alert_level": "",
        }
        if revenue is not None:
            skill_revenue = revenue.skill(summary.skill)
            row["fee_rate"] = skill_revenue.fee_rate if skill_revenue else 0.0
            row["suggested_revenue"] = skill_revenue.suggested_revenue if skill_revenue else 0.0
        rows.append(row)
    total_row: dict[str, object] = {
        "row_type": ROW_TOTAL,
        "skill": "",
        "month": "",
        "month_label": "",
        "demand_hours": round_hours(matrix.total_demand),
        "capacity_hours": round_hours(matrix.total_capacity),
        "gap_hours": round_hours(matrix.total_gap),
        "utilization_percent": _utilization(matrix.total_demand, matrix.total_capacity),
        "trend": "",
        "alert_level": "",
    }
    if revenue is not None:
        total_row["fee_rate"] = ""
        total_row["suggested_revenue"] = revenue.total_suggested_revenue
    rows.append(total_row)
    return rows


# ---------- Text formats ----------
def serialize_matrix(
    matrix: MatrixData,
    format_name: str,
    include_analytics: bool = False,
    revenue: MatrixRevenue | None = None,
) -> str:
    normalized = _normalize_format(format_name, SERIALIZE_FORMATS)
    analytics = analyze_matrix(matrix) if include_analytics else None

    if normalized == "json":
        payload = MatrixData.serialize(matrix)
        if analytics is not None:
            payload["analytics"] = serialize_analytics(analytics)
        if revenue is not None:
            payload["revenue"] = serialize_revenue(revenue)
        return json.dumps(payload, indent=2)

    fieldnames = _fieldnames(analytics is not None, revenue is not None)
    sio = io.StringIO()
    writer = csv.DictWriter(sio, fieldnames=fieldnames, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    writer.writeheader()
    writer.writerows(matrix_rows(matrix, analytics, revenue=revenue))
    return sio.getvalue()


def _rebuild(skills: list[str], months: list[MonthBucket], points: list[MatrixDataPoint]) -> MatrixData:
    return MatrixData.build(skills=skills, months=months, data_points=points)


def parse_matrix_csv(text: str) -> MatrixData:
    """Re-aggregate exported CSV data rows into a matrix.

    Total rows are ignored; totals are recomputed from the data rows.
    """

    reader = csv.DictReader(io.StringIO(text), quoting=csv.QUOTE_NONNUMERIC)
    skills: dict[str, None] = {}
    months: dict[str, MonthBucket] = {}
    points: list[MatrixDataPoint] = []
    for row in reader:
        if row.get("row_type") != ROW_DATA:
            continue
        skill = str(row["skill"])
        bucket = months.setdefault(str(row["month"]), MonthBucket(key=str(row["month"]), label=str(row["month_label"])))
        skills.setdefault(skill, None)
        points.append(
            MatrixDataPoint.of(
                skill,
                bucket,
                demand_hours=float(row["demand_hours"]),
                capacity_hours=float(row["capacity_hours"]),
            )
        )
    return _rebuild(list(skills), sorted(months.values(), key=lambda bucket: bucket.key), points)


def parse_matrix_json(text: str) -> MatrixData:
    payload = json.loads(text)
    months = [MonthBucket(key=item["key"], label=item["label"]) for item in payload["months"]]
    by_key = {bucket.key: bucket for bucket in months}
    points = [
        MatrixDataPoint.of(
            item["skill_type"],
            by_key.get(item["month"]) or MonthBucket(key=item["month"], label=item.get("month_label", item["month"])),
            demand_hours=item["demand_hours"],
            capacity_hours=item["capacity_hours"],
        )
        for item in payload["data_points"]
    ]
    return _rebuild(list(payload["skills"]), months, points)


# ---------- Files ----------
def export_matrix(
    matrix: MatrixData,
    format_name: str,
    *,
    include_analytics: bool = False,
    revenue: MatrixRevenue | None = None,
    filename_stem: str = "capacity-matrix",
) -> ExportFilePayload:
    normalized = _normalize_format(format_name, EXPORT_FORMATS)
    if normalized == "csv":
        return ExportFilePayload(
            media_type="text/csv; charset=utf-8",
            filename=f"{filename_stem}.csv",
            content=serialize_matrix(matrix, "csv", include_analytics, revenue).encode("utf-8"),
        )
    if normalized == "json":
        return ExportFilePayload(
            media_type="application/json",
            filename=f"{filename_stem}.json",
            content=serialize_matrix(matrix, "json", include_analytics, revenue).encode("utf-8"),
        )

    # XLSX
    from openpyxl import Workbook

    analytics = analyze_matrix(matrix)
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "matrix"
    fieldnames = _fieldnames(include_analytics, revenue is not None)
    sheet.append(fieldnames)
    for row in matrix_rows(matrix, analytics if include_analytics else None, revenue=revenue):
        sheet.append([row.get(name) for name in fieldnames])

    summary_sheet = workbook.create_sheet("summary")
    summary_sheet.append(["skill", "total_demand", "total_capacity", "total_gap", "average_utilization", "months"])
    for summary in analytics.summaries:
        summary_sheet.append(
            [
                summary.skill,
                summary.total_demand,
                summary.total_capacity,
                summary.total_gap,
                summary.average_utilization,
                summary.month_count,
            ]
        )
    summary_sheet.append(
        ["TOTAL", round_hours(matrix.total_demand), round_hours(matrix.total_capacity), round_hours(matrix.total_gap)]
    )

    if include_analytics:
        alerts_sheet = workbook.create_sheet("alerts")
        alerts_sheet.append(["severity", "alert_type", "skill", "month", "utilization_percent", "gap", "message"])
        for alert in analytics.alerts:
            alerts_sheet.append(
                [alert.severity, alert.alert_type, alert.skill, alert.month, alert.utilization_percent, alert.gap, alert.message]
            )

    if revenue is not None:
        revenue_sheet = workbook.create_sheet("revenue")
        revenue_sheet.append(
            [
                "client",
                "demand_hours",
                "expected_revenue",
                "suggested_revenue",
                "expected_less_suggested",
                "expected_hourly_rate",
            ]
        )
        for client in revenue.clients:
            revenue_sheet.append(
                [
                    client.client_name,
                    client.demand_hours,
                    client.expected_revenue,
                    client.suggested_revenue,
                    client.expected_less_suggested,
                    client.expected_hourly_rate,
                ]
            )
        revenue_sheet.append(
            [
                "TOTAL",
                round_money(sum(client.demand_hours for client in revenue.clients)),
                revenue.total_expected_revenue,
                revenue.total_suggested_revenue,
                revenue.total_expected_less_suggested,
            ]
        )

    output = io.BytesIO()
    workbook.save(output)
    return ExportFilePayload(
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=f"{filename_stem}.xlsx",
        content=output.getvalue(),
    )


# ---------- Print ----------
@dataclass(frozen=True, slots=True)
class PrintCell:
    demand_hours: float
    capacity_hours: float
    gap_hours: float
    utilization_percent: float


@dataclass(frozen=True, slots=True)
class PrintRow:
    skill: str
    cells: tuple[PrintCell, ...]
    total: PrintCell


@dataclass(frozen=True, slots=True)
class PrintTable:
    columns: tuple[MonthBucket, ...]
    rows: tuple[PrintRow, ...]
    column_totals: tuple[PrintCell, ...]
    grand_total: PrintCell


def _cell(demand: float, capacity: float) -> PrintCell:
    return PrintCell(
        demand_hours=round_hours(demand),
        capacity_hours=round_hours(capacity),
        gap_hours=round_hours(capacity - demand),
        utilization_percent=_utilization(demand, capacity),
    )


def build_print_table(matrix: MatrixData) -> PrintTable:
    """One row per skill, one column per month, with row and column totals."""

    lookup = {(point.skill_type, point.month): point for point in matrix.data_points}
    rows: list[PrintRow] = []
    for skill in matrix.skills:
        cells = []
        for bucket in matrix.months:
            point = lookup.get((skill, bucket.key))
            cells.append(_cell(point.demand_hours, point.capacity_hours) if point else _cell(0.0, 0.0))
        rows.append(
            PrintRow(
                skill=skill,
                cells=tuple(cells),
                total=_cell(sum(cell.demand_hours for cell in cells), sum(cell.capacity_hours for cell in cells)),
            )
        )

    column_totals = tuple(
        _cell(
            sum(row.cells[index].demand_hours for row in rows),
            sum(row.cells[index].capacity_hours for row in rows),
        )
        for index in range(len(matrix.months))
    )
    return PrintTable(
        columns=matrix.months,
        rows=tuple(rows),
        column_totals=column_totals,
        grand_total=_cell(matrix.total_demand, matrix.total_capacity),
    )


def _serialize_cell(cell: PrintCell) -> dict[str, float]:
    return {
        "demand_hours": cell.demand_hours,
        "capacity_hours": cell.capacity_hours,
        "gap_hours": cell.gap_hours,
        "utilization_percent": cell.utilization_percent,
    }


def serialize_print_table(table: PrintTable) -> dict[str, object]:
    return {
        "columns": [{"key": bucket.key, "label": bucket.label} for bucket in table.columns],
        "rows": [
            {
                "skill": row.skill,
                "cells": [_serialize_cell(cell) for cell in row.cells],
                "total": _serialize_cell(row.total),
            }
            for row in table.rows
        ],
        "column_totals": [_serialize_cell(cell) for cell in table.column_totals],
        "grand_total": _serialize_cell(table.grand_total),
    }
