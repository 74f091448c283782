"""Projection of recurring task templates onto calendar windows."""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from practice_forecast.services.data_sources import RecurrencePattern, TaskRecord
from practice_forecast.services.matrix_model import add_months, month_start


def _sunday_based_weekday(value: date) -> int:
    return (value.weekday() + 1) % 7


def _clamped_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(max(day, 1), calendar.monthrange(year, month)[1]))


def _months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def _every_n_days(anchor: date, step: int, start: date, end: date) -> list[date]:
    step = max(step, 1)
    current = start + timedelta(days=(-(start - anchor).days) % step)
    dates: list[date] = []
    while current <= end:
        dates.append(current)
        current += timedelta(days=step)
    return dates


def _weekly(pattern: RecurrencePattern, anchor: date, start: date, end: date) -> list[date]:
    weekdays = set(pattern.weekdays) or {_sunday_based_weekday(anchor)}
    interval = max(pattern.interval, 1)
    anchor_week = anchor - timedelta(days=_sunday_based_weekday(anchor))
    dates: list[date] = []
    current = start
    while current <= end:
        week_index = (current - anchor_week).days // 7
        if week_index % interval == 0 and _sunday_based_weekday(current) in weekdays:
            dates.append(current)
        current += timedelta(days=1)
    return dates


def _monthly(
    anchor: date,
    start: date,
    end: date,
    *,
    step_months: int,
    day_of_month: int,
    month_of_year: int | None = None,
) -> list[date]:
    step_months = max(step_months, 1)
    dates: list[date] = []
    cursor = month_start(start)
    while cursor <= end:
        if month_of_year is None:
            due = _months_between(month_start(anchor), cursor) % step_months == 0
        else:
            due = cursor.month == month_of_year and (cursor.year - anchor.year) % step_months == 0
        if due:
            candidate = _clamped_day(cursor.year, cursor.month, day_of_month)
            if start <= candidate <= end:
                dates.append(candidate)
        cursor = add_months(cursor, 1)
    return dates


def occurrence_dates(task: TaskRecord, window_start: date, window_end: date) -> list[date]:
    """Concrete occurrence dates of a recurring template inside a window.

    The window is narrowed to start no earlier than the template's creation
    date and end no later than its recurrence end date. Unknown recurrence
    types yield one occurrence at the window start.
    """

    pattern = task.recurrence
    if pattern is None:
        return []

    start = max(window_start, task.created_at) if task.created_at else window_start
    end = min(window_end, pattern.end_date) if pattern.end_date else window_end
    if start > end:
        return []

    # Phase of the cycle comes from the scheduled due date when known.
    anchor = task.due_date or task.created_at or start
    interval = max(pattern.interval, 1)
    recurrence_type = pattern.recurrence_type

    if recurrence_type == "Daily":
        return _every_n_days(anchor, interval, start, end)
    if recurrence_type == "Weekly":
        return _weekly(pattern, anchor, start, end)
    if recurrence_type == "Monthly":
        return _monthly(anchor, start, end, step_months=interval, day_of_month=pattern.day_of_month or anchor.day)
    if recurrence_type == "Quarterly":
        return _monthly(
            anchor, start, end, step_months=3 * interval, day_of_month=pattern.day_of_month or anchor.day
        )
    if recurrence_type == "Annually":
        return _monthly(
            anchor,
            start,
            end,
            step_months=interval,
            day_of_month=pattern.day_of_month or anchor.day,
            month_of_year=pattern.month_of_year or anchor.month,
        )
    if recurrence_type == "Custom":
        if pattern.custom_offset_days:
            return _every_n_days(anchor, pattern.custom_offset_days, start, end)
        return [start]
    return [start]


def count_occurrences(task: TaskRecord, window_start: date, window_end: date) -> int:
    return len(occurrence_dates(task, window_start, window_end))
