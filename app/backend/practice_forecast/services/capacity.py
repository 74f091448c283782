"""Staff availability to per-skill monthly capacity."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from datetime import timedelta

from practice_forecast.services.data_sources import AvailabilityException, AvailabilityRecord, StaffRecord
from practice_forecast.services.matrix_model import MonthBucket, add_months

FORECAST_VIRTUAL = "virtual"
FORECAST_ACTUAL = "actual"
FORECAST_TYPES = (FORECAST_VIRTUAL, FORECAST_ACTUAL)

EXCEPTION_LEAVE = "leave"
EXCEPTION_OVERRIDE = "override"


def weekdays_in_month(bucket: MonthBucket) -> int:
    first = bucket.start
    last = add_months(first, 1)
    count = 0
    current = first
    while current < last:
        if current.weekday() < 5:
            count += 1
        current += timedelta(days=1)
    return count


def nominal_monthly_hours(staff: StaffRecord, bucket: MonthBucket) -> float:
    return staff.weekly_hours / 5 * weekdays_in_month(bucket)


def adjusted_monthly_hours(nominal_hours: float, exceptions: Sequence[AvailabilityException]) -> float:
    """Apply availability exceptions for one staff member and month.

    The last override replaces the nominal hours; leave is then subtracted.
    """

    hours = nominal_hours
    overrides = [item for item in exceptions if item.kind == EXCEPTION_OVERRIDE]
    if overrides:
        hours = overrides[-1].hours
    hours -= sum(item.hours for item in exceptions if item.kind == EXCEPTION_LEAVE)
    return max(hours, 0.0)


def calculate_capacity(
    staff: Sequence[StaffRecord],
    months: Sequence[MonthBucket],
    *,
    forecast_type: str,
    exceptions: Sequence[AvailabilityException] = (),
    unassigned_skill: str = "Junior Staff",
) -> list[AvailabilityRecord]:
    """Available hours per (skill, month), summed over staff.

    Each member's monthly hours are split evenly across their skills.
    """

    exceptions_by_key: dict[tuple[str, str], list[AvailabilityException]] = defaultdict(list)
    if forecast_type == FORECAST_ACTUAL:
        for item in exceptions:
            exceptions_by_key[(item.staff_id, item.month)].append(item)

    totals: dict[tuple[str, str], float] = defaultdict(float)
    for member in staff:
        if member.status != "active":
            continue
        skills = list(dict.fromkeys(member.skills)) or [unassigned_skill]
        for bucket in months:
            hours = nominal_monthly_hours(member, bucket)
            member_exceptions = exceptions_by_key.get((member.id, bucket.key))
            if member_exceptions:
                hours = adjusted_monthly_hours(hours, member_exceptions)
            share = hours / len(skills)
            for skill in skills:
                totals[(skill, bucket.key)] += share

    return [
        AvailabilityRecord(skill=skill, month=month, available_hours=hours)
        for (skill, month), hours in totals.items()
    ]
