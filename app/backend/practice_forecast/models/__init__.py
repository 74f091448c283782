"""ORM model package."""

from practice_forecast.models.entities import (
    AvailabilityExceptionKind,
    Client,
    RecurrenceType,
    RecurringTask,
    Skill,
    StaffAvailabilityException,
    StaffMember,
    TaskInstance,
    TaskPriority,
    TaskStatus,
)

__all__ = [
    "AvailabilityExceptionKind",
    "Client",
    "RecurrenceType",
    "RecurringTask",
    "Skill",
    "StaffAvailabilityException",
    "StaffMember",
    "TaskInstance",
    "TaskPriority",
    "TaskStatus",
]
