"""Task/staff data source and skills store used by the pipeline.

The generator and the aggregation service only depend on the two
protocols below. ``SqlForecastDataSource`` is the production
implementation; tests substitute an in-memory one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol, TypeVar
from uuid import UUID

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from practice_forecast.core.errors import DataSourceError
from practice_forecast.models.entities import (
    Client,
    RecurringTask,
    StaffAvailabilityException,
    StaffMember,
    TaskInstance,
)
from practice_forecast.repositories.forecast_repository import ForecastRepository
from practice_forecast.services.matrix_model import month_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

TASK_TYPE_RECURRING = "recurring"
TASK_TYPE_ADHOC = "adhoc"


@dataclass(frozen=True, slots=True)
class RecurrencePattern:
    recurrence_type: str
    interval: int = 1
    weekdays: tuple[int, ...] = ()
    day_of_month: int | None = None
    month_of_year: int | None = None
    custom_offset_days: int | None = None
    end_date: date | None = None


@dataclass(frozen=True, slots=True)
class TaskRecord:
    id: str
    client_id: str
    name: str
    task_type: str
    estimated_hours: float
    required_skills: tuple[str, ...]
    status: str
    due_date: date | None = None
    category: str = "Other"
    priority: str = "Medium"
    is_active: bool = True
    created_at: date | None = None
    recurrence: RecurrencePattern | None = None
    preferred_staff_id: str | None = None

    @property
    def is_recurring(self) -> bool:
        return self.task_type == TASK_TYPE_RECURRING


@dataclass(frozen=True, slots=True)
class StaffRecord:
    id: str
    full_name: str
    weekly_hours: float
    skills: tuple[str, ...] = ()
    status: str = "active"


@dataclass(frozen=True, slots=True)
class AvailabilityException:
    staff_id: str
    month: str
    kind: str
    hours: float


@dataclass(frozen=True, slots=True)
class AvailabilityRecord:
    skill: str
    month: str
    available_hours: float


@dataclass(frozen=True, slots=True)
class ClientRecord:
    id: str
    legal_name: str
    status: str = "Active"
    expected_monthly_revenue: float = 0.0
    staff_liaison_id: str | None = None
    staff_liaison_name: str | None = None


def normalize_id(value: object) -> str:
    """Canonical text form of an identifier; UUIDs are lower-cased and hyphenated."""

    text = str(value).strip()
    try:
        return str(UUID(text))
    except ValueError:
        return text


@dataclass(frozen=True, slots=True)
class ClientFilter:
    client_ids: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, client_ids: Sequence[str] | None) -> ClientFilter | None:
        if not client_ids:
            return None
        return cls(client_ids=tuple(sorted({normalize_id(client_id) for client_id in client_ids})))


@dataclass(frozen=True, slots=True)
class PreferredStaffFilter:
    """Restricts demand to tasks whose preferred staff member is selected."""

    staff_ids: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, staff_ids: Sequence[str] | None) -> PreferredStaffFilter | None:
        if not staff_ids:
            return None
        return cls(staff_ids=tuple(sorted({normalize_id(staff_id) for staff_id in staff_ids})))

    def matches(self, task: TaskRecord) -> bool:
        if task.preferred_staff_id is None:
            return False
        return normalize_id(task.preferred_staff_id) in self.staff_ids


class ForecastDataSource(Protocol):
    async def list_recurring_tasks(self, client_ids: Sequence[str] | None = None) -> list[TaskRecord]:
        ...

    async def list_task_instances(
        self,
        client_ids: Sequence[str] | None = None,
        due_from: date | None = None,
        due_to: date | None = None,
    ) -> list[TaskRecord]:
        ...

    async def list_active_staff(self) -> list[StaffRecord]:
        ...

    async def list_availability_exceptions(self, date_from: date, date_to: date) -> list[AvailabilityException]:
        ...

    async def list_clients(self) -> list[ClientRecord]:
        ...

    async def get_client(self, client_id: str) -> ClientRecord | None:
        ...


class SkillsStore(Protocol):
    async def list_skills(self) -> list[str]:
        ...

    async def list_skill_fee_rates(self) -> dict[str, float]:
        ...


def _to_uuid_list(values: Sequence[str] | None) -> list[UUID] | None:
    if values is None:
        return None
    parsed: list[UUID] = []
    for value in values:
        try:
            parsed.append(UUID(str(value)))
        except ValueError:
            continue
    return parsed


def _optional_str(value: object | None) -> str | None:
    return str(value) if value is not None else None


def _as_date(value: datetime | date | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    return value


class SqlForecastDataSource:
    """SQLAlchemy-backed data source and skills store.

    Every call opens its own session and runs the blocking query in the
    threadpool; SQLAlchemy failures surface as ``DataSourceError``.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    async def _run(self, operation: str, work: Callable[[ForecastRepository], T]) -> T:
        def call() -> T:
            session = self._session_factory()
            try:
                return work(ForecastRepository(session))
            finally:
                session.close()

        try:
            return await run_in_threadpool(call)
        except SQLAlchemyError as exc:
            logger.warning("Data source operation %s failed", operation, exc_info=True)
            raise DataSourceError(operation, str(exc)) from exc

    # ---------- Skills ----------
    async def list_skills(self) -> list[str]:
        return await self._run(
            "list_skills",
            lambda repo: [skill.name for skill in repo.list_active_skills()],
        )

    async def list_skill_fee_rates(self) -> dict[str, float]:
        return await self._run(
            "list_skill_fee_rates",
            lambda repo: {
                skill.name: float(skill.fee_rate) for skill in repo.list_active_skills() if skill.fee_rate is not None
            },
        )

    # ---------- Tasks ----------
    async def list_recurring_tasks(self, client_ids: Sequence[str] | None = None) -> list[TaskRecord]:
        uuids = _to_uuid_list(client_ids)
        return await self._run(
            "list_recurring_tasks",
            lambda repo: [self.recurring_task_record(row) for row in repo.list_recurring_tasks(uuids)],
        )

    async def list_task_instances(
        self,
        client_ids: Sequence[str] | None = None,
        due_from: date | None = None,
        due_to: date | None = None,
    ) -> list[TaskRecord]:
        uuids = _to_uuid_list(client_ids)
        return await self._run(
            "list_task_instances",
            lambda repo: [
                self.task_instance_record(row) for row in repo.list_task_instances(uuids, due_from, due_to)
            ],
        )

    # ---------- Staff ----------
    async def list_active_staff(self) -> list[StaffRecord]:
        return await self._run(
            "list_active_staff",
            lambda repo: [self.staff_record(row) for row in repo.list_active_staff()],
        )

    async def list_availability_exceptions(self, date_from: date, date_to: date) -> list[AvailabilityException]:
        return await self._run(
            "list_availability_exceptions",
            lambda repo: [
                self.availability_exception_record(row)
                for row in repo.list_availability_exceptions(date_from, date_to)
            ],
        )

    # ---------- Clients ----------
    async def list_clients(self) -> list[ClientRecord]:
        def work(repo: ForecastRepository) -> list[ClientRecord]:
            clients = repo.list_clients()
            liaison_ids = sorted({row.staff_liaison_id for row in clients if row.staff_liaison_id is not None})
            names = {staff.id: staff.full_name for staff in repo.list_staff_by_ids(liaison_ids)}
            return [self.client_record(row, names.get(row.staff_liaison_id)) for row in clients]

        return await self._run("list_clients", work)

    async def get_client(self, client_id: str) -> ClientRecord | None:
        uuids = _to_uuid_list([client_id]) or []
        if not uuids:
            return None

        def work(repo: ForecastRepository) -> ClientRecord | None:
            row = repo.get_client(uuids[0])
            if row is None:
                return None
            liaison_name = None
            if row.staff_liaison_id is not None:
                staff = repo.list_staff_by_ids([row.staff_liaison_id])
                liaison_name = staff[0].full_name if staff else None
            return self.client_record(row, liaison_name)

        return await self._run("get_client", work)

    # ---------- Row mapping ----------
    @staticmethod
    def recurring_task_record(row: RecurringTask) -> TaskRecord:
        return TaskRecord(
            id=str(row.id),
            client_id=str(row.client_id),
            name=row.name,
            task_type=TASK_TYPE_RECURRING,
            estimated_hours=float(row.estimated_hours),
            required_skills=tuple(row.required_skills or ()),
            status=row.status.value,
            due_date=row.due_date,
            category=row.category,
            priority=row.priority.value,
            is_active=row.is_active,
            created_at=_as_date(row.created_at),
            preferred_staff_id=_optional_str(row.preferred_staff_id),
            recurrence=RecurrencePattern(
                recurrence_type=row.recurrence_type.value,
                interval=row.recurrence_interval or 1,
                weekdays=tuple(row.weekdays or ()),
                day_of_month=row.day_of_month,
                month_of_year=row.month_of_year,
                custom_offset_days=row.custom_offset_days,
                end_date=row.end_date,
            ),
        )

    @staticmethod
    def task_instance_record(row: TaskInstance) -> TaskRecord:
        return TaskRecord(
            id=str(row.id),
            client_id=str(row.client_id),
            name=row.name,
            task_type=TASK_TYPE_ADHOC,
            estimated_hours=float(row.estimated_hours),
            required_skills=tuple(row.required_skills or ()),
            status=row.status.value,
            due_date=row.due_date,
            category=row.category,
            priority=row.priority.value,
            created_at=_as_date(row.created_at),
            preferred_staff_id=_optional_str(row.preferred_staff_id),
        )

    @staticmethod
    def staff_record(row: StaffMember) -> StaffRecord:
        return StaffRecord(
            id=str(row.id),
            full_name=row.full_name,
            weekly_hours=float(row.weekly_hours),
            skills=tuple(row.assigned_skills or ()),
            status=row.status,
        )

    @staticmethod
    def availability_exception_record(row: StaffAvailabilityException) -> AvailabilityException:
        return AvailabilityException(
            staff_id=str(row.staff_id),
            month=month_key(row.month_start),
            kind=row.kind.value,
            hours=float(row.hours),
        )

    @staticmethod
    def client_record(row: Client, staff_liaison_name: str | None) -> ClientRecord:
        return ClientRecord(
            id=str(row.id),
            legal_name=row.legal_name,
            status=row.status,
            expected_monthly_revenue=float(row.expected_monthly_revenue),
            staff_liaison_id=str(row.staff_liaison_id) if row.staff_liaison_id is not None else None,
            staff_liaison_name=staff_liaison_name,
        )
