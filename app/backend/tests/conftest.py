from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Generator, Sequence
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import practice_forecast.models.entities  # noqa: F401
from practice_forecast.core.errors import DataSourceError
from practice_forecast.db.base import Base
from practice_forecast.db.dependencies import get_session_factory
from practice_forecast.main import create_app
from practice_forecast.models.entities import (
    Client,
    RecurringTask,
    Skill,
    StaffAvailabilityException,
    StaffMember,
    TaskInstance,
)
from practice_forecast.services.data_sources import (
    AvailabilityException,
    ClientRecord,
    StaffRecord,
    TaskRecord,
)
from practice_forecast.services.matrix_model import MatrixData, MatrixDataPoint, month_buckets, month_key
from practice_forecast.services.result_cache import ResultCache

TEST_TABLES = [
    Skill.__table__,
    StaffMember.__table__,
    StaffAvailabilityException.__table__,
    Client.__table__,
    RecurringTask.__table__,
    TaskInstance.__table__,
]


class InMemoryForecastSource:
    """Data source and skills store backed by plain lists."""

    def __init__(
        self,
        *,
        skills: Sequence[str] = (),
        recurring: Sequence[TaskRecord] = (),
        instances: Sequence[TaskRecord] = (),
        staff: Sequence[StaffRecord] = (),
        exceptions: Sequence[AvailabilityException] = (),
        clients: Sequence[ClientRecord] = (),
        fee_rates: dict[str, float] | None = None,
    ) -> None:
        self.skills = list(skills)
        self.recurring = list(recurring)
        self.instances = list(instances)
        self.staff = list(staff)
        self.exceptions = list(exceptions)
        self.clients = list(clients)
        self.fee_rates = dict(fee_rates or {})
        self.failing: set[str] = set()
        self.calls: Counter[str] = Counter()

    def _check(self, operation: str) -> None:
        self.calls[operation] += 1
        if operation in self.failing:
            raise DataSourceError(operation, "simulated outage")

    async def list_skills(self) -> list[str]:
        self._check("list_skills")
        return list(self.skills)

    async def list_skill_fee_rates(self) -> dict[str, float]:
        self._check("list_skill_fee_rates")
        return dict(self.fee_rates)

    async def list_recurring_tasks(self, client_ids: Sequence[str] | None = None) -> list[TaskRecord]:
        self._check("list_recurring_tasks")
        return [task for task in self.recurring if client_ids is None or task.client_id in client_ids]

    async def list_task_instances(
        self,
        client_ids: Sequence[str] | None = None,
        due_from: date | None = None,
        due_to: date | None = None,
    ) -> list[TaskRecord]:
        self._check("list_task_instances")
        selected = []
        for task in self.instances:
            if client_ids is not None and task.client_id not in client_ids:
                continue
            if (due_from is not None or due_to is not None) and task.due_date is None:
                continue
            if due_from is not None and task.due_date < due_from:
                continue
            if due_to is not None and task.due_date > due_to:
                continue
            selected.append(task)
        return selected

    async def list_active_staff(self) -> list[StaffRecord]:
        self._check("list_active_staff")
        return [member for member in self.staff if member.status == "active"]

    async def list_availability_exceptions(self, date_from: date, date_to: date) -> list[AvailabilityException]:
        self._check("list_availability_exceptions")
        return [item for item in self.exceptions if month_key(date_from) <= item.month <= month_key(date_to)]

    async def list_clients(self) -> list[ClientRecord]:
        self._check("list_clients")
        return list(self.clients)

    async def get_client(self, client_id: str) -> ClientRecord | None:
        self._check("get_client")
        return next((client for client in self.clients if client.id == client_id), None)


@pytest.fixture()
def source_factory() -> type[InMemoryForecastSource]:
    return InMemoryForecastSource


@pytest.fixture()
def cache() -> ResultCache:
    return ResultCache(default_ttl_seconds=300, max_entries=100)


@pytest.fixture()
def build_matrix() -> Callable[..., MatrixData]:
    """Build a dense matrix from ``{skill: [(demand, capacity), ...]}``."""

    def _build(values: dict[str, list[tuple[float, float]]], start: date = date(2025, 1, 1)) -> MatrixData:
        month_count = max((len(cells) for cells in values.values()), default=0)
        months = month_buckets(start, month_count)
        points = [
            MatrixDataPoint.of(skill, months[index], demand_hours=demand, capacity_hours=capacity)
            for skill, cells in values.items()
            for index, (demand, capacity) in enumerate(cells)
        ]
        return MatrixData.build(skills=list(values), months=months, data_points=points)

    return _build


@pytest.fixture()
def session_factory() -> Generator[Callable[[], Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine, tables=TEST_TABLES)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine, tables=TEST_TABLES)
        engine.dispose()


@pytest.fixture()
def db_session(session_factory: Callable[[], Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def app(session_factory: Callable[[], Session]):
    application = create_app()
    application.dependency_overrides[get_session_factory] = lambda: session_factory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client
