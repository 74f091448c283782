"""Demand vs. capacity matrix generation.

The generator turns task and staff data into a dense skill x month grid.
It holds no state of its own; the application-wide ``ResultCache`` is the
only thing shared between calls.
"""

from __future__ import annotations

import json
import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date

from practice_forecast.core.config import Settings
from practice_forecast.core.errors import DataSourceError
from practice_forecast.services.capacity import FORECAST_ACTUAL, FORECAST_TYPES, FORECAST_VIRTUAL, calculate_capacity
from practice_forecast.services.data_sources import (
    ClientFilter,
    ForecastDataSource,
    PreferredStaffFilter,
    SkillsStore,
    TaskRecord,
    normalize_id,
)
from practice_forecast.services.matrix_model import (
    MatrixData,
    MatrixDataPoint,
    MonthBucket,
    month_buckets,
    month_end,
    month_key,
)
from practice_forecast.services.recurrence import count_occurrences
from practice_forecast.services.result_cache import ResultCache, WarmUpEntry

logger = logging.getLogger(__name__)

SKILLS_CACHE_KEY = "skills:active"
SKILLS_FALLBACK_KEY = "skills-fallback:last-known"
ALLOCATION_DUPLICATE = "duplicate"
ALLOCATION_DISTRIBUTE = "distribute"
CANCELED_STATUS = "Canceled"


ClientDemand = dict[str, dict[tuple[str, str], float]]


def _scope_key(
    forecast_type: str,
    as_of: date,
    client_filter: ClientFilter | None,
    preferred_staff: PreferredStaffFilter | None,
) -> str:
    client_key = json.dumps(list(client_filter.client_ids)) if client_filter else "all"
    key = f"{forecast_type}:{month_key(as_of)}:{client_key}"
    if preferred_staff:
        key += f":staff={json.dumps(list(preferred_staff.staff_ids))}"
    return key


def matrix_cache_key(
    forecast_type: str,
    as_of: date,
    client_filter: ClientFilter | None = None,
    preferred_staff: PreferredStaffFilter | None = None,
) -> str:
    return f"matrix:{_scope_key(forecast_type, as_of, client_filter, preferred_staff)}"


def client_demand_cache_key(
    forecast_type: str,
    as_of: date,
    client_filter: ClientFilter | None = None,
    preferred_staff: PreferredStaffFilter | None = None,
) -> str:
    return f"matrix:client-demand:{_scope_key(forecast_type, as_of, client_filter, preferred_staff)}"


def merge_demand(client_demand: ClientDemand) -> dict[tuple[str, str], float]:
    total: dict[tuple[str, str], float] = defaultdict(float)
    for cells in client_demand.values():
        for cell, hours in cells.items():
            total[cell] += hours
    return dict(total)


def allocate_hours(
    target: dict[tuple[str, str], float],
    skills: Iterable[str],
    month: str,
    hours: float,
    strategy: str,
) -> None:
    unique_skills = list(dict.fromkeys(skills))
    if not unique_skills or hours <= 0:
        return
    share = hours / len(unique_skills) if strategy == ALLOCATION_DISTRIBUTE else hours
    for skill in unique_skills:
        target[(skill, month)] += share


def order_skills(store_skills: Sequence[str], data_skills: Iterable[str]) -> list[str]:
    """Store order first, then skills only seen in the data, sorted."""

    ordered = list(dict.fromkeys(store_skills))
    known = set(ordered)
    ordered.extend(sorted({skill for skill in data_skills if skill not in known}))
    return ordered


class MatrixGenerator:
    def __init__(
        self,
        data_source: ForecastDataSource,
        skills_store: SkillsStore,
        cache: ResultCache,
        *,
        horizon_months: int = 12,
        allocation_strategy: str = ALLOCATION_DUPLICATE,
        unassigned_skill: str = "Junior Staff",
        matrix_ttl_seconds: float | None = None,
        skills_ttl_seconds: float | None = None,
    ) -> None:
        self.data_source = data_source
        self.skills_store = skills_store
        self.cache = cache
        self.horizon_months = horizon_months
        self.allocation_strategy = allocation_strategy
        self.unassigned_skill = unassigned_skill
        self.matrix_ttl_seconds = matrix_ttl_seconds
        self.skills_ttl_seconds = skills_ttl_seconds

    @classmethod
    def from_settings(
        cls,
        data_source: ForecastDataSource,
        skills_store: SkillsStore,
        cache: ResultCache,
        settings: Settings,
    ) -> MatrixGenerator:
        return cls(
            data_source,
            skills_store,
            cache,
            horizon_months=settings.forecast_horizon_months,
            allocation_strategy=settings.skill_allocation_strategy,
            unassigned_skill=settings.unassigned_capacity_skill,
            matrix_ttl_seconds=settings.matrix_cache_ttl_seconds,
            skills_ttl_seconds=settings.skills_cache_ttl_seconds,
        )

    # ---------- Skills ----------
    async def load_skills(self) -> list[str]:
        """Active skills from the store, degrading to the last known list.

        A store failure never fails matrix generation; without a previously
        loaded list the grid is built from skills seen in the data only.
        """

        try:
            skills = await self.cache.get_or_set(
                SKILLS_CACHE_KEY,
                self.skills_store.list_skills,
                self.skills_ttl_seconds,
            )
        except DataSourceError:
            fallback = self.cache.get(SKILLS_FALLBACK_KEY) or []
            logger.warning("Skills store unavailable; using %d last known skill(s)", len(fallback))
            return list(fallback)
        self.cache.set(SKILLS_FALLBACK_KEY, list(skills), math.inf, pinned=True)
        return list(skills)

    # ---------- Demand ----------
    async def _virtual_demand(
        self,
        months: Sequence[MonthBucket],
        client_ids: Sequence[str] | None,
        preferred_staff: PreferredStaffFilter | None,
    ) -> ClientDemand:
        tasks = await self.data_source.list_recurring_tasks(client_ids)
        demand: ClientDemand = defaultdict(lambda: defaultdict(float))
        for task in self._in_scope(tasks, client_ids, preferred_staff):
            if not task.is_active:
                continue
            for bucket in months:
                occurrences = count_occurrences(task, bucket.start, month_end(bucket.start))
                if occurrences:
                    allocate_hours(
                        demand[normalize_id(task.client_id)],
                        task.required_skills,
                        bucket.key,
                        task.estimated_hours * occurrences,
                        self.allocation_strategy,
                    )
        return demand

    async def _actual_demand(
        self,
        months: Sequence[MonthBucket],
        client_ids: Sequence[str] | None,
        preferred_staff: PreferredStaffFilter | None,
    ) -> ClientDemand:
        window_start = months[0].start
        window_end = month_end(months[-1].start)
        tasks = await self.data_source.list_task_instances(client_ids, window_start, window_end)
        month_keys = {bucket.key for bucket in months}
        demand: ClientDemand = defaultdict(lambda: defaultdict(float))
        for task in self._in_scope(tasks, client_ids, preferred_staff):
            if task.due_date is None:
                continue
            key = month_key(task.due_date)
            if key not in month_keys:
                continue
            allocate_hours(
                demand[normalize_id(task.client_id)],
                task.required_skills,
                key,
                task.estimated_hours,
                self.allocation_strategy,
            )
        return demand

    @staticmethod
    def _in_scope(
        tasks: Iterable[TaskRecord],
        client_ids: Sequence[str] | None,
        preferred_staff: PreferredStaffFilter | None = None,
    ) -> Iterable[TaskRecord]:
        allowed = set(client_ids) if client_ids is not None else None
        for task in tasks:
            if task.status == CANCELED_STATUS or not task.required_skills:
                continue
            if allowed is not None and normalize_id(task.client_id) not in allowed:
                continue
            if preferred_staff is not None and not preferred_staff.matches(task):
                continue
            yield task

    async def demand_by_client(
        self,
        forecast_type: str,
        as_of: date,
        client_filter: ClientFilter | None = None,
        preferred_staff: PreferredStaffFilter | None = None,
    ) -> ClientDemand:
        """Demand hours per client, keyed by (skill, month) within the horizon."""

        if forecast_type not in FORECAST_TYPES:
            raise ValueError(f"Unsupported forecast type: {forecast_type}")
        months = month_buckets(as_of, self.horizon_months)
        return await self._client_demand(forecast_type, months, client_filter, preferred_staff)

    async def _client_demand(
        self,
        forecast_type: str,
        months: Sequence[MonthBucket],
        client_filter: ClientFilter | None,
        preferred_staff: PreferredStaffFilter | None,
    ) -> ClientDemand:
        client_ids = list(client_filter.client_ids) if client_filter else None
        if forecast_type == FORECAST_VIRTUAL:
            demand = await self._virtual_demand(months, client_ids, preferred_staff)
        else:
            demand = await self._actual_demand(months, client_ids, preferred_staff)
        return {client_id: dict(cells) for client_id, cells in demand.items()}

    async def demand_by_client_cached(
        self,
        forecast_type: str,
        as_of: date,
        client_filter: ClientFilter | None = None,
        preferred_staff: PreferredStaffFilter | None = None,
    ) -> ClientDemand:
        return await self.cache.get_or_set(
            client_demand_cache_key(forecast_type, as_of, client_filter, preferred_staff),
            lambda: self.demand_by_client(forecast_type, as_of, client_filter, preferred_staff),
            self.matrix_ttl_seconds,
        )

    # ---------- Capacity ----------
    async def _capacity(self, forecast_type: str, months: Sequence[MonthBucket]) -> dict[tuple[str, str], float]:
        staff = await self.data_source.list_active_staff()
        exceptions = []
        if forecast_type == FORECAST_ACTUAL:
            # Exceptions may be dated anywhere inside a month, so the window ends on the last day.
            exceptions = await self.data_source.list_availability_exceptions(
                months[0].start,
                month_end(months[-1].start),
            )
        records = calculate_capacity(
            staff,
            months,
            forecast_type=forecast_type,
            exceptions=exceptions,
            unassigned_skill=self.unassigned_skill,
        )
        return {(record.skill, record.month): record.available_hours for record in records}

    # ---------- Matrix ----------
    async def generate(
        self,
        forecast_type: str,
        as_of: date,
        client_filter: ClientFilter | None = None,
        preferred_staff: PreferredStaffFilter | None = None,
    ) -> MatrixData:
        """Build the dense matrix for ``forecast_type`` starting at ``as_of``'s month.

        ``preferred_staff`` narrows demand only; capacity always covers the
        whole active staff. Data-source failures propagate; no partial
        matrix is returned.
        """

        if forecast_type not in FORECAST_TYPES:
            raise ValueError(f"Unsupported forecast type: {forecast_type}")

        months = month_buckets(as_of, self.horizon_months)
        demand = merge_demand(await self._client_demand(forecast_type, months, client_filter, preferred_staff))
        capacity = await self._capacity(forecast_type, months)
        store_skills = await self.load_skills()

        matrix = self.assemble(store_skills, months, demand, capacity)
        logger.info(
            "Generated %s matrix from %s: %d skill(s) x %d month(s), demand %.2fh, capacity %.2fh",
            forecast_type,
            months[0].key,
            len(matrix.skills),
            len(matrix.months),
            matrix.total_demand,
            matrix.total_capacity,
        )
        return matrix

    @staticmethod
    def assemble(
        store_skills: Sequence[str],
        months: Sequence[MonthBucket],
        demand: dict[tuple[str, str], float],
        capacity: dict[tuple[str, str], float],
    ) -> MatrixData:
        skills = order_skills(store_skills, [skill for skill, _ in [*demand, *capacity]])
        data_points = [
            MatrixDataPoint.of(
                skill,
                bucket,
                demand_hours=demand.get((skill, bucket.key), 0.0),
                capacity_hours=capacity.get((skill, bucket.key), 0.0),
            )
            for skill in skills
            for bucket in months
        ]
        return MatrixData.build(skills=skills, months=months, data_points=data_points)

    async def generate_cached(
        self,
        forecast_type: str,
        as_of: date,
        client_filter: ClientFilter | None = None,
        preferred_staff: PreferredStaffFilter | None = None,
    ) -> MatrixData:
        if forecast_type not in FORECAST_TYPES:
            raise ValueError(f"Unsupported forecast type: {forecast_type}")
        return await self.cache.get_or_set(
            matrix_cache_key(forecast_type, as_of, client_filter, preferred_staff),
            lambda: self.generate(forecast_type, as_of, client_filter, preferred_staff),
            self.matrix_ttl_seconds,
        )

    def warm_up_entries(self, as_of: date) -> list[WarmUpEntry]:
        """Firm-wide matrices for both forecast types."""

        return [
            WarmUpEntry(
                key=matrix_cache_key(forecast_type, as_of),
                loader=lambda forecast_type=forecast_type: self.generate(forecast_type, as_of),
                ttl_seconds=self.matrix_ttl_seconds,
            )
            for forecast_type in FORECAST_TYPES
        ]
