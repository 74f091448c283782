"""Client-scoped task metrics and staff-liaison revenue roll-ups."""

from __future__ import annotations

import json
import logging
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType

from practice_forecast.core.config import Settings
from practice_forecast.core.errors import ClientNotFoundError
from practice_forecast.services.data_sources import ClientRecord, ForecastDataSource, TaskRecord, normalize_id
from practice_forecast.services.matrix_model import round_hours
from practice_forecast.services.result_cache import ResultCache

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "Completed"
STATUS_IN_PROGRESS = "In Progress"
STATUS_SCHEDULED = "Scheduled"
STATUS_CANCELED = "Canceled"
UNASSIGNED_LIAISON_ID = "unassigned"
UNASSIGNED_LIAISON_NAME = "Unassigned"


@dataclass(frozen=True, slots=True)
class DateRange:
    start: date | None = None
    end: date | None = None

    def contains(self, value: date | None) -> bool:
        if value is None:
            return False
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True

    def cache_fragment(self) -> str:
        return json.dumps(
            {
                "from": self.start.isoformat() if self.start else None,
                "to": self.end.isoformat() if self.end else None,
            },
            sort_keys=True,
        )


def client_detail_cache_key(client_id: str, date_range: DateRange | None = None) -> str:
    return f"client-detail:{normalize_id(client_id)}:{(date_range or DateRange()).cache_fragment()}"


def staff_liaison_cache_key(date_range: DateRange | None = None) -> str:
    return f"staff-liaison:{(date_range or DateRange()).cache_fragment()}"


def _frozen_hours(values: dict[str, float]) -> Mapping[str, float]:
    return MappingProxyType({key: round_hours(value) for key, value in sorted(values.items())})


# Summaries are cached and handed to every caller, so none of them can be mutated.
@dataclass(frozen=True, slots=True)
class ClientTaskSummary:
    client_id: str
    client_name: str
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    upcoming_tasks: int = 0
    recurring_tasks: int = 0
    adhoc_tasks: int = 0
    total_estimated_hours: float = 0.0
    completed_hours: float = 0.0
    remaining_hours: float = 0.0
    completion_rate: float = 0.0
    average_task_hours: float = 0.0
    hours_by_skill: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    hours_by_category: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    hours_by_priority: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True, slots=True)
class StaffLiaisonSummary:
    liaison_id: str
    liaison_name: str
    client_count: int = 0
    expected_monthly_revenue: float = 0.0
    average_revenue_per_client: float = 0.0
    active_tasks: int = 0
    completed_tasks: int = 0
    total_tasks: int = 0
    completion_rate: float = 0.0


@dataclass(frozen=True, slots=True)
class StaffLiaisonReport:
    liaisons: tuple[StaffLiaisonSummary, ...]
    total_revenue: float
    total_clients: int
    total_tasks: int


def _rate(part: int, whole: int) -> float:
    return round_hours(part / whole * 100) if whole else 0.0


def summarize_tasks(client: ClientRecord, tasks: Iterable[TaskRecord]) -> ClientTaskSummary:
    counts: Counter[str] = Counter()
    by_skill: dict[str, float] = defaultdict(float)
    by_category: dict[str, float] = defaultdict(float)
    by_priority: dict[str, float] = defaultdict(float)
    total_hours = 0.0
    completed_hours = 0.0

    for task in tasks:
        if task.status == STATUS_CANCELED:
            continue
        counts["total"] += 1
        counts["recurring" if task.is_recurring else "adhoc"] += 1

        if task.status == STATUS_COMPLETED:
            counts["completed"] += 1
            completed_hours += task.estimated_hours
        elif task.status == STATUS_IN_PROGRESS:
            counts["in_progress"] += 1
        else:
            counts["upcoming"] += 1

        total_hours += task.estimated_hours
        for skill in dict.fromkeys(task.required_skills):
            by_skill[skill] += task.estimated_hours
        by_category[task.category] += task.estimated_hours
        by_priority[task.priority] += task.estimated_hours

    total = counts["total"]
    return ClientTaskSummary(
        client_id=client.id,
        client_name=client.legal_name,
        total_tasks=total,
        completed_tasks=counts["completed"],
        in_progress_tasks=counts["in_progress"],
        upcoming_tasks=counts["upcoming"],
        recurring_tasks=counts["recurring"],
        adhoc_tasks=counts["adhoc"],
        total_estimated_hours=round_hours(total_hours),
        completed_hours=round_hours(completed_hours),
        remaining_hours=round_hours(total_hours - completed_hours),
        completion_rate=_rate(counts["completed"], total),
        average_task_hours=round_hours(total_hours / total) if total else 0.0,
        hours_by_skill=_frozen_hours(by_skill),
        hours_by_category=_frozen_hours(by_category),
        hours_by_priority=_frozen_hours(by_priority),
    )


def _is_active_task(task: TaskRecord) -> bool:
    if task.is_recurring:
        return task.is_active and task.status != STATUS_COMPLETED
    return task.status in {STATUS_SCHEDULED, STATUS_IN_PROGRESS}


class ClientAggregationService:
    def __init__(
        self,
        data_source: ForecastDataSource,
        cache: ResultCache,
        *,
        report_ttl_seconds: float | None = None,
    ) -> None:
        self.data_source = data_source
        self.cache = cache
        self.report_ttl_seconds = report_ttl_seconds

    @classmethod
    def from_settings(
        cls,
        data_source: ForecastDataSource,
        cache: ResultCache,
        settings: Settings,
    ) -> ClientAggregationService:
        return cls(data_source, cache, report_ttl_seconds=settings.report_cache_ttl_seconds)

    async def _client_tasks(self, client_ids: list[str], date_range: DateRange | None) -> list[TaskRecord]:
        recurring = await self.data_source.list_recurring_tasks(client_ids)
        if date_range is None:
            instances = await self.data_source.list_task_instances(client_ids)
            return [*recurring, *instances]
        instances = await self.data_source.list_task_instances(client_ids, date_range.start, date_range.end)
        return [task for task in [*recurring, *instances] if date_range.contains(task.due_date)]

    # ---------- Client detail ----------
    async def summarize(self, client_id: str, date_range: DateRange | None = None) -> ClientTaskSummary:
        """Task counts and hour breakdowns for one client.

        With a date range only tasks due inside it are counted.
        """

        client = await self.data_source.get_client(client_id)
        if client is None:
            raise ClientNotFoundError(client_id)
        tasks = await self._client_tasks([client.id], date_range)
        summary = summarize_tasks(client, tasks)
        logger.info("Summarized %d task(s) for client %s", summary.total_tasks, client.id)
        return summary

    async def summarize_cached(self, client_id: str, date_range: DateRange | None = None) -> ClientTaskSummary:
        client_id = normalize_id(client_id)
        return await self.cache.get_or_set(
            client_detail_cache_key(client_id, date_range),
            lambda: self.summarize(client_id, date_range),
            self.report_ttl_seconds,
        )

    # ---------- Staff liaisons ----------
    async def summarize_staff_liaisons(self, date_range: DateRange | None = None) -> StaffLiaisonReport:
        clients = await self.data_source.list_clients()
        tasks = await self._client_tasks([client.id for client in clients], date_range)
        tasks_by_client: dict[str, list[TaskRecord]] = defaultdict(list)
        for task in tasks:
            if task.status != STATUS_CANCELED:
                tasks_by_client[task.client_id].append(task)

        names: dict[str, str] = {}
        counts: dict[str, Counter[str]] = defaultdict(Counter)
        revenue: dict[str, float] = defaultdict(float)
        for client in clients:
            liaison_id = client.staff_liaison_id or UNASSIGNED_LIAISON_ID
            if liaison_id == UNASSIGNED_LIAISON_ID:
                names.setdefault(liaison_id, UNASSIGNED_LIAISON_NAME)
            else:
                names.setdefault(liaison_id, client.staff_liaison_name or liaison_id)
            client_tasks = tasks_by_client.get(client.id, [])
            group = counts[liaison_id]
            group["clients"] += 1
            group["total"] += len(client_tasks)
            group["active"] += sum(1 for task in client_tasks if _is_active_task(task))
            group["completed"] += sum(1 for task in client_tasks if task.status == STATUS_COMPLETED)
            revenue[liaison_id] += client.expected_monthly_revenue

        liaisons = []
        for liaison_id, liaison_name in names.items():
            group = counts[liaison_id]
            monthly = round_hours(revenue[liaison_id])
            liaisons.append(
                StaffLiaisonSummary(
                    liaison_id=liaison_id,
                    liaison_name=liaison_name,
                    client_count=group["clients"],
                    expected_monthly_revenue=monthly,
                    average_revenue_per_client=round_hours(monthly / group["clients"]) if group["clients"] else 0.0,
                    active_tasks=group["active"],
                    completed_tasks=group["completed"],
                    total_tasks=group["total"],
                    completion_rate=_rate(group["completed"], group["total"]),
                )
            )
        liaisons.sort(key=lambda summary: (-summary.expected_monthly_revenue, summary.liaison_name))

        return StaffLiaisonReport(
            liaisons=tuple(liaisons),
            total_revenue=round_hours(sum(summary.expected_monthly_revenue for summary in liaisons)),
            total_clients=sum(summary.client_count for summary in liaisons),
            total_tasks=sum(summary.total_tasks for summary in liaisons),
        )

    async def summarize_staff_liaisons_cached(self, date_range: DateRange | None = None) -> StaffLiaisonReport:
        return await self.cache.get_or_set(
            staff_liaison_cache_key(date_range),
            lambda: self.summarize_staff_liaisons(date_range),
            self.report_ttl_seconds,
        )

    # ---------- Serialization ----------
    @staticmethod
    def serialize_summary(summary: ClientTaskSummary) -> dict[str, object]:
        return {
            "client_id": summary.client_id,
            "client_name": summary.client_name,
            "total_tasks": summary.total_tasks,
            "completed_tasks": summary.completed_tasks,
            "in_progress_tasks": summary.in_progress_tasks,
            "upcoming_tasks": summary.upcoming_tasks,
            "recurring_tasks": summary.recurring_tasks,
            "adhoc_tasks": summary.adhoc_tasks,
            "total_estimated_hours": summary.total_estimated_hours,
            "completed_hours": summary.completed_hours,
            "remaining_hours": summary.remaining_hours,
            "completion_rate": summary.completion_rate,
            "average_task_hours": summary.average_task_hours,
            "hours_by_skill": dict(summary.hours_by_skill),
            "hours_by_category": dict(summary.hours_by_category),
            "hours_by_priority": dict(summary.hours_by_priority),
        }

    @staticmethod
    def serialize_liaison_report(report: StaffLiaisonReport) -> dict[str, object]:
        return {
            "liaisons": [
                {
                    "liaison_id": group.liaison_id,
                    "liaison_name": group.liaison_name,
                    "client_count": group.client_count,
                    "expected_monthly_revenue": group.expected_monthly_revenue,
                    "average_revenue_per_client": group.average_revenue_per_client,
                    "active_tasks": group.active_tasks,
                    "completed_tasks": group.completed_tasks,
                    "total_tasks": group.total_tasks,
                    "completion_rate": group.completion_rate,
                }
                for group in report.liaisons
            ],
            "total_revenue": report.total_revenue,
            "total_clients": report.total_clients,
            "total_tasks": report.total_tasks,
        }
