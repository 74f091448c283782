"""Wiring between data-change events and the result cache."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable

from practice_forecast.core.events import EventBus, EventTopic, ForecastEvent
from practice_forecast.services.data_sources import normalize_id
from practice_forecast.services.result_cache import ResultCache, WarmUpEntry

logger = logging.getLogger(__name__)

MATRIX_PATTERN = r"^matrix:"
SKILLS_PATTERN = r"^skills:"
STAFF_LIAISON_PATTERN = r"^staff-liaison:"
ALL_CLIENT_DETAIL_PATTERN = r"^client-detail:"


def client_detail_pattern(client_id: str | None) -> str:
    if client_id is None:
        return ALL_CLIENT_DETAIL_PATTERN
    return rf"^client-detail:{re.escape(normalize_id(client_id))}:"


def patterns_for_event(event: ForecastEvent) -> list[str]:
    """Key patterns whose cached results an event makes stale."""

    topic = event.topic
    if topic == EventTopic.TASKS_CHANGED:
        return [MATRIX_PATTERN, client_detail_pattern(event.client_id), STAFF_LIAISON_PATTERN]
    if topic == EventTopic.CLIENTS_CHANGED:
        return [MATRIX_PATTERN, client_detail_pattern(event.client_id), STAFF_LIAISON_PATTERN]
    if topic == EventTopic.STAFF_CHANGED:
        return [MATRIX_PATTERN, STAFF_LIAISON_PATTERN]
    if topic == EventTopic.SKILLS_CHANGED:
        return [SKILLS_PATTERN, MATRIX_PATTERN]
    if topic == EventTopic.FORECAST_REFRESH:
        return [MATRIX_PATTERN]
    return []


class DebouncedRefresher:
    """Coalesce bursts of change events into one deferred cache warm-up."""

    def __init__(
        self,
        cache: ResultCache,
        entries_factory: Callable[[], list[WarmUpEntry]],
        *,
        delay_seconds: float = 0.5,
    ) -> None:
        self.cache = cache
        self.entries_factory = entries_factory
        self.delay_seconds = delay_seconds
        self._pending: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def schedule(self) -> None:
        if self.pending:
            self._pending.cancel()
        self._pending = asyncio.ensure_future(self._run_after_delay())

    async def _run_after_delay(self) -> int:
        await asyncio.sleep(self.delay_seconds)
        return await self.cache.warm_up(self.entries_factory())

    async def wait(self) -> int | None:
        """Await the scheduled refresh, if any; returns entries loaded."""

        task = self._pending
        if task is None:
            return None
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    def cancel(self) -> None:
        if self.pending:
            self._pending.cancel()


def register_cache_invalidation(
    bus: EventBus,
    cache: ResultCache,
    refresher: DebouncedRefresher | None = None,
) -> list[Callable[[], None]]:
    """Subscribe ``cache`` to every event topic; returns the unsubscribe callables."""

    def handle(event: ForecastEvent) -> None:
        removed = sum(cache.invalidate_pattern(pattern) for pattern in patterns_for_event(event))
        logger.info("Invalidated %d cache entries after %s", removed, event.topic.value)
        if refresher is not None:
            refresher.schedule()

    return [bus.subscribe(topic, handle) for topic in EventTopic]
