"""In-process publish/subscribe channel for data-change notifications.

CRUD collaborators publish a ``ForecastEvent`` whenever tasks, staff,
skills or clients change; the cache layer subscribes and drops the
affected entries. One bus lives on ``app.state`` per application.
"""

from __future__ import annotations

import enum
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class EventTopic(str, enum.Enum):
    TASKS_CHANGED = "tasks.changed"
    STAFF_CHANGED = "staff.changed"
    SKILLS_CHANGED = "skills.changed"
    CLIENTS_CHANGED = "clients.changed"
    FORECAST_REFRESH = "forecast.refresh"


@dataclass(frozen=True, slots=True)
class ForecastEvent:
    topic: EventTopic
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def client_id(self) -> str | None:
        value = self.payload.get("client_id")
        return str(value) if value is not None else None


EventHandler = Callable[[ForecastEvent], Awaitable[None] | None]


class EventBus:
    """Topic-keyed handler registry with sequential async delivery."""

    def __init__(self) -> None:
        self._handlers: dict[EventTopic, list[EventHandler]] = defaultdict(list)

    def subscribe(self, topic: EventTopic, handler: EventHandler) -> Callable[[], None]:
        self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscriber_count(self, topic: EventTopic) -> int:
        return len(self._handlers.get(topic, []))

    async def publish(self, event: ForecastEvent) -> int:
        """Deliver ``event`` to every handler; returns how many succeeded.

        A failing handler is logged and does not stop delivery to the rest.
        """

        delivered = 0
        for handler in list(self._handlers.get(event.topic, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Event handler failed for %s", event.topic.value, exc_info=True)
                continue
            delivered += 1
        logger.debug("Published %s to %d handler(s)", event.topic.value, delivered)
        return delivered
