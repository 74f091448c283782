"""Change notifications from CRUD collaborators."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from practice_forecast.api.dependencies import get_event_bus
from practice_forecast.core.events import EventBus, EventTopic, ForecastEvent

router = APIRouter(prefix="/events", tags=["events"])


class ForecastEventPayload(BaseModel):
    topic: EventTopic
    client_id: str | None = None


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def publish_event(
    payload: ForecastEventPayload,
    bus: EventBus = Depends(get_event_bus),
) -> dict[str, object]:
    event_payload = {"client_id": payload.client_id} if payload.client_id is not None else {}
    delivered = await bus.publish(ForecastEvent(topic=payload.topic, payload=event_payload))
    return {"topic": payload.topic.value, "delivered": delivered}
