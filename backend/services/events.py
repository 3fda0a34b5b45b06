"""
CRUD event publishing.

Fire-and-forget: endpoints publish after commit, and a relay that is down only
costs the event, never the request.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import BaseModel

from backend.app.core.config import Settings
from backend.app.db.models.core_types import EventAction

logger = logging.getLogger(__name__)


class Actor(BaseModel):
    id: str = ""
    email: str = ""


class CrudEvent(BaseModel):
    id: int | str | None = None
    table: str
    action: EventAction
    data: dict[str, Any]
    timestamp: datetime
    actor: Actor | None = None


class EventPublisher:
    def __init__(self, app_name: str = "stock"):
        self.app_name = app_name

    def routing_key(self, event: CrudEvent) -> str:
        return f"{self.app_name}.{event.table}.{event.action.value}"

    def publish(self, event: CrudEvent) -> None:
        raise NotImplementedError

    def publish_crud(
        self,
        table: str,
        action: EventAction,
        data: dict[str, Any],
        actor: Actor | None = None,
    ) -> CrudEvent:
        event = CrudEvent(
            id=data.get("id"),
            table=table,
            action=action,
            data=data,
            timestamp=datetime.now(timezone.utc),
            actor=actor,
        )
        self.publish(event)
        return event

    def close(self) -> None:
        pass


class LoggingEventPublisher(EventPublisher):
    """Used when no relay is configured."""

    def publish(self, event: CrudEvent) -> None:
        logger.info("Event %s (id=%s)", self.routing_key(event), event.id)


class HttpEventPublisher(EventPublisher):
    def __init__(self, url: str, *, app_name: str = "stock", timeout: float = 2.0, client: httpx.Client | None = None):
        super().__init__(app_name)
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def publish(self, event: CrudEvent) -> None:
        key = self.routing_key(event)
        try:
            resp = self.client.post(
                self.url,
                json=event.model_dump(mode="json"),
                headers={"X-Routing-Key": key},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Event %s dropped: %s", key, e)
            return
        logger.info("Published %s (id=%s)", key, event.id)

    def close(self) -> None:
        self.client.close()


def build_publisher(settings: Settings) -> EventPublisher:
    if settings.EVENT_RELAY_URL:
        return HttpEventPublisher(
            settings.EVENT_RELAY_URL,
            app_name=settings.APP_NAME,
            timeout=settings.EVENT_RELAY_TIMEOUT,
        )
    logger.warning("EVENT_RELAY_URL not set, events are only logged")
    return LoggingEventPublisher(settings.APP_NAME)
