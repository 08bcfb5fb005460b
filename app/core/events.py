"""Outbound events for the reconcilers.

The control plane only produces events; evaluation and remediation happen
elsewhere. Delivery is at-least-once, so subscribers must be idempotent.

The default publisher writes events to the log. `QueuePublisher` hands them
to an in-process consumer through a bounded queue.
"""

import asyncio
import logging
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from app.core.config import settings
from app.core.observability import metrics

logger = logging.getLogger(__name__)

PROFILE_INITIALISED_TOPIC = "profile-initialised"


class ProfileInitialised(BaseModel):
    """Payload of `profile-initialised`: re-evaluate this project's profiles."""

    model_config = ConfigDict(frozen=True)

    provider_name: str
    project_id: str


class PublishError(Exception):
    """The publisher could not accept an event."""


class EventPublisher(Protocol):
    async def publish(self, topic: str, payload: bytes) -> None: ...


class LoggingPublisher:
    """Emits each event as a structured log line."""

    async def publish(self, topic: str, payload: bytes) -> None:
        logger.info(
            "event:%s",
            topic,
            extra={"topic": topic, "payload": payload.decode("utf-8", errors="replace")},
        )


class QueuePublisher:
    """
    Hands events to a bounded in-memory queue.

    `publish` waits for room when the queue is full; a consumer drains it
    with `get()`.
    """

    def __init__(self, maxsize: int | None = None):
        self._queue: asyncio.Queue[tuple[str, bytes]] = asyncio.Queue(
            maxsize=maxsize or settings.events_queue_size
        )
        self._closed = False

    async def publish(self, topic: str, payload: bytes) -> None:
        if self._closed:
            raise PublishError("publisher is closed")
        await self._queue.put((topic, payload))

    async def get(self) -> tuple[str, bytes]:
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._closed = True


async def publish_safely(publisher: EventPublisher, topic: str, message: BaseModel) -> bool:
    """
    Publish `message` and swallow the failure.

    Called after a commit: the state change is already durable, so a lost
    event is left to the reconciler. Returns whether the publish succeeded.
    """
    try:
        await publisher.publish(topic, message.model_dump_json().encode("utf-8"))
    except Exception:
        metrics.events_published_total.labels(topic=topic, status="error").inc()
        logger.exception("error publishing %s event", topic)
        return False

    metrics.events_published_total.labels(topic=topic, status="ok").inc()
    return True
