"""Committed-event distribution over publish/subscribe transports."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..config import EventsConfig
from ..transport.canonical_json import canonical_dumps
from .models import Event

logger = logging.getLogger(__name__)


class _PublisherProtocol:
    async def publish(self, event: Event) -> None:  # pragma: no cover - protocol
        raise NotImplementedError


class _LocalPublisher(_PublisherProtocol):
    async def publish(self, event: Event) -> None:
        logger.info(
            "[local-pubsub] %s #%d component=%s delivered",
            event.name,
            event.sequence,
            event.component,
        )


class _PubSubPublisher(_PublisherProtocol):
    def __init__(self, options: dict[str, Any]) -> None:
        from google.cloud import pubsub_v1

        self._project_id = options.get("project_id")
        if not self._project_id:
            raise ValueError("pubsub backend requires project_id")
        self._topic_prefix = options.get("topic_prefix", "marketplace-events")
        self._publisher = pubsub_v1.PublisherClient()

    def _topic_path(self, component: str) -> str:
        topic = f"{self._topic_prefix}-{component}"
        if topic.startswith("projects/"):
            return topic
        return self._publisher.topic_path(self._project_id, topic)

    async def publish(self, event: Event) -> None:
        message = canonical_dumps(event.to_dict())
        future = self._publisher.publish(
            self._topic_path(event.component),
            message,
            event=event.name,
            sequence=str(event.sequence),
        )
        await asyncio.to_thread(future.result)


class EventPublisher:
    """Forwards committed events to the configured transport.

    Publishing happens after the ledger commit, so a transport failure is
    logged and never rolls back state.
    """

    def __init__(self, backend: str = "local", options: dict[str, Any] | None = None) -> None:
        options = options or {}
        self.backend = backend
        if backend == "pubsub":
            self._publisher: _PublisherProtocol = _PubSubPublisher(options.get("pubsub", {}))
        elif backend == "local":
            self._publisher = _LocalPublisher()
        else:
            raise ValueError(f"Unsupported events backend: {backend}")
        self.published = 0
        self.failed = 0

    async def publish(self, event: Event) -> None:
        try:
            await self._publisher.publish(event)
        except Exception:
            self.failed += 1
            logger.exception("failed to publish %s #%d", event.name, event.sequence)
            return
        self.published += 1


def build_publisher(config: EventsConfig) -> EventPublisher:
    return EventPublisher(config.backend, config.options)
