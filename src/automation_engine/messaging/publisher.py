"""
Domain Event Publisher

Used by the subsystems that raise business events (lead capture, payment
webhooks, appointment scheduling) and by the CLI to put events on the bus.
"""

import logging
from typing import Any

from ..exceptions import DispatchError
from .backends import EventBusBackend
from .serialization import MessageSerializer

logger = logging.getLogger(__name__)


class EventPublisher:
    """Publishes `{eventName, payload}` messages keyed by event name."""

    def __init__(
        self,
        backend: EventBusBackend,
        events_exchange: str,
        serializer: MessageSerializer | None = None,
    ):
        self.backend = backend
        self.events_exchange = events_exchange
        self.serializer = serializer or MessageSerializer()

    async def publish_event(
        self,
        event_name: str,
        payload: dict[str, Any],
        exchange: str | None = None,
    ) -> None:
        """Publish an event; the event name doubles as the routing key."""
        target = exchange or self.events_exchange
        body = self.serializer.serialize({"eventName": event_name, "payload": payload})
        try:
            await self.backend.publish(target, event_name, body)
        except Exception as e:
            logger.error(f"Failed to publish event '{event_name}': {e}")
            raise DispatchError(
                f"Failed to publish event '{event_name}'", event_name=event_name, cause=e
            ) from e
        logger.info(f"Event published to '{target}' with routing key '{event_name}'")
