"""
Event and Action Message Types

Inbound domain events and the outbound action messages produced for them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class EventEnvelope:
    """Decoded domain event.

    `event_name` is the routing key the event was published with; `body` is
    the JSON object publishers send, normally `{"eventName": ..., "payload": {...}}`.
    """

    event_name: str
    body: dict[str, Any]

    @property
    def payload(self) -> dict[str, Any]:
        """Nested event payload, empty when absent or not an object."""
        nested = self.body.get("payload")
        return nested if isinstance(nested, dict) else {}

    def reference(self, field_name: str) -> Any:
        """Read an entity reference, top-level first, then from the nested payload."""
        value = self.body.get(field_name)
        if value:
            return value
        return self.payload.get(field_name) or None


@dataclass
class ResolvedEntity:
    """Domain document fetched for an event."""

    entity_type: str
    collection: str
    entity_id: Any
    document: dict[str, Any]


class ActionDispatchMessage(BaseModel):
    """Message handed to action workers."""

    model_config = ConfigDict(populate_by_name=True)

    action_type: str = Field(alias="actionType")
    config: dict[str, Any] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(
        cls,
        action_type: str,
        config: dict[str, Any],
        event_body: dict[str, Any],
        related_doc: dict[str, Any],
        timestamp: datetime | None = None,
    ) -> "ActionDispatchMessage":
        """Merge the original event, the resolved document and a timestamp."""
        moment = (timestamp or datetime.now(timezone.utc)).astimezone(timezone.utc)
        return cls(
            action_type=action_type,
            config=config,
            payload={
                **event_body,
                "relatedDoc": related_doc,
                "timestamp": moment.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            },
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass
class DispatchPlan:
    """Where and how one action message is published."""

    exchange: str
    routing_key: str
    message: ActionDispatchMessage
    delay_ms: int | None = None
    headers: dict[str, Any] = field(default_factory=dict)

    @property
    def delayed(self) -> bool:
        return self.delay_ms is not None
