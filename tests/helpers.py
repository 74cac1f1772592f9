"""Builders shared by the test modules."""

import json
from typing import Any

from automation_engine.messaging import InMemoryBackend, InMemoryMessage, PublishedMessage


def make_rule(
    name: str,
    trigger_event: str,
    actions: list[dict[str, Any]],
    is_active: bool = True,
    **extra: Any,
) -> dict[str, Any]:
    """Rule document as stored in the rules collection."""
    return {
        "_id": f"rule-{name}",
        "name": name,
        "coachId": "coach-1",
        "triggerEvent": trigger_event,
        "actions": actions,
        "isActive": is_active,
        "createdBy": "user-1",
        **extra,
    }


def make_message(
    backend: InMemoryBackend,
    event_name: str,
    body: Any,
    message_id: str = "msg-1",
) -> InMemoryMessage:
    """An event as delivered to the engine, for handing to the consumer directly.

    The queue is not consumed, so requeued copies stay pending instead of
    being processed again.
    """
    raw = body if isinstance(body, bytes) else json.dumps(body).encode()
    return InMemoryMessage(
        backend,
        "engine-under-test",
        routing_key=event_name,
        body=raw,
        message_id=message_id,
    )


def decode(published: PublishedMessage) -> dict[str, Any]:
    return json.loads(published.body)
