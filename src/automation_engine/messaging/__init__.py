"""
Event bus messaging.

Topology declarations, broker backends and the domain event publisher.
"""

from .backends import (
    EventBusBackend,
    InMemoryBackend,
    InMemoryMessage,
    MessageCallback,
    PublishedMessage,
    RabbitMQBackend,
)
from .core import (
    DELAY_HEADER,
    Binding,
    ExchangeConfig,
    ExchangeType,
    InboundMessage,
    QueueConfig,
    Topology,
    topic_matches,
)
from .publisher import EventPublisher
from .serialization import MessageSerializer

__all__ = [
    "DELAY_HEADER",
    "Binding",
    "EventBusBackend",
    "EventPublisher",
    "ExchangeConfig",
    "ExchangeType",
    "InMemoryBackend",
    "InMemoryMessage",
    "InboundMessage",
    "MessageCallback",
    "MessageSerializer",
    "PublishedMessage",
    "QueueConfig",
    "RabbitMQBackend",
    "Topology",
    "topic_matches",
]
