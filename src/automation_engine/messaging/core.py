"""
Core Messaging Abstractions

Exchange/queue declarations, the broker topology the rules engine relies on,
and the broker-neutral view of an inbound message.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DELAY_HEADER = "x-delay"
DELAYED_EXCHANGE_TYPE = "x-delayed-message"


class ExchangeType(Enum):
    """Exchange types for message routing."""

    DIRECT = "direct"
    TOPIC = "topic"
    FANOUT = "fanout"
    HEADERS = "headers"
    DELAYED = DELAYED_EXCHANGE_TYPE


@dataclass
class ExchangeConfig:
    """Configuration for message exchanges."""

    name: str
    exchange_type: ExchangeType = ExchangeType.DIRECT
    durable: bool = True
    auto_delete: bool = False
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class QueueConfig:
    """Configuration for message queues.

    An empty name asks the broker for an auto-named queue.
    """

    name: str = ""
    durable: bool = True
    auto_delete: bool = False
    exclusive: bool = False
    dead_letter_exchange: str | None = None
    arguments: dict[str, Any] = field(default_factory=dict)

    def declare_arguments(self) -> dict[str, Any]:
        arguments = dict(self.arguments)
        if self.dead_letter_exchange:
            arguments["x-dead-letter-exchange"] = self.dead_letter_exchange
        return arguments


@dataclass
class Binding:
    """Queue-to-exchange binding."""

    queue: str
    exchange: str
    routing_key: str


@dataclass
class Topology:
    """Exchanges, queues and bindings shared by publishers, the engine and action workers."""

    events_exchange: ExchangeConfig
    actions_exchange: ExchangeConfig
    delayed_exchange: ExchangeConfig
    scheduled_queue: QueueConfig
    dead_letter_exchange: ExchangeConfig | None = None
    dead_letter_queue: QueueConfig | None = None
    consumer_binding_key: str = "#"

    @classmethod
    def from_settings(cls, settings) -> "Topology":
        dead_letter_exchange = None
        dead_letter_queue = None
        if settings.dead_letter_exchange:
            dead_letter_exchange = ExchangeConfig(
                settings.dead_letter_exchange, ExchangeType.FANOUT
            )
            dead_letter_queue = QueueConfig(settings.dead_letter_queue)

        return cls(
            events_exchange=ExchangeConfig(settings.events_exchange, ExchangeType.TOPIC),
            actions_exchange=ExchangeConfig(settings.actions_exchange, ExchangeType.TOPIC),
            delayed_exchange=ExchangeConfig(
                settings.delayed_exchange,
                ExchangeType.DELAYED,
                arguments={"x-delayed-type": ExchangeType.DIRECT.value},
            ),
            scheduled_queue=QueueConfig(settings.scheduled_actions_queue),
            dead_letter_exchange=dead_letter_exchange,
            dead_letter_queue=dead_letter_queue,
        )

    @property
    def exchanges(self) -> list[ExchangeConfig]:
        exchanges = [self.events_exchange, self.actions_exchange, self.delayed_exchange]
        if self.dead_letter_exchange:
            exchanges.append(self.dead_letter_exchange)
        return exchanges

    @property
    def queues(self) -> list[QueueConfig]:
        queues = [self.scheduled_queue]
        if self.dead_letter_queue:
            queues.append(self.dead_letter_queue)
        return queues

    @property
    def bindings(self) -> list[Binding]:
        # The delayed exchange is direct-typed: the scheduled queue's name is its key
        bindings = [
            Binding(
                self.scheduled_queue.name,
                self.delayed_exchange.name,
                self.scheduled_queue.name,
            )
        ]
        if self.dead_letter_exchange and self.dead_letter_queue:
            bindings.append(
                Binding(self.dead_letter_queue.name, self.dead_letter_exchange.name, "")
            )
        return bindings

    def consumer_queue(self) -> QueueConfig:
        """Exclusive, broker-named queue the engine consumes events from."""
        return QueueConfig(
            name="",
            durable=False,
            exclusive=True,
            dead_letter_exchange=(
                self.dead_letter_exchange.name if self.dead_letter_exchange else None
            ),
        )


class InboundMessage(ABC):
    """A delivered message awaiting settlement."""

    def __init__(
        self,
        routing_key: str,
        body: bytes,
        headers: dict[str, Any] | None = None,
        message_id: str | None = None,
        redelivered: bool = False,
    ):
        self.routing_key = routing_key
        self.body = body
        self.headers = headers or {}
        self.message_id = message_id
        self.redelivered = redelivered

    @abstractmethod
    async def ack(self) -> None:
        """Acknowledge message processing."""

    @abstractmethod
    async def nack(self, requeue: bool = True) -> None:
        """Negative acknowledge message."""


def _match_words(pattern: list[str], words: list[str]) -> bool:
    if not pattern:
        return not words
    head, rest = pattern[0], pattern[1:]
    if head == "#":
        # zero or more words
        return any(_match_words(rest, words[i:]) for i in range(len(words) + 1))
    if not words:
        return False
    if head in ("*", words[0]):
        return _match_words(rest, words[1:])
    return False


def topic_matches(pattern: str, routing_key: str) -> bool:
    """AMQP topic match of a binding pattern against a routing key."""
    if pattern == "#":
        return True
    return _match_words(pattern.split("."), routing_key.split("."))
