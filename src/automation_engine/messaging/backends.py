"""
Event Bus Backend Implementations

Publish/subscribe over a topic broker. The RabbitMQ backend drives a real
broker through aio-pika; the in-memory backend reproduces the routing,
delayed delivery, acknowledgement and dead-lettering semantics for
development and tests.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import aio_pika
from aio_pika import DeliveryMode
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
)

from ..exceptions import BrokerConnectionError
from .core import (
    DELAY_HEADER,
    ExchangeConfig,
    ExchangeType,
    InboundMessage,
    QueueConfig,
    Topology,
    topic_matches,
)

logger = logging.getLogger(__name__)

MessageCallback = Callable[[InboundMessage], Awaitable[None]]


class EventBusBackend(ABC):
    """Abstract event bus backend."""

    def __init__(self):
        self._connected = False

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the broker."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the broker."""

    @abstractmethod
    async def declare_topology(self, topology: Topology) -> None:
        """Declare exchanges, queues and bindings. Safe to call repeatedly."""

    @abstractmethod
    async def bind_consumer(self, topology: Topology, callback: MessageCallback) -> str:
        """Bind an exclusive queue to the events exchange and start consuming.

        Returns the broker-assigned queue name.
        """

    @abstractmethod
    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        headers: dict[str, Any] | None = None,
    ) -> None:
        """Publish a message. Raises when the broker rejects it."""

    @abstractmethod
    async def wait_closed(self) -> None:
        """Block until the broker connection is lost or closed."""

    @property
    def is_connected(self) -> bool:
        """Check if backend is connected."""
        return self._connected


# In-memory backend


@dataclass
class PublishedMessage:
    """Record of a publish made through the in-memory backend."""

    exchange: str
    routing_key: str
    body: bytes
    headers: dict[str, Any] = field(default_factory=dict)

    @property
    def delay(self) -> int | None:
        return self.headers.get(DELAY_HEADER)


class InMemoryMessage(InboundMessage):
    """Message delivered by the in-memory backend."""

    def __init__(self, backend: "InMemoryBackend", queue: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.backend = backend
        self.queue = queue
        self.state = "delivered"

    async def ack(self) -> None:
        self._settle("acked")

    async def nack(self, requeue: bool = True) -> None:
        self._settle("requeued" if requeue else "rejected")
        if requeue:
            self.backend._schedule_redelivery(self)
        else:
            self.backend._dead_letter(self)

    def _settle(self, state: str) -> None:
        if self.state != "delivered":
            raise RuntimeError(f"Message {self.message_id} already {self.state}")
        self.state = state
        self.backend.settlements.append((self, state))


class InMemoryBackend(EventBusBackend):
    """In-memory event bus for development and testing."""

    def __init__(self):
        super().__init__()
        self.exchanges: dict[str, ExchangeConfig] = {}
        self.queues: dict[str, QueueConfig] = {}
        self.bindings: list[tuple[str, str, str]] = []
        self.pending: dict[str, list[InMemoryMessage]] = {}
        self.consumers: dict[str, MessageCallback] = {}
        self.published: list[PublishedMessage] = []
        self.settlements: list[tuple[InMemoryMessage, str]] = []
        self.declare_calls = 0
        self._tasks: set[asyncio.Task] = set()
        self._delayed_tasks: set[asyncio.Task] = set()
        self._closed = asyncio.Event()
        self.fail_publish: Exception | None = None

    async def connect(self) -> None:
        self._connected = True
        self._closed = asyncio.Event()
        logger.info("Connected to in-memory event bus")

    async def disconnect(self) -> None:
        self._connected = False
        for task in self._delayed_tasks:
            task.cancel()
        self.consumers.clear()
        self._closed.set()
        logger.info("Disconnected from in-memory event bus")

    async def declare_topology(self, topology: Topology) -> None:
        self._ensure_connected()
        self.declare_calls += 1
        for exchange in topology.exchanges:
            self.declare_exchange(exchange)
        for queue in topology.queues:
            self.declare_queue(queue)
        for binding in topology.bindings:
            self.bind_queue(binding.queue, binding.exchange, binding.routing_key)

    def declare_exchange(self, config: ExchangeConfig) -> None:
        existing = self.exchanges.get(config.name)
        if existing and existing.exchange_type != config.exchange_type:
            # Same behaviour as a broker's PRECONDITION_FAILED
            raise BrokerConnectionError(
                f"Exchange {config.name} already declared as {existing.exchange_type.value}"
            )
        self.exchanges[config.name] = config

    def declare_queue(self, config: QueueConfig) -> str:
        name = config.name or f"amq.gen-{uuid.uuid4().hex[:22]}"
        if name not in self.queues:
            self.queues[name] = QueueConfig(
                name=name,
                durable=config.durable,
                auto_delete=config.auto_delete,
                exclusive=config.exclusive,
                dead_letter_exchange=config.dead_letter_exchange,
                arguments=dict(config.arguments),
            )
            self.pending.setdefault(name, [])
        return name

    def bind_queue(self, queue: str, exchange: str, routing_key: str) -> None:
        binding = (queue, exchange, routing_key)
        if binding not in self.bindings:
            self.bindings.append(binding)

    async def bind_consumer(self, topology: Topology, callback: MessageCallback) -> str:
        self._ensure_connected()
        queue = self.declare_queue(topology.consumer_queue())
        self.bind_queue(queue, topology.events_exchange.name, topology.consumer_binding_key)
        self.consumers[queue] = callback
        for message in self.pending.pop(queue, []):
            self._deliver(message)
        self.pending[queue] = []
        return queue

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        headers: dict[str, Any] | None = None,
    ) -> None:
        self._ensure_connected()
        if self.fail_publish is not None:
            raise self.fail_publish
        if exchange and exchange not in self.exchanges:
            raise BrokerConnectionError(f"no exchange '{exchange}'")

        headers = dict(headers or {})
        self.published.append(PublishedMessage(exchange, routing_key, body, headers))

        config = self.exchanges.get(exchange)
        delay = headers.get(DELAY_HEADER)
        if config and config.exchange_type == ExchangeType.DELAYED and delay:
            task = asyncio.create_task(self._route_later(exchange, routing_key, body, headers, delay))
            self._delayed_tasks.add(task)
            task.add_done_callback(self._delayed_tasks.discard)
        else:
            self._route(exchange, routing_key, body, headers)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def join(self) -> None:
        """Wait until every immediate delivery (and its redeliveries) has run."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def published_to(self, exchange: str) -> list[PublishedMessage]:
        return [message for message in self.published if message.exchange == exchange]

    def messages_in(self, queue: str) -> list[InMemoryMessage]:
        """Undelivered messages sitting in a queue without a consumer."""
        return list(self.pending.get(queue, []))

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise BrokerConnectionError("In-memory event bus is not connected")

    async def _route_later(self, exchange, routing_key, body, headers, delay) -> None:
        await asyncio.sleep(delay / 1000)
        self._route(exchange, routing_key, body, headers)

    def _route(self, exchange: str, routing_key: str, body: bytes, headers: dict[str, Any]) -> None:
        for queue in self._matching_queues(exchange, routing_key):
            message = InMemoryMessage(
                self,
                queue,
                routing_key=routing_key,
                body=body,
                headers=dict(headers),
                message_id=str(uuid.uuid4()),
            )
            if queue in self.consumers:
                self._deliver(message)
            else:
                self.pending[queue].append(message)

    def _matching_queues(self, exchange: str, routing_key: str) -> list[str]:
        if not exchange:
            return [routing_key] if routing_key in self.queues else []

        exchange_type = self.exchanges[exchange].exchange_type
        matched = []
        for queue, bound_exchange, binding_key in self.bindings:
            if bound_exchange != exchange or queue in matched:
                continue
            if exchange_type == ExchangeType.FANOUT:
                matched.append(queue)
            elif exchange_type == ExchangeType.TOPIC:
                if topic_matches(binding_key, routing_key):
                    matched.append(queue)
            elif binding_key == routing_key:
                matched.append(queue)
        return matched

    def _deliver(self, message: InMemoryMessage) -> None:
        callback = self.consumers[message.queue]
        task = asyncio.create_task(callback(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _schedule_redelivery(self, message: InMemoryMessage) -> None:
        redelivery = InMemoryMessage(
            self,
            message.queue,
            routing_key=message.routing_key,
            body=message.body,
            headers=dict(message.headers),
            message_id=message.message_id,
            redelivered=True,
        )
        if message.queue in self.consumers:
            self._deliver(redelivery)
        else:
            self.pending.setdefault(message.queue, []).append(redelivery)

    def _dead_letter(self, message: InMemoryMessage) -> None:
        queue = self.queues.get(message.queue)
        if queue and queue.dead_letter_exchange in self.exchanges:
            headers = dict(message.headers)
            headers["x-first-death-queue"] = message.queue
            self._route(queue.dead_letter_exchange, message.routing_key, message.body, headers)


# RabbitMQ backend


class RabbitMQInboundMessage(InboundMessage):
    """Message delivered by aio-pika."""

    def __init__(self, message: AbstractIncomingMessage):
        super().__init__(
            routing_key=message.routing_key or "",
            body=message.body,
            headers=dict(message.headers or {}),
            message_id=message.message_id,
            redelivered=bool(message.redelivered),
        )
        self._message = message

    async def ack(self) -> None:
        await self._message.ack()

    async def nack(self, requeue: bool = True) -> None:
        await self._message.nack(requeue=requeue)


class RabbitMQBackend(EventBusBackend):
    """RabbitMQ event bus backend."""

    def __init__(self, url: str, prefetch_count: int = 1):
        super().__init__()
        self.url = url
        self.prefetch_count = prefetch_count
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchanges: dict[str, AbstractExchange] = {}
        self._consumer_queue: AbstractQueue | None = None
        self._closed = asyncio.Event()

    async def connect(self) -> None:
        """Connect to RabbitMQ.

        A plain (non-robust) connection is used: losing it ends `wait_closed`
        and the worker re-runs its whole initialization.
        """
        try:
            self._closed = asyncio.Event()
            self._connection = await aio_pika.connect(self.url)
            self._connection.close_callbacks.add(self._on_closed)

            self._channel = await self._connection.channel(publisher_confirms=True)
            self._channel.close_callbacks.add(self._on_closed)
            await self._channel.set_qos(prefetch_count=self.prefetch_count)

            self._connected = True
            logger.info(f"Connected to RabbitMQ (prefetch={self.prefetch_count})")

        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ: {e}")
            raise BrokerConnectionError(f"Failed to connect to RabbitMQ: {e}", cause=e) from e

    async def disconnect(self) -> None:
        """Disconnect from RabbitMQ."""
        self._closed.set()
        if self._connection and not self._connection.is_closed:
            await self._connection.close()
        self._connection = None
        self._channel = None
        self._exchanges.clear()
        self._consumer_queue = None
        self._connected = False
        logger.info("Disconnected from RabbitMQ")

    async def declare_topology(self, topology: Topology) -> None:
        channel = self._require_channel()

        for config in topology.exchanges:
            self._exchanges[config.name] = await channel.declare_exchange(
                config.name,
                config.exchange_type.value,
                durable=config.durable,
                auto_delete=config.auto_delete,
                arguments=config.arguments or None,
            )

        for config in topology.queues:
            await channel.declare_queue(
                config.name,
                durable=config.durable,
                exclusive=config.exclusive,
                auto_delete=config.auto_delete,
                arguments=config.declare_arguments() or None,
            )

        for binding in topology.bindings:
            queue = await channel.get_queue(binding.queue, ensure=False)
            await queue.bind(self._exchanges[binding.exchange], routing_key=binding.routing_key)

        logger.info(
            f"Declared topology: exchanges={[e.name for e in topology.exchanges]} "
            f"queues={[q.name for q in topology.queues]}"
        )

    async def bind_consumer(self, topology: Topology, callback: MessageCallback) -> str:
        channel = self._require_channel()
        config = topology.consumer_queue()

        queue = await channel.declare_queue(
            None,
            durable=config.durable,
            exclusive=config.exclusive,
            auto_delete=config.auto_delete,
            arguments=config.declare_arguments() or None,
        )
        await queue.bind(
            self._exchanges[topology.events_exchange.name],
            routing_key=topology.consumer_binding_key,
        )

        async def on_message(message: AbstractIncomingMessage) -> None:
            await callback(RabbitMQInboundMessage(message))

        await queue.consume(on_message, no_ack=False)
        self._consumer_queue = queue
        logger.info(f"Consuming events from {queue.name}")
        return queue.name

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        headers: dict[str, Any] | None = None,
    ) -> None:
        channel = self._require_channel()
        if exchange:
            target = self._exchanges.get(exchange)
            if target is None:
                target = await channel.get_exchange(exchange, ensure=False)
                self._exchanges[exchange] = target
        else:
            target = channel.default_exchange

        message = aio_pika.Message(
            body,
            headers=headers or None,
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
        )
        await target.publish(message, routing_key=routing_key)
        logger.debug(f"Published to {exchange or '<default>'} with routing key {routing_key}")

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def _require_channel(self) -> AbstractChannel:
        if self._channel is None or self._channel.is_closed:
            raise BrokerConnectionError("RabbitMQ channel is not open")
        return self._channel

    def _on_closed(self, *args: Any) -> None:
        if not self._closed.is_set():
            logger.warning(f"RabbitMQ connection closed: {args[-1] if len(args) > 1 else ''}")
        self._connected = False
        self._closed.set()
