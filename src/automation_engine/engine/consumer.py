"""
Event consumption.

Per event message:

    received -> resolving-entity -> matching-rules -> dispatching-actions -> acked

and any error along the way ends in a nack. Events outside the known entity
families and events whose document no longer exists are acked and dropped.
Failed messages are requeued until they have failed `max_redeliveries`
times, after which they are rejected and the broker dead-letters them.
"""

import hashlib
import time
from collections import OrderedDict
from enum import Enum

import structlog

from ..exceptions import MalformedEventError
from ..messaging import InboundMessage, MessageSerializer
from ..models import EventEnvelope
from ..observability import EngineMetrics
from .dispatcher import ActionDispatcher
from .matcher import RuleMatcher
from .resolver import EntityResolver

logger = structlog.get_logger(__name__)


class ProcessingOutcome(Enum):
    """Terminal state of one event message."""

    ACKED = "acked"
    NACKED = "nacked"
    DEAD_LETTERED = "dead_lettered"


class RedeliveryTracker:
    """Counts failed attempts per message, bounded in size."""

    def __init__(self, max_redeliveries: int = 5, capacity: int = 10_000):
        self.max_redeliveries = max_redeliveries
        self.capacity = capacity
        self._failures: OrderedDict[str, int] = OrderedDict()

    @staticmethod
    def key(message: InboundMessage) -> str:
        if message.message_id:
            return message.message_id
        digest = hashlib.sha1(message.body).hexdigest()
        return f"{message.routing_key}:{digest}"

    def record_failure(self, message: InboundMessage) -> int:
        key = self.key(message)
        count = self._failures.pop(key, 0) + 1
        self._failures[key] = count
        while len(self._failures) > self.capacity:
            self._failures.popitem(last=False)
        return count

    def should_requeue(self, failures: int) -> bool:
        if self.max_redeliveries == 0:
            return True
        return failures < self.max_redeliveries

    def forget(self, message: InboundMessage) -> None:
        self._failures.pop(self.key(message), None)


class EventConsumer:
    """Processes events from the bus end to end."""

    def __init__(
        self,
        resolver: EntityResolver,
        matcher: RuleMatcher,
        dispatcher: ActionDispatcher,
        tracker: RedeliveryTracker | None = None,
        serializer: MessageSerializer | None = None,
        metrics: EngineMetrics | None = None,
    ):
        self.resolver = resolver
        self.matcher = matcher
        self.dispatcher = dispatcher
        self.tracker = tracker or RedeliveryTracker()
        self.serializer = serializer or MessageSerializer()
        self.metrics = metrics

    async def __call__(self, message: InboundMessage) -> None:
        await self.handle_message(message)

    def decode(self, message: InboundMessage) -> EventEnvelope:
        try:
            body = self.serializer.deserialize(message.body)
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedEventError(
                f"Event body is not valid JSON: {e}", event_name=message.routing_key, cause=e
            ) from e
        if not isinstance(body, dict):
            raise MalformedEventError(
                f"Event body must be a JSON object, got {type(body).__name__}",
                event_name=message.routing_key,
            )
        event_name = message.routing_key or body.get("eventName") or ""
        return EventEnvelope(event_name=event_name, body=body)

    async def handle_message(self, message: InboundMessage) -> ProcessingOutcome:
        """Process one message and settle it. Never raises."""
        started = time.perf_counter()
        log = logger.bind(event_name=message.routing_key, message_id=message.message_id)

        try:
            outcome = await self._process(message, log)
        except Exception as e:
            outcome = await self._fail(message, e, log)

        if self.metrics:
            self.metrics.record_outcome(outcome.value, time.perf_counter() - started)
        return outcome

    async def _process(self, message: InboundMessage, log) -> ProcessingOutcome:
        envelope = self.decode(message)
        event_name = envelope.event_name
        log = log.bind(event_name=event_name)
        log.info("rules_engine.event_received")
        if self.metrics:
            self.metrics.record_received(event_name)

        route = self.resolver.route(event_name)
        if route is None:
            log.info("rules_engine.event_unhandled")
            return await self._ack(message)

        entity = await self.resolver.resolve(envelope, route)
        if entity is None:
            log.error(
                "rules_engine.related_document_missing",
                entity=route.entity_type,
                reference=envelope.reference(route.reference_field),
            )
            return await self._ack(message)

        rules = await self.matcher.match(event_name, envelope.body, entity.document)
        plans = await self.dispatcher.dispatch(event_name, rules, envelope.body, entity.document)

        log.info("rules_engine.event_processed", rules=len(rules), actions=len(plans))
        return await self._ack(message)

    async def _ack(self, message: InboundMessage) -> ProcessingOutcome:
        await message.ack()
        self.tracker.forget(message)
        return ProcessingOutcome.ACKED

    async def _fail(self, message: InboundMessage, error: Exception, log) -> ProcessingOutcome:
        failures = self.tracker.record_failure(message)
        requeue = self.tracker.should_requeue(failures)
        if isinstance(error, MalformedEventError):
            log.error(
                "rules_engine.malformed_event",
                error=str(error),
                content=message.body[:2048].decode("utf-8", errors="replace"),
                failures=failures,
            )
        else:
            log.error(
                "rules_engine.event_failed", error=str(error), failures=failures, exc_info=error
            )

        try:
            await message.nack(requeue=requeue)
        except Exception as nack_error:
            # Channel gone; the broker redelivers unsettled messages on its own
            log.error("rules_engine.nack_failed", error=str(nack_error))

        if requeue:
            return ProcessingOutcome.NACKED
        self.tracker.forget(message)
        log.warning("rules_engine.event_dead_lettered", failures=failures)
        return ProcessingOutcome.DEAD_LETTERED
