"""
Rules engine worker bootstrap.

`RulesEngineWorker` wires the engine onto an already connected event bus and
stores. `run_rules_engine` owns the process lifetime: it opens MongoDB and
RabbitMQ, starts the worker and, whenever initialization fails or the broker
connection drops, tears everything down and starts over after a fixed delay.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field

import structlog

from .config import AppSettings
from .engine import ActionDispatcher, EntityResolver, EventConsumer, RedeliveryTracker, RuleMatcher
from .messaging import EventBusBackend, MessageSerializer, RabbitMQBackend, Topology
from .observability import EngineMetrics
from .store import EntityStore, MongoDatabase, MongoEntityStore, MongoRuleStore, RuleStore

logger = structlog.get_logger(__name__)


class RulesEngineWorker:
    """Consumes every domain event and dispatches the actions of matching rules."""

    def __init__(
        self,
        settings: AppSettings,
        backend: EventBusBackend,
        rule_store: RuleStore,
        entity_store: EntityStore,
        metrics: EngineMetrics | None = None,
    ) -> None:
        self.settings = settings
        self.backend = backend
        self.topology = Topology.from_settings(settings)
        self.metrics = metrics
        serializer = MessageSerializer()

        self.consumer = EventConsumer(
            resolver=EntityResolver.from_settings(entity_store, settings),
            matcher=RuleMatcher(rule_store, settings.evaluate_trigger_conditions),
            dispatcher=ActionDispatcher(
                backend,
                actions_exchange=settings.actions_exchange,
                delayed_exchange=settings.delayed_exchange,
                scheduled_queue=settings.scheduled_actions_queue,
                parallel=settings.parallel_dispatch,
                schema_delay=settings.schema_delay_fallback,
                serializer=serializer,
                metrics=metrics,
            ),
            tracker=RedeliveryTracker(settings.max_redeliveries),
            serializer=serializer,
            metrics=metrics,
        )
        self.queue_name: str | None = None

    @property
    def started(self) -> bool:
        return self.queue_name is not None

    async def start(self) -> RulesEngineWorker:
        """Declare the topology and begin consuming. Calling it again is a no-op."""
        if self.started:
            return self

        await self.backend.declare_topology(self.topology)
        self.queue_name = await self.backend.bind_consumer(self.topology, self.consumer)
        logger.info(
            "rules_engine.waiting_for_events",
            queue=self.queue_name,
            exchange=self.topology.events_exchange.name,
        )
        return self

    async def wait_closed(self) -> None:
        await self.backend.wait_closed()


@dataclass
class WorkerResources:
    """Connected collaborators for one worker incarnation."""

    backend: EventBusBackend
    rule_store: RuleStore
    entity_store: EntityStore
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def close(self) -> None:
        for close in reversed(self.closers):
            try:
                await close()
            except Exception as e:
                logger.warning("rules_engine.close_failed", error=str(e))


ResourceFactory = Callable[[AppSettings], Awaitable[WorkerResources]]


async def open_resources(settings: AppSettings) -> WorkerResources:
    """Connect MongoDB and RabbitMQ."""
    database = MongoDatabase(settings.mongodb_url, settings.mongodb_database)
    db = await database.connect()
    logger.info("rules_engine.mongodb_connected", database=settings.mongodb_database)

    backend = RabbitMQBackend(settings.rabbitmq_url, prefetch_count=settings.prefetch_count)
    try:
        await backend.connect()
    except Exception:
        await database.close()
        raise

    return WorkerResources(
        backend=backend,
        rule_store=MongoRuleStore(db, settings.rules_collection),
        entity_store=MongoEntityStore(db),
        closers=[database.close, backend.disconnect],
    )


async def run_rules_engine(
    settings: AppSettings,
    *,
    resource_factory: ResourceFactory = open_resources,
    stop: asyncio.Event | None = None,
    metrics: EngineMetrics | None = None,
) -> None:
    """Run the worker until `stop` is set, re-initializing on any failure.

    Retries are unbounded and spaced by `settings.reconnect_delay`.
    """
    stop = stop or asyncio.Event()
    if metrics is None:
        metrics = EngineMetrics(settings.service_name)
        if settings.metrics_port:
            metrics.serve(settings.metrics_port)

    attempt = 0
    while not stop.is_set():
        attempt += 1
        resources: WorkerResources | None = None
        try:
            resources = await resource_factory(settings)
            worker = RulesEngineWorker(
                settings,
                resources.backend,
                resources.rule_store,
                resources.entity_store,
                metrics=metrics,
            )
            await worker.start()
            attempt = 0
            await _wait_first(worker.wait_closed(), stop.wait())
            if not stop.is_set():
                logger.error("rules_engine.connection_lost")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("rules_engine.init_failed", error=str(e), attempt=attempt, exc_info=e)
        finally:
            if resources is not None:
                await resources.close()

        if stop.is_set():
            break
        logger.info("rules_engine.reinitializing", delay=settings.reconnect_delay)
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=settings.reconnect_delay)

    logger.info("rules_engine.stopped")


async def _wait_first(*coroutines: Awaitable[None]) -> None:
    tasks = [asyncio.ensure_future(coroutine) for coroutine in coroutines]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
