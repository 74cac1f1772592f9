"""
Unit tests for the worker lifecycle.

Tests startup, re-initialization after failures and lost connections, and
shutdown through the stop event.
"""

import asyncio

import pytest

from automation_engine.messaging import InMemoryBackend
from automation_engine.worker import WorkerResources, run_rules_engine


async def eventually(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


class FakeResources:
    """Resource factory handing out fresh in-memory backends."""

    def __init__(self, rule_store, entity_store, failures: int = 0):
        self.rule_store = rule_store
        self.entity_store = entity_store
        self.failures = failures
        self.calls = 0
        self.backends: list[InMemoryBackend] = []
        self.closed = 0

    async def __call__(self, settings) -> WorkerResources:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("broker unreachable")

        backend = InMemoryBackend()
        await backend.connect()
        self.backends.append(backend)

        async def close():
            self.closed += 1
            await backend.disconnect()

        return WorkerResources(backend, self.rule_store, self.entity_store, closers=[close])

    @property
    def consuming(self) -> bool:
        return bool(self.backends) and bool(self.backends[-1].consumers)


@pytest.mark.unit
@pytest.mark.asyncio
class TestRunRulesEngine:
    """Test suite for run_rules_engine."""

    async def test_starts_and_stops(self, settings, rule_store, entity_store, metrics):
        factory = FakeResources(rule_store, entity_store)
        stop = asyncio.Event()
        task = asyncio.create_task(
            run_rules_engine(settings, resource_factory=factory, stop=stop, metrics=metrics)
        )

        await eventually(lambda: factory.consuming)
        stop.set()
        await asyncio.wait_for(task, 2.0)

        assert factory.calls == 1
        assert factory.closed == 1

    async def test_retries_failed_initialization(self, settings, rule_store, entity_store, metrics):
        factory = FakeResources(rule_store, entity_store, failures=2)
        stop = asyncio.Event()
        task = asyncio.create_task(
            run_rules_engine(settings, resource_factory=factory, stop=stop, metrics=metrics)
        )

        await eventually(lambda: factory.consuming)
        stop.set()
        await asyncio.wait_for(task, 2.0)

        assert factory.calls == 3

    async def test_reinitializes_after_connection_loss(self, settings, rule_store, entity_store, metrics):
        factory = FakeResources(rule_store, entity_store)
        stop = asyncio.Event()
        task = asyncio.create_task(
            run_rules_engine(settings, resource_factory=factory, stop=stop, metrics=metrics)
        )

        await eventually(lambda: factory.consuming)
        await factory.backends[0].disconnect()
        await eventually(lambda: len(factory.backends) == 2 and factory.consuming)
        stop.set()
        await asyncio.wait_for(task, 2.0)

        assert factory.calls == 2
        assert factory.closed == 2

    async def test_resources_closed_when_start_fails(self, settings, rule_store, entity_store, metrics):
        closed = asyncio.Event()
        stop = asyncio.Event()

        async def factory(settings):
            # never connected, so declaring the topology fails
            backend = InMemoryBackend()

            async def close():
                closed.set()
                stop.set()

            return WorkerResources(backend, rule_store, entity_store, closers=[close])

        await asyncio.wait_for(
            run_rules_engine(settings, resource_factory=factory, stop=stop, metrics=metrics), 2.0
        )

        assert closed.is_set()

    async def test_stop_before_start(self, settings, rule_store, entity_store, metrics):
        factory = FakeResources(rule_store, entity_store)
        stop = asyncio.Event()
        stop.set()

        await run_rules_engine(settings, resource_factory=factory, stop=stop, metrics=metrics)

        assert factory.calls == 0

    async def test_events_flow_after_restart(self, settings, rule_store, entity_store, metrics):
        """The second incarnation consumes events like the first."""
        from helpers import make_rule

        entity_store.add("leads", {"_id": "L1"})
        rule_store.add(make_rule("welcome", "lead_created", [{"type": "add_lead_tag"}]))
        factory = FakeResources(rule_store, entity_store)
        stop = asyncio.Event()
        task = asyncio.create_task(
            run_rules_engine(settings, resource_factory=factory, stop=stop, metrics=metrics)
        )

        await eventually(lambda: factory.consuming)
        await factory.backends[0].disconnect()
        await eventually(lambda: len(factory.backends) == 2 and factory.consuming)

        backend = factory.backends[1]
        await backend.publish(settings.events_exchange, "lead_created", b'{"leadId": "L1"}')
        await backend.join()
        stop.set()
        await asyncio.wait_for(task, 2.0)

        assert [p.routing_key for p in backend.published_to(settings.actions_exchange)] == [
            "add_lead_tag"
        ]
