"""
Global pytest configuration and fixtures for the rules engine tests.

Everything runs against the in-memory event bus and in-memory stores, so no
broker or database is needed.
"""

import pytest

from automation_engine.config import AppSettings
from automation_engine.messaging import InMemoryBackend
from automation_engine.observability import EngineMetrics
from automation_engine.store import InMemoryEntityStore, InMemoryRuleStore
from automation_engine.worker import RulesEngineWorker


@pytest.fixture
def settings() -> AppSettings:
    """Settings isolated from the environment and any `.env` file."""
    return AppSettings(_env_file=None, reconnect_delay=0.01)


@pytest.fixture
async def backend() -> InMemoryBackend:
    bus = InMemoryBackend()
    await bus.connect()
    yield bus
    await bus.disconnect()


@pytest.fixture
def rule_store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture
def entity_store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def metrics(settings) -> EngineMetrics:
    return EngineMetrics(settings.service_name)


@pytest.fixture
async def worker(settings, backend, rule_store, entity_store, metrics) -> RulesEngineWorker:
    engine = RulesEngineWorker(settings, backend, rule_store, entity_store, metrics=metrics)
    await engine.start()
    return engine

