"""
Unit tests for logging configuration.

Both structlog and plain stdlib loggers must come out as JSON lines carrying
the service name.
"""

import io
import json
import logging

import pytest
import structlog

from automation_engine.messaging import InMemoryBackend
from automation_engine.observability import configure_logging
from automation_engine.observability.logging import NOISY_LOGGERS, JSONLogHandler


@pytest.fixture
def log_stream():
    stream = io.StringIO()
    root = logging.getLogger()
    root_level = root.level
    noisy_levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}

    handler = configure_logging("rules-engine", "INFO", stream=stream)
    yield stream

    root.removeHandler(handler)
    root.setLevel(root_level)
    for name, level in noisy_levels.items():
        logging.getLogger(name).setLevel(level)
    structlog.reset_defaults()


def lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


@pytest.mark.unit
class TestConfigureLogging:
    """Test suite for configure_logging."""

    @pytest.mark.asyncio
    async def test_backend_logs_are_json(self, log_stream):
        backend = InMemoryBackend()
        await backend.connect()

        (entry,) = lines(log_stream)
        assert entry["message"] == "Connected to in-memory event bus"
        assert entry["level"] == "info"
        assert entry["service"] == "rules-engine"
        assert entry["logger"] == "automation_engine.messaging.backends"
        assert "timestamp" in entry

    def test_structlog_logs_are_json(self, log_stream):
        structlog.get_logger("automation_engine.tests").info(
            "rules_engine.event_received", event_name="lead_created"
        )

        (entry,) = lines(log_stream)
        assert entry["message"] == "rules_engine.event_received"
        assert entry["event_name"] == "lead_created"
        assert entry["service"] == "rules-engine"
        assert entry["level"] == "info"

    def test_level_filtering(self, log_stream):
        structlog.get_logger("automation_engine.tests").debug("rules_engine.noise")
        logging.getLogger("automation_engine.store.mongo").debug("noise")

        assert lines(log_stream) == []

    def test_exceptions_are_rendered(self, log_stream):
        logger = logging.getLogger("automation_engine.messaging.publisher")
        try:
            raise ConnectionError("channel closed")
        except ConnectionError:
            logger.exception("Failed to publish event")

        (entry,) = lines(log_stream)
        assert entry["level"] == "error"
        assert "ConnectionError: channel closed" in entry["exception"]

    def test_client_libraries_are_quietened(self, log_stream):
        logging.getLogger("aiormq.connection").info("heartbeat")

        assert lines(log_stream) == []
        assert logging.getLogger("pymongo").level == logging.WARNING

    def test_reconfiguring_replaces_handler(self, log_stream):
        root = logging.getLogger()
        second = configure_logging("rules-engine", "INFO", stream=io.StringIO())
        try:
            handlers = [h for h in root.handlers if isinstance(h, JSONLogHandler)]
            assert handlers == [second]
        finally:
            root.removeHandler(second)
