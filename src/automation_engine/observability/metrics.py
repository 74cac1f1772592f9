"""
Rules engine metrics.

Counters and histograms describing event intake, processing outcomes and
action fan-out. Each instance owns its registry so several engines can live
in one process (tests, embedded use).
"""

from __future__ import annotations

import logging

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)


class EngineMetrics:
    """Prometheus metrics for the rules engine."""

    def __init__(self, service_name: str, registry: CollectorRegistry | None = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.events_received = Counter(
            "automation_events_received_total",
            "Total number of domain events received",
            ["event", "service"],
            registry=self.registry,
        )
        self.events_processed = Counter(
            "automation_events_processed_total",
            "Total number of domain events settled, by outcome",
            ["outcome", "service"],
            registry=self.registry,
        )
        self.actions_dispatched = Counter(
            "automation_actions_dispatched_total",
            "Total number of action messages published",
            ["action_type", "mode", "service"],
            registry=self.registry,
        )
        self.processing_duration = Histogram(
            "automation_event_processing_seconds",
            "Time spent processing one event",
            ["service"],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
            registry=self.registry,
        )

    def record_received(self, event_name: str) -> None:
        self.events_received.labels(event=event_name, service=self.service_name).inc()

    def record_outcome(self, outcome: str, duration: float) -> None:
        self.events_processed.labels(outcome=outcome, service=self.service_name).inc()
        self.processing_duration.labels(service=self.service_name).observe(duration)

    def record_dispatch(self, action_type: str, delayed: bool) -> None:
        mode = "delayed" if delayed else "immediate"
        self.actions_dispatched.labels(
            action_type=action_type, mode=mode, service=self.service_name
        ).inc()

    def serve(self, port: int) -> None:
        """Expose the registry over HTTP."""
        start_http_server(port, registry=self.registry)
        logger.info(f"Metrics exporter listening on port {port}")
