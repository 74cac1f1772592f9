"""Logging and metrics for the automation engine."""

from .logging import configure_logging
from .metrics import EngineMetrics

__all__ = ["EngineMetrics", "configure_logging"]
