"""
Coach Automation Engine

Event-driven rule engine for the coaching platform: consumes domain events
from the bus, matches them against coach-configured automation rules and
dispatches the resulting actions immediately or after a delay.
"""

__version__ = "1.0.0"

from .config import AppSettings
from .worker import RulesEngineWorker, WorkerResources, open_resources, run_rules_engine

__all__ = [
    "AppSettings",
    "RulesEngineWorker",
    "WorkerResources",
    "__version__",
    "open_resources",
    "run_rules_engine",
]
