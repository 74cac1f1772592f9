"""The automation rules engine: resolve, match, dispatch."""

from .conditions import build_context, condition_matches, evaluate_conditions
from .consumer import EventConsumer, ProcessingOutcome, RedeliveryTracker
from .dispatcher import ActionDispatcher, action_delay_ms
from .matcher import RuleMatcher
from .resolver import EntityResolver, EntityRoute, default_routes

__all__ = [
    "ActionDispatcher",
    "EntityResolver",
    "EntityRoute",
    "EventConsumer",
    "ProcessingOutcome",
    "RedeliveryTracker",
    "RuleMatcher",
    "action_delay_ms",
    "build_context",
    "condition_matches",
    "default_routes",
    "evaluate_conditions",
]
