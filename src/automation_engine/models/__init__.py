"""Data models for rules, events and action messages."""

from .events import ActionDispatchMessage, DispatchPlan, EventEnvelope, ResolvedEntity
from .rules import (
    ActionType,
    AutomationAction,
    AutomationRule,
    ConditionLogic,
    TriggerCondition,
    TriggerEvent,
)

__all__ = [
    "ActionDispatchMessage",
    "ActionType",
    "AutomationAction",
    "AutomationRule",
    "ConditionLogic",
    "DispatchPlan",
    "EventEnvelope",
    "ResolvedEntity",
    "TriggerCondition",
    "TriggerEvent",
]
