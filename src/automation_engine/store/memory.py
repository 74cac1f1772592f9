"""In-memory stores for development and testing."""

from collections import defaultdict
from typing import Any

from .base import EntityStore, RuleStore


class InMemoryRuleStore(RuleStore):
    """Rule documents kept in insertion order."""

    def __init__(self, rules: list[dict[str, Any]] | None = None):
        self.rules: list[dict[str, Any]] = list(rules or [])
        self.queries: list[str] = []

    def add(self, rule: dict[str, Any]) -> dict[str, Any]:
        self.rules.append(rule)
        return rule

    async def find_active(self, trigger_event: str) -> list[dict[str, Any]]:
        self.queries.append(trigger_event)
        return [
            rule
            for rule in self.rules
            if rule.get("triggerEvent") == trigger_event and rule.get("isActive", True) is True
        ]


class InMemoryEntityStore(EntityStore):
    """Documents keyed by collection and `_id`."""

    def __init__(self):
        self.collections: dict[str, dict[Any, dict[str, Any]]] = defaultdict(dict)
        self.lookups: list[tuple[str, Any]] = []

    def add(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        self.collections[collection][document["_id"]] = document
        return document

    async def find_by_id(self, collection: str, entity_id: Any) -> dict[str, Any] | None:
        self.lookups.append((collection, entity_id))
        return self.collections.get(collection, {}).get(entity_id)
