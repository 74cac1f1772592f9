"""Rule and entity stores."""

from .base import EntityStore, RuleStore
from .memory import InMemoryEntityStore, InMemoryRuleStore
from .mongo import MongoDatabase, MongoEntityStore, MongoRuleStore, to_object_id

__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "InMemoryRuleStore",
    "MongoDatabase",
    "MongoEntityStore",
    "MongoRuleStore",
    "RuleStore",
    "to_object_id",
]
