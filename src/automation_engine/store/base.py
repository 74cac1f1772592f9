"""
Read-only store interfaces used by the rules engine.

The engine never writes: rules are looked up by trigger event and entities
by primary key.
"""

from abc import ABC, abstractmethod
from typing import Any


class RuleStore(ABC):
    """Source of automation rule documents."""

    @abstractmethod
    async def find_active(self, trigger_event: str) -> list[dict[str, Any]]:
        """Return every active rule document triggered by `trigger_event`, in natural order."""


class EntityStore(ABC):
    """Source of domain documents (leads, appointments, payments, coaches)."""

    @abstractmethod
    async def find_by_id(self, collection: str, entity_id: Any) -> dict[str, Any] | None:
        """Fetch one document by primary key, or None."""
