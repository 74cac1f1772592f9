"""
MongoDB-backed stores.

One `AsyncMongoClient` (and its connection pool) is shared by the rule and
entity stores for the lifetime of the worker process.
"""

import logging
from typing import Any

from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from ..exceptions import EntityResolutionError, RuleStoreError
from .base import EntityStore, RuleStore

logger = logging.getLogger(__name__)


def to_object_id(value: Any) -> Any:
    """Cast 24-hex strings to ObjectId; other identifiers are queried as given."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


class MongoDatabase:
    """Connection holder for the worker's database."""

    def __init__(self, url: str, database: str):
        self.url = url
        self.database_name = database
        self.client: AsyncMongoClient | None = None

    async def connect(self) -> AsyncDatabase:
        """Open the client and verify the server answers."""
        self.client = AsyncMongoClient(self.url)
        try:
            await self.client.admin.command("ping")
        except PyMongoError:
            await self.close()
            raise
        logger.info(f"Connected to MongoDB database {self.database_name}")
        return self.client[self.database_name]

    @property
    def db(self) -> AsyncDatabase:
        if self.client is None:
            raise RuntimeError("MongoDB client is not connected")
        return self.client[self.database_name]

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None
            logger.info("Disconnected from MongoDB")


class MongoRuleStore(RuleStore):
    """Automation rules collection."""

    def __init__(self, db: AsyncDatabase, collection: str = "automationrules"):
        self.collection = db[collection]

    async def find_active(self, trigger_event: str) -> list[dict[str, Any]]:
        try:
            cursor = self.collection.find({"triggerEvent": trigger_event, "isActive": True})
            return await cursor.to_list(None)
        except PyMongoError as e:
            raise RuleStoreError(
                f"Failed to load rules for '{trigger_event}'", event_name=trigger_event, cause=e
            ) from e


class MongoEntityStore(EntityStore):
    """Lookups into the lead/appointment/payment/coach collections."""

    def __init__(self, db: AsyncDatabase):
        self.db = db

    async def find_by_id(self, collection: str, entity_id: Any) -> dict[str, Any] | None:
        try:
            return await self.db[collection].find_one({"_id": to_object_id(entity_id)})
        except PyMongoError as e:
            raise EntityResolutionError(
                f"Failed to fetch {collection}/{entity_id}", cause=e
            ) from e
