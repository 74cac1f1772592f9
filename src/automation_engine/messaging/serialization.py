"""
Message serialization.

JSON encoding of event and action bodies. Mongo documents travel inside
action messages, so ObjectIds, datetimes and decimals are rendered the way
the document API renders them (strings and ISO-8601).
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from bson import ObjectId
from bson.decimal128 import Decimal128

logger = logging.getLogger(__name__)


def _default(value: Any) -> Any:
    if isinstance(value, ObjectId | UUID):
        return str(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Decimal128):
        return str(value.to_decimal())
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, set | frozenset):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class MessageSerializer:
    """Handles message serialization and deserialization."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def serialize(self, payload: Any) -> bytes:
        """Serialize payload to bytes."""
        try:
            return json.dumps(payload, default=_default).encode(self.encoding)
        except (TypeError, ValueError) as e:
            logger.error(f"Serialization failed: {e}")
            raise

    def deserialize(self, data: bytes) -> Any:
        """Deserialize bytes to payload. Raises ValueError on malformed input."""
        return json.loads(data.decode(self.encoding))
