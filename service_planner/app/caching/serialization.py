"""
Serialization boundary shared by both cache tiers.
"""

import json
from typing import Any

from shared.errors import CacheSerializationError


class JsonSerializer:
    """Encode values as compact UTF-8 JSON.

    Both tiers store the encoded bytes, so a value read back from the local
    tier has exactly the shape it would have had coming from Redis.
    """

    content_type = "application/json"

    def dumps(self, value: Any) -> bytes:
        """Encode ``value``; raises CacheSerializationError."""
        try:
            return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise CacheSerializationError(
                "Value is not JSON serializable",
                {"type": type(value).__name__, "error": str(exc)}
            ) from exc

    def loads(self, payload: Any) -> Any:
        """Decode bytes (or str) produced by ``dumps``; raises CacheSerializationError."""
        try:
            if isinstance(payload, (bytes, bytearray, memoryview)):
                payload = bytes(payload).decode("utf-8")
            return json.loads(payload)
        except (TypeError, ValueError, UnicodeDecodeError) as exc:
            raise CacheSerializationError(
                "Cached payload could not be decoded",
                {"error": str(exc)}
            ) from exc
