from __future__ import annotations

from typing import Optional

from backend.relay.kvstore import KeyValueStore
from backend.relay.models import CORRELATION_TTL
from backend.relay.services.keys import correlation_key


class CorrelationTable:
    def __init__(self, kv: KeyValueStore, ttl_seconds: int = CORRELATION_TTL) -> None:
        self._kv = kv
        self._ttl_seconds = ttl_seconds

    async def record(self, route_id: str, relayed_message_id: int, visitor_id: int) -> None:
        await self._kv.put_json(
            correlation_key(route_id, relayed_message_id),
            visitor_id,
            ttl_seconds=self._ttl_seconds,
        )

    async def resolve(self, route_id: str, relayed_message_id: int) -> Optional[int]:
        value = await self._kv.get_json(correlation_key(route_id, relayed_message_id))
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            return None
        try:
            return int(value)
        except ValueError:
            return None
