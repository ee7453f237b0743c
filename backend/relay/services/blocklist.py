from __future__ import annotations

from backend.relay.kvstore import KeyValueStore
from backend.relay.services.keys import blocked_key


class BlockList:
    # Keyed by visitor id only: a block applies on every route that visitor reaches.
    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def is_blocked(self, visitor_id: int) -> bool:
        value = await self._kv.get_json(blocked_key(visitor_id))
        return value is True

    async def set_blocked(self, visitor_id: int, blocked: bool) -> None:
        await self._kv.put_json(blocked_key(visitor_id), bool(blocked))
