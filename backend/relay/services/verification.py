from __future__ import annotations

from typing import Optional

from backend.relay.kvstore import KeyValueStore
from backend.relay.models import DEFAULT_VERIFY_TTL
from backend.relay.services.keys import verified_key
from backend.relay.services.platform import PlatformConfigStore


class VerificationGate:
    def __init__(self, kv: KeyValueStore, platform: PlatformConfigStore) -> None:
        self._kv = kv
        self._platform = platform

    async def is_verified(self, route_id: str, visitor_id: int) -> bool:
        if not route_id:
            return False
        return await self._kv.get(verified_key(route_id, visitor_id)) is not None

    async def mark_verified(self, route_id: str, visitor_id: int, ttl_seconds: int) -> None:
        if not route_id:
            raise ValueError("verification records require a route id")
        await self._kv.put(verified_key(route_id, visitor_id), "true", ttl_seconds=ttl_seconds)

    async def effective_ttl(self, route_id: Optional[str]) -> int:
        if not route_id:
            return DEFAULT_VERIFY_TTL
        config = await self._platform.load()
        return config.verify_ttl or DEFAULT_VERIFY_TTL
