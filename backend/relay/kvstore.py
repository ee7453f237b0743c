from __future__ import annotations

import json
import time
from threading import Lock
from typing import Any, Callable, Optional

Clock = Callable[[], float]


# No transactions or multi-key atomicity. An expired entry reads as missing.
class KeyValueStore:
    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def get_json(self, key: str) -> Any:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    async def put_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        await self.put(key, json.dumps(value), ttl_seconds=ttl_seconds)


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self, clock: Clock = time.time) -> None:
        self._lock = Lock()
        self._clock = clock
        self._entries: dict[str, tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._entries[key] = (value, expires_at)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)
