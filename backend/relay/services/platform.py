from __future__ import annotations

from pydantic import ValidationError

from backend.relay.kvstore import KeyValueStore
from backend.relay.models import DAY_SECONDS, TTL_CHOICES_DAYS, PlatformConfig
from backend.relay.services.keys import PLATFORM_SETTINGS


class PlatformConfigStore:
    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def load(self) -> PlatformConfig:
        raw = await self._kv.get_json(PLATFORM_SETTINGS)
        if not isinstance(raw, dict):
            return PlatformConfig()
        try:
            return PlatformConfig.model_validate(raw)
        except ValidationError:
            return PlatformConfig()

    async def save(self, config: PlatformConfig) -> None:
        await self._kv.put_json(PLATFORM_SETTINGS, config.model_dump())

    async def toggle_new_routes(self) -> PlatformConfig:
        config = await self.load()
        config.enable_new_users = not config.enable_new_users
        await self.save(config)
        return config

    async def set_verify_ttl_days(self, days: int) -> PlatformConfig:
        if days not in TTL_CHOICES_DAYS:
            raise ValueError(f"unsupported verification ttl: {days} days")
        config = await self.load()
        config.verify_ttl = days * DAY_SECONDS
        await self.save(config)
        return config


class Counters:
    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def get(self, key: str) -> int:
        raw = await self._kv.get(key)
        if raw is None:
            return 0
        try:
            return int(float(raw))
        except ValueError:
            return 0

    async def increment(self, key: str) -> int:
        # not compare-and-swap; concurrent increments can be lost
        current = await self.get(key)
        await self._kv.put(key, str(current + 1))
        return current + 1
