from __future__ import annotations

import logging
import re
from typing import Optional
from uuid import uuid4

from pydantic import ValidationError

from backend.relay.errors import (
    CredentialValidationError,
    RegistrationFailedError,
    RouteNotFoundError,
    StorageUnavailableError,
)
from backend.relay.kvstore import KeyValueStore
from backend.relay.models import RouteRecord
from backend.relay.services.keys import owner_key, route_key
from backend.relay.services.telegram import TelegramGateway

logger = logging.getLogger("pm_relay")

CREDENTIAL_PATTERN = re.compile(r"^\d+:[A-Za-z0-9_-]{35,}$")
ALLOWED_UPDATES = ["message", "callback_query"]


def looks_like_credential(text: str) -> bool:
    return bool(CREDENTIAL_PATTERN.match(text.strip()))


class RouteRegistry:
    def __init__(self, kv: KeyValueStore, telegram: TelegramGateway) -> None:
        self._kv = kv
        self._telegram = telegram

    async def lookup(self, route_id: str) -> RouteRecord:
        raw = await self._kv.get_json(route_key(route_id)) if route_id else None
        if not isinstance(raw, dict):
            raise RouteNotFoundError(f"route not found: {route_id}")
        try:
            record = RouteRecord.model_validate(raw)
        except ValidationError as exc:
            raise RouteNotFoundError(f"route record unreadable: {route_id}") from exc
        return record.model_copy(update={"route_id": route_id})

    async def lookup_by_owner(self, owner_id: int) -> Optional[RouteRecord]:
        raw = await self._kv.get_json(owner_key(owner_id))
        if not isinstance(raw, dict):
            return None
        try:
            return RouteRecord.model_validate(raw)
        except ValidationError:
            return None

    async def register(self, credential: str, owner_id: int, *, origin: str) -> RouteRecord:
        token = credential.strip()
        client = self._telegram.bot(token)

        probe = await client.get_me()
        if not probe.ok or not isinstance(probe.result, dict):
            raise CredentialValidationError(probe.description or "credential rejected upstream")

        route_id = str(uuid4())
        secret = str(uuid4())
        hook = await client.set_webhook(
            f"{origin.rstrip('/')}/entry/{route_id}",
            secret,
            allowed_updates=ALLOWED_UPDATES,
        )
        if not hook.ok:
            raise RegistrationFailedError(hook.description or "webhook registration failed")

        record = RouteRecord(
            route_id=route_id,
            token=token,
            owner_id=owner_id,
            secret=secret,
            bot_username=probe.result.get("username"),
        )
        try:
            await self._kv.put_json(route_key(route_id), record.stored_payload())
            await self._kv.put_json(owner_key(owner_id), record.owner_index_payload())
        except StorageUnavailableError:
            # webhook already points at this route id upstream; left for a sweep
            logger.error(
                "route_persist_failed_orphaned_webhook route_id=%s owner_id=%s",
                route_id,
                owner_id,
            )
            raise
        logger.info(
            "route_registered route_id=%s owner_id=%s bot=%s",
            route_id,
            owner_id,
            record.bot_username,
        )
        return record
