from __future__ import annotations

import asyncio
from typing import Optional

import httpx
import pytest

from backend.relay.errors import (
    CredentialValidationError,
    RegistrationFailedError,
    RouteNotFoundError,
    StorageUnavailableError,
)
from backend.relay.kvstore import InMemoryKeyValueStore
from backend.relay.services.registry import RouteRegistry, looks_like_credential
from backend.relay.services.telegram import TelegramGateway
from relay_helpers import FakeUpstream

TOKEN = "123456:" + "a" * 35


class FailingWritesStore(InMemoryKeyValueStore):
    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise StorageUnavailableError(f"state store write failed: {key}")


def _registry(kv, upstream: FakeUpstream) -> RouteRegistry:
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    return RouteRegistry(kv, TelegramGateway(http, "https://api.telegram.org"))


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        (TOKEN, True),
        (f"  {TOKEN}\n", True),
        ("123456:short", False),
        ("hello " + TOKEN, False),
        ("abc:" + "a" * 35, False),
    ],
)
def test_credential_shape(text: str, expected: bool) -> None:
    assert looks_like_credential(text) is expected


def test_register_persists_route_and_owner_index() -> None:
    kv = InMemoryKeyValueStore()
    upstream = FakeUpstream()
    registry = _registry(kv, upstream)

    route = asyncio.run(registry.register(TOKEN, 77, origin="https://relay.example/"))

    assert route.bot_username == "owner_bot"
    hook = upstream.calls_for("setWebhook")[0]
    assert hook["url"] == f"https://relay.example/entry/{route.route_id}"
    loaded = asyncio.run(registry.lookup(route.route_id))
    assert loaded.route_id == route.route_id
    assert loaded.secret == hook["secret_token"]
    by_owner = asyncio.run(registry.lookup_by_owner(77))
    assert by_owner is not None and by_owner.route_id == route.route_id


def test_register_rejected_credential_persists_nothing() -> None:
    kv = InMemoryKeyValueStore()
    upstream = FakeUpstream()
    upstream.invalid_tokens.add(TOKEN)

    with pytest.raises(CredentialValidationError):
        asyncio.run(_registry(kv, upstream).register(TOKEN, 77, origin="https://relay.example"))

    assert kv.keys() == []


def test_register_webhook_failure_persists_nothing() -> None:
    kv = InMemoryKeyValueStore()
    upstream = FakeUpstream()
    upstream.webhook_failures.add(TOKEN)

    with pytest.raises(RegistrationFailedError, match="bad webhook"):
        asyncio.run(_registry(kv, upstream).register(TOKEN, 77, origin="https://relay.example"))

    assert kv.keys() == []


def test_register_storage_failure_after_webhook_surfaces() -> None:
    upstream = FakeUpstream()

    with pytest.raises(StorageUnavailableError):
        asyncio.run(
            _registry(FailingWritesStore(), upstream).register(TOKEN, 77, origin="https://relay.example")
        )

    # the upstream webhook stays installed; no local record points at it
    assert len(upstream.calls_for("setWebhook")) == 1


def test_lookup_unknown_route() -> None:
    registry = _registry(InMemoryKeyValueStore(), FakeUpstream())

    with pytest.raises(RouteNotFoundError):
        asyncio.run(registry.lookup("missing"))
    assert asyncio.run(registry.lookup_by_owner(77)) is None
