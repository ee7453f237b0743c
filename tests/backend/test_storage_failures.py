from __future__ import annotations

import asyncio
from typing import Optional

from fastapi.testclient import TestClient

from backend.relay.errors import StorageUnavailableError
from backend.relay.kvstore import InMemoryKeyValueStore
from backend.relay.main import create_app
from backend.relay.models import DAY_SECONDS
from relay_helpers import ADMIN_UID, VISITOR_ID, message_update, post_platform, post_route, seed_route

NEW_TOKEN = "400000:" + "N" * 35


class FlakyStore(InMemoryKeyValueStore):
    """Raises on keys with the given prefixes; `failures` of -1 means every time."""

    def __init__(
        self,
        clock,
        *,
        read_prefix: Optional[str] = None,
        write_prefix: Optional[str] = None,
        failures: int = -1,
    ) -> None:
        super().__init__(clock=clock)
        self.read_prefix = read_prefix
        self.write_prefix = write_prefix
        self.failures = failures

    def _maybe_fail(self, key: str, prefix: Optional[str]) -> None:
        if prefix and key.startswith(prefix) and self.failures != 0:
            self.failures -= 1
            raise StorageUnavailableError(f"state store down: {key}")

    async def get(self, key: str) -> Optional[str]:
        self._maybe_fail(key, self.read_prefix)
        return await super().get(key)

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._maybe_fail(key, self.write_prefix)
        await super().put(key, value, ttl_seconds=ttl_seconds)


def _client(store: FlakyStore, http_client) -> TestClient:
    return TestClient(create_app(kv=store, http_client=http_client))


def _verify(store: FlakyStore) -> None:
    asyncio.run(store.put(f"verified-X-{VISITOR_ID}", "true", ttl_seconds=30 * DAY_SECONDS))


def _mappings(store: FlakyStore) -> list[str]:
    return [key for key in store.keys() if key.startswith("msg-map-X-")]


def test_block_list_outage_fails_route_webhook(relay_env, clock, http_client, upstream) -> None:
    store = FlakyStore(clock, read_prefix="isblocked-")
    seed_route(store)

    response = post_route(_client(store, http_client), message_update(1, VISITOR_ID, "hello"))

    assert response.status_code == 503
    assert upstream.calls_for("copyMessage") == []


def test_correlation_write_outage_fails_route_webhook(relay_env, clock, http_client) -> None:
    store = FlakyStore(clock, write_prefix="msg-map-")
    seed_route(store)
    _verify(store)

    response = post_route(_client(store, http_client), message_update(1, VISITOR_ID, "hello"))

    assert response.status_code == 503
    assert _mappings(store) == []


def test_settings_outage_fails_platform_webhook(relay_env, clock, http_client, upstream) -> None:
    store = FlakyStore(clock, read_prefix="platform:settings")

    response = post_platform(_client(store, http_client), message_update(1, 9001, NEW_TOKEN))

    assert response.status_code == 503
    assert upstream.calls_for("setWebhook") == []


def test_admin_dashboard_outage_fails_platform_webhook(relay_env, clock, http_client) -> None:
    store = FlakyStore(clock, read_prefix="platform:settings")

    response = post_platform(_client(store, http_client), message_update(1, ADMIN_UID, "/start"))

    assert response.status_code == 503


def test_counter_outage_does_not_fail_relay(relay_env, clock, http_client, upstream) -> None:
    store = FlakyStore(clock, write_prefix="stats:")
    seed_route(store)
    _verify(store)

    response = post_route(_client(store, http_client), message_update(1, VISITOR_ID, "hello"))

    assert response.status_code == 200
    assert len(upstream.calls_for("copyMessage")) == 1
    assert len(_mappings(store)) == 1
    assert store.keys().count("stats:X:msgs") == 0


def test_retry_after_outage_is_processed_with_dedupe(
    monkeypatch, relay_env, clock, http_client, upstream
) -> None:
    monkeypatch.setenv("RELAY_DEDUPE_ENABLED", "true")
    store = FlakyStore(clock, write_prefix="msg-map-", failures=1)
    seed_route(store)
    _verify(store)
    client = _client(store, http_client)
    update = message_update(7, VISITOR_ID, "hello")

    first = post_route(client, update)
    assert first.status_code == 503
    assert "update-seen-X-7" not in store.keys()

    retry = post_route(client, update)
    assert retry.status_code == 200
    assert len(_mappings(store)) == 1
    assert len(upstream.calls_for("copyMessage")) == 2
    assert "update-seen-X-7" in store.keys()

    post_route(client, update)
    assert len(upstream.calls_for("copyMessage")) == 2


def test_verification_write_outage_returns_service_unavailable(relay_env, clock, http_client, upstream) -> None:
    store = FlakyStore(clock, write_prefix="verified-")
    seed_route(store)

    response = _client(store, http_client).post(
        "/verify_submit",
        data={"cf-turnstile-response": "good-token", "uid": str(VISITOR_ID), "routeId": "X"},
    )

    assert response.status_code == 503
    assert response.json() == {"success": False}
    assert [key for key in store.keys() if key.startswith("verified-")] == []
    assert upstream.calls_for("sendMessage") == []
