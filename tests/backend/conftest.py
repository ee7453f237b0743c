from __future__ import annotations

import os

import httpx
import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("KV_BACKEND", "memory")

from backend.relay.kvstore import InMemoryKeyValueStore  # noqa: E402
from backend.relay.main import create_app  # noqa: E402
from relay_helpers import (  # noqa: E402
    ADMIN_UID,
    PLATFORM_SECRET,
    PLATFORM_TOKEN,
    FakeClock,
    FakeUpstream,
)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def kv(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def http_client(upstream: FakeUpstream) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))


@pytest.fixture()
def relay_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KV_BACKEND", "memory")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    monkeypatch.setenv("PLATFORM_BOT_TOKEN", PLATFORM_TOKEN)
    monkeypatch.setenv("PLATFORM_WEBHOOK_SECRET", PLATFORM_SECRET)
    monkeypatch.setenv("ADMIN_UID", str(ADMIN_UID))
    monkeypatch.setenv("TURNSTILE_SITE_KEY", "site-key")
    monkeypatch.setenv("TURNSTILE_SECRET_KEY", "turnstile-secret")
    monkeypatch.setenv("FRAUD_DB_URL", "https://fraud.example/fraud.db")
    monkeypatch.setenv("PUBLIC_BASE_URL", "")
    monkeypatch.setenv("RELAY_DEDUPE_ENABLED", "false")


@pytest.fixture()
def client(relay_env, kv: InMemoryKeyValueStore, http_client: httpx.AsyncClient) -> TestClient:
    app = create_app(kv=kv, http_client=http_client)
    return TestClient(app)
