from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient
from starlette.datastructures import Headers

from backend.relay.errors import AuthError
from backend.relay.main import create_app
from backend.relay.services.webhooks import verify_secret_header
from relay_helpers import seed_route


def _token(secret: str, subject: str, roles: list[str]) -> str:
    payload = {
        "sub": subject,
        "roles": roles,
        "exp": datetime.utcnow() + timedelta(hours=1),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def _auth_client(monkeypatch, relay_env, kv, http_client) -> TestClient:
    monkeypatch.setenv("AUTH_ENABLED", "true")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    return TestClient(create_app(kv=kv, http_client=http_client))


def test_admin_summary_requires_token_when_auth_enabled(monkeypatch, relay_env, kv, http_client) -> None:
    client = _auth_client(monkeypatch, relay_env, kv, http_client)

    assert client.get("/admin/summary").status_code == 401
    assert client.get("/registerWebhook").status_code == 401


def test_operator_reads_stats_but_cannot_register_webhook(monkeypatch, relay_env, kv, http_client) -> None:
    client = _auth_client(monkeypatch, relay_env, kv, http_client)
    seed_route(kv)
    token = _token("test-secret", "ops-1", ["operator"])
    headers = {"Authorization": f"Bearer {token}"}

    assert client.get("/admin/summary", headers=headers).status_code == 200
    assert client.get("/admin/routes/X/stats", headers=headers).status_code == 200
    assert client.get("/registerWebhook", headers=headers).status_code == 403


def test_roles_from_other_services_are_ignored(monkeypatch, relay_env, kv, http_client) -> None:
    client = _auth_client(monkeypatch, relay_env, kv, http_client)
    token = _token("test-secret", "svc-1", ["recruiter", "service"])

    response = client.get("/admin/summary", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_expired_token_is_rejected(monkeypatch, relay_env, kv, http_client) -> None:
    client = _auth_client(monkeypatch, relay_env, kv, http_client)
    token = jwt.encode(
        {"sub": "admin-1", "roles": ["admin"], "exp": datetime.utcnow() - timedelta(minutes=5)},
        "test-secret",
        algorithm="HS256",
    )

    response = client.get("/admin/summary", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_admin_summary_with_admin_token(monkeypatch, relay_env, kv, http_client) -> None:
    client = _auth_client(monkeypatch, relay_env, kv, http_client)
    token = _token("test-secret", "admin-1", ["admin"])

    response = client.get("/admin/summary", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json() == {
        "enable_new_users": True,
        "verify_ttl_seconds": 30 * 24 * 60 * 60,
        "total_routes": 0,
    }


def test_webhooks_stay_public_when_auth_enabled(monkeypatch, relay_env, kv, http_client) -> None:
    client = _auth_client(monkeypatch, relay_env, kv, http_client)

    response = client.post(
        "/endpoint",
        json={"update_id": 1},
        headers={"X-Telegram-Bot-Api-Secret-Token": "platform-secret"},
    )
    assert response.status_code == 200


def test_route_stats_reports_counters(client, kv) -> None:
    seed_route(kv)
    asyncio.run(kv.put("stats:X:users", "3"))

    response = client.get("/admin/routes/X/stats")
    assert response.status_code == 200
    assert response.json()["users_seen"] == 3
    assert response.json()["messages_relayed"] == 0
    assert client.get("/admin/routes/nope/stats").status_code == 404


@pytest.mark.parametrize(
    ("headers", "expected"),
    [
        ({}, "route-secret"),
        ({"X-Telegram-Bot-Api-Secret-Token": "nope"}, "route-secret"),
        ({"X-Telegram-Bot-Api-Secret-Token": "anything"}, ""),
    ],
)
def test_webhook_secret_failures_are_auth_errors(headers: dict[str, str], expected: str) -> None:
    with pytest.raises(AuthError):
        verify_secret_header(Headers(headers), expected)
