from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

SITEVERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


class TurnstileServiceError(Exception):
    pass


class TurnstileVerificationError(Exception):
    pass


@dataclass(frozen=True)
class TurnstileVerificationResult:
    success: bool
    hostname: Optional[str]
    action: Optional[str]


async def verify_turnstile_token(
    *,
    http: httpx.AsyncClient,
    token: str,
    secret: str,
    remote_ip: Optional[str] = None,
) -> TurnstileVerificationResult:
    payload = {"secret": secret, "response": token}
    if remote_ip:
        payload["remoteip"] = remote_ip
    try:
        response = await http.post(SITEVERIFY_URL, json=payload)
    except httpx.HTTPError as exc:
        raise TurnstileServiceError("turnstile verification request failed") from exc

    try:
        decoded = response.json()
    except ValueError as exc:
        raise TurnstileServiceError("turnstile verification response was not valid json") from exc

    if not isinstance(decoded, dict) or not decoded.get("success"):
        raise TurnstileVerificationError("turnstile token rejected")

    return TurnstileVerificationResult(
        success=True,
        hostname=decoded.get("hostname"),
        action=decoded.get("action"),
    )
