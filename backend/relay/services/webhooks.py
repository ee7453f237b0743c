from __future__ import annotations

import hmac
from typing import Optional

from starlette.datastructures import Headers

from backend.relay.errors import SecretVerificationError

SECRET_HEADER = "x-telegram-bot-api-secret-token"


def _header_value(headers: Headers, key: str) -> Optional[str]:
    value = headers.get(key)
    if value:
        return value.strip()
    return None


def verify_secret_header(headers: Headers, expected: str) -> None:
    if not expected:
        raise SecretVerificationError("webhook secret is not configured")
    provided = _header_value(headers, SECRET_HEADER)
    if not provided:
        raise SecretVerificationError("missing webhook secret header")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise SecretVerificationError("invalid webhook secret")
