from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger("pm_relay")

BOT_COMMANDS = [{"command": "start", "description": "Start / show the guide"}]


@dataclass(frozen=True)
class TelegramResult:
    ok: bool
    result: Any = None
    description: Optional[str] = None
    error_code: Optional[int] = None

    @property
    def message_id(self) -> Optional[int]:
        if isinstance(self.result, dict):
            value = self.result.get("message_id")
            return int(value) if value is not None else None
        return None


class TelegramClient:
    def __init__(self, http: httpx.AsyncClient, token: str, api_base: str) -> None:
        self._http = http
        self._token = token
        self._api_base = api_base.rstrip("/")

    def _url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._token}/{method}"

    async def call(self, method: str, payload: Optional[dict[str, Any]] = None) -> TelegramResult:
        body = {key: value for key, value in (payload or {}).items() if value is not None}
        try:
            response = await self._http.post(self._url(method), json=body)
        except httpx.HTTPError as exc:
            logger.warning("upstream_call_failed method=%s error=%s", method, exc)
            return TelegramResult(ok=False, description=f"transport error: {exc}")
        try:
            decoded = response.json()
        except (json.JSONDecodeError, ValueError):
            return TelegramResult(
                ok=False,
                description=f"non-json response (HTTP {response.status_code})",
                error_code=response.status_code,
            )
        if not isinstance(decoded, dict):
            return TelegramResult(ok=False, description="unexpected response shape")
        ok = bool(decoded.get("ok"))
        if not ok:
            logger.info(
                "upstream_call_rejected method=%s code=%s description=%s",
                method,
                decoded.get("error_code"),
                decoded.get("description"),
            )
        return TelegramResult(
            ok=ok,
            result=decoded.get("result"),
            description=decoded.get("description"),
            error_code=decoded.get("error_code"),
        )

    async def get_me(self) -> TelegramResult:
        return await self.call("getMe")

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> TelegramResult:
        return await self.call(
            "sendMessage",
            {"chat_id": chat_id, "text": text, "parse_mode": parse_mode, "reply_markup": reply_markup},
        )

    async def copy_message(
        self,
        chat_id: int,
        from_chat_id: int,
        message_id: int,
        *,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> TelegramResult:
        return await self.call(
            "copyMessage",
            {
                "chat_id": chat_id,
                "from_chat_id": from_chat_id,
                "message_id": message_id,
                "reply_markup": reply_markup,
            },
        )

    async def forward_message(self, chat_id: int, from_chat_id: int, message_id: int) -> TelegramResult:
        return await self.call(
            "forwardMessage",
            {"chat_id": chat_id, "from_chat_id": from_chat_id, "message_id": message_id},
        )

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> TelegramResult:
        return await self.call(
            "editMessageText",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "text": text,
                "parse_mode": parse_mode,
                "reply_markup": reply_markup,
            },
        )

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: Optional[str] = None,
        show_alert: bool = False,
    ) -> TelegramResult:
        return await self.call(
            "answerCallbackQuery",
            {"callback_query_id": callback_query_id, "text": text, "show_alert": show_alert},
        )

    async def set_webhook(
        self,
        url: str,
        secret_token: str,
        allowed_updates: Optional[list[str]] = None,
    ) -> TelegramResult:
        return await self.call(
            "setWebhook",
            {"url": url, "secret_token": secret_token, "allowed_updates": allowed_updates},
        )

    async def set_my_commands(self, commands: Optional[list[dict[str, str]]] = None) -> TelegramResult:
        return await self.call("setMyCommands", {"commands": commands or BOT_COMMANDS})


class TelegramGateway:
    def __init__(self, http: httpx.AsyncClient, api_base: str) -> None:
        self.http = http
        self.api_base = api_base

    def bot(self, token: str) -> TelegramClient:
        return TelegramClient(self.http, token, self.api_base)
