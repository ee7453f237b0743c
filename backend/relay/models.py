from __future__ import annotations

import time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

DAY_SECONDS = 24 * 60 * 60
DEFAULT_VERIFY_TTL = 30 * DAY_SECONDS
CORRELATION_TTL = 48 * 60 * 60
TTL_CHOICES_DAYS = (1, 7, 30, 365)


def epoch_ms() -> int:
    return int(time.time() * 1000)


class RouteRecord(BaseModel):
    """Stored under `platform:route:{route_id}`; field names are the persisted layout."""

    model_config = ConfigDict(populate_by_name=True)

    route_id: str = Field(default="", alias="routeId")
    token: str
    owner_id: int
    secret: str
    bot_username: Optional[str] = None
    created_at: int = Field(default_factory=epoch_ms)
    enable_verify: bool = True
    welcome_msg: Optional[str] = None

    def stored_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude={"route_id"}, exclude_none=True)

    def owner_index_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PlatformConfig(BaseModel):
    enable_new_users: bool = True
    verify_ttl: int = DEFAULT_VERIFY_TTL


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    text: Optional[str] = None
    reply_to_message: Optional["TelegramMessage"] = None


class TelegramCallbackQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_user: TelegramUser = Field(alias="from")
    message: Optional[TelegramMessage] = None
    data: Optional[str] = None


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None
    callback_query: Optional[TelegramCallbackQuery] = None


class VerifySubmitResponse(BaseModel):
    success: bool


class AdminSummaryResponse(BaseModel):
    enable_new_users: bool
    verify_ttl_seconds: int
    total_routes: int


class RouteStatsResponse(BaseModel):
    route_id: str
    bot_username: Optional[str]
    owner_id: int
    enable_verify: bool
    users_seen: int
    messages_relayed: int
