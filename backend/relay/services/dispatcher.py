from __future__ import annotations

import logging
from typing import Optional

from fastapi import BackgroundTasks

from backend.relay.errors import CredentialValidationError, RegistrationFailedError
from backend.relay.kvstore import KeyValueStore
from backend.relay.models import (
    CORRELATION_TTL,
    RouteRecord,
    TelegramCallbackQuery,
    TelegramMessage,
    TelegramUpdate,
)
from backend.relay.services import texts
from backend.relay.services.background import run_detached
from backend.relay.services.blocklist import BlockList
from backend.relay.services.correlation import CorrelationTable
from backend.relay.services.fraud import FraudChecker
from backend.relay.services.keys import (
    PLATFORM_TOTAL_ROUTES,
    route_messages_key,
    route_users_key,
    update_seen_key,
)
from backend.relay.services.platform import Counters, PlatformConfigStore
from backend.relay.services.registry import RouteRegistry, looks_like_credential
from backend.relay.services.telegram import TelegramClient, TelegramGateway
from backend.relay.services.verification import VerificationGate

logger = logging.getLogger("pm_relay")

PLATFORM_SCOPE = "platform"


def command_name(text: str) -> Optional[str]:
    """`/start@my_bot payload` -> `start`."""
    stripped = text.strip()
    if not stripped.startswith("/"):
        return None
    head = stripped.split(maxsplit=1)[0]
    return head[1:].split("@", 1)[0].lower() or None


def _target_id(data: str) -> Optional[int]:
    _, _, raw = data.partition("_")
    try:
        return int(raw)
    except ValueError:
        return None


class Dispatcher:
    def __init__(
        self,
        *,
        kv: KeyValueStore,
        telegram: TelegramGateway,
        registry: RouteRegistry,
        gate: VerificationGate,
        blocklist: BlockList,
        correlation: CorrelationTable,
        platform: PlatformConfigStore,
        counters: Counters,
        fraud: FraudChecker,
        platform_token: str,
        admin_uid: Optional[int],
        dedupe_enabled: bool = False,
    ) -> None:
        self.kv = kv
        self.telegram = telegram
        self.registry = registry
        self.gate = gate
        self.blocklist = blocklist
        self.correlation = correlation
        self.platform = platform
        self.counters = counters
        self.fraud = fraud
        self.platform_token = platform_token
        self.admin_uid = admin_uid
        self.dedupe_enabled = dedupe_enabled

    async def already_handled(self, scope: str, update: TelegramUpdate) -> bool:
        if not self.dedupe_enabled:
            return False
        if await self.kv.get(update_seen_key(scope, update.update_id)) is None:
            return False
        logger.info("update_redelivered scope=%s update_id=%s", scope, update.update_id)
        return True

    async def mark_handled(self, scope: str, update: TelegramUpdate) -> None:
        # call only after dispatch returned normally
        if self.dedupe_enabled:
            await self.kv.put(
                update_seen_key(scope, update.update_id), "1", ttl_seconds=CORRELATION_TTL
            )

    # managed routes

    async def handle_route_update(
        self,
        route: RouteRecord,
        update: TelegramUpdate,
        *,
        origin: str,
        background: BackgroundTasks,
    ) -> None:
        client = self.telegram.bot(route.token)
        if update.callback_query is not None:
            await self._route_callback(route, client, update.callback_query)
            return
        message = update.message
        if message is None:
            return
        if message.chat.id == route.owner_id:
            await self._owner_message(route, client, message, background)
        else:
            await self._visitor_message(route, client, message, origin, background)

    async def _route_callback(
        self,
        route: RouteRecord,
        client: TelegramClient,
        query: TelegramCallbackQuery,
    ) -> None:
        if query.from_user.id != route.owner_id:
            logger.info(
                "callback_rejected route_id=%s sender=%s", route.route_id, query.from_user.id
            )
            await client.answer_callback_query(query.id)
            return

        data = query.data or ""
        if data.startswith(("block_", "unblock_")):
            target = _target_id(data)
            if target is None:
                await client.answer_callback_query(query.id)
                return
            blocked = data.startswith("block_")
            await self.blocklist.set_blocked(target, blocked)
            await client.answer_callback_query(
                query.id, texts.block_confirmation(target, blocked), show_alert=True
            )
            return
        await client.answer_callback_query(query.id)

    async def _owner_message(
        self,
        route: RouteRecord,
        client: TelegramClient,
        message: TelegramMessage,
        background: BackgroundTasks,
    ) -> None:
        text = message.text or ""
        command = command_name(text)

        if message.reply_to_message is not None:
            visitor_id = await self.correlation.resolve(
                route.route_id, message.reply_to_message.message_id
            )
            if visitor_id is None:
                logger.info(
                    "owner_reply_unmapped route_id=%s reply_to=%s",
                    route.route_id,
                    message.reply_to_message.message_id,
                )
                return
            if command in {"block", "unblock"}:
                blocked = command == "block"
                await self.blocklist.set_blocked(visitor_id, blocked)
                await client.send_message(
                    route.owner_id, texts.block_confirmation(visitor_id, blocked)
                )
                return
            await client.copy_message(visitor_id, message.chat.id, message.message_id)
            return

        if command in {"start", "help"}:
            await client.send_message(message.chat.id, texts.OWNER_HELP_TEXT, parse_mode="Markdown")
            run_detached(background, "install_commands", client.set_my_commands)

    async def _visitor_message(
        self,
        route: RouteRecord,
        client: TelegramClient,
        message: TelegramMessage,
        origin: str,
        background: BackgroundTasks,
    ) -> None:
        visitor_id = message.chat.id
        text = message.text or ""

        if await self.blocklist.is_blocked(visitor_id):
            await client.send_message(visitor_id, texts.BLOCKED_NOTICE, parse_mode="Markdown")
            return

        if command_name(text) in {"start", "help"}:
            run_detached(
                background,
                "count_route_user",
                self.counters.increment,
                route_users_key(route.route_id),
            )
            await client.send_message(
                visitor_id,
                route.welcome_msg or texts.VISITOR_WELCOME_TEXT,
                parse_mode="Markdown",
            )
            return

        sender = message.from_user
        first_name = sender.first_name if sender else ""
        last_name = sender.last_name if sender else None

        if route.enable_verify and not await self.gate.is_verified(route.route_id, visitor_id):
            username = f"(@{sender.username})" if sender and sender.username else ""
            link = texts.challenge_link(
                origin,
                visitor_id=visitor_id,
                route_id=route.route_id,
                name=first_name or "User",
                username=username,
            )
            await client.send_message(
                visitor_id,
                texts.CHALLENGE_TEXT,
                parse_mode="HTML",
                reply_markup=texts.challenge_markup(link),
            )
            return

        relayed = await client.copy_message(
            route.owner_id,
            visitor_id,
            message.message_id,
            reply_markup=texts.relay_markup(visitor_id, texts.display_name(first_name, last_name)),
        )
        if not relayed.ok or relayed.message_id is None:
            logger.warning(
                "relay_failed route_id=%s visitor=%s description=%s",
                route.route_id,
                visitor_id,
                relayed.description,
            )
            return

        await self.correlation.record(route.route_id, relayed.message_id, visitor_id)
        run_detached(
            background,
            "count_route_message",
            self.counters.increment,
            route_messages_key(route.route_id),
        )
        run_detached(background, "fraud_check", self._fraud_alert, client, route.owner_id, visitor_id)
        logger.info(
            "relay_delivered route_id=%s visitor=%s relayed_message_id=%s",
            route.route_id,
            visitor_id,
            relayed.message_id,
        )

    async def _fraud_alert(self, client: TelegramClient, owner_id: int, visitor_id: int) -> None:
        if await self.fraud.is_suspicious(visitor_id):
            await client.send_message(owner_id, texts.fraud_alert(visitor_id), parse_mode="Markdown")

    # platform route

    def _is_admin(self, user_id: int) -> bool:
        return self.admin_uid is not None and user_id == self.admin_uid

    async def handle_platform_update(
        self,
        update: TelegramUpdate,
        *,
        origin: str,
        background: BackgroundTasks,
    ) -> None:
        client = self.telegram.bot(self.platform_token)
        if update.callback_query is not None:
            await self._admin_callback(client, update.callback_query)
            return
        message = update.message
        if message is None:
            return
        text = (message.text or "").strip()
        chat_id = message.chat.id

        if command_name(text) == "start":
            if self._is_admin(chat_id):
                await self._send_dashboard(client, chat_id)
                return
            await client.send_message(chat_id, texts.PLATFORM_WELCOME_TEXT, parse_mode="Markdown")
            existing = await self.registry.lookup_by_owner(chat_id)
            if existing is not None:
                await client.send_message(
                    chat_id, texts.existing_route_notice(existing.bot_username), parse_mode="Markdown"
                )
            return

        if looks_like_credential(text):
            await self._register(client, chat_id, text, origin, background)

    async def _register(
        self,
        client: TelegramClient,
        chat_id: int,
        credential: str,
        origin: str,
        background: BackgroundTasks,
    ) -> None:
        config = await self.platform.load()
        if not config.enable_new_users and not self._is_admin(chat_id):
            await client.send_message(chat_id, texts.MAINTENANCE_NOTICE, parse_mode="Markdown")
            return

        await client.send_message(chat_id, texts.VALIDATING_NOTICE)
        try:
            route = await self.registry.register(credential, chat_id, origin=origin)
        except CredentialValidationError:
            await client.send_message(chat_id, texts.INVALID_CREDENTIAL_NOTICE, parse_mode="Markdown")
            return
        except RegistrationFailedError as exc:
            await client.send_message(chat_id, texts.registration_failed_notice(str(exc)))
            return

        await client.send_message(
            chat_id, texts.registration_success_notice(route.bot_username), parse_mode="Markdown"
        )
        route_client = self.telegram.bot(route.token)
        run_detached(background, "install_commands", route_client.set_my_commands)
        run_detached(background, "count_route", self.counters.increment, PLATFORM_TOTAL_ROUTES)
        run_detached(
            background,
            "owner_guide",
            route_client.send_message,
            chat_id,
            texts.OWNER_HELP_TEXT,
            parse_mode="Markdown",
        )

    async def _send_dashboard(self, client: TelegramClient, chat_id: int) -> None:
        config = await self.platform.load()
        total = await self.counters.get(PLATFORM_TOTAL_ROUTES)
        text, markup = texts.admin_dashboard(config, total)
        await client.send_message(chat_id, text, parse_mode="Markdown", reply_markup=markup)

    async def _admin_callback(self, client: TelegramClient, query: TelegramCallbackQuery) -> None:
        if not self._is_admin(query.from_user.id) or query.message is None:
            logger.info("admin_callback_rejected sender=%s", query.from_user.id)
            await client.answer_callback_query(query.id)
            return

        chat_id = query.message.chat.id
        message_id = query.message.message_id
        data = query.data or ""

        if data == "admin_ttl_menu":
            config = await self.platform.load()
            text, markup = texts.ttl_menu(config.verify_ttl)
            await client.edit_message_text(
                chat_id, message_id, text, parse_mode="Markdown", reply_markup=markup
            )
            await client.answer_callback_query(query.id)
            return

        if data == "admin_toggle_access":
            config = await self.platform.toggle_new_routes()
            notice = "New bots allowed" if config.enable_new_users else "New bots paused"
        elif data.startswith("admin_set_ttl_"):
            try:
                config = await self.platform.set_verify_ttl_days(int(data.rsplit("_", 1)[1]))
            except ValueError:
                await client.answer_callback_query(query.id)
                return
            notice = "Settings updated"
        elif data == "admin_refresh":
            config = await self.platform.load()
            notice = "Refreshed"
        else:
            await client.answer_callback_query(query.id)
            return

        total = await self.counters.get(PLATFORM_TOTAL_ROUTES)
        text, markup = texts.admin_dashboard(config, total)
        await client.edit_message_text(
            chat_id, message_id, text, parse_mode="Markdown", reply_markup=markup
        )
        await client.answer_callback_query(query.id, notice)
