from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlencode

from backend.relay.models import DAY_SECONDS, PlatformConfig

OWNER_HELP_TEXT = """
👋 *Hello, owner!*

Your private relay bot is running.

📝 *How it works*

1. *Receiving* - whenever someone messages this bot, you get a copy right away.
2. *Replying* - reply to the copied message and your answer goes back to the sender.
3. *Managing* - use the buttons under each message, or reply `/block` / `/unblock`.

💡 New visitors must pass a human check before their first message reaches you.
"""

VISITOR_WELCOME_TEXT = """
👋 *Hi! This is a private message bot.*

Send your message here and it will be delivered.
⚠️ Please do not send spam.
"""

PLATFORM_WELCOME_TEXT = """
🤖 *Private relay bot hosting*

Create your own relay bot: strangers can reach you without seeing your account,
and spam is filtered by a human check.

🚀 *Getting started*
Send me your *Bot Token* (get one from @BotFather).
"""

BLOCKED_NOTICE = "🚫 *You have been blocked by the owner.*"
MAINTENANCE_NOTICE = "⛔️ *Registration paused*\n\nNew bots are not being accepted right now."
VALIDATING_NOTICE = "⏳ Validating the token and setting up your bot..."
INVALID_CREDENTIAL_NOTICE = "❌ *Invalid token*\nPlease check that you copied it completely."
VERIFIED_NOTICE = "✅ *Verified!*\n\nYou can send your message now."
CHALLENGE_TEXT = "🛡 <b>Security check</b>\n\nPlease verify you are human to continue."


def registration_failed_notice(detail: str) -> str:
    return f"❌ Setup failed: {detail}"


def registration_success_notice(bot_username: Optional[str]) -> str:
    safe = (bot_username or "").replace("_", "\\_")
    return (
        "✅ *Your bot is ready!*\n\n"
        f"Bot: @{safe}\n\n"
        "👉 Open it and send */start* to see the guide."
    )


def existing_route_notice(bot_username: Optional[str]) -> str:
    safe = (bot_username or "").replace("_", "\\_")
    return f"ℹ️ You already run @{safe}. Sending a new token sets up another bot."


def fraud_alert(visitor_id: int) -> str:
    return f"⚠️ *Alert*: sender UID {visitor_id} is on the fraud blacklist!"


def block_confirmation(visitor_id: int, blocked: bool) -> str:
    return f"🚫 User {visitor_id} blocked" if blocked else f"✅ User {visitor_id} unblocked"


def display_name(first_name: str, last_name: Optional[str]) -> str:
    return f"{first_name or ''} {last_name or ''}".strip() or "User"


def challenge_link(origin: str, *, visitor_id: int, route_id: str, name: str, username: str) -> str:
    query = urlencode({"uid": visitor_id, "routeId": route_id, "name": name, "user": username})
    return f"{origin.rstrip('/')}/verify?{query}"


def challenge_markup(link: str) -> dict[str, Any]:
    return {"inline_keyboard": [[{"text": "🤖 Verify", "web_app": {"url": link}}]]}


def relay_markup(visitor_id: int, name: str) -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {"text": f"👤 {name}", "url": f"tg://user?id={visitor_id}"},
                {"text": f"🆔 {visitor_id}", "callback_data": "reply_placeholder"},
            ],
            [
                {"text": "🚫 Block", "callback_data": f"block_{visitor_id}"},
                {"text": "✅ Unblock", "callback_data": f"unblock_{visitor_id}"},
            ],
        ]
    }


def ttl_label(seconds: int) -> str:
    days = round(seconds / DAY_SECONDS)
    return "indefinite" if days >= 365 else f"{days} days"


def admin_dashboard(config: PlatformConfig, total_routes: int) -> tuple[str, dict[str, Any]]:
    label = ttl_label(config.verify_ttl)
    text = (
        "🎛 *Platform admin*\n\n"
        f"📊 Hosted bots: {total_routes}\n\n"
        f"• New bots: {'✅ allowed' if config.enable_new_users else '⛔️ paused'}\n"
        f"• Verification valid for: {label} (global default)"
    )
    markup = {
        "inline_keyboard": [
            [
                {
                    "text": "⛔️ Pause sign-ups" if config.enable_new_users else "🟢 Open sign-ups",
                    "callback_data": "admin_toggle_access",
                }
            ],
            [{"text": f"⏳ Verification TTL ({label})", "callback_data": "admin_ttl_menu"}],
            [{"text": "🔄 Refresh", "callback_data": "admin_refresh"}],
        ]
    }
    return text, markup


def ttl_menu(current_seconds: int) -> tuple[str, dict[str, Any]]:
    text = (
        "⏳ *Default verification TTL*\n\n"
        "How long until a verified visitor must verify again?\n"
        f"Current: *{ttl_label(current_seconds)}*"
    )
    markup = {
        "inline_keyboard": [
            [
                {"text": "1 day", "callback_data": "admin_set_ttl_1"},
                {"text": "7 days", "callback_data": "admin_set_ttl_7"},
            ],
            [
                {"text": "30 days", "callback_data": "admin_set_ttl_30"},
                {"text": "Indefinite", "callback_data": "admin_set_ttl_365"},
            ],
            [{"text": "🔙 Back", "callback_data": "admin_refresh"}],
        ]
    }
    return text, markup
