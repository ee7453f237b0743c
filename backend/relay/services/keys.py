from __future__ import annotations

# Persisted key layout. Existing deployments read these names; do not rename.

PLATFORM_SETTINGS = "platform:settings"
PLATFORM_TOTAL_ROUTES = "stats:platform:total_bots"


def route_key(route_id: str) -> str:
    return f"platform:route:{route_id}"


def owner_key(owner_id: int) -> str:
    return f"platform:user:{owner_id}"


def verified_key(route_id: str, visitor_id: int) -> str:
    return f"verified-{route_id}-{visitor_id}"


def blocked_key(visitor_id: int) -> str:
    return f"isblocked-{visitor_id}"


def correlation_key(route_id: str, relayed_message_id: int) -> str:
    return f"msg-map-{route_id}-{relayed_message_id}"


def route_users_key(route_id: str) -> str:
    return f"stats:{route_id}:users"


def route_messages_key(route_id: str) -> str:
    return f"stats:{route_id}:msgs"


def update_seen_key(scope: str, update_id: int) -> str:
    return f"update-seen-{scope}-{update_id}"
