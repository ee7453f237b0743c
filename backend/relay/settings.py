from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    app_env: str
    kv_backend: str
    persistence_db_path: str
    database_url: str
    platform_bot_token: str
    platform_webhook_secret: str
    admin_uid: Optional[int]
    turnstile_site_key: str
    turnstile_secret_key: str
    fraud_db_url: str
    telegram_api_base: str
    public_base_url: str
    upstream_timeout_seconds: int
    relay_dedupe_enabled: bool
    auth_enabled: bool
    jwt_secret: str
    jwt_algorithm: str


def load_settings() -> Settings:
    persistence_db_path = os.getenv("PERSISTENCE_DB_PATH", "data/pm_relay.sqlite3").strip()
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        database_url = f"sqlite:///{persistence_db_path.replace(chr(92), '/')}"
    kv_backend = os.getenv("KV_BACKEND", "sql").strip().lower()
    if kv_backend not in {"sql", "memory"}:
        kv_backend = "sql"
    admin_raw = os.getenv("ADMIN_UID", "").strip()
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        kv_backend=kv_backend,
        persistence_db_path=persistence_db_path,
        database_url=database_url,
        platform_bot_token=os.getenv("PLATFORM_BOT_TOKEN", "").strip(),
        platform_webhook_secret=os.getenv("PLATFORM_WEBHOOK_SECRET", "").strip(),
        admin_uid=int(admin_raw) if admin_raw.lstrip("-").isdigit() else None,
        turnstile_site_key=os.getenv("TURNSTILE_SITE_KEY", "").strip(),
        turnstile_secret_key=os.getenv("TURNSTILE_SECRET_KEY", "").strip(),
        fraud_db_url=os.getenv(
            "FRAUD_DB_URL",
            "https://raw.githubusercontent.com/LloydAsp/nfd/main/data/fraud.db",
        ).strip(),
        telegram_api_base=os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org").strip(),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "").strip().rstrip("/"),
        upstream_timeout_seconds=max(1, _int_env("UPSTREAM_TIMEOUT_SECONDS", 10)),
        relay_dedupe_enabled=_bool_env("RELAY_DEDUPE_ENABLED", False),
        auth_enabled=_bool_env("AUTH_ENABLED", False),
        jwt_secret=os.getenv("JWT_SECRET", "dev-only-secret-change-in-prod").strip(),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256").strip(),
    )
