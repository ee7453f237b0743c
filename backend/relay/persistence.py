from __future__ import annotations

import time
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import Column, DateTime, Float, MetaData, String, Table, Text, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from backend.relay.errors import StorageUnavailableError
from backend.relay.kvstore import Clock, KeyValueStore


def _normalize_database_url(database_url: str) -> str:
    value = database_url.strip()
    if value.startswith("sqlite:///"):
        sqlite_path = value[len("sqlite:///") :].split("?", 1)[0]
        if sqlite_path and sqlite_path != ":memory:":
            path = Path(sqlite_path)
            if path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)
        return value
    if "://" in value:
        return value
    path = Path(value)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{str(path).replace(chr(92), '/')}"


class SqlKeyValueStore(KeyValueStore):
    def __init__(self, database_url: str, clock: Clock = time.time) -> None:
        self.database_url = _normalize_database_url(database_url)
        self._clock = clock
        self._lock = Lock()
        connect_args = {"check_same_thread": False} if self.database_url.startswith("sqlite") else {}
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        self.metadata = MetaData()
        self.kv_entries = Table(
            "kv_entries",
            self.metadata,
            Column("key", String(255), primary_key=True),
            Column("value", Text, nullable=False),
            Column("expires_at_epoch", Float, nullable=True),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.metadata.create_all(self.engine)

    def _get_sync(self, key: str) -> Optional[str]:
        with self._lock:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(self.kv_entries.c.value, self.kv_entries.c.expires_at_epoch).where(
                        self.kv_entries.c.key == key
                    )
                ).first()
        if not row:
            return None
        if row.expires_at_epoch is not None and self._clock() >= row.expires_at_epoch:
            return None
        return row.value

    def _put_sync(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        payload = {
            "value": value,
            "expires_at_epoch": self._clock() + ttl_seconds if ttl_seconds else None,
            "updated_at_utc": datetime.utcnow(),
        }
        with self._lock:
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(self.kv_entries.c.key).where(self.kv_entries.c.key == key)
                ).first()
                if existing:
                    conn.execute(
                        self.kv_entries.update()
                        .where(self.kv_entries.c.key == key)
                        .values(**payload)
                    )
                else:
                    conn.execute(self.kv_entries.insert().values(key=key, **payload))

    async def get(self, key: str) -> Optional[str]:
        try:
            return await run_in_threadpool(self._get_sync, key)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"state store read failed: {key}") from exc

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        try:
            await run_in_threadpool(self._put_sync, key, value, ttl_seconds)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"state store write failed: {key}") from exc

    def ping_sync(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    async def ping(self) -> bool:
        return await run_in_threadpool(self.ping_sync)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            with self.engine.begin() as conn:
                result = conn.execute(
                    self.kv_entries.delete().where(
                        self.kv_entries.c.expires_at_epoch.is_not(None),
                        self.kv_entries.c.expires_at_epoch <= now,
                    )
                )
        return result.rowcount or 0
