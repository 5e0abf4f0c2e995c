from __future__ import annotations

import json
import logging
import sqlite3
from datetime import timedelta
from typing import Any, Protocol, cast

from redis.asyncio import Redis
from redis.exceptions import RedisError

from promoscan.repositories.common import parse_iso_utc, utc_now, utc_now_iso
from promoscan.repositories.database import Database

LOGGER = logging.getLogger("promoscan.quota.mirror")


class QuotaMirror(Protocol):
    """Durable key-value store backing the quota ledger across process instances."""

    backend_name: str

    async def get(self, key: str) -> dict[str, Any] | None:
        ...

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> bool:
        ...

    async def aclose(self) -> None:
        ...


class SqliteQuotaMirror:
    backend_name = "sqlite"

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            with self._db.connection() as conn:
                row = conn.execute(
                    """
                    SELECT value_json, expires_at
                    FROM durable_kv
                    WHERE key = ?
                    """,
                    (key,),
                ).fetchone()
                if row is None:
                    return None

                expires_at = parse_iso_utc(row["expires_at"])
                if expires_at is not None and expires_at <= utc_now():
                    conn.execute("DELETE FROM durable_kv WHERE key = ?", (key,))
                    return None
        except sqlite3.Error as exc:
            LOGGER.error("quota mirror read failed backend=sqlite key=%s error=%s", key, exc)
            return None

        return _decode_object(row["value_json"])

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> bool:
        expires_at = None
        if ttl_seconds is not None and ttl_seconds > 0:
            expires_at = (utc_now() + timedelta(seconds=ttl_seconds)).isoformat()

        try:
            with self._db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO durable_kv (key, value_json, expires_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json = excluded.value_json,
                        expires_at = excluded.expires_at,
                        updated_at = excluded.updated_at
                    """,
                    (key, json.dumps(value, sort_keys=True), expires_at, utc_now_iso()),
                )
        except sqlite3.Error as exc:
            LOGGER.error("quota mirror write failed backend=sqlite key=%s error=%s", key, exc)
            return False
        return True

    async def aclose(self) -> None:
        return None


class RedisQuotaMirror:
    """Remote mirror for hosted deployments (Upstash, Vercel KV or any Redis)."""

    backend_name = "redis"

    def __init__(self, *, url: str, client: Redis | None = None) -> None:
        self._client = (
            client if client is not None else Redis.from_url(url, decode_responses=True)
        )

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            raw_value = await self._client.get(key)
        except (RedisError, OSError) as exc:
            LOGGER.error("quota mirror read failed backend=redis key=%s error=%s", key, exc)
            return None
        if raw_value is None:
            return None
        if isinstance(raw_value, bytes):
            raw_value = raw_value.decode("utf-8", errors="replace")
        return _decode_object(raw_value)

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> bool:
        encoded = json.dumps(value, sort_keys=True)
        try:
            if ttl_seconds is not None and ttl_seconds > 0:
                await self._client.set(key, encoded, ex=ttl_seconds)
            else:
                await self._client.set(key, encoded)
        except (RedisError, OSError) as exc:
            LOGGER.error("quota mirror write failed backend=redis key=%s error=%s", key, exc)
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


def build_quota_mirror(*, database: Database, redis_url: str | None) -> QuotaMirror:
    """Pick the durable mirror once at startup: Redis when a URL is configured, else SQLite."""
    if redis_url:
        LOGGER.info("quota mirror selected backend=redis")
        return RedisQuotaMirror(url=redis_url)

    database.initialize()
    LOGGER.info("quota mirror selected backend=sqlite path=%s", database.path)
    return SqliteQuotaMirror(database)


def _decode_object(raw_value: object) -> dict[str, Any] | None:
    if not isinstance(raw_value, str):
        return None
    try:
        parsed = cast(object, json.loads(raw_value))
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return {str(key): item for key, item in cast(dict[object, Any], parsed).items()}
