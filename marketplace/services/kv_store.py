"""Key-value cache store: in-memory (single process) or Redis (shared)."""

from __future__ import annotations

import fnmatch
import json
import logging
import time
from typing import Any, Protocol, runtime_checkable

import redis
import redis.asyncio as aioredis

from marketplace.config import settings
from marketplace.errors import CacheStoreError

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Interface for the cache store shared by every resource."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class MemoryKeyValueStore:
    """Single-process store with TTL expiry and glob pattern deletes."""

    def __init__(self) -> None:
        # key -> (json payload, expires_at or None)
        self._entries: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if expires_at is not None and time.time() >= expires_at:
            del self._entries[key]
            return None
        return payload

    async def get(self, key: str) -> Any | None:
        payload = self._live(key)
        return None if payload is None else json.loads(payload)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = time.time() + ttl_seconds if ttl_seconds else None
        # Stored serialized so callers never share mutable state with the cache
        self._entries[key] = (json.dumps(value), expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        matched = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
        for k in matched:
            del self._entries[k]
        return len(matched)

    async def keys(self, pattern: str = "*") -> list[str]:
        return sorted(
            k
            for k in list(self._entries)
            if fnmatch.fnmatchcase(k, pattern) and self._live(k) is not None
        )

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()


class RedisKeyValueStore:
    """Redis-backed store shared by every API instance."""

    def __init__(self, client: aioredis.Redis, scan_count: int = 200) -> None:
        self._redis = client
        self._scan_count = scan_count

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._redis.get(key)
        except redis.RedisError as e:
            raise CacheStoreError(f"GET {key} failed: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise CacheStoreError(f"GET {key} returned undecodable value: {e}") from e

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        try:
            if ttl_seconds:
                await self._redis.setex(key, ttl_seconds, json.dumps(value))
            else:
                await self._redis.set(key, json.dumps(value))
        except redis.RedisError as e:
            raise CacheStoreError(f"SET {key} failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except redis.RedisError as e:
            raise CacheStoreError(f"DEL {key} failed: {e}") from e

    async def delete_pattern(self, pattern: str) -> int:
        # Cursor SCAN keeps the server responsive; KEYS would block it.
        deleted = 0
        try:
            cursor = 0
            while True:
                cursor, keys = await self._redis.scan(
                    cursor, match=pattern, count=self._scan_count
                )
                if keys:
                    deleted += await self._redis.delete(*keys)
                if cursor == 0:
                    break
        except redis.RedisError as e:
            raise CacheStoreError(f"Pattern delete {pattern} failed: {e}") from e
        return deleted

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except redis.RedisError:
            logger.warning("Redis ping failed", exc_info=True)
            return False

    async def close(self) -> None:
        await self._redis.aclose()


def get_redis_client() -> aioredis.Redis:
    return aioredis.from_url(
        settings.redis_url,
        password=settings.redis_password,
        decode_responses=True,
    )


def get_kv_store() -> KeyValueStore:
    """Factory: returns the configured KeyValueStore backend."""
    if settings.cache_backend == "redis":
        logger.info("Using Redis cache store at %s", settings.redis_url)
        return RedisKeyValueStore(get_redis_client())
    logger.info("Using in-memory cache store")
    return MemoryKeyValueStore()
