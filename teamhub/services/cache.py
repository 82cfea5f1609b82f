from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import time
from typing import Any, Callable, Protocol

from redis.asyncio import Redis


logger = logging.getLogger(__name__)


class ResponseCache(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_s: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> None: ...


class RedisResponseCache:
    """JSON values in Redis with per-key TTL.

    Backend failures are logged and reported as misses; the cache must never
    fail the call it is fronting.
    """

    def __init__(self, redis: Redis, *, prefix: str = "teamhub:cache") -> None:
        self._redis = redis
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "teamhub:cache") -> "RedisResponseCache":
        return cls(Redis.from_url(url, encoding="utf-8", decode_responses=True), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._redis.get(self._key(key))
        except Exception as exc:  # noqa: BLE001 - cache misses never block live calls
            logger.warning("cache_get_failed key=%s error=%s", key, type(exc).__name__)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("cache_value_corrupt key=%s", key)
            return None

    async def set(self, key: str, value: Any, ttl_s: int) -> None:
        if ttl_s <= 0:
            return
        try:
            await self._redis.set(self._key(key), json.dumps(value), ex=ttl_s)
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_set_failed key=%s error=%s", key, type(exc).__name__)

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(key))
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_delete_failed key=%s error=%s", key, type(exc).__name__)

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN instead of KEYS so invalidation does not block Redis.
        try:
            keys = [key async for key in self._redis.scan_iter(match=self._key(pattern))]
            if keys:
                await self._redis.delete(*keys)
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_delete_pattern_failed pattern=%s error=%s", pattern, type(exc).__name__)

    async def aclose(self) -> None:
        await self._redis.aclose()


class InMemoryResponseCache:
    # Single-process cache used for tests and deployments without Redis.

    def __init__(self, *, time_source: Callable[[], float] | None = None) -> None:
        self._time = time_source or time.monotonic
        self._entries: dict[str, tuple[float, str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, raw = entry
            if expires_at <= self._time():
                self._entries.pop(key, None)
                return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_s: int) -> None:
        if ttl_s <= 0:
            return
        async with self._lock:
            self._entries[key] = (self._time() + ttl_s, json.dumps(value))

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def delete_pattern(self, pattern: str) -> None:
        async with self._lock:
            for key in [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]:
                self._entries.pop(key, None)


class NullResponseCache:
    # Used when caching is disabled; every lookup is a miss.

    async def get(self, key: str) -> Any | None:
        return None

    async def set(self, key: str, value: Any, ttl_s: int) -> None:
        return None

    async def delete(self, key: str) -> None:
        return None

    async def delete_pattern(self, pattern: str) -> None:
        return None
