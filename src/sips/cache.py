"""Cache clients — Redis when configured, otherwise an in-process map.

The cache is never the source of truth: every read falls back to the store on
a miss and every backend failure is logged and swallowed here, so a flaky
Redis can never fail a store operation.

The in-process backend does not share state between instances; cooldown
markers and cached projections are per-process without Redis.
"""

from __future__ import annotations

import heapq
import json
import logging
import time
from collections.abc import Callable
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from sips.config import Settings

logger = logging.getLogger(__name__)


def build_cache_key(*parts: str | int | None) -> str:
    """Join key parts with ':' skipping None."""
    return ":".join(str(part) for part in parts if part is not None)


class Cache:
    """Interface shared by both backends. Values must be JSON-serializable."""

    async def get(self, key: str) -> Any | None:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def delete_prefix(self, prefix: str) -> None:
        raise NotImplementedError

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Set ``key`` only if it is missing or expired. Returns True if set."""
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCache(Cache):
    """Process-local cache with TTLs. Single-instance deployments only.

    Expired entries are dropped on read and swept on every write, in expiry
    order, so per-profile cooldown markers do not accumulate.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._expiry: list[tuple[float, str]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def _live(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return raw

    def _sweep(self) -> None:
        now = self._clock()
        while self._expiry and self._expiry[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiry)
            entry = self._entries.get(key)
            # Skip heap items superseded by a later write of the same key
            if entry is not None and entry[1] == expires_at:
                del self._entries[key]

    def _store(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._sweep()
        expires_at = self._clock() + ttl_seconds
        self._entries[key] = (json.dumps(value), expires_at)
        heapq.heappush(self._expiry, (expires_at, key))

    async def get(self, key: str) -> Any | None:
        raw = self._live(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._store(key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        # No await between check and set: atomic within one event loop
        if self._live(key) is not None:
            return False
        self._store(key, value, ttl_seconds)
        return True


class RedisCache(Cache):
    """Redis-backed cache shared by every instance."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCache:
        client = redis.from_url(  # type: ignore[no-untyped-call]
            url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
        return cls(client)

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(key)
        except (RedisError, OSError):
            logger.warning("Cache read failed for %s", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, json.dumps(value), ex=max(1, int(ttl_seconds)))
        except (RedisError, OSError):
            logger.warning("Cache write failed for %s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except (RedisError, OSError):
            logger.warning("Cache delete failed for %s", key, exc_info=True)

    async def delete_prefix(self, prefix: str) -> None:
        try:
            batch: list[str] = []
            async for key in self._client.scan_iter(match=f"{prefix}*", count=200):
                batch.append(key)
                if len(batch) >= 200:
                    await self._client.delete(*batch)
                    batch = []
            if batch:
                await self._client.delete(*batch)
        except (RedisError, OSError):
            logger.warning("Cache prefix invalidation failed for %s", prefix, exc_info=True)

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        try:
            result = await self._client.set(key, json.dumps(value), ex=max(1, int(ttl_seconds)), nx=True)
        except (RedisError, OSError):
            # Fail open: an unreachable cache must not block actions
            logger.warning("Cache set-if-absent failed for %s", key, exc_info=True)
            return True
        return bool(result)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        await self._client.aclose()


def create_cache(settings: Settings) -> Cache:
    """Build the cache client for this process."""
    if settings.redis_url:
        logger.info("Using Redis cache backend")
        return RedisCache.from_url(settings.redis_url)
    logger.info("SIPS_REDIS_URL not set — using in-process cache")
    return MemoryCache()
