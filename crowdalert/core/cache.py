"""
Cache layer — in-process TTL cache plus optional async Redis.

Provides:
    • MemoryTTLCache — bounded, TTL-aware dict for per-process memoisation
    • Lazy async Redis client with JSON helpers (enabled via REDIS_ENABLED)
    • Cache failures are logged and treated as misses, never raised

Usage:
    from crowdalert.core.cache import cache_get, cache_set

    await cache_set("geocode:pincode:400001", {"lat": 18.93, "lon": 72.83}, ttl=86400)
    cached = await cache_get("geocode:pincode:400001")
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Hashable, Optional, Tuple, TypeVar

import redis.asyncio as aioredis

from crowdalert.core.config import settings

logger = logging.getLogger(__name__)

V = TypeVar("V")


# ═══════════════════════════════════════════════════════════════════════════
# In-process TTL cache
# ═══════════════════════════════════════════════════════════════════════════

class MemoryTTLCache(Generic[V]):
    """
    Small LRU + TTL cache.

    Entries expire ``ttl_seconds`` after insertion. When ``max_entries`` is
    reached the least-recently-used entry is evicted. Single event loop only;
    no locking is done.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._data: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return value

    def set(self, key: Hashable, value: V) -> None:
        self._data[key] = (self._clock() + self.ttl_seconds, value)
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


# ═══════════════════════════════════════════════════════════════════════════
# Redis
# ═══════════════════════════════════════════════════════════════════════════

# Lazy Redis client — initialised on first use
_redis_client: Optional[aioredis.Redis] = None


async def _get_redis() -> Optional[aioredis.Redis]:
    """Get or create async Redis client. None when Redis is disabled."""
    global _redis_client
    if not settings.REDIS_ENABLED:
        return None
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Redis client created: %s", settings.REDIS_URL)
    return _redis_client


async def cache_get(key: str) -> Optional[Any]:
    """Get a cached value by key. Returns None on miss or error."""
    client = await _get_redis()
    if not client:
        return None
    try:
        raw = await client.get(key)
        if raw is not None:
            return json.loads(raw)
    except (aioredis.RedisError, ValueError) as e:
        logger.warning("Cache GET error for %s: %s", key, e)
    return None


async def cache_set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """Set a cached value with optional TTL (seconds)."""
    client = await _get_redis()
    if not client:
        return False
    try:
        serialised = json.dumps(value, default=str)
        await client.set(key, serialised, ex=ttl or settings.GEOCODE_CACHE_TTL)
        return True
    except aioredis.RedisError as e:
        logger.warning("Cache SET error for %s: %s", key, e)
        return False


async def cache_delete(key: str) -> bool:
    """Delete a cache key."""
    client = await _get_redis()
    if not client:
        return False
    try:
        await client.delete(key)
        return True
    except aioredis.RedisError as e:
        logger.warning("Cache DELETE error for %s: %s", key, e)
        return False


async def ping_redis() -> bool:
    """True if Redis is enabled and answers PING."""
    client = await _get_redis()
    if not client:
        return False
    try:
        return bool(await client.ping())
    except aioredis.RedisError as e:
        logger.warning("Redis PING failed: %s", e)
        return False


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
