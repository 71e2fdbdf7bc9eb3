"""
Stats cache: memoized entity stats with explicit invalidation.

Purpose
-------
Aggregating raw stats (JSON snapshots, town facts) is the expensive part of
evaluating achievements. Cache the flattened result per entity, and let
ingestion code invalidate an entity as soon as new stats land.

Responsibilities
----------------
- Define the ``StatsCache`` protocol (get / set / invalidate / clear)
- ``MemoryStatsCache``: per-instance TTL dict on a monotonic clock
- ``RedisStatsCache``: ``redis.asyncio`` with JSON values and ``SETEX``
- ``CachedStatsSource``: wrap any stats source with a cache

Non-Responsibilities
--------------------
- Deciding when stats change (ingestion calls ``invalidate``)
- Authoritative state: a cache failure is always treated as a miss

Design Notes
------------
- No module-level singleton. Whoever builds the engine owns the cache.
- Redis errors degrade to a miss and are logged, never raised.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, runtime_checkable

import redis.asyncio as redis

from nordics.core.config.config import Config
from nordics.core.logging.logger import get_logger
from nordics.modules.shared.entities import EntityRef

if TYPE_CHECKING:
    from nordics.modules.achievements.sources import StatsSource

logger = get_logger(__name__)

Stats = Dict[str, float]


# ============================================================================
# Protocol
# ============================================================================


@runtime_checkable
class StatsCache(Protocol):
    async def get(self, entity: EntityRef) -> Optional[Stats]: ...

    async def set(self, entity: EntityRef, stats: Stats) -> None: ...

    async def invalidate(self, entity: EntityRef) -> None: ...

    async def clear(self) -> None: ...


# ============================================================================
# In-memory implementation
# ============================================================================


class MemoryStatsCache:
    """
    TTL cache held in process memory.

    ``clock`` is injectable so tests can advance time without sleeping.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        *,
        clock: Any = time.monotonic,
    ) -> None:
        self._ttl = float(
            ttl_seconds if ttl_seconds is not None else Config.STATS_CACHE_TTL_SECONDS
        )
        self._clock = clock
        self._entries: Dict[str, tuple[float, Stats]] = {}
        self._lock = asyncio.Lock()

    async def get(self, entity: EntityRef) -> Optional[Stats]:
        async with self._lock:
            entry = self._entries.get(entity.key)
            if entry is None:
                return None

            expires_at, stats = entry
            if self._clock() >= expires_at:
                del self._entries[entity.key]
                logger.debug("Stats cache expired", extra={"cache_key": entity.key})
                return None

            return dict(stats)

    async def set(self, entity: EntityRef, stats: Stats) -> None:
        async with self._lock:
            self._entries[entity.key] = (self._clock() + self._ttl, dict(stats))

    async def invalidate(self, entity: EntityRef) -> None:
        async with self._lock:
            removed = self._entries.pop(entity.key, None) is not None
        logger.debug(
            "Stats cache invalidated",
            extra={"cache_key": entity.key, "removed": removed},
        )

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# ============================================================================
# Redis implementation
# ============================================================================


class RedisStatsCache:
    """
    Redis-backed stats cache shared across processes.

    Keys are ``{prefix}:{kind}:{entity_id}``; values are JSON objects.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl_seconds: Optional[int] = None,
        key_prefix: str = "nordics:v1:stats",
    ) -> None:
        self._client = client
        self._ttl = int(
            ttl_seconds if ttl_seconds is not None else Config.STATS_CACHE_TTL_SECONDS
        )
        self._prefix = key_prefix

    @classmethod
    def from_url(
        cls,
        url: Optional[str] = None,
        *,
        ttl_seconds: Optional[int] = None,
        key_prefix: str = "nordics:v1:stats",
    ) -> RedisStatsCache:
        client = redis.from_url(url or Config.REDIS_URL, decode_responses=True)
        return cls(client, ttl_seconds=ttl_seconds, key_prefix=key_prefix)

    def _key(self, entity: EntityRef) -> str:
        return f"{self._prefix}:{entity.kind.value}:{entity.entity_id}"

    async def get(self, entity: EntityRef) -> Optional[Stats]:
        key = self._key(entity)
        start = time.perf_counter()
        try:
            raw = await self._client.get(key)
        except redis.RedisError as exc:
            logger.error(
                "Redis GET failed; treating as cache miss",
                extra={"cache_key": key, "error": str(exc)},
            )
            return None

        logger.debug(
            "Redis GET",
            extra={
                "cache_key": key,
                "hit": raw is not None,
                "latency_ms": (time.perf_counter() - start) * 1000.0,
            },
        )

        if raw is None:
            return None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding malformed cached stats", extra={"cache_key": key})
            return None

        if not isinstance(data, dict):
            return None
        return {str(k): float(v) for k, v in data.items()}

    async def set(self, entity: EntityRef, stats: Stats) -> None:
        key = self._key(entity)
        try:
            await self._client.setex(key, self._ttl, json.dumps(stats))
        except redis.RedisError as exc:
            logger.error(
                "Redis SETEX failed; stats not cached",
                extra={"cache_key": key, "error": str(exc)},
            )

    async def invalidate(self, entity: EntityRef) -> None:
        key = self._key(entity)
        try:
            await self._client.delete(key)
        except redis.RedisError as exc:
            logger.error(
                "Redis DELETE failed during invalidation",
                extra={"cache_key": key, "error": str(exc)},
            )

    async def clear(self) -> None:
        """Delete every key under this cache's prefix."""
        try:
            keys = [key async for key in self._client.scan_iter(match=f"{self._prefix}:*")]
            if keys:
                await self._client.delete(*keys)
        except redis.RedisError as exc:
            logger.error(
                "Redis clear failed",
                extra={"key_prefix": self._prefix, "error": str(exc)},
            )

    async def close(self) -> None:
        await self._client.aclose()


# ============================================================================
# Cached source
# ============================================================================


class CachedStatsSource:
    """
    Stats source decorator that consults a cache before the wrapped source.

    Call ``invalidate(entity)`` whenever an entity's raw stats change.
    """

    def __init__(self, source: StatsSource, cache: StatsCache) -> None:
        self._source = source
        self._cache = cache

    async def get_stats(self, entity: EntityRef) -> Stats:
        cached = await self._cache.get(entity)
        if cached is not None:
            return cached

        stats = await self._source.get_stats(entity)
        await self._cache.set(entity, stats)
        return stats

    async def invalidate(self, entity: EntityRef) -> None:
        await self._cache.invalidate(entity)

    async def clear(self) -> None:
        await self._cache.clear()

    def __getattr__(self, item: str) -> Any:
        # Expose the wrapped source's extra queries (list_entities, get_town).
        return getattr(self._source, item)
