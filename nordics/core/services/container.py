"""
Service Container
=================

Purpose
-------
Wire the progression stack together: database, event bus, stats cache,
definition sources, level curves, store, authorizer and the achievement
engine.

Responsibilities
----------------
- Initialize infrastructure in order (config, database, cache)
- Build domain services with their collaborators injected
- Tear everything down in reverse order

Non-Responsibilities
--------------------
- Business logic (AchievementEngine)
- Schema migrations (``DatabaseService.create_all`` is for dev and tests)

Architecture Notes
------------------
- The stats cache backend is chosen by ``progression.stats_cache.backend``
  (``memory`` or ``redis``).
- Accessors raise until ``initialize()`` has completed.
"""

from __future__ import annotations

import time
from dataclasses import asdict
from typing import TYPE_CHECKING, Any, Dict, Optional

from nordics.core.cache.stats_cache import (
    CachedStatsSource,
    MemoryStatsCache,
    RedisStatsCache,
    StatsCache,
)
from nordics.core.config.config import Config
from nordics.core.config.manager import ConfigManager
from nordics.core.database.retry_policy import DatabaseRetryPolicy
from nordics.core.database.service import DatabaseService
from nordics.core.event.bus import EventBus
from nordics.core.logging.logger import get_logger, get_logging_health
from nordics.modules.achievements.authorization import ClaimAuthorizer
from nordics.modules.achievements.catalog import SqlAchievementDefinitionSource
from nordics.modules.achievements.engine import AchievementEngine
from nordics.modules.achievements.sources import SqlRoleSource, SqlStatsSource
from nordics.modules.achievements.store import SqlAchievementStore
from nordics.modules.leveling.catalog import LevelCurveRegistry, SqlLevelDefinitionSource

if TYPE_CHECKING:
    from logging import Logger


class ServiceContainer:
    """
    Usage:
        container = ServiceContainer()
        await container.initialize()
        result = await container.achievements.claim(EntityRef.player(uuid), "playtime_tier_1")
        await container.shutdown()
    """

    def __init__(
        self,
        config_manager: Any = ConfigManager,
        event_bus: Optional[EventBus] = None,
        logger: Optional[Logger] = None,
        *,
        database_url: Optional[str] = None,
    ) -> None:
        self._config_manager = config_manager
        self._event_bus = event_bus or EventBus(config_manager)
        self._logger = logger or get_logger(__name__)
        self._database_url = database_url

        self._stats_cache: Optional[StatsCache] = None
        self._stats_source: Optional[CachedStatsSource] = None
        self._curves: Optional[LevelCurveRegistry] = None
        self._store: Optional[SqlAchievementStore] = None
        self._achievements: Optional[AchievementEngine] = None

        self._initialized = False
        self._init_seconds: Optional[float] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def _build_cache(self) -> StatsCache:
        backend = str(self._config_manager.get("progression.stats_cache.backend", "memory")).lower()
        ttl = int(
            self._config_manager.get("progression.stats_cache.ttl_seconds", Config.STATS_CACHE_TTL_SECONDS)
        )
        if backend == "redis":
            return RedisStatsCache.from_url(
                Config.REDIS_URL,
                ttl_seconds=ttl,
                key_prefix=str(
                    self._config_manager.get("progression.stats_cache.key_prefix", "nordics:v1:stats")
                ),
            )
        return MemoryStatsCache(ttl_seconds=ttl)

    async def initialize(self) -> None:
        if self._initialized:
            self._logger.warning("ServiceContainer already initialized")
            return

        start = time.perf_counter()
        self._logger.info("Service container initialization starting...")

        try:
            await self._config_manager.initialize()
            await DatabaseService.initialize(url=self._database_url)

            self._stats_cache = self._build_cache()
            self._stats_source = CachedStatsSource(SqlStatsSource(), self._stats_cache)
            self._curves = LevelCurveRegistry(SqlLevelDefinitionSource(), self._config_manager)
            self._store = SqlAchievementStore(DatabaseRetryPolicy.from_config())

            self._achievements = AchievementEngine(
                store=self._store,
                stats_source=self._stats_source,
                definition_source=SqlAchievementDefinitionSource(),
                curves=self._curves,
                authorizer=ClaimAuthorizer(SqlRoleSource(), self._config_manager),
                config_manager=self._config_manager,
                event_bus=self._event_bus,
                logger=get_logger(f"{AchievementEngine.__module__}.{AchievementEngine.__name__}"),
            )

            self._init_seconds = round(time.perf_counter() - start, 3)
            self._initialized = True
            self._logger.info(
                "Service container initialized successfully",
                extra={
                    "total_time_seconds": self._init_seconds,
                    "cache_backend": type(self._stats_cache).__name__,
                },
            )

        except Exception as e:
            self._logger.critical(
                "Service container initialization failed",
                exc_info=True,
                extra={"error": str(e)},
            )
            raise

    async def shutdown(self) -> None:
        if not self._initialized:
            return

        self._logger.info("Shutting down service container...")
        await self._event_bus.drain()
        if isinstance(self._stats_cache, RedisStatsCache):
            await self._stats_cache.close()
        await DatabaseService.shutdown()

        self._initialized = False
        self._logger.info("Service container shut down")

    async def health_check(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "database": await DatabaseService.health_check() if self._initialized else False,
            "total_init_time_seconds": self._init_seconds,
            "event_listener_errors": self._event_bus.error_count,
            "logging": asdict(get_logging_health()),
        }

    # ========================================================================
    # Accessors
    # ========================================================================

    def _require(self, value: Any, name: str) -> Any:
        if not self._initialized or value is None:
            raise RuntimeError(f"ServiceContainer not initialized; cannot access {name}")
        return value

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def achievements(self) -> AchievementEngine:
        return self._require(self._achievements, "achievements")

    @property
    def level_curves(self) -> LevelCurveRegistry:
        return self._require(self._curves, "level_curves")

    @property
    def stats(self) -> CachedStatsSource:
        return self._require(self._stats_source, "stats")

    @property
    def store(self) -> SqlAchievementStore:
        return self._require(self._store, "store")

    @property
    def is_initialized(self) -> bool:
        return self._initialized
