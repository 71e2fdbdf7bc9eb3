"""
Read-side boundaries of the achievement engine.

The engine never queries tables directly for stats or roles; it talks to
these protocols. ``SqlStatsSource`` and ``SqlRoleSource`` are the database
implementations; tests substitute in-memory fakes. Both retry transient
failures and surface what is left as ``TransientStoreError``.
"""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, runtime_checkable

from nordics.core.database.retry_policy import DatabaseRetryPolicy
from nordics.core.database.service import DatabaseService
from nordics.core.logging.logger import get_logger
from nordics.database.models import EntityStats, Town, UserProfile
from nordics.modules.achievements.stats import (
    Stats,
    derive_town_stats,
    normalize_player_stats,
)
from nordics.modules.achievements.store import run_store_operation
from nordics.modules.shared.base_repository import BaseRepository
from nordics.modules.shared.entities import EntityKind, EntityRef

logger = get_logger(__name__)


@runtime_checkable
class StatsSource(Protocol):
    async def get_stats(self, entity: EntityRef) -> Stats: ...


@runtime_checkable
class RoleSource(Protocol):
    async def get_role(self, user_id: str) -> Optional[str]: ...


class SqlStatsSource:
    """
    Stats from ``entity_stats`` (players) and ``towns`` (towns).

    Player documents are flattened and unit-converted; town stats are
    derived from the town row. Unknown entities read as empty stats.
    """

    def __init__(self, retry_policy: Optional[DatabaseRetryPolicy] = None) -> None:
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()
        self._stats_repo = BaseRepository(EntityStats, logger)
        self._town_repo = BaseRepository(Town, logger)

    async def get_stats(self, entity: EntityRef) -> Stats:
        async def _load() -> Stats:
            async with DatabaseService.get_session() as session:
                if entity.kind is EntityKind.TOWN:
                    town = await self._town_repo.get(session, entity.entity_id)
                    return derive_town_stats(town) if town is not None else {}

                row = await self._stats_repo.find_one_where(
                    session,
                    EntityStats.entity_kind == entity.kind.value,
                    EntityStats.entity_id == entity.entity_id,
                )
                if row is None:
                    return {}
                return normalize_player_stats(row.stats)

        return await run_store_operation(
            self._retry,
            _load,
            operation_name="stats.get_stats",
            context={"entity_kind": entity.kind.value, "entity_id": entity.entity_id},
        )

    async def get_town(self, town_id: str) -> Optional[Town]:
        async def _load() -> Optional[Town]:
            async with DatabaseService.get_session() as session:
                return await self._town_repo.get(session, town_id)

        return await run_store_operation(
            self._retry,
            _load,
            operation_name="stats.get_town",
            context={"town_id": town_id},
        )

    async def list_entities(self, kind: EntityKind | str) -> List[EntityRef]:
        """Every entity of ``kind`` that has stats to evaluate."""
        entity_kind = EntityKind.parse(kind)

        async def _load() -> List[EntityRef]:
            async with DatabaseService.get_session() as session:
                if entity_kind is EntityKind.TOWN:
                    towns = await self._town_repo.find_many_where(session, order_by=[Town.id])
                    return [EntityRef.town(t.id) for t in towns]

                rows = await self._stats_repo.find_many_where(
                    session,
                    EntityStats.entity_kind == entity_kind.value,
                    order_by=[EntityStats.entity_id],
                )
                return [EntityRef(entity_kind, r.entity_id) for r in rows]

        return await run_store_operation(
            self._retry,
            _load,
            operation_name="stats.list_entities",
            context={"entity_kind": entity_kind.value},
        )


class SqlRoleSource:
    """Caller roles and linked Minecraft accounts from ``user_profiles``."""

    def __init__(self, retry_policy: Optional[DatabaseRetryPolicy] = None) -> None:
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()
        self._repo = BaseRepository(UserProfile, logger)

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        async def _load() -> Optional[UserProfile]:
            async with DatabaseService.get_session() as session:
                return await self._repo.get(session, user_id)

        return await run_store_operation(
            self._retry,
            _load,
            operation_name="roles.get_profile",
            context={"user_id": user_id},
        )

    async def get_role(self, user_id: str) -> Optional[str]:
        profile = await self.get_profile(user_id)
        return profile.role if profile is not None else None

    async def get_minecraft_username(self, user_id: str) -> Optional[str]:
        profile: Any = await self.get_profile(user_id)
        return profile.minecraft_username if profile is not None else None
