"""
Seed level curves and achievement definitions from YAML into the database.

Every write is an upsert keyed on the natural key (``(kind, level)`` for
levels, ``id`` for definitions and tiers), so running the seeder again only
refreshes names, thresholds and points. Unlock rows are never touched.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from nordics.core.config.manager import ConfigManager
from nordics.core.database.base import utcnow
from nordics.core.database.service import DatabaseService
from nordics.core.logging.logger import get_logger
from nordics.database.models import (
    AchievementDefinitionRow,
    AchievementTierRow,
    LevelDefinitionRow,
)
from nordics.modules.achievements.catalog import YamlAchievementDefinitionSource
from nordics.modules.achievements.definitions import AchievementDefinition
from nordics.modules.leveling.catalog import YamlLevelDefinitionSource
from nordics.modules.leveling.curve import LevelDefinition
from nordics.modules.shared.entities import EntityKind

logger = get_logger(__name__)


def _insert() -> Callable[..., Any]:
    return pg_insert if DatabaseService.dialect_name() == "postgresql" else sqlite_insert


class DefinitionSeeder:
    def __init__(self, config_manager: Any = ConfigManager) -> None:
        self._levels = YamlLevelDefinitionSource(config_manager)
        self._achievements = YamlAchievementDefinitionSource(config_manager)

    async def _upsert_levels(
        self, session: AsyncSession, kind: EntityKind, definitions: Iterable[LevelDefinition]
    ) -> int:
        rows = [
            {
                "kind": kind.value,
                "level": d.level,
                "xp_required": d.xp_required,
                "title": d.title,
                "description": d.description,
                "color": d.color,
            }
            for d in definitions
        ]
        if not rows:
            return 0

        stmt = _insert()(LevelDefinitionRow).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["kind", "level"],
            set_={
                "xp_required": stmt.excluded.xp_required,
                "title": stmt.excluded.title,
                "description": stmt.excluded.description,
                "color": stmt.excluded.color,
                "updated_at": utcnow(),
            },
        )
        await session.execute(stmt)
        return len(rows)

    async def _upsert_achievements(
        self, session: AsyncSession, kind: EntityKind, definitions: List[AchievementDefinition]
    ) -> Dict[str, int]:
        if not definitions:
            return {"definitions": 0, "tiers": 0}

        insert = _insert()
        def_stmt = insert(AchievementDefinitionRow).values(
            [
                {
                    "id": d.id,
                    "kind": kind.value,
                    "name": d.name,
                    "description": d.description,
                    "stat": d.stat,
                    "color": d.color,
                    "sort_order": position,
                }
                for position, d in enumerate(definitions)
            ]
        )
        def_stmt = def_stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "kind": def_stmt.excluded.kind,
                "name": def_stmt.excluded.name,
                "description": def_stmt.excluded.description,
                "stat": def_stmt.excluded.stat,
                "color": def_stmt.excluded.color,
                "sort_order": def_stmt.excluded.sort_order,
                "updated_at": utcnow(),
            },
        )
        await session.execute(def_stmt)

        tiers = [
            {
                "id": t.id,
                "achievement_id": d.id,
                "tier_number": t.tier_number,
                "name": t.name,
                "description": t.description,
                "threshold": t.threshold,
                "icon": t.icon,
                "points": t.points,
            }
            for d in definitions
            for t in d.tiers
        ]
        tier_stmt = insert(AchievementTierRow).values(tiers)
        tier_stmt = tier_stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "tier_number": tier_stmt.excluded.tier_number,
                "name": tier_stmt.excluded.name,
                "description": tier_stmt.excluded.description,
                "threshold": tier_stmt.excluded.threshold,
                "icon": tier_stmt.excluded.icon,
                "points": tier_stmt.excluded.points,
                "updated_at": utcnow(),
            },
        )
        await session.execute(tier_stmt)
        return {"definitions": len(definitions), "tiers": len(tiers)}

    async def seed_all(self, kinds: Optional[Iterable[EntityKind | str]] = None) -> Dict[str, Dict[str, int]]:
        """
        Upsert levels, definitions and tiers for ``kinds`` (default: all)
        in one transaction. Returns per-kind counts.
        """
        selected = [EntityKind.parse(k) for k in kinds] if kinds else list(EntityKind)
        report: Dict[str, Dict[str, int]] = {}

        # Parse everything before writing so a bad catalog writes nothing.
        levels = {k: await self._levels.get_level_definitions(k) for k in selected}
        achievements = {k: await self._achievements.get_achievement_definitions(k) for k in selected}

        async with DatabaseService.get_transaction() as session:
            for kind in selected:
                level_count = await self._upsert_levels(session, kind, levels[kind])
                counts = await self._upsert_achievements(session, kind, achievements[kind])
                report[kind.value] = {"levels": level_count, **counts}

        logger.info("Progression definitions seeded", extra={"report": report})
        return report
