"""
Achievement definition catalog: YAML loading and definition sources.

Purpose
-------
Turn the YAML catalog under ``config/achievements/`` (or the
``achievement_definitions`` / ``achievement_tiers`` tables) into validated
``AchievementCatalog`` objects the engine can evaluate.

Responsibilities
----------------
- ``parse_definitions``: raw rows -> ``AchievementDefinition`` with tier ids
  defaulting to ``"<achievement_id>_tier_<n>"``
- ``load_catalog``: read one YAML file and validate tier ordering
- ``YamlAchievementDefinitionSource`` / ``SqlAchievementDefinitionSource``

Design Notes
------------
- Tier ordering (tier number and threshold increasing together) is checked
  here. The engine assumes a valid catalog.
- The SQL source falls back to YAML when the tables are empty or the
  database is unavailable, the same way level definitions do.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

import yaml
from sqlalchemy.exc import SQLAlchemyError

from nordics.core.config.manager import ConfigManager
from nordics.core.database.service import DatabaseService
from nordics.core.exceptions import (
    DatabaseNotInitializedError,
    InvalidAchievementCatalogError,
)
from nordics.core.logging.logger import get_logger
from nordics.database.models import AchievementDefinitionRow
from nordics.modules.achievements.definitions import (
    AchievementCatalog,
    AchievementDefinition,
    AchievementTier,
    tier_id_for,
    validate_definition,
)
from nordics.modules.shared.base_repository import BaseRepository
from nordics.modules.shared.entities import EntityKind

logger = get_logger(__name__)


# ============================================================================
# Parsing
# ============================================================================


def _parse_tier(achievement_id: str, raw: Dict[str, Any]) -> AchievementTier:
    try:
        tier_number = int(raw.get("tier", raw.get("tier_number")))
        threshold = float(raw["threshold"])
        points = int(raw.get("points", 0))
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidAchievementCatalogError(
            achievement_id, f"malformed tier {raw!r}: {exc}"
        ) from exc

    return AchievementTier(
        id=str(raw.get("id") or tier_id_for(achievement_id, tier_number)),
        achievement_id=achievement_id,
        tier_number=tier_number,
        threshold=threshold,
        points=points,
        name=str(raw.get("name") or f"Tier {tier_number}"),
        description=str(raw.get("description") or ""),
        icon=raw.get("icon"),
    )


def parse_definitions(
    rows: Iterable[Dict[str, Any]], kind: EntityKind | str
) -> List[AchievementDefinition]:
    """
    Build validated definitions from mapping rows.

    Tiers are sorted by tier number before validation, so a catalog may list
    them in any order; thresholds must still increase with the tier number.

    Raises:
        InvalidAchievementCatalogError: on malformed rows or tier ordering
    """
    entity_kind = EntityKind.parse(kind)
    definitions: List[AchievementDefinition] = []

    for raw in rows:
        if not isinstance(raw, dict):
            raise InvalidAchievementCatalogError("<unknown>", f"expected a mapping, got {raw!r}")
        achievement_id = str(raw.get("id") or "")
        if not achievement_id:
            raise InvalidAchievementCatalogError("<unnamed>", "achievement id is required")

        raw_tiers = raw.get("tiers") or []
        if not isinstance(raw_tiers, list):
            raise InvalidAchievementCatalogError(achievement_id, "tiers must be a list")
        tiers = sorted(
            (_parse_tier(achievement_id, t) for t in raw_tiers),
            key=lambda t: t.tier_number,
        )

        definitions.append(
            validate_definition(
                AchievementDefinition(
                    id=achievement_id,
                    kind=entity_kind,
                    name=str(raw.get("name") or achievement_id),
                    stat=str(raw.get("stat") or ""),
                    tiers=tuple(tiers),
                    description=str(raw.get("description") or ""),
                    color=raw.get("color"),
                )
            )
        )

    return definitions


def load_catalog(path: Path | str, kind: Optional[EntityKind | str] = None) -> AchievementCatalog:
    """
    Load and validate one catalog file.

    The file nests definitions under ``achievements.<kind>``. When ``kind``
    is omitted the file must contain exactly one kind.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            document = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise InvalidAchievementCatalogError(str(path), f"cannot read catalog: {exc}") from exc

    section = document.get("achievements") if isinstance(document, dict) else None
    if not isinstance(section, dict) or not section:
        raise InvalidAchievementCatalogError(str(path), "missing 'achievements' section")

    if kind is None:
        if len(section) != 1:
            raise InvalidAchievementCatalogError(
                str(path), f"file holds several kinds {sorted(section)}; pass kind"
            )
        kind = next(iter(section))

    entity_kind = EntityKind.parse(kind)
    rows = section.get(entity_kind.value) or []
    catalog = AchievementCatalog.build(entity_kind, parse_definitions(rows, entity_kind))

    logger.info(
        "Achievement catalog loaded",
        extra={
            "path": str(path),
            "entity_kind": entity_kind.value,
            "definitions": len(catalog),
            "tiers": catalog.total_tiers,
        },
    )
    return catalog


# ============================================================================
# Sources
# ============================================================================


@runtime_checkable
class AchievementDefinitionSource(Protocol):
    async def get_achievement_definitions(
        self, kind: EntityKind | str
    ) -> List[AchievementDefinition]: ...


class YamlAchievementDefinitionSource:
    """Definitions served by ConfigManager under ``achievements.<kind>``."""

    def __init__(self, config_manager: Any = ConfigManager) -> None:
        self._config = config_manager

    async def get_achievement_definitions(
        self, kind: EntityKind | str
    ) -> List[AchievementDefinition]:
        entity_kind = EntityKind.parse(kind)
        rows = self._config.get(f"achievements.{entity_kind.value}", []) or []
        if not isinstance(rows, list):
            raise InvalidAchievementCatalogError(entity_kind.value, "catalog must be a list")
        return parse_definitions(rows, entity_kind)


class SqlAchievementDefinitionSource:
    """Definitions from the database, with YAML fallback."""

    def __init__(self, fallback: Optional[AchievementDefinitionSource] = None) -> None:
        self._fallback = fallback or YamlAchievementDefinitionSource()
        self._repo = BaseRepository(AchievementDefinitionRow, logger)

    async def get_achievement_definitions(
        self, kind: EntityKind | str
    ) -> List[AchievementDefinition]:
        entity_kind = EntityKind.parse(kind)

        try:
            async with DatabaseService.get_session() as session:
                rows = await self._repo.find_many_where(
                    session,
                    AchievementDefinitionRow.kind == entity_kind.value,
                    order_by=[AchievementDefinitionRow.sort_order, AchievementDefinitionRow.id],
                )
                # Tiers are selectin-loaded; read them while the session is open.
                raw = [
                    {
                        "id": row.id,
                        "name": row.name,
                        "description": row.description,
                        "stat": row.stat,
                        "color": row.color,
                        "tiers": [
                            {
                                "id": tier.id,
                                "tier": tier.tier_number,
                                "name": tier.name,
                                "description": tier.description,
                                "threshold": tier.threshold,
                                "icon": tier.icon,
                                "points": tier.points,
                            }
                            for tier in row.tiers
                        ],
                    }
                    for row in rows
                ]
        except (SQLAlchemyError, DatabaseNotInitializedError) as exc:
            logger.warning(
                "Achievement definitions unavailable from database; using fallback",
                extra={"entity_kind": entity_kind.value, "error_type": type(exc).__name__},
            )
            return await self._fallback.get_achievement_definitions(entity_kind)

        if not raw:
            logger.info(
                "No achievement definitions in database; using fallback",
                extra={"entity_kind": entity_kind.value},
            )
            return await self._fallback.get_achievement_definitions(entity_kind)

        return parse_definitions(raw, entity_kind)
