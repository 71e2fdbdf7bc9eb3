"""
Level curve sources and the shared curve registry.

Purpose
-------
Load level tables per entity kind and hand out validated, immutable
``LevelCurve`` instances.

Responsibilities
----------------
- ``YamlLevelDefinitionSource``: tables from ``config/levels/*.yaml`` via ConfigManager
- ``SqlLevelDefinitionSource``: the ``level_definitions`` table, falling back
  to YAML when the table is empty or the database is unreachable
- ``LevelCurveRegistry``: one cached curve per kind with explicit ``reload()``

Design Notes
------------
- Curves are validated at load time. A malformed table raises
  ``InvalidLevelTableError`` here and never from ``calculate_level``.
- Curves are shared read-only across requests.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError

from nordics.core.config.config import Config
from nordics.core.config.manager import ConfigManager
from nordics.core.database.service import DatabaseService
from nordics.core.exceptions import DatabaseNotInitializedError, InvalidLevelTableError
from nordics.core.logging.logger import get_logger
from nordics.database.models import LevelDefinitionRow
from nordics.modules.leveling.curve import LevelCurve, LevelDefinition
from nordics.modules.shared.base_repository import BaseRepository
from nordics.modules.shared.entities import EntityKind

logger = get_logger(__name__)


# ============================================================================
# Sources
# ============================================================================


@runtime_checkable
class LevelDefinitionSource(Protocol):
    async def get_level_definitions(self, kind: EntityKind | str) -> List[LevelDefinition]: ...


class YamlLevelDefinitionSource:
    """Level tables served by ConfigManager under ``levels.<kind>.definitions``."""

    def __init__(self, config_manager: Any = ConfigManager) -> None:
        self._config = config_manager

    async def get_level_definitions(self, kind: EntityKind | str) -> List[LevelDefinition]:
        kind_value = EntityKind.parse(kind).value
        rows = self._config.get(f"levels.{kind_value}.definitions", []) or []
        if not isinstance(rows, list):
            raise InvalidLevelTableError(kind_value, "definitions must be a list")
        return list(LevelCurve.from_definitions(rows, kind=kind_value).definitions)


class SqlLevelDefinitionSource:
    """
    Level tables from the ``level_definitions`` table.

    Falls back to ``fallback`` (YAML by default) when the table has no rows
    for the kind or the database cannot be reached.
    """

    def __init__(self, fallback: Optional[LevelDefinitionSource] = None) -> None:
        self._fallback = fallback or YamlLevelDefinitionSource()
        self._repo = BaseRepository(LevelDefinitionRow, logger)
        self._model = LevelDefinitionRow

    async def get_level_definitions(self, kind: EntityKind | str) -> List[LevelDefinition]:
        kind_value = EntityKind.parse(kind).value

        try:
            async with DatabaseService.get_session() as session:
                rows = await self._repo.find_many_where(
                    session,
                    self._model.kind == kind_value,
                    order_by=[self._model.level],
                )
        except (SQLAlchemyError, DatabaseNotInitializedError) as exc:
            logger.warning(
                "Level definitions unavailable from database; using fallback",
                extra={"entity_kind": kind_value, "error_type": type(exc).__name__},
            )
            return await self._fallback.get_level_definitions(kind_value)

        if not rows:
            logger.info(
                "No level definitions in database; using fallback",
                extra={"entity_kind": kind_value},
            )
            return await self._fallback.get_level_definitions(kind_value)

        return [
            LevelDefinition(
                level=row.level,
                xp_required=int(row.xp_required),
                title=row.title,
                description=row.description,
                color=row.color,
            )
            for row in rows
        ]


# ============================================================================
# Registry
# ============================================================================


class LevelCurveRegistry:
    """
    Cache of validated curves, one per entity kind.

    Usage
    -----
    >>> registry = LevelCurveRegistry(SqlLevelDefinitionSource())
    >>> curve = await registry.get(EntityKind.TOWN)
    >>> curve.calculate_level(1200).level
    """

    def __init__(
        self,
        source: LevelDefinitionSource,
        config_manager: Any = ConfigManager,
    ) -> None:
        self._source = source
        self._config = config_manager
        self._curves: Dict[EntityKind, LevelCurve] = {}
        self._lock = asyncio.Lock()

    def _max_level_span(self, kind: EntityKind) -> int:
        value = self._config.get(f"levels.{kind.value}.max_level_span", None)
        if value is None:
            return int(Config.LEVEL_MAX_SPAN)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise InvalidLevelTableError(kind.value, f"invalid max_level_span {value!r}") from exc

    async def _load(self, kind: EntityKind) -> LevelCurve:
        definitions = await self._source.get_level_definitions(kind)
        curve = LevelCurve.from_definitions(
            definitions, kind=kind.value, max_level_span=self._max_level_span(kind)
        )
        logger.info(
            "Level curve loaded",
            extra={
                "entity_kind": kind.value,
                "levels": len(curve),
                "max_level": curve.max_level,
                "max_level_span": curve.max_level_span,
            },
        )
        return curve

    async def get(self, kind: EntityKind | str) -> LevelCurve:
        entity_kind = EntityKind.parse(kind)
        curve = self._curves.get(entity_kind)
        if curve is not None:
            return curve

        async with self._lock:
            curve = self._curves.get(entity_kind)
            if curve is None:
                curve = await self._load(entity_kind)
                self._curves[entity_kind] = curve
            return curve

    async def preload(self) -> None:
        for kind in EntityKind:
            await self.get(kind)

    async def reload(self, kind: Optional[EntityKind | str] = None) -> None:
        """Drop cached curves (all kinds, or one) so the next ``get`` reloads."""
        async with self._lock:
            if kind is None:
                self._curves.clear()
            else:
                self._curves.pop(EntityKind.parse(kind), None)
        logger.info(
            "Level curves invalidated",
            extra={"entity_kind": EntityKind.parse(kind).value if kind else "all"},
        )

    def register(self, curve: LevelCurve) -> None:
        """Install a prebuilt curve (tests and tooling)."""
        self._curves[EntityKind.parse(curve.kind)] = curve
