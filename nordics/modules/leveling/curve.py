"""
LevelCurve: map total XP to a level and progress within it.

Purpose
-------
Pure, deterministic level calculation over a data-driven table of level
floors. The same algorithm serves the 15-level player curve and the town
curve (50 levels by default); nothing here depends on table length or
spacing.

Responsibilities
----------------
- Validate a level table once, at construction
- ``calculate_level(total_xp)``: resolve the level, XP into it, XP span to
  the next level, and a clamped percentage
- Floor lookups (``xp_to_reach``) and display metadata per level

Non-Responsibilities
--------------------
- Loading tables (``nordics.modules.leveling.catalog``)
- Persisting levels (the achievement store writes the recomputed level)

Design Notes
------------
- ``calculate_level`` never raises. Negative, NaN, infinite, ``None`` and
  non-numeric inputs all count as 0 XP.
- At the top level there is no next floor, so the span is a fixed constant
  (``MAX_LEVEL_SPAN``) and progress is measured against it.
"""

from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Union

from nordics.core.exceptions import InvalidLevelTableError

DEFAULT_COLOR = "#3b82f6"

Xp = Union[int, float]
DEFAULT_DESCRIPTION = "Current level"


@dataclass(frozen=True)
class LevelDefinition:
    level: int
    xp_required: int
    title: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None

    @property
    def display_title(self) -> str:
        return self.title or f"Level {self.level}"

    @property
    def display_description(self) -> str:
        return self.description or DEFAULT_DESCRIPTION

    @property
    def display_color(self) -> str:
        return self.color or DEFAULT_COLOR


@dataclass(frozen=True)
class LevelInfo:
    """
    Result of ``LevelCurve.calculate_level``.

    ``progress`` is a percentage in [0, 100] rounded to 2 decimals. XP fields
    are ints for whole amounts; fractional input keeps its fraction.
    """

    level: int
    total_xp: Xp
    xp_in_current_level: Xp
    xp_for_next_level: int
    progress: float
    title: str = ""
    description: str = DEFAULT_DESCRIPTION
    color: str = DEFAULT_COLOR

    @property
    def xp_remaining(self) -> Xp:
        return max(0, self.xp_for_next_level - self.xp_in_current_level)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "total_xp": self.total_xp,
            "xp_in_current_level": self.xp_in_current_level,
            "xp_for_next_level": self.xp_for_next_level,
            "progress": self.progress,
            "title": self.title,
            "description": self.description,
            "color": self.color,
        }


def _sanitize_xp(value: Any) -> Xp:
    """Coerce arbitrary input to a finite, non-negative XP amount; whole amounts become ``int``."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    try:
        xp = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if math.isnan(xp) or math.isinf(xp) or xp < 0:
        return 0
    return int(xp) if xp.is_integer() else xp


class LevelCurve:
    """
    Immutable level table plus the level calculation over it.

    Build with ``LevelCurve(definitions)`` or ``LevelCurve.from_definitions``
    (which also accepts mappings such as YAML rows).
    """

    MAX_LEVEL_SPAN: int = 100_000

    __slots__ = ("kind", "_definitions", "_floors", "_max_level_span")

    def __init__(
        self,
        definitions: Sequence[LevelDefinition],
        *,
        kind: str = "player",
        max_level_span: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self._definitions: tuple[LevelDefinition, ...] = tuple(definitions)
        self._max_level_span = int(
            max_level_span if max_level_span is not None else self.MAX_LEVEL_SPAN
        )
        self._validate()
        self._floors: tuple[int, ...] = tuple(d.xp_required for d in self._definitions)

    @classmethod
    def from_definitions(
        cls,
        rows: Iterable[LevelDefinition | dict[str, Any]],
        *,
        kind: str = "player",
        max_level_span: Optional[int] = None,
    ) -> LevelCurve:
        definitions: list[LevelDefinition] = []
        for row in rows:
            if isinstance(row, LevelDefinition):
                definitions.append(row)
                continue
            try:
                definitions.append(
                    LevelDefinition(
                        level=int(row["level"]),
                        xp_required=int(row["xp_required"]),
                        title=row.get("title"),
                        description=row.get("description"),
                        color=row.get("color"),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise InvalidLevelTableError(kind, f"malformed row {row!r}: {exc}") from exc

        definitions.sort(key=lambda d: d.level)
        return cls(definitions, kind=kind, max_level_span=max_level_span)

    def _validate(self) -> None:
        defs = self._definitions
        if not defs:
            raise InvalidLevelTableError(self.kind, "table is empty")
        if defs[0].xp_required != 0:
            raise InvalidLevelTableError(
                self.kind, f"first level must require 0 XP, got {defs[0].xp_required}"
            )
        if self._max_level_span <= 0:
            raise InvalidLevelTableError(self.kind, "max level span must be positive")

        for prev, cur in zip(defs, defs[1:]):
            if cur.level <= prev.level:
                raise InvalidLevelTableError(
                    self.kind, f"levels must be unique and ascending at level {cur.level}"
                )
            if cur.xp_required <= prev.xp_required:
                raise InvalidLevelTableError(
                    self.kind,
                    f"xp_required must strictly increase at level {cur.level} "
                    f"({cur.xp_required} <= {prev.xp_required})",
                )

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    @property
    def definitions(self) -> tuple[LevelDefinition, ...]:
        return self._definitions

    @property
    def max_level(self) -> int:
        return self._definitions[-1].level

    @property
    def min_level(self) -> int:
        return self._definitions[0].level

    @property
    def max_level_span(self) -> int:
        return self._max_level_span

    def definition_for(self, level: int) -> Optional[LevelDefinition]:
        for definition in self._definitions:
            if definition.level == level:
                return definition
        return None

    def xp_to_reach(self, level: int) -> int:
        """Floor XP of ``level``; levels outside the table clamp to its ends."""
        if level <= self.min_level:
            return self._floors[0]
        if level >= self.max_level:
            return self._floors[-1]
        definition = self.definition_for(level)
        if definition is None:
            raise InvalidLevelTableError(self.kind, f"no level {level} in table")
        return definition.xp_required

    # ------------------------------------------------------------------ #
    # Calculation
    # ------------------------------------------------------------------ #

    def calculate_level(self, total_xp: Any) -> LevelInfo:
        """
        Resolve the level for ``total_xp``.

        Selects the greatest level whose floor is <= total_xp. Never raises.
        """
        xp = _sanitize_xp(total_xp)

        # Floors strictly increase, so bisect finds the highest floor <= xp.
        index = max(bisect_right(self._floors, xp) - 1, 0)
        current = self._definitions[index]

        if index + 1 < len(self._definitions):
            span = self._definitions[index + 1].xp_required - current.xp_required
        else:
            span = self._max_level_span

        into = xp - current.xp_required
        progress = round(min(100.0, max(0.0, into / span * 100.0)), 2)

        return LevelInfo(
            level=current.level,
            total_xp=xp,
            xp_in_current_level=into,
            xp_for_next_level=span,
            progress=progress,
            title=current.display_title,
            description=current.display_description,
            color=current.display_color,
        )

    def level_for(self, total_xp: Any) -> int:
        return self.calculate_level(total_xp).level

    def __len__(self) -> int:
        return len(self._definitions)

    def __repr__(self) -> str:
        return f"<LevelCurve(kind='{self.kind}', levels={len(self)}, max_level={self.max_level})>"
