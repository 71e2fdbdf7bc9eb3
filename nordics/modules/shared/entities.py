"""
Entity identity shared by leveling, stats and achievements.

Players are keyed by Minecraft UUID and towns by town id. The two namespaces
are independent, so every reference carries its kind.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EntityKind(str, Enum):
    PLAYER = "player"
    TOWN = "town"

    @classmethod
    def parse(cls, value: "EntityKind | str") -> "EntityKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            from nordics.modules.shared.exceptions import InvalidInputError

            raise InvalidInputError(
                "entity_kind", f"must be one of {[k.value for k in cls]}, got {value!r}"
            ) from None


@dataclass(frozen=True)
class EntityRef:
    """A player or town that can earn XP and claim achievements."""

    kind: EntityKind
    entity_id: str

    @classmethod
    def player(cls, uuid: str) -> EntityRef:
        return cls(EntityKind.PLAYER, str(uuid))

    @classmethod
    def town(cls, town_id: "str | int") -> EntityRef:
        return cls(EntityKind.TOWN, str(town_id))

    @property
    def key(self) -> str:
        """Stable string form, e.g. ``player:069a79f4-...``."""
        return f"{self.kind.value}:{self.entity_id}"

    def __str__(self) -> str:
        return self.key
