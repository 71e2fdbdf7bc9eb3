"""
Achievement value types: definitions, tiers and unlock records.

Tiers of one definition are ordered strictly by tier number and by
threshold together; ``AchievementDefinition`` enforces that at
construction through ``validate_definition``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from nordics.core.exceptions import InvalidAchievementCatalogError
from nordics.modules.shared.entities import EntityKind


def tier_id_for(achievement_id: str, tier_number: int) -> str:
    return f"{achievement_id}_tier_{tier_number}"


@dataclass(frozen=True)
class AchievementTier:
    id: str
    achievement_id: str
    tier_number: int
    threshold: float
    points: int
    name: str
    description: str = ""
    icon: Optional[str] = None


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    kind: EntityKind
    name: str
    stat: str
    tiers: Tuple[AchievementTier, ...]
    description: str = ""
    color: Optional[str] = None

    def tier(self, tier_id: str) -> Optional[AchievementTier]:
        for tier in self.tiers:
            if tier.id == tier_id:
                return tier
        return None

    @property
    def max_points(self) -> int:
        return sum(tier.points for tier in self.tiers)


@dataclass(frozen=True)
class UnlockedAchievement:
    """Persisted unlock record. ``is_claimed`` never reverts."""

    entity_kind: EntityKind
    entity_id: str
    tier_id: str
    unlocked_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    is_claimed: bool = False
    claimed_by: Optional[str] = None


def validate_definition(definition: AchievementDefinition) -> AchievementDefinition:
    """
    Check tier invariants for one definition.

    Raises:
        InvalidAchievementCatalogError: on empty tiers, foreign tiers,
            duplicate ids, negative points or misordered thresholds
    """
    if not definition.id:
        raise InvalidAchievementCatalogError("<unnamed>", "achievement id is required")
    if not definition.stat:
        raise InvalidAchievementCatalogError(definition.id, "stat is required")
    if not definition.tiers:
        raise InvalidAchievementCatalogError(definition.id, "at least one tier is required")

    seen_ids: set[str] = set()
    previous: Optional[AchievementTier] = None
    for tier in definition.tiers:
        if tier.achievement_id != definition.id:
            raise InvalidAchievementCatalogError(
                definition.id, f"tier {tier.id} belongs to {tier.achievement_id}"
            )
        if tier.id in seen_ids:
            raise InvalidAchievementCatalogError(definition.id, f"duplicate tier id {tier.id}")
        seen_ids.add(tier.id)

        if tier.points < 0:
            raise InvalidAchievementCatalogError(
                definition.id, f"tier {tier.tier_number} has negative points"
            )
        if tier.threshold < 0:
            raise InvalidAchievementCatalogError(
                definition.id, f"tier {tier.tier_number} has a negative threshold"
            )

        if previous is not None:
            if tier.tier_number <= previous.tier_number:
                raise InvalidAchievementCatalogError(
                    definition.id,
                    f"tier numbers must strictly increase ({previous.tier_number} -> {tier.tier_number})",
                )
            if tier.threshold <= previous.threshold:
                raise InvalidAchievementCatalogError(
                    definition.id,
                    f"thresholds must strictly increase with tier number "
                    f"(tier {tier.tier_number}: {tier.threshold:g} <= {previous.threshold:g})",
                )
        previous = tier

    return definition


@dataclass
class AchievementCatalog:
    """Definitions of one kind, indexed by tier id."""

    kind: EntityKind
    definitions: List[AchievementDefinition] = field(default_factory=list)
    _by_tier: Dict[str, Tuple[AchievementDefinition, AchievementTier]] = field(
        default_factory=dict, init=False, repr=False
    )

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for definition in self.definitions:
            if definition.id in seen:
                raise InvalidAchievementCatalogError(definition.id, "duplicate achievement id")
            seen.add(definition.id)
            for tier in definition.tiers:
                if tier.id in self._by_tier:
                    raise InvalidAchievementCatalogError(
                        definition.id, f"tier id {tier.id} is used twice in the catalog"
                    )
                self._by_tier[tier.id] = (definition, tier)

    @classmethod
    def build(
        cls, kind: EntityKind, definitions: Iterable[AchievementDefinition]
    ) -> AchievementCatalog:
        return cls(kind=kind, definitions=[validate_definition(d) for d in definitions])

    def resolve(self, tier_id: str) -> Optional[Tuple[AchievementDefinition, AchievementTier]]:
        return self._by_tier.get(tier_id)

    @property
    def total_tiers(self) -> int:
        return len(self._by_tier)

    def __iter__(self):
        return iter(self.definitions)

    def __len__(self) -> int:
        return len(self.definitions)
