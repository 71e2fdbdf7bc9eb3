"""
Result types returned by the achievement engine.

``ClaimResult`` is the only thing ``claim`` / ``admin_claim`` ever return:
every expected failure is folded into it with a stable ``error_code``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from nordics.modules.shared.exceptions import NordicsDomainException


class AchievementState(str, Enum):
    LOCKED = "locked"
    REACHED = "reached"
    CLAIMED = "claimed"


def derive_state(current_value: float, threshold: float, unlocked: Optional[Any]) -> AchievementState:
    """
    State of one tier for one entity.

    A claimed row is ``CLAIMED`` regardless of the current value, so a stat
    rollback never takes back a claimed tier.
    """
    if unlocked is not None and getattr(unlocked, "is_claimed", False):
        return AchievementState.CLAIMED
    if current_value >= threshold:
        return AchievementState.REACHED
    return AchievementState.LOCKED


@dataclass(frozen=True)
class ClaimableAchievement:
    tier_id: str
    achievement_id: str
    current_value: float
    threshold: float
    is_claimable: bool
    achievement_name: str = ""
    tier_name: str = ""
    tier_description: str = ""
    tier_number: int = 0
    points: int = 0
    state: AchievementState = AchievementState.LOCKED

    @property
    def progress(self) -> float:
        if self.threshold <= 0:
            return 100.0
        return round(min(100.0, max(0.0, self.current_value / self.threshold * 100.0)), 2)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["progress"] = self.progress
        return data


@dataclass(frozen=True)
class ClaimWriteResult:
    """Outcome of the store's atomic claim transaction."""

    ok: bool
    already_claimed: bool
    new_total_xp: int


@dataclass(frozen=True)
class ClaimResult:
    success: bool
    xp_awarded: int = 0
    new_total_xp: Optional[int] = None
    new_level: Optional[int] = None
    achievement_name: Optional[str] = None
    tier_name: Optional[str] = None
    message: str = ""
    error_code: Optional[str] = None
    retryable: bool = False
    leveled_up: bool = False

    @classmethod
    def from_error(
        cls,
        exc: NordicsDomainException,
        *,
        achievement_name: Optional[str] = None,
        tier_name: Optional[str] = None,
    ) -> ClaimResult:
        return cls(
            success=False,
            achievement_name=achievement_name,
            tier_name=tier_name,
            message=exc.message,
            error_code=exc.error_code,
            retryable=exc.is_retryable,
        )

    @property
    def is_neutral(self) -> bool:
        """A repeat claim: nothing changed and nothing went wrong."""
        return not self.success and self.error_code == "ALREADY_CLAIMED"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AchievementSummary:
    entity_kind: str
    entity_id: str
    total_tiers: int
    claimed_count: int
    claimable_count: int
    points_earned: int
    completion_percentage: float
    highest_tiers: Dict[str, str] = field(default_factory=dict)
    achievements: List[ClaimableAchievement] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "total_tiers": self.total_tiers,
            "claimed_count": self.claimed_count,
            "claimable_count": self.claimable_count,
            "points_earned": self.points_earned,
            "completion_percentage": self.completion_percentage,
            "highest_tiers": dict(self.highest_tiers),
            "achievements": [a.to_dict() for a in self.achievements],
        }
