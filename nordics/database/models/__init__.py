"""
Database Models Package
========================

SQLAlchemy 2.0 ORM models for Nordics progression. Models are schema-only;
importing this package registers every table on ``Base.metadata``.

- progression: level curves and per-entity XP
- achievements: definitions, tiers, unlocks and the claim audit
- community: stats snapshots, towns and user profiles
"""

from nordics.core.database.base import Base

from .achievements import (
    AchievementClaimAudit,
    AchievementDefinitionRow,
    AchievementTierRow,
    UnlockedAchievementRow,
)
from .community import EntityStats, Town, UserProfile
from .progression import EntityProgression, LevelDefinitionRow

__all__ = [
    "Base",
    "AchievementClaimAudit",
    "AchievementDefinitionRow",
    "AchievementTierRow",
    "UnlockedAchievementRow",
    "EntityStats",
    "Town",
    "UserProfile",
    "EntityProgression",
    "LevelDefinitionRow",
]
