"""
Achievement schema: definitions, tiers, per-entity unlocks and the claim audit.
Schema only.

The unique key on ``unlocked_achievements (entity_kind, entity_id, tier_id)``
is the idempotency guard for claims: inserts use ON CONFLICT DO NOTHING and
the claim flips ``is_claimed`` with a conditional UPDATE.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nordics.core.database.base import Base, IdMixin, TimestampMixin, utcnow


class AchievementDefinitionRow(Base, TimestampMixin):
    __tablename__ = "achievement_definitions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stat: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    tiers: Mapped[list["AchievementTierRow"]] = relationship(
        back_populates="achievement",
        cascade="all, delete-orphan",
        order_by="AchievementTierRow.tier_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<AchievementDefinitionRow(id='{self.id}', kind='{self.kind}')>"


class AchievementTierRow(Base, TimestampMixin):
    """One tier of a definition. ``id`` is ``"{achievement_id}_tier_{n}"``."""

    __tablename__ = "achievement_tiers"
    __table_args__ = (
        UniqueConstraint(
            "achievement_id", "tier_number", name="uq_achievement_tiers_achievement_tier"
        ),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    achievement_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("achievement_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tier_number: Mapped[int] = mapped_column(Integer, nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    achievement: Mapped[AchievementDefinitionRow] = relationship(back_populates="tiers")

    def __repr__(self) -> str:
        return (
            f"<AchievementTierRow(id='{self.id}', threshold={self.threshold}, "
            f"points={self.points})>"
        )


class UnlockedAchievementRow(Base, IdMixin):
    """
    A tier an entity has reached, and whether it has been claimed.

    Rows are never deleted. ``is_claimed`` only moves false -> true.
    """

    __tablename__ = "unlocked_achievements"
    __table_args__ = (
        UniqueConstraint(
            "entity_kind",
            "entity_id",
            "tier_id",
            name="uq_unlocked_achievements_entity_tier",
        ),
        Index("ix_unlocked_achievements_entity", "entity_kind", "entity_id"),
    )

    entity_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tier_id: Mapped[str] = mapped_column(String(128), nullable=False)

    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_claimed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    claimed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<UnlockedAchievementRow({self.entity_kind}:{self.entity_id}, "
            f"tier_id='{self.tier_id}', is_claimed={self.is_claimed})>"
        )


class AchievementClaimAudit(Base, IdMixin):
    """Append-only record of every successful claim."""

    __tablename__ = "achievement_claim_audit"
    __table_args__ = (
        Index("ix_achievement_claim_audit_entity", "entity_kind", "entity_id"),
        Index("ix_achievement_claim_audit_actor", "actor_id"),
    )

    entity_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tier_id: Mapped[str] = mapped_column(String(128), nullable=False)

    xp_awarded: Mapped[int] = mapped_column(Integer, nullable=False)
    new_total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    new_level: Mapped[int] = mapped_column(Integer, nullable=False)

    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_admin_claim: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
