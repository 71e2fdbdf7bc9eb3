"""
Leveling schema: level curves and per-entity XP.
Schema only.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nordics.core.database.base import Base, IdMixin, TimestampMixin


class LevelDefinitionRow(Base, IdMixin, TimestampMixin):
    """
    One row of a level curve. ``kind`` separates the player and town curves.
    """

    __tablename__ = "level_definitions"
    __table_args__ = (
        UniqueConstraint("kind", "level", name="uq_level_definitions_kind_level"),
    )

    kind: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    xp_required: Mapped[int] = mapped_column(BigInteger, nullable=False)

    title: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<LevelDefinitionRow(kind='{self.kind}', level={self.level}, "
            f"xp_required={self.xp_required})>"
        )


class EntityProgression(Base, IdMixin, TimestampMixin):
    """
    Accumulated XP and cached level for one player or town.

    ``total_xp`` only ever changes through ``total_xp = total_xp + :amount``;
    ``level`` is recomputed from the curve in the same transaction.
    """

    __tablename__ = "entity_progression"
    __table_args__ = (
        UniqueConstraint(
            "entity_kind", "entity_id", name="uq_entity_progression_entity"
        ),
        Index("ix_entity_progression_kind_xp", "entity_kind", "total_xp"),
    )

    entity_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<EntityProgression({self.entity_kind}:{self.entity_id}, "
            f"total_xp={self.total_xp}, level={self.level})>"
        )
