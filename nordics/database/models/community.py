"""
Community facts consumed by progression: raw stats snapshots, towns and
user profiles. Written by ingestion and account services; read here.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nordics.core.database.base import Base, IdMixin, JSONType, TimestampMixin, utcnow


class EntityStats(Base, IdMixin):
    """Latest raw stats document for one entity (nested JSON as ingested)."""

    __tablename__ = "entity_stats"
    __table_args__ = (
        UniqueConstraint("entity_kind", "entity_id", name="uq_entity_stats_entity"),
    )

    entity_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    stats: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class Town(Base, TimestampMixin):
    __tablename__ = "towns"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    mayor: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    population: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    nation_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_independent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    balance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    def __repr__(self) -> str:
        return f"<Town(id='{self.id}', name='{self.name}', mayor='{self.mayor}')>"


class UserProfile(Base, TimestampMixin):
    """Platform account: role for admin checks, linked Minecraft username."""

    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    role: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    minecraft_username: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    minecraft_uuid: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
