"""
Base Repository Pattern

Purpose
-------
Type-safe, generic repository abstraction over SQLAlchemy 2.0 async sessions.
Repositories encapsulate data access and expose a consistent interface; the
caller owns the session and therefore the transaction.

Design Notes
------------
- Read helpers only; writes go through dialect upserts in the stores
- No row locks: concurrent claims are decided by unique keys and
  conditional updates
- Debug-level structured logging for every query

Usage
-----
    class TierRepository(BaseRepository[AchievementTier]):
        async def for_achievement(self, session, achievement_id):
            return await self.find_many_where(
                session, AchievementTier.achievement_id == achievement_id
            )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Generic base repository.

    Type Parameters:
        T: The SQLAlchemy model class this repository manages
    """

    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    async def get(self, session: AsyncSession, pk: Any) -> Optional[T]:
        """Get a single record by primary key."""
        instance = await session.get(self.model_class, pk)

        self.log.debug(
            f"Repository.get: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "pk": pk,
                "found": instance is not None,
            },
        )
        return instance

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
    ) -> Optional[T]:
        stmt = select(self.model_class).where(*conditions)

        result = await session.execute(stmt)
        instance = result.scalar_one_or_none()

        self.log.debug(
            f"Repository.find_one_where: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "found": instance is not None,
            },
        )
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Sequence[Any] = (),
        limit: Optional[int] = None,
    ) -> List[T]:
        """
        Find records matching conditions.

        Args:
            session: Database session
            *conditions: SQLAlchemy filter conditions
            order_by: Columns to order by
            limit: Optional maximum number of results
        """
        stmt = select(self.model_class).where(*conditions)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        instances = list(result.scalars().all())

        self.log.debug(
            f"Repository.find_many_where: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "found_count": len(instances),
                "limit": limit,
            },
        )
        return instances
