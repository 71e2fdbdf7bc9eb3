"""
Achievement persistence: unlock rows, XP and the atomic claim.

Purpose
-------
Own every read and write the achievement engine makes against progression
tables. The claim is one database transaction; it and every read run through
``DatabaseRetryPolicy`` so transient failures retry the whole unit of work.

Claim transaction
-----------------
1. ``INSERT ... ON CONFLICT DO NOTHING`` the unlock row
2. ``UPDATE ... SET is_claimed = true WHERE is_claimed = false``;
   rowcount 0 means another claim won, and the transaction rolls back
3. ``INSERT ... ON CONFLICT DO UPDATE SET total_xp = total_xp + excluded``
   returning the new total
4. persist the level recomputed from the new total
5. append an ``achievement_claim_audit`` row

The unique key on ``(entity_kind, entity_id, tier_id)`` plus the
conditional update serialise concurrent claims without client-side locks.

Error translation
-----------------
- ``AlreadyClaimedError`` inside the transaction -> ``ClaimWriteResult(already_claimed=True)``
- ``IntegrityError`` -> ``DatabaseError`` (not retried, not transient)
- any other SQLAlchemy error after retries, on reads and writes -> ``TransientStoreError``
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nordics.core.database.base import utcnow
from nordics.core.database.retry_policy import DatabaseRetryPolicy
from nordics.core.database.service import DatabaseService
from nordics.core.exceptions import DatabaseError
from nordics.core.logging.logger import get_logger
from nordics.core.validation.input_validator import InputValidator
from nordics.database.models import (
    AchievementClaimAudit,
    EntityProgression,
    EntityStats,
    Town,
    UnlockedAchievementRow,
    UserProfile,
)
from nordics.modules.achievements.definitions import UnlockedAchievement
from nordics.modules.achievements.results import ClaimWriteResult
from nordics.modules.shared.base_repository import BaseRepository
from nordics.modules.shared.entities import EntityKind, EntityRef
from nordics.modules.shared.exceptions import AlreadyClaimedError, TransientStoreError

logger = get_logger(__name__)

LevelResolver = Callable[[int], int]


@runtime_checkable
class AchievementStore(Protocol):
    async def find_unlocked_achievement(
        self, entity: EntityRef, tier_id: str
    ) -> Optional[UnlockedAchievement]: ...

    async def claim_tier_atomic(
        self,
        entity: EntityRef,
        tier_id: str,
        points: int,
        *,
        actor_id: Optional[str] = None,
        is_admin_claim: bool = False,
        level_resolver: Optional[LevelResolver] = None,
    ) -> ClaimWriteResult: ...

    async def add_xp(self, entity: EntityRef, amount: int) -> int: ...

    async def get_total_xp(self, entity: EntityRef) -> int: ...

    async def entity_exists(self, entity: EntityRef) -> bool: ...

    async def list_unlocked(self, entity: EntityRef) -> Dict[str, UnlockedAchievement]: ...

    async def insert_reached(self, entity: EntityRef, tier_ids: Iterable[str]) -> int: ...


async def run_store_operation(
    retry: DatabaseRetryPolicy,
    operation: Callable[[], Any],
    *,
    operation_name: str,
    context: Dict[str, Any],
) -> Any:
    """
    Run ``operation`` under ``retry`` and translate what escapes.

    Raises:
        DatabaseError: integrity violations (deterministic, never retried)
        TransientStoreError: any other SQLAlchemy error left after retries
    """
    try:
        return await retry.execute(operation, operation_name=operation_name, context=context)
    except IntegrityError as exc:
        raise DatabaseError(operation_name, exc) from exc
    except SQLAlchemyError as exc:
        raise TransientStoreError(operation_name, type(exc).__name__) from exc


def _to_unlocked(row: UnlockedAchievementRow) -> UnlockedAchievement:
    return UnlockedAchievement(
        entity_kind=EntityKind.parse(row.entity_kind),
        entity_id=row.entity_id,
        tier_id=row.tier_id,
        unlocked_at=row.unlocked_at,
        claimed_at=row.claimed_at,
        is_claimed=bool(row.is_claimed),
        claimed_by=row.claimed_by,
    )


class SqlAchievementStore:
    """``AchievementStore`` over SQLAlchemy; PostgreSQL in production, SQLite in tests."""

    def __init__(self, retry_policy: Optional[DatabaseRetryPolicy] = None) -> None:
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()
        self._unlocked_repo = BaseRepository(UnlockedAchievementRow, logger)
        self._progression_repo = BaseRepository(EntityProgression, logger)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _insert() -> Callable[..., Any]:
        if DatabaseService.dialect_name() == "postgresql":
            return pg_insert
        return sqlite_insert

    @staticmethod
    def _unlocked_conditions(entity: EntityRef, tier_id: Optional[str] = None) -> List[Any]:
        conditions = [
            UnlockedAchievementRow.entity_kind == entity.kind.value,
            UnlockedAchievementRow.entity_id == entity.entity_id,
        ]
        if tier_id is not None:
            conditions.append(UnlockedAchievementRow.tier_id == tier_id)
        return conditions

    async def _run(
        self,
        operation: Callable[[], Any],
        *,
        operation_name: str,
        context: Dict[str, Any],
    ) -> Any:
        return await run_store_operation(
            self._retry, operation, operation_name=operation_name, context=context
        )

    def _read(self, operation: Callable[[], Any], operation_name: str, entity: EntityRef) -> Any:
        return self._run(
            operation,
            operation_name=operation_name,
            context={"entity_kind": entity.kind.value, "entity_id": entity.entity_id},
        )

    async def _increment_xp(self, session: AsyncSession, entity: EntityRef, amount: int) -> int:
        insert = self._insert()
        stmt = insert(EntityProgression).values(
            entity_kind=entity.kind.value,
            entity_id=entity.entity_id,
            total_xp=amount,
            level=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["entity_kind", "entity_id"],
            set_={
                "total_xp": EntityProgression.total_xp + stmt.excluded.total_xp,
                "updated_at": utcnow(),
            },
        ).returning(EntityProgression.total_xp)
        result = await session.execute(stmt)
        return int(result.scalar_one())

    async def _set_level(self, session: AsyncSession, entity: EntityRef, level: int) -> None:
        await session.execute(
            update(EntityProgression)
            .where(
                EntityProgression.entity_kind == entity.kind.value,
                EntityProgression.entity_id == entity.entity_id,
            )
            .values(level=level, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def find_unlocked_achievement(
        self, entity: EntityRef, tier_id: str
    ) -> Optional[UnlockedAchievement]:
        async def _find() -> Optional[UnlockedAchievement]:
            async with DatabaseService.get_session() as session:
                row = await self._unlocked_repo.find_one_where(
                    session, *self._unlocked_conditions(entity, tier_id)
                )
                return _to_unlocked(row) if row is not None else None

        return await self._read(_find, "achievements.find_unlocked", entity)

    async def list_unlocked(self, entity: EntityRef) -> Dict[str, UnlockedAchievement]:
        async def _list() -> Dict[str, UnlockedAchievement]:
            async with DatabaseService.get_session() as session:
                rows = await self._unlocked_repo.find_many_where(
                    session,
                    *self._unlocked_conditions(entity),
                    order_by=[UnlockedAchievementRow.tier_id],
                )
                return {row.tier_id: _to_unlocked(row) for row in rows}

        return await self._read(_list, "achievements.list_unlocked", entity)

    async def get_total_xp(self, entity: EntityRef) -> int:
        async def _total() -> int:
            async with DatabaseService.get_session() as session:
                result = await session.execute(
                    select(EntityProgression.total_xp).where(
                        EntityProgression.entity_kind == entity.kind.value,
                        EntityProgression.entity_id == entity.entity_id,
                    )
                )
                total = result.scalar_one_or_none()
                return int(total) if total is not None else 0

        return await self._read(_total, "progression.get_total_xp", entity)

    async def get_level(self, entity: EntityRef) -> Optional[int]:
        async def _level() -> Optional[int]:
            async with DatabaseService.get_session() as session:
                row = await self._progression_repo.find_one_where(
                    session,
                    EntityProgression.entity_kind == entity.kind.value,
                    EntityProgression.entity_id == entity.entity_id,
                )
                return row.level if row is not None else None

        return await self._read(_level, "progression.get_level", entity)

    async def entity_exists(self, entity: EntityRef) -> bool:
        """
        Towns exist when their ``towns`` row does. Players exist when any of
        their stats, progression or a profile linking their UUID exists.
        """

        async def _exists() -> bool:
            async with DatabaseService.get_session() as session:
                if entity.kind is EntityKind.TOWN:
                    return await session.get(Town, entity.entity_id) is not None

                probes = (
                    select(EntityStats.id).where(
                        EntityStats.entity_kind == entity.kind.value,
                        EntityStats.entity_id == entity.entity_id,
                    ),
                    select(EntityProgression.id).where(
                        EntityProgression.entity_kind == entity.kind.value,
                        EntityProgression.entity_id == entity.entity_id,
                    ),
                    select(UserProfile.user_id).where(
                        UserProfile.minecraft_uuid == entity.entity_id
                    ),
                )
                for probe in probes:
                    result = await session.execute(probe.limit(1))
                    if result.first() is not None:
                        return True
                return False

        return await self._read(_exists, "achievements.entity_exists", entity)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def insert_reached(self, entity: EntityRef, tier_ids: Iterable[str]) -> int:
        """Create unclaimed rows for ``tier_ids``; existing rows are left alone."""
        tier_ids = sorted(set(tier_ids))
        if not tier_ids:
            return 0

        async def _insert_rows() -> int:
            async with DatabaseService.get_transaction() as session:
                insert = self._insert()
                now = utcnow()
                stmt = (
                    insert(UnlockedAchievementRow)
                    .values(
                        [
                            {
                                "entity_kind": entity.kind.value,
                                "entity_id": entity.entity_id,
                                "tier_id": tier_id,
                                "unlocked_at": now,
                                "is_claimed": False,
                            }
                            for tier_id in tier_ids
                        ]
                    )
                    .on_conflict_do_nothing(index_elements=["entity_kind", "entity_id", "tier_id"])
                    .returning(UnlockedAchievementRow.tier_id)
                )
                result = await session.execute(stmt)
                return len(result.all())

        return await self._run(
            _insert_rows,
            operation_name="achievements.insert_reached",
            context={"entity_kind": entity.kind.value, "entity_id": entity.entity_id},
        )

    async def add_xp(self, entity: EntityRef, amount: int) -> int:
        """Atomically add ``amount`` XP and return the new total."""
        amount = InputValidator.validate_non_negative_integer(amount, "amount")

        async def _add() -> int:
            async with DatabaseService.get_transaction() as session:
                return await self._increment_xp(session, entity, amount)

        return await self._run(
            _add,
            operation_name="progression.add_xp",
            context={"entity_kind": entity.kind.value, "entity_id": entity.entity_id},
        )

    async def claim_tier_atomic(
        self,
        entity: EntityRef,
        tier_id: str,
        points: int,
        *,
        actor_id: Optional[str] = None,
        is_admin_claim: bool = False,
        level_resolver: Optional[LevelResolver] = None,
    ) -> ClaimWriteResult:
        """
        Mark ``tier_id`` claimed and award ``points`` XP in one transaction.

        Returns ``already_claimed=True`` (and changes nothing) when the tier
        was claimed before or by a concurrent caller.

        Raises:
            TransientStoreError: retries exhausted; nothing was committed
        """
        points = InputValidator.validate_non_negative_integer(points, "points")

        async def _claim() -> ClaimWriteResult:
            async with DatabaseService.get_transaction() as session:
                insert = self._insert()
                now = utcnow()

                await session.execute(
                    insert(UnlockedAchievementRow)
                    .values(
                        entity_kind=entity.kind.value,
                        entity_id=entity.entity_id,
                        tier_id=tier_id,
                        unlocked_at=now,
                        is_claimed=False,
                    )
                    .on_conflict_do_nothing(
                        index_elements=["entity_kind", "entity_id", "tier_id"]
                    )
                )

                flipped = await session.execute(
                    update(UnlockedAchievementRow)
                    .where(
                        *self._unlocked_conditions(entity, tier_id),
                        UnlockedAchievementRow.is_claimed.is_(False),
                    )
                    .values(is_claimed=True, claimed_at=now, claimed_by=actor_id)
                    .execution_options(synchronize_session=False)
                )
                if flipped.rowcount == 0:
                    raise AlreadyClaimedError(entity.entity_id, tier_id)

                new_total = await self._increment_xp(session, entity, points)
                new_level = level_resolver(new_total) if level_resolver else 1
                await self._set_level(session, entity, new_level)

                session.add(
                    AchievementClaimAudit(
                        entity_kind=entity.kind.value,
                        entity_id=entity.entity_id,
                        tier_id=tier_id,
                        xp_awarded=points,
                        new_total_xp=new_total,
                        new_level=new_level,
                        actor_id=actor_id,
                        is_admin_claim=is_admin_claim,
                        claimed_at=now,
                    )
                )
                return ClaimWriteResult(ok=True, already_claimed=False, new_total_xp=new_total)

        context = {
            "entity_kind": entity.kind.value,
            "entity_id": entity.entity_id,
            "tier_id": tier_id,
            "actor_id": actor_id,
        }
        try:
            return await self._run(
                _claim, operation_name="achievements.claim_tier", context=context
            )
        except AlreadyClaimedError:
            logger.debug("Claim lost to an existing claim", extra=context)
            return ClaimWriteResult(
                ok=False,
                already_claimed=True,
                new_total_xp=await self.get_total_xp(entity),
            )
