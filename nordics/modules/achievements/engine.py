"""
AchievementEngine - tiered achievement evaluation and claims
============================================================

Handles:
- Evaluating every tier of every definition against an entity's stats
- Claiming a reached tier exactly once, awarding its points as XP
- Admin claims on behalf of an entity (role-gated, audited)
- Syncing reached tiers into ``unlocked_achievements``
- Per-entity summaries (points, completion, highest tiers)

State per (entity, tier): LOCKED -> REACHED -> CLAIMED. REACHED is computed
from current stats on every call; CLAIMED is the only persisted transition
and it is permanent, even if the stat later drops below the threshold.

Error contract
--------------
``claim`` and ``admin_claim`` never raise for expected failures. Domain
exceptions raised along the way are folded into ``ClaimResult.from_error``:

- THRESHOLD_NOT_MET, TIER_NOT_FOUND, ENTITY_NOT_FOUND, UNAUTHORIZED
- ALREADY_CLAIMED (neutral: ``is_neutral``)
- TRANSIENT_STORE_ERROR (``retryable``; nothing was committed)

Anything else propagates.

Events
------
- ``achievement.claimed`` after every successful claim
- ``progression.leveled_up`` when that claim raised the entity's level
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from nordics.core.config.manager import ConfigManager
from nordics.core.logging.logger import LogContext, get_logger
from nordics.core.validation.input_validator import InputValidator
from nordics.modules.achievements.catalog import AchievementDefinitionSource
from nordics.modules.achievements.definitions import (
    AchievementCatalog,
    AchievementDefinition,
    AchievementTier,
    UnlockedAchievement,
)
from nordics.modules.achievements.results import (
    AchievementState,
    AchievementSummary,
    ClaimableAchievement,
    ClaimResult,
    derive_state,
)
from nordics.modules.achievements.stats import stat_value
from nordics.modules.leveling.catalog import LevelCurveRegistry
from nordics.modules.shared.base_service import BaseService
from nordics.modules.shared.entities import EntityKind, EntityRef
from nordics.modules.shared.exceptions import (
    AlreadyClaimedError,
    NordicsDomainException,
    NotFoundError,
    ThresholdNotMetError,
    UnauthorizedError,
)

if TYPE_CHECKING:
    from logging import Logger

    from nordics.core.event.bus import EventBus
    from nordics.modules.achievements.authorization import ClaimAuthorizer
    from nordics.modules.achievements.sources import StatsSource
    from nordics.modules.achievements.store import AchievementStore


class AchievementEngine(BaseService):
    """
    Evaluates and claims tiered achievements for players and towns.

    Collaborators are injected; the engine holds no database handles of its
    own. Catalogs are loaded once per kind and shared until
    ``reload_catalog``.
    """

    def __init__(
        self,
        *,
        store: AchievementStore,
        stats_source: StatsSource,
        definition_source: AchievementDefinitionSource,
        curves: LevelCurveRegistry,
        authorizer: Optional[ClaimAuthorizer] = None,
        config_manager: Any = ConfigManager,
        event_bus: Optional[EventBus] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger or get_logger(__name__))
        self._store = store
        self._stats = stats_source
        self._definitions = definition_source
        self._curves = curves
        self._authorizer = authorizer
        self._catalogs: Dict[EntityKind, AchievementCatalog] = {}
        self._catalog_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    async def get_catalog(self, kind: EntityKind | str) -> AchievementCatalog:
        entity_kind = EntityKind.parse(kind)
        catalog = self._catalogs.get(entity_kind)
        if catalog is not None:
            return catalog

        async with self._catalog_lock:
            catalog = self._catalogs.get(entity_kind)
            if catalog is None:
                definitions = await self._definitions.get_achievement_definitions(entity_kind)
                catalog = AchievementCatalog.build(entity_kind, definitions)
                self._catalogs[entity_kind] = catalog
                self.log.info(
                    "Achievement catalog ready",
                    extra={
                        "entity_kind": entity_kind.value,
                        "definitions": len(catalog),
                        "tiers": catalog.total_tiers,
                    },
                )
            return catalog

    async def reload_catalog(self, kind: Optional[EntityKind | str] = None) -> None:
        async with self._catalog_lock:
            if kind is None:
                self._catalogs.clear()
            else:
                self._catalogs.pop(EntityKind.parse(kind), None)

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    async def _stats_for(
        self, entity: EntityRef, current_stats: Optional[Mapping[str, Any]]
    ) -> Mapping[str, Any]:
        if current_stats is not None:
            return current_stats
        return await self._stats.get_stats(entity)

    @staticmethod
    def _evaluate(
        catalog: AchievementCatalog,
        stats: Mapping[str, Any],
        unlocked: Mapping[str, UnlockedAchievement],
    ) -> List[ClaimableAchievement]:
        evaluated: List[ClaimableAchievement] = []
        for definition in catalog:
            current_value = stat_value(stats, definition.stat)
            for tier in definition.tiers:
                state = derive_state(current_value, tier.threshold, unlocked.get(tier.id))
                evaluated.append(
                    ClaimableAchievement(
                        tier_id=tier.id,
                        achievement_id=definition.id,
                        current_value=current_value,
                        threshold=tier.threshold,
                        is_claimable=state is AchievementState.REACHED,
                        achievement_name=definition.name,
                        tier_name=tier.name,
                        tier_description=tier.description,
                        tier_number=tier.tier_number,
                        points=tier.points,
                        state=state,
                    )
                )
        return evaluated

    async def evaluate_claimable(
        self,
        entity: EntityRef,
        current_stats: Optional[Mapping[str, Any]] = None,
    ) -> List[ClaimableAchievement]:
        """
        Evaluate every tier for ``entity``.

        Results are grouped by definition (catalog order) and ordered by
        tier number within each. A tier is claimable when its threshold is
        met and it has not been claimed. Lower tiers do not gate higher ones.

        When ``current_stats`` is omitted the stats source is queried.
        """
        entity = InputValidator.validate_entity(entity)
        catalog = await self.get_catalog(entity.kind)
        stats = await self._stats_for(entity, current_stats)
        unlocked = await self._store.list_unlocked(entity)
        return self._evaluate(catalog, stats, unlocked)

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    def _resolve_tier(
        self, catalog: AchievementCatalog, tier_id: str
    ) -> Tuple[AchievementDefinition, AchievementTier]:
        resolved = catalog.resolve(tier_id)
        if resolved is None:
            raise NotFoundError("Tier", tier_id)
        return resolved

    async def _check_town_permission(self, entity: EntityRef, actor_id: str) -> None:
        if self._authorizer is None:
            return
        town = None
        get_town = getattr(self._stats, "get_town", None)
        if get_town is not None:
            town = await get_town(entity.entity_id)
        if not await self._authorizer.can_claim_for_town(actor_id, town):
            raise UnauthorizedError(actor_id, "claim town achievements", self._authorizer.town_staff_role)

    async def _claim(
        self,
        entity: EntityRef,
        tier_id: str,
        *,
        actor_id: Optional[str],
        is_admin_claim: bool,
    ) -> ClaimResult:
        catalog = await self.get_catalog(entity.kind)
        definition, tier = self._resolve_tier(catalog, tier_id)

        try:
            if not await self._store.entity_exists(entity):
                raise NotFoundError("Entity", entity.key)

            if entity.kind is EntityKind.TOWN and actor_id and not is_admin_claim:
                await self._check_town_permission(entity, actor_id)

            stats = await self._stats.get_stats(entity)
            current_value = stat_value(stats, definition.stat)
            if current_value < tier.threshold:
                raise ThresholdNotMetError(tier.id, current_value, tier.threshold)

            existing = await self._store.find_unlocked_achievement(entity, tier.id)
            if existing is not None and existing.is_claimed:
                raise AlreadyClaimedError(entity.entity_id, tier.id)

            curve = await self._curves.get(entity.kind)
            write = await self._store.claim_tier_atomic(
                entity,
                tier.id,
                tier.points,
                actor_id=actor_id,
                is_admin_claim=is_admin_claim,
                level_resolver=curve.level_for,
            )
            if write.already_claimed or not write.ok:
                raise AlreadyClaimedError(entity.entity_id, tier.id)

        except NordicsDomainException as exc:
            self.log.info(
                "Achievement claim rejected",
                extra={
                    "tier_id": tier.id,
                    "error_code": exc.error_code,
                    "retryable": exc.is_retryable,
                },
            )
            return ClaimResult.from_error(
                exc, achievement_name=definition.name, tier_name=tier.name
            )

        previous_level = curve.level_for(write.new_total_xp - tier.points)
        info = curve.calculate_level(write.new_total_xp)
        leveled_up = info.level > previous_level

        self.log_operation(
            "claim_achievement",
            tier_id=tier.id,
            xp_awarded=tier.points,
            new_total_xp=write.new_total_xp,
            new_level=info.level,
            is_admin_claim=is_admin_claim,
        )

        await self.emit_event(
            "achievement.claimed",
            {
                "entity_kind": entity.kind.value,
                "entity_id": entity.entity_id,
                "achievement_id": definition.id,
                "tier_id": tier.id,
                "xp_awarded": tier.points,
                "new_total_xp": write.new_total_xp,
                "new_level": info.level,
                "actor_id": actor_id,
                "is_admin_claim": is_admin_claim,
            },
        )
        if leveled_up:
            await self.emit_event(
                "progression.leveled_up",
                {
                    "entity_kind": entity.kind.value,
                    "entity_id": entity.entity_id,
                    "old_level": previous_level,
                    "new_level": info.level,
                    "title": info.title,
                    "total_xp": write.new_total_xp,
                },
            )

        return ClaimResult(
            success=True,
            xp_awarded=tier.points,
            new_total_xp=write.new_total_xp,
            new_level=info.level,
            achievement_name=definition.name,
            tier_name=tier.name,
            message=f"Claimed {tier.name}: +{tier.points} XP",
            leveled_up=leveled_up,
        )

    async def claim(
        self,
        entity: EntityRef,
        tier_id: str,
        *,
        actor_id: Optional[str] = None,
    ) -> ClaimResult:
        """
        Claim ``tier_id`` for ``entity`` and award its points as XP.

        Preconditions are checked in order: tier exists, entity exists,
        (towns with an actor) the actor is staff or the mayor, threshold
        met, not already claimed. The write itself is atomic; concurrent
        claims of the same tier award XP once.
        """
        try:
            entity = InputValidator.validate_entity(entity)
            tier_id = InputValidator.validate_tier_id(tier_id)
            if actor_id is not None:
                actor_id = InputValidator.validate_user_id(actor_id)
        except NordicsDomainException as exc:
            return ClaimResult.from_error(exc)

        async with LogContext(
            entity_kind=entity.kind.value,
            entity_id=entity.entity_id,
            actor_id=actor_id,
            operation="claim",
        ):
            try:
                return await self._claim(
                    entity, tier_id, actor_id=actor_id, is_admin_claim=False
                )
            except NordicsDomainException as exc:
                return ClaimResult.from_error(exc)

    async def admin_claim(
        self,
        actor_id: str,
        entity: EntityRef,
        tier_id: str,
    ) -> ClaimResult:
        """
        Claim on behalf of ``entity``. The caller must hold the admin claim
        role; the threshold still has to be met. Unauthorized calls change
        nothing.
        """
        try:
            actor_id = InputValidator.validate_user_id(actor_id)
            entity = InputValidator.validate_entity(entity)
            tier_id = InputValidator.validate_tier_id(tier_id)
        except NordicsDomainException as exc:
            return ClaimResult.from_error(exc)

        async with LogContext(
            entity_kind=entity.kind.value,
            entity_id=entity.entity_id,
            actor_id=actor_id,
            operation="admin_claim",
        ):
            try:
                if self._authorizer is None:
                    raise UnauthorizedError(actor_id, "admin claim")
                await self._authorizer.require_admin(actor_id)
                return await self._claim(
                    entity, tier_id, actor_id=actor_id, is_admin_claim=True
                )
            except NordicsDomainException as exc:
                return ClaimResult.from_error(exc)

    async def can_claim_for_town(self, actor_id: str, town_id: str) -> bool:
        if self._authorizer is None:
            return False
        get_town = getattr(self._stats, "get_town", None)
        town = await get_town(town_id) if get_town is not None else None
        return await self._authorizer.can_claim_for_town(actor_id, town)

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    async def sync_unlocked(
        self,
        entity: EntityRef,
        stats: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """Record every reached tier as an unclaimed row; returns rows created."""
        entity = InputValidator.validate_entity(entity)
        catalog = await self.get_catalog(entity.kind)
        current = await self._stats_for(entity, stats)

        reached = [
            tier.id
            for definition in catalog
            for tier in definition.tiers
            if stat_value(current, definition.stat) >= tier.threshold
        ]
        created = await self._store.insert_reached(entity, reached) if reached else 0

        self.log.debug(
            "Unlocked achievements synced",
            extra={
                "entity_kind": entity.kind.value,
                "entity_id": entity.entity_id,
                "reached": len(reached),
                "created": created,
            },
        )
        return created

    async def sync_all(self, kind: EntityKind | str) -> Dict[str, int]:
        """
        ``sync_unlocked`` for every entity of ``kind`` the stats source lists.

        One failing entity is logged and counted; it does not stop the run.
        """
        entity_kind = EntityKind.parse(kind)
        entities = await self._stats.list_entities(entity_kind)
        report = {"entities": len(entities), "rows_created": 0, "failed": 0}

        for entity in entities:
            try:
                report["rows_created"] += await self.sync_unlocked(entity)
            except NordicsDomainException as exc:
                report["failed"] += 1
                self.log_error("sync_all", exc, entity_id=entity.entity_id)

        self.log_operation("sync_all", entity_kind=entity_kind.value, **report)
        return report

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    async def summarize(
        self,
        entity: EntityRef,
        current_stats: Optional[Mapping[str, Any]] = None,
    ) -> AchievementSummary:
        """Counts, earned points and the highest reached tier per definition."""
        entity = InputValidator.validate_entity(entity)
        evaluated = await self.evaluate_claimable(entity, current_stats)

        claimed = [a for a in evaluated if a.state is AchievementState.CLAIMED]
        claimable = [a for a in evaluated if a.is_claimable]
        total = len(evaluated)

        highest: Dict[str, str] = {}
        for item in evaluated:
            if item.state is not AchievementState.LOCKED:
                # Tiers arrive in ascending order, so the last one wins.
                highest[item.achievement_id] = item.tier_id

        return AchievementSummary(
            entity_kind=entity.kind.value,
            entity_id=entity.entity_id,
            total_tiers=total,
            claimed_count=len(claimed),
            claimable_count=len(claimable),
            points_earned=sum(a.points for a in claimed),
            completion_percentage=round(len(claimed) / total * 100.0, 1) if total else 0.0,
            highest_tiers=highest,
            achievements=evaluated,
        )
