"""
Unit Tests for AchievementEngine
================================

Test Coverage
-------------
- evaluate_claimable: states, grouping and ordering
- claim: success path, level-up, error codes and the no-change guarantee
- Concurrent claims of one tier award XP exactly once
- admin_claim: role gate and audit
- Town claims: staff and mayor permissions
- sync_unlocked / sync_all
- summarize
- Catalog caching and reload

Testing Strategy
----------------
- In-memory fakes for the store, stats, roles and definitions (conftest)
- Mock EventBus for published events
- AAA pattern (Arrange, Act, Assert)
"""

import asyncio

import pytest

from nordics.modules.achievements.results import AchievementState
from nordics.modules.shared.entities import EntityKind, EntityRef
from tests.conftest import FakeTown, TOWN_ID


pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def published(mock_event_bus, event_name):
    return [
        call.args[1]
        for call in mock_event_bus.publish.await_args_list
        if call.args[0] == event_name
    ]


# ============================================================================
# EVALUATION
# ============================================================================


class TestEvaluateClaimable:
    """Tier states computed from current stats and stored claims."""

    async def test_new_player_with_no_stats_sees_everything_locked(self, engine, player):
        # Act
        evaluated = await engine.evaluate_claimable(player, {})

        # Assert
        assert len(evaluated) == 4
        assert all(item.state is AchievementState.LOCKED for item in evaluated)
        assert not any(item.is_claimable for item in evaluated)
        assert all(item.current_value == 0 for item in evaluated)

    async def test_grouped_by_definition_and_ordered_by_tier(self, engine, player):
        evaluated = await engine.evaluate_claimable(player, {})

        assert [item.tier_id for item in evaluated] == [
            "playtime_tier_1",
            "playtime_tier_2",
            "playtime_tier_3",
            "farmer_tier_1",
        ]

    async def test_reached_tiers_are_claimable(self, engine, player):
        # Arrange
        stats = {"custom_minecraft_play_time": 12, "mined": {"wheat": 3}}

        # Act
        evaluated = {item.tier_id: item for item in await engine.evaluate_claimable(player, stats)}

        # Assert
        assert evaluated["playtime_tier_1"].is_claimable
        assert evaluated["playtime_tier_2"].is_claimable
        assert evaluated["playtime_tier_3"].state is AchievementState.LOCKED
        assert evaluated["playtime_tier_3"].progress == 24.0
        assert evaluated["farmer_tier_1"].current_value == 3
        assert not evaluated["farmer_tier_1"].is_claimable

    async def test_higher_tier_is_not_gated_by_lower_tier(self, engine, player):
        evaluated = {
            item.tier_id: item
            for item in await engine.evaluate_claimable(player, {"custom_minecraft_play_time": 60})
        }

        assert all(evaluated[f"playtime_tier_{n}"].is_claimable for n in (1, 2, 3))

    async def test_stats_source_queried_when_stats_omitted(self, engine, player, stats_source):
        # Arrange
        stats_source.set(player, {"custom_minecraft_play_time": 1})

        # Act
        evaluated = await engine.evaluate_claimable(player)

        # Assert
        assert stats_source.calls == 1
        assert evaluated[0].is_claimable

    async def test_claimed_tier_stays_claimed_after_stat_rollback(
        self, engine, player, stats_source
    ):
        # Arrange
        stats_source.set(player, {"custom_minecraft_play_time": 12})
        await engine.claim(player, "playtime_tier_2")

        # Act
        evaluated = {
            item.tier_id: item
            for item in await engine.evaluate_claimable(player, {"custom_minecraft_play_time": 0})
        }

        # Assert
        assert evaluated["playtime_tier_2"].state is AchievementState.CLAIMED
        assert not evaluated["playtime_tier_2"].is_claimable
        assert evaluated["playtime_tier_1"].state is AchievementState.LOCKED

    async def test_to_dict_is_serialisable(self, engine, player):
        evaluated = await engine.evaluate_claimable(player, {"custom_minecraft_play_time": 5})

        data = evaluated[1].to_dict()

        assert data["state"] == "locked"
        assert data["progress"] == 50.0
        assert data["tier_name"] == "Regular"


# ============================================================================
# CLAIMS
# ============================================================================


class TestClaim:
    """Single-claim behaviour and its error codes."""

    async def test_claim_awards_points_and_sets_level(
        self, engine, player, stats_source, achievement_store, mock_event_bus
    ):
        # Arrange
        stats_source.set(player, {"custom_minecraft_play_time": 12})

        # Act
        result = await engine.claim(player, "playtime_tier_2")

        # Assert
        assert result.success
        assert result.xp_awarded == 100
        assert result.new_total_xp == 100
        assert result.new_level == 2
        assert result.achievement_name == "Time Lord"
        assert result.tier_name == "Regular"
        assert result.message == "Claimed Regular: +100 XP"
        assert achievement_store.xp[player.key] == 100
        assert achievement_store.levels[player.key] == 2
        assert len(published(mock_event_bus, "achievement.claimed")) == 1

    async def test_second_claim_is_already_claimed_and_changes_nothing(
        self, engine, player, stats_source, achievement_store
    ):
        # Arrange
        stats_source.set(player, {"custom_minecraft_play_time": 12})
        first = await engine.claim(player, "playtime_tier_2")

        # Act
        second = await engine.claim(player, "playtime_tier_2")

        # Assert
        assert first.success
        assert not second.success
        assert second.error_code == "ALREADY_CLAIMED"
        assert second.is_neutral
        assert achievement_store.xp[player.key] == 100
        assert len(achievement_store.audit) == 1

    async def test_threshold_not_met(self, engine, player, stats_source, achievement_store):
        stats_source.set(player, {"custom_minecraft_play_time": 9})

        result = await engine.claim(player, "playtime_tier_2")

        assert not result.success
        assert result.error_code == "THRESHOLD_NOT_MET"
        assert not result.retryable
        assert result.tier_name == "Regular"
        assert achievement_store.xp.get(player.key, 0) == 0
        assert not achievement_store.unlocked

    async def test_unknown_tier(self, engine, player):
        result = await engine.claim(player, "playtime_tier_99")

        assert not result.success
        assert result.error_code == "TIER_NOT_FOUND"

    async def test_tier_of_other_kind_is_unknown(self, engine, player, stats_source):
        stats_source.set(player, {"population": 10})

        result = await engine.claim(player, "population_tier_1")

        assert result.error_code == "TIER_NOT_FOUND"

    async def test_unknown_entity(self, engine, stats_source):
        ghost = EntityRef.player("00000000-0000-0000-0000-000000000000")
        stats_source.set(ghost, {"custom_minecraft_play_time": 100})

        result = await engine.claim(ghost, "playtime_tier_1")

        assert result.error_code == "ENTITY_NOT_FOUND"

    @pytest.mark.parametrize("tier_id", ["", "   ", "bad tier!", None])
    async def test_invalid_tier_id(self, engine, player, tier_id):
        result = await engine.claim(player, tier_id)

        assert not result.success
        assert result.error_code == "INVALID_INPUT"

    async def test_transient_store_failure_is_retryable_and_changes_nothing(
        self, engine, player, stats_source, achievement_store, transient_failure, mock_event_bus
    ):
        # Arrange
        stats_source.set(player, {"custom_minecraft_play_time": 12})
        achievement_store.fail_claims_with = transient_failure

        # Act
        result = await engine.claim(player, "playtime_tier_1")

        # Assert
        assert not result.success
        assert result.error_code == "TRANSIENT_STORE_ERROR"
        assert result.retryable
        assert achievement_store.xp.get(player.key, 0) == 0
        mock_event_bus.publish.assert_not_awaited()

    async def test_retry_after_transient_failure_succeeds(
        self, engine, player, stats_source, achievement_store, transient_failure
    ):
        stats_source.set(player, {"custom_minecraft_play_time": 12})
        achievement_store.fail_claims_with = transient_failure
        await engine.claim(player, "playtime_tier_1")

        achievement_store.fail_claims_with = None
        result = await engine.claim(player, "playtime_tier_1")

        assert result.success
        assert achievement_store.xp[player.key] == 50

    async def test_transient_failure_on_lookup_is_a_result(
        self, engine, player, stats_source, achievement_store, transient_failure, mocker
    ):
        stats_source.set(player, {"custom_minecraft_play_time": 12})
        mocker.patch.object(
            achievement_store,
            "find_unlocked_achievement",
            mocker.AsyncMock(side_effect=transient_failure),
        )

        result = await engine.claim(player, "playtime_tier_1")

        assert result.error_code == "TRANSIENT_STORE_ERROR"
        assert result.retryable
        assert achievement_store.xp.get(player.key, 0) == 0

    async def test_transient_failure_on_role_lookup_is_a_result(
        self, engine, player, stats_source, role_source, achievement_store, transient_failure, mocker
    ):
        stats_source.set(player, {"custom_minecraft_play_time": 12})
        mocker.patch.object(role_source, "get_role", mocker.AsyncMock(side_effect=transient_failure))

        result = await engine.admin_claim("admin-1", player, "playtime_tier_1")

        assert result.error_code == "TRANSIENT_STORE_ERROR"
        assert result.retryable
        assert not achievement_store.unlocked

    async def test_level_up_event_when_claim_crosses_floor(
        self, engine, player, stats_source, mock_event_bus
    ):
        # Arrange
        stats_source.set(player, {"custom_minecraft_play_time": 12})
        first = await engine.claim(player, "playtime_tier_1")

        # Act
        second = await engine.claim(player, "playtime_tier_2")

        # Assert
        assert not first.leveled_up
        assert first.new_level == 1
        assert second.leveled_up
        assert second.new_total_xp == 150
        assert second.new_level == 2

        level_events = published(mock_event_bus, "progression.leveled_up")
        assert len(level_events) == 1
        assert level_events[0]["old_level"] == 1
        assert level_events[0]["new_level"] == 2
        assert level_events[0]["entity_id"] == player.entity_id

    async def test_event_bus_failure_does_not_fail_claim(
        self, engine, player, stats_source, mock_event_bus, achievement_store
    ):
        stats_source.set(player, {"custom_minecraft_play_time": 1})
        mock_event_bus.publish.side_effect = RuntimeError("bus down")

        result = await engine.claim(player, "playtime_tier_1")

        assert result.success
        assert achievement_store.xp[player.key] == 50

    async def test_claim_does_not_require_lower_tiers(self, engine, player, stats_source):
        stats_source.set(player, {"custom_minecraft_play_time": 60})

        result = await engine.claim(player, "playtime_tier_3")

        assert result.success
        assert result.new_total_xp == 150


class TestConcurrentClaims:
    """Racing claims of the same tier."""

    async def test_concurrent_claims_award_once(
        self, engine, player, stats_source, achievement_store, mock_event_bus
    ):
        # Arrange
        stats_source.set(player, {"custom_minecraft_play_time": 12})

        # Act
        results = await asyncio.gather(
            *[engine.claim(player, "playtime_tier_2") for _ in range(10)]
        )

        # Assert
        successes = [r for r in results if r.success]
        assert len(successes) == 1
        assert all(r.error_code == "ALREADY_CLAIMED" for r in results if not r.success)
        assert achievement_store.xp[player.key] == 100
        assert len(achievement_store.audit) == 1
        assert len(published(mock_event_bus, "achievement.claimed")) == 1

    async def test_concurrent_claims_of_different_tiers_all_count(
        self, engine, player, stats_source, achievement_store
    ):
        stats_source.set(player, {"custom_minecraft_play_time": 60, "mined": {"wheat": 10}})

        results = await asyncio.gather(
            engine.claim(player, "playtime_tier_1"),
            engine.claim(player, "playtime_tier_2"),
            engine.claim(player, "playtime_tier_3"),
            engine.claim(player, "farmer_tier_1"),
        )

        assert all(r.success for r in results)
        assert achievement_store.xp[player.key] == 50 + 100 + 150 + 75


# ============================================================================
# ADMIN CLAIMS
# ============================================================================


class TestAdminClaim:
    """Role-gated claims on behalf of an entity."""

    async def test_admin_claim_records_actor(
        self, engine, player, stats_source, achievement_store
    ):
        # Arrange
        stats_source.set(player, {"custom_minecraft_play_time": 12})

        # Act
        result = await engine.admin_claim("admin-1", player, "playtime_tier_1")

        # Assert
        assert result.success
        assert achievement_store.audit[0]["actor_id"] == "admin-1"
        assert achievement_store.audit[0]["is_admin_claim"] is True
        assert achievement_store.unlocked[(player.key, "playtime_tier_1")].claimed_by == "admin-1"

    async def test_member_is_unauthorized_and_nothing_changes(
        self, engine, player, stats_source, achievement_store
    ):
        # Arrange
        stats_source.set(player, {"custom_minecraft_play_time": 12})

        # Act
        result = await engine.admin_claim("member-1", player, "playtime_tier_1")

        # Assert
        assert not result.success
        assert result.error_code == "UNAUTHORIZED"
        assert achievement_store.xp.get(player.key, 0) == 0
        assert not achievement_store.unlocked

    async def test_unknown_actor_is_unauthorized(self, engine, player, stats_source):
        stats_source.set(player, {"custom_minecraft_play_time": 12})

        result = await engine.admin_claim("stranger", player, "playtime_tier_1")

        assert result.error_code == "UNAUTHORIZED"

    async def test_moderator_is_below_admin(self, engine, player, stats_source):
        stats_source.set(player, {"custom_minecraft_play_time": 12})

        result = await engine.admin_claim("mod-1", player, "playtime_tier_1")

        assert result.error_code == "UNAUTHORIZED"

    async def test_admin_claim_still_requires_threshold(self, engine, player):
        result = await engine.admin_claim("admin-1", player, "playtime_tier_3")

        assert result.error_code == "THRESHOLD_NOT_MET"

    async def test_admin_claim_of_unknown_tier(self, engine, player):
        result = await engine.admin_claim("admin-1", player, "nope_tier_1")

        assert result.error_code == "TIER_NOT_FOUND"


# ============================================================================
# TOWN CLAIMS
# ============================================================================


class TestTownClaims:
    """Town achievements: staff and mayor may claim, others may not."""

    @pytest.fixture(autouse=True)
    def ravenholm(self, stats_source, town):
        stats_source.towns[TOWN_ID] = FakeTown(TOWN_ID, mayor="Steve", population=4)
        stats_source.set(town, {"population": 4, "capital": 0})

    async def test_mayor_can_claim(self, engine, town, achievement_store):
        result = await engine.claim(town, "population_tier_1", actor_id="member-1")

        assert result.success
        assert achievement_store.xp[town.key] == 50

    async def test_staff_can_claim(self, engine, town):
        result = await engine.claim(town, "population_tier_1", actor_id="mod-1")

        assert result.success

    async def test_other_player_cannot_claim(self, engine, town, role_source, achievement_store):
        role_source.roles["member-2"] = "member"

        result = await engine.claim(town, "population_tier_1", actor_id="member-2")

        assert result.error_code == "UNAUTHORIZED"
        assert achievement_store.xp.get(town.key, 0) == 0

    async def test_system_claim_without_actor(self, engine, town):
        result = await engine.claim(town, "population_tier_1")

        assert result.success

    async def test_town_threshold_not_met(self, engine, town):
        result = await engine.claim(town, "population_tier_2", actor_id="mod-1")

        assert result.error_code == "THRESHOLD_NOT_MET"

    async def test_town_claim_uses_town_curve(self, engine, town, stats_source):
        stats_source.set(town, {"population": 5, "capital": 1})

        for tier_id in ("population_tier_1", "population_tier_2", "capital_tier_1"):
            result = await engine.claim(town, tier_id)

        assert result.new_total_xp == 350
        assert result.new_level == 5

    async def test_can_claim_for_town(self, engine):
        assert await engine.can_claim_for_town("member-1", TOWN_ID)
        assert await engine.can_claim_for_town("admin-1", "unknown-town")
        assert not await engine.can_claim_for_town("member-1", "unknown-town")
        assert not await engine.can_claim_for_town("stranger", TOWN_ID)


# ============================================================================
# SYNC AND SUMMARY
# ============================================================================


class TestSync:
    async def test_sync_unlocked_records_reached_tiers_once(
        self, engine, player, achievement_store
    ):
        # Arrange
        stats = {"custom_minecraft_play_time": 12}

        # Act
        first = await engine.sync_unlocked(player, stats)
        second = await engine.sync_unlocked(player, stats)

        # Assert
        assert first == 2
        assert second == 0
        rows = await achievement_store.list_unlocked(player)
        assert set(rows) == {"playtime_tier_1", "playtime_tier_2"}
        assert not any(row.is_claimed for row in rows.values())

    async def test_synced_rows_stay_claimable(self, engine, player, stats_source):
        stats_source.set(player, {"custom_minecraft_play_time": 12})
        await engine.sync_unlocked(player)

        result = await engine.claim(player, "playtime_tier_1")

        assert result.success

    async def test_sync_all(self, engine, stats_source, player):
        # Arrange
        other = EntityRef.player("11111111-2222-3333-4444-555555555555")
        stats_source.set(player, {"custom_minecraft_play_time": 60})
        stats_source.set(other, {"mined": {"wheat": 20}})

        # Act
        report = await engine.sync_all(EntityKind.PLAYER)

        # Assert
        assert report == {"entities": 2, "rows_created": 4, "failed": 0}


class TestSummarize:
    async def test_summary_counts_and_highest_tiers(self, engine, player, stats_source):
        # Arrange
        stats_source.set(player, {"custom_minecraft_play_time": 12, "mined": {"wheat": 1}})
        await engine.claim(player, "playtime_tier_1")

        # Act
        summary = await engine.summarize(player)

        # Assert
        assert summary.total_tiers == 4
        assert summary.claimed_count == 1
        assert summary.claimable_count == 1
        assert summary.points_earned == 50
        assert summary.completion_percentage == 25.0
        assert summary.highest_tiers == {"playtime": "playtime_tier_2"}

    async def test_summary_for_empty_player(self, engine, player):
        summary = await engine.summarize(player, {})

        assert summary.claimed_count == 0
        assert summary.completion_percentage == 0.0
        assert summary.highest_tiers == {}
        assert summary.to_dict()["total_tiers"] == 4


class TestCatalogCache:
    async def test_catalog_loaded_once_until_reload(self, engine, player, definition_source):
        await engine.evaluate_claimable(player, {})
        await engine.evaluate_claimable(player, {})
        assert definition_source.loads == 1

        await engine.reload_catalog(EntityKind.PLAYER)
        await engine.evaluate_claimable(player, {})

        assert definition_source.loads == 2
