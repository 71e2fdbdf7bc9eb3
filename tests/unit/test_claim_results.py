"""
Unit Tests for claim result types and domain exceptions
=======================================================

Test Coverage
-------------
- Error codes and retryability of each domain exception
- ClaimResult.from_error, is_neutral and to_dict
- derive_state and ClaimableAchievement.progress
"""

import pytest

from nordics.modules.achievements.definitions import UnlockedAchievement
from nordics.modules.achievements.results import (
    AchievementState,
    ClaimableAchievement,
    ClaimResult,
    derive_state,
)
from nordics.modules.shared.entities import EntityKind
from nordics.modules.shared.exceptions import (
    AlreadyClaimedError,
    ErrorSeverity,
    InvalidInputError,
    NotFoundError,
    ThresholdNotMetError,
    TransientStoreError,
    UnauthorizedError,
    is_transient_error,
    should_alert,
)


pytestmark = [pytest.mark.unit, pytest.mark.domain]


class TestDomainExceptions:
    @pytest.mark.parametrize(
        "exc, code, retryable",
        [
            (NotFoundError("Tier", "x_tier_9"), "TIER_NOT_FOUND", False),
            (NotFoundError("Entity", "player:abc"), "ENTITY_NOT_FOUND", False),
            (ThresholdNotMetError("x_tier_1", 3, 10), "THRESHOLD_NOT_MET", False),
            (AlreadyClaimedError("abc", "x_tier_1"), "ALREADY_CLAIMED", False),
            (UnauthorizedError("u1", "admin claim", "admin"), "UNAUTHORIZED", False),
            (TransientStoreError("achievements.claim_tier", "OperationalError"), "TRANSIENT_STORE_ERROR", True),
            (InvalidInputError("tier_id", "Value is required"), "INVALID_INPUT", False),
        ],
    )
    def test_codes(self, exc, code, retryable):
        assert exc.error_code == code
        assert exc.is_retryable is retryable
        assert is_transient_error(exc) is retryable
        assert str(exc).startswith(f"[{code}]")

    def test_threshold_details(self):
        exc = ThresholdNotMetError("x_tier_1", 3, 10)

        assert exc.details["remaining"] == 7
        assert "3 of 10" in exc.message

    def test_severity(self):
        assert AlreadyClaimedError("a", "t").severity is ErrorSeverity.DEBUG
        assert not should_alert(UnauthorizedError("u", "x"))
        assert should_alert(RuntimeError("unexpected"))

    def test_to_dict(self):
        data = UnauthorizedError("u1", "admin claim", "admin").to_dict()

        assert data["error_type"] == "UnauthorizedError"
        assert data["details"]["required_role"] == "admin"


class TestClaimResult:
    def test_from_error(self):
        result = ClaimResult.from_error(
            TransientStoreError("achievements.claim_tier", "OperationalError"),
            achievement_name="Time Lord",
            tier_name="Regular",
        )

        assert not result.success
        assert result.retryable
        assert result.xp_awarded == 0
        assert result.tier_name == "Regular"
        assert not result.is_neutral

    def test_already_claimed_is_neutral(self):
        assert ClaimResult.from_error(AlreadyClaimedError("a", "t")).is_neutral

    def test_to_dict(self):
        result = ClaimResult(success=True, xp_awarded=50, new_total_xp=50, new_level=1)

        data = result.to_dict()

        assert data["success"] is True
        assert data["error_code"] is None
        assert data["leveled_up"] is False


class TestDeriveState:
    def test_states(self):
        claimed = UnlockedAchievement(EntityKind.PLAYER, "p", "t", is_claimed=True)
        unclaimed = UnlockedAchievement(EntityKind.PLAYER, "p", "t")

        assert derive_state(0, 10, None) is AchievementState.LOCKED
        assert derive_state(10, 10, None) is AchievementState.REACHED
        assert derive_state(10, 10, unclaimed) is AchievementState.REACHED
        assert derive_state(0, 10, claimed) is AchievementState.CLAIMED

    def test_progress(self):
        def item(value, threshold):
            return ClaimableAchievement("t", "a", value, threshold, False)

        assert item(5, 10).progress == 50.0
        assert item(50, 10).progress == 100.0
        assert item(0, 0).progress == 100.0
        assert item(1, 3).progress == 33.33
