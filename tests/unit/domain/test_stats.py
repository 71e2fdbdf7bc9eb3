"""
Unit Tests for stats normalisation
==================================

Test Coverage
-------------
- Flattening nested stats documents (dot paths and underscore aliases)
- stat_value lookups and their 0 defaults
- Tick and centimetre conversions
- Town stats derived from town facts
"""

import json

import pytest

from nordics.modules.achievements.stats import (
    derive_town_stats,
    flatten_stats,
    normalize_player_stats,
    stat_value,
)
from tests.conftest import FakeTown


pytestmark = [pytest.mark.unit, pytest.mark.domain]


class TestFlattenStats:
    def test_nested_paths_and_aliases(self):
        flat = flatten_stats({"mined": {"wheat": 12}, "custom": {"minecraft:play_time": 72000}})

        assert flat["mined.wheat"] == 12
        assert flat["mined_wheat"] == 12
        assert flat["custom.minecraft:play_time"] == 72000
        assert flat["custom_minecraft_play_time"] == 72000

    def test_booleans_and_text_are_dropped(self):
        flat = flatten_stats({"online": True, "name": "Steve", "kills": 3, "ratio": "1.5"})

        assert "online" not in flat
        assert "name" not in flat
        assert flat["kills"] == 3
        assert flat["ratio"] == 1.5

    def test_alias_never_overwrites_verbatim_key(self):
        flat = flatten_stats({"mined_wheat": 1, "mined": {"wheat": 99}})

        assert flat["mined_wheat"] == 1
        assert flat["mined.wheat"] == 99

    def test_json_string_document(self):
        assert flatten_stats(json.dumps({"a": {"b": 2}})) == {"a.b": 2, "a_b": 2}

    def test_invalid_documents_flatten_to_empty(self):
        assert flatten_stats("not json") == {}
        assert flatten_stats(None) == {}
        assert flatten_stats([1, 2, 3]) == {}


class TestStatValue:
    def test_direct_key(self):
        assert stat_value({"mobKills": 42}, "mobKills") == 42

    def test_direct_key_with_dot_wins(self):
        assert stat_value({"mined.wheat": 5, "mined": {"wheat": 7}}, "mined.wheat") == 5

    def test_dot_path_traversal(self):
        assert stat_value({"mined": {"wheat": 7}}, "mined.wheat") == 7

    @pytest.mark.parametrize(
        "stats, key",
        [
            ({}, "mobKills"),
            (None, "mobKills"),
            ({"mobKills": None}, "mobKills"),
            ({"mobKills": "lots"}, "mobKills"),
            ({"mobKills": float("nan")}, "mobKills"),
            ({"mobKills": float("-inf")}, "mobKills"),
            ({"mobKills": True}, "mobKills"),
            ({"mined": 3}, "mined.wheat"),
            ({"mined": {"stone": 3}}, "mined.wheat"),
        ],
    )
    def test_unusable_values_read_as_zero(self, stats, key):
        assert stat_value(stats, key) == 0


class TestPlayerNormalisation:
    def test_ticks_to_whole_hours(self):
        stats = normalize_player_stats({"play_time": 72000 * 3 + 71999, "play_one_minute": 71999})

        assert stats["play_time"] == 3
        assert stats["play_one_minute"] == 0

    def test_nested_play_time(self):
        stats = normalize_player_stats({"custom": {"minecraft:play_time": 72000 * 12}})

        assert stats["custom_minecraft_play_time"] == 12
        assert stats["custom.minecraft:play_time"] == 12

    def test_centimetres_to_blocks_with_alias(self):
        stats = normalize_player_stats({"walk_one_cm": 1050, "ride_boat_one_cm": 250_099})

        assert stats["walk_one_cm"] == 10
        assert stats["walk"] == 10
        assert stats["ride_boat_one_cm"] == 2500
        assert stats["ride_boat"] == 2500

    def test_plain_counters_are_untouched(self):
        stats = normalize_player_stats({"blocksPlaced": 1234, "mined": {"wheat": 12}})

        assert stats["blocksPlaced"] == 1234
        assert stats["mined.wheat"] == 12


class TestTownStats:
    def test_independent_capital(self):
        stats = derive_town_stats(
            FakeTown("t1", population=12, type="Capital City", balance=5000.5)
        )

        assert stats == {
            "population": 12,
            "nation_member": 0.0,
            "independent": 1.0,
            "capital": 1.0,
            "balance": 5000.5,
        }

    def test_nation_member(self):
        stats = derive_town_stats(
            FakeTown("t2", population=4, nation_id="norden", is_independent=False, type="town")
        )

        assert stats["nation_member"] == 1.0
        assert stats["independent"] == 0.0
        assert stats["capital"] == 0.0
