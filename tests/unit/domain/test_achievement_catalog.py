"""
Unit Tests for the achievement catalog
======================================

Test Coverage
-------------
- The shipped player and town catalogs load and validate
- Tier id defaults and tier sorting
- Ordering, duplicate and malformed-row rejection
- Catalog lookups by tier id
- YAML and SQL definition sources (SQL falls back without a database)
"""

from pathlib import Path

import pytest

from nordics.core.config.manager import ConfigManager
from nordics.core.exceptions import InvalidAchievementCatalogError
from nordics.modules.achievements.catalog import (
    SqlAchievementDefinitionSource,
    YamlAchievementDefinitionSource,
    load_catalog,
    parse_definitions,
)
from nordics.modules.achievements.definitions import AchievementCatalog
from nordics.modules.shared.entities import EntityKind


pytestmark = [pytest.mark.unit, pytest.mark.domain]

CONFIG_DIR = Path(__file__).resolve().parents[3] / "config"


def definition(tiers, **overrides):
    row = {"id": "miner", "name": "Miner", "stat": "blocksBroken", "tiers": tiers}
    row.update(overrides)
    return row


class TestShippedCatalogs:
    """The YAML catalogs under config/achievements."""

    def test_player_catalog(self):
        catalog = load_catalog(CONFIG_DIR / "achievements" / "player.yaml")

        assert catalog.kind is EntityKind.PLAYER
        assert len(catalog) == 9
        assert catalog.total_tiers == 45

        resolved = catalog.resolve("playtime_tier_2")
        assert resolved is not None
        achievement, tier = resolved
        assert achievement.stat == "custom_minecraft_play_time"
        assert tier.threshold == 10
        assert tier.points == 100

    def test_town_catalog(self):
        catalog = load_catalog(CONFIG_DIR / "achievements" / "town.yaml", EntityKind.TOWN)

        assert [d.id for d in catalog] == [
            "population",
            "nation_member",
            "independent_town",
            "capital_town",
        ]
        assert catalog.total_tiers == 11
        assert catalog.resolve("population_tier_8")[1].threshold == 50

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidAchievementCatalogError, match="cannot read"):
            load_catalog(tmp_path / "missing.yaml")

    def test_file_without_section(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("levels: {}\n", encoding="utf-8")

        with pytest.raises(InvalidAchievementCatalogError, match="missing 'achievements'"):
            load_catalog(path)

    def test_file_with_several_kinds_needs_kind(self, tmp_path):
        path = tmp_path / "both.yaml"
        path.write_text(
            "achievements:\n"
            "  player:\n"
            "    - {id: a, stat: s, tiers: [{tier: 1, threshold: 1, points: 1}]}\n"
            "  town:\n"
            "    - {id: b, stat: t, tiers: [{tier: 1, threshold: 1, points: 1}]}\n",
            encoding="utf-8",
        )

        with pytest.raises(InvalidAchievementCatalogError, match="several kinds"):
            load_catalog(path)
        assert load_catalog(path, "town").resolve("b_tier_1") is not None


class TestParseDefinitions:
    def test_tier_ids_default_and_tiers_sorted(self):
        [parsed] = parse_definitions(
            [
                definition(
                    [
                        {"tier": 2, "threshold": 50, "points": 20},
                        {"tier": 1, "threshold": 10, "points": 10, "name": "Pebble"},
                    ]
                )
            ],
            EntityKind.PLAYER,
        )

        assert [t.id for t in parsed.tiers] == ["miner_tier_1", "miner_tier_2"]
        assert parsed.tiers[0].name == "Pebble"
        assert parsed.tiers[1].name == "Tier 2"
        assert parsed.max_points == 30

    def test_explicit_tier_id_and_tier_number_key(self):
        [parsed] = parse_definitions(
            [definition([{"id": "custom", "tier_number": 1, "threshold": 5, "points": 1}])],
            "player",
        )

        assert parsed.tiers[0].id == "custom"
        assert parsed.tier("custom").threshold == 5

    def test_thresholds_must_increase_with_tier(self):
        rows = [
            definition(
                [
                    {"tier": 1, "threshold": 100, "points": 10},
                    {"tier": 2, "threshold": 100, "points": 20},
                ]
            )
        ]

        with pytest.raises(InvalidAchievementCatalogError, match="strictly increase"):
            parse_definitions(rows, EntityKind.PLAYER)

    @pytest.mark.parametrize(
        "row, message",
        [
            (definition([]), "at least one tier"),
            (definition([{"tier": 1, "threshold": 1, "points": 1}], stat=""), "stat is required"),
            (definition([{"tier": 1, "threshold": 1, "points": -5}]), "negative points"),
            (definition([{"tier": 1, "threshold": -1, "points": 5}]), "negative threshold"),
            (definition([{"tier": 1, "points": 5}]), "malformed tier"),
            (definition([{"tier": "one", "threshold": 1}]), "malformed tier"),
            (definition([{"tier": 1, "threshold": 1}], id=""), "id is required"),
            (definition({"tier": 1}), "must be a list"),
        ],
    )
    def test_invalid_rows(self, row, message):
        with pytest.raises(InvalidAchievementCatalogError, match=message):
            parse_definitions([row], EntityKind.PLAYER)

    def test_duplicate_tier_numbers(self):
        rows = [
            definition(
                [
                    {"tier": 1, "threshold": 1, "points": 1},
                    {"tier": 1, "threshold": 2, "points": 1},
                ]
            )
        ]

        with pytest.raises(InvalidAchievementCatalogError, match="duplicate tier id"):
            parse_definitions(rows, EntityKind.PLAYER)

    def test_error_code(self):
        with pytest.raises(InvalidAchievementCatalogError) as exc_info:
            parse_definitions([definition([])], EntityKind.PLAYER)

        assert exc_info.value.error_code == "INVALID_ACHIEVEMENT_CATALOG"


class TestAchievementCatalog:
    def test_duplicate_achievement_ids_rejected(self):
        definitions = parse_definitions(
            [definition([{"tier": 1, "threshold": 1, "points": 1}])], EntityKind.PLAYER
        )

        with pytest.raises(InvalidAchievementCatalogError, match="duplicate achievement id"):
            AchievementCatalog.build(EntityKind.PLAYER, definitions * 2)

    def test_tier_id_shared_across_definitions_rejected(self):
        definitions = parse_definitions(
            [
                definition([{"id": "shared", "tier": 1, "threshold": 1, "points": 1}]),
                definition(
                    [{"id": "shared", "tier": 1, "threshold": 1, "points": 1}], id="digger"
                ),
            ],
            EntityKind.PLAYER,
        )

        with pytest.raises(InvalidAchievementCatalogError, match="used twice"):
            AchievementCatalog.build(EntityKind.PLAYER, definitions)

    def test_unknown_tier_resolves_to_none(self):
        catalog = AchievementCatalog.build(EntityKind.PLAYER, [])

        assert catalog.resolve("anything_tier_1") is None
        assert catalog.total_tiers == 0


@pytest.mark.asyncio
class TestDefinitionSources:
    async def test_yaml_source_reads_config(self):
        definitions = await YamlAchievementDefinitionSource(ConfigManager).get_achievement_definitions(
            "town"
        )

        assert {d.id for d in definitions} >= {"population", "capital_town"}
        assert all(d.kind is EntityKind.TOWN for d in definitions)

    async def test_sql_source_falls_back_without_database(self):
        source = SqlAchievementDefinitionSource()

        definitions = await source.get_achievement_definitions(EntityKind.PLAYER)

        assert definitions[0].id == "playtime"
