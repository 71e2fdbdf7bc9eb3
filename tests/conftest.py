"""
Pytest Configuration and Fixtures for Nordics Progression Tests
================================================================

Purpose
-------
Centralized fixtures for the progression test suite: in-memory protocol
fakes for unit tests, a SQLite-backed DatabaseService for store tests, and a
PostgreSQL testcontainer for concurrency tests.

Responsibilities
----------------
- Fake stats, role, definition and store implementations
- Level curves and a small achievement catalog shared by engine tests
- Mock EventBus for asserting published events
- DatabaseService bound to a throwaway SQLite file (aiosqlite)
- PostgreSQL testcontainer (skipped when Docker is unavailable)

Architecture Notes
------------------
- Unit tests use fakes (fast, isolated)
- Integration tests use a real database through DatabaseService
- Database fixtures create the schema per test and dispose the engine after
"""

from __future__ import annotations

import asyncio
import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from typing import Any, AsyncGenerator, Dict, Generator, Iterable, List, Optional

import pytest
import pytest_asyncio
from testcontainers.postgres import PostgresContainer

from nordics.core.config.manager import ConfigManager
from nordics.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from nordics.core.database.service import DatabaseService
from nordics.core.logging.logger import get_logger
from nordics.modules.achievements.authorization import ClaimAuthorizer
from nordics.modules.achievements.catalog import parse_definitions
from nordics.modules.achievements.definitions import (
    AchievementDefinition,
    UnlockedAchievement,
)
from nordics.modules.achievements.engine import AchievementEngine
from nordics.modules.achievements.results import ClaimWriteResult
from nordics.modules.leveling.catalog import LevelCurveRegistry
from nordics.modules.leveling.curve import LevelCurve, LevelDefinition
from nordics.modules.shared.entities import EntityKind, EntityRef
from nordics.modules.shared.exceptions import TransientStoreError

logger = get_logger(__name__)

PLAYER_FLOORS = [0, 100, 250, 500, 1000, 1750, 2750, 4000, 6000, 8500, 12000, 16500, 22500, 30000, 40000]

PLAYER_UUID = "069a79f4-44e9-4726-a5be-fca90e38aaf5"
TOWN_ID = "ravenholm"

# ============================================================================
# CATALOG DATA
# ============================================================================

PLAYER_CATALOG: List[Dict[str, Any]] = [
    {
        "id": "playtime",
        "name": "Time Lord",
        "stat": "custom_minecraft_play_time",
        "tiers": [
            {"tier": 1, "name": "Newcomer", "threshold": 1, "points": 50},
            {"tier": 2, "name": "Regular", "threshold": 10, "points": 100},
            {"tier": 3, "name": "Dedicated", "threshold": 50, "points": 150},
        ],
    },
    {
        "id": "farmer",
        "name": "Farmer",
        "stat": "mined.wheat",
        "tiers": [
            {"tier": 1, "name": "Harvester", "threshold": 10, "points": 75},
        ],
    },
]

TOWN_CATALOG: List[Dict[str, Any]] = [
    {
        "id": "population",
        "name": "Population Growth",
        "stat": "population",
        "tiers": [
            {"tier": 1, "name": "Small Settlement", "threshold": 3, "points": 50},
            {"tier": 2, "name": "Growing Community", "threshold": 5, "points": 100},
        ],
    },
    {
        "id": "capital",
        "name": "Capital",
        "stat": "capital",
        "tiers": [{"tier": 1, "name": "Seat of Power", "threshold": 1, "points": 200}],
    },
]


# ============================================================================
# PROTOCOL FAKES (Unit Tests)
# ============================================================================


class FakeTown:
    def __init__(
        self,
        town_id: str,
        *,
        mayor: Optional[str] = None,
        population: int = 0,
        nation_id: Optional[str] = None,
        is_independent: bool = True,
        type: Optional[str] = None,
        balance: float = 0.0,
    ) -> None:
        self.id = town_id
        self.mayor = mayor
        self.population = population
        self.nation_id = nation_id
        self.is_independent = is_independent
        self.type = type
        self.balance = balance


class FakeStatsSource:
    """Stats keyed by ``EntityRef.key``; towns are kept for permission checks."""

    def __init__(self) -> None:
        self.stats: Dict[str, Dict[str, Any]] = {}
        self.towns: Dict[str, FakeTown] = {}
        self.calls = 0

    def set(self, entity: EntityRef, stats: Dict[str, Any]) -> None:
        self.stats[entity.key] = dict(stats)

    async def get_stats(self, entity: EntityRef) -> Dict[str, Any]:
        self.calls += 1
        return dict(self.stats.get(entity.key, {}))

    async def get_town(self, town_id: str) -> Optional[FakeTown]:
        return self.towns.get(str(town_id))

    async def list_entities(self, kind: EntityKind | str) -> List[EntityRef]:
        entity_kind = EntityKind.parse(kind)
        prefix = f"{entity_kind.value}:"
        return [
            EntityRef(entity_kind, key[len(prefix):])
            for key in sorted(self.stats)
            if key.startswith(prefix)
        ]


class FakeRoleSource:
    def __init__(self) -> None:
        self.roles: Dict[str, str] = {}
        self.usernames: Dict[str, str] = {}

    async def get_role(self, user_id: str) -> Optional[str]:
        return self.roles.get(user_id)

    async def get_minecraft_username(self, user_id: str) -> Optional[str]:
        return self.usernames.get(user_id)


class FakeDefinitionSource:
    def __init__(self, rows: Dict[EntityKind, List[Dict[str, Any]]]) -> None:
        self.rows = rows
        self.loads = 0

    async def get_achievement_definitions(self, kind: EntityKind | str) -> List[AchievementDefinition]:
        self.loads += 1
        entity_kind = EntityKind.parse(kind)
        return parse_definitions(self.rows.get(entity_kind, []), entity_kind)


class FakeLevelSource:
    def __init__(self, tables: Dict[EntityKind, List[LevelDefinition]]) -> None:
        self.tables = tables

    async def get_level_definitions(self, kind: EntityKind | str) -> List[LevelDefinition]:
        return list(self.tables[EntityKind.parse(kind)])


class FakeAchievementStore:
    """
    In-memory AchievementStore with the same claim semantics as the SQL store.

    The lock plays the role of the unique key + conditional update; the
    ``sleep(0)`` calls yield so concurrent claims genuinely interleave.
    """

    def __init__(self) -> None:
        self.entities: set[str] = set()
        self.unlocked: Dict[tuple[str, str], UnlockedAchievement] = {}
        self.xp: Dict[str, int] = {}
        self.levels: Dict[str, int] = {}
        self.audit: List[Dict[str, Any]] = []
        self.fail_claims_with: Optional[Exception] = None
        self._lock = asyncio.Lock()

    def add_entity(self, entity: EntityRef) -> None:
        self.entities.add(entity.key)

    async def find_unlocked_achievement(
        self, entity: EntityRef, tier_id: str
    ) -> Optional[UnlockedAchievement]:
        await asyncio.sleep(0)
        return self.unlocked.get((entity.key, tier_id))

    async def list_unlocked(self, entity: EntityRef) -> Dict[str, UnlockedAchievement]:
        return {tier: row for (key, tier), row in self.unlocked.items() if key == entity.key}

    async def insert_reached(self, entity: EntityRef, tier_ids: Iterable[str]) -> int:
        created = 0
        for tier_id in tier_ids:
            if (entity.key, tier_id) not in self.unlocked:
                self.unlocked[(entity.key, tier_id)] = UnlockedAchievement(
                    entity_kind=entity.kind, entity_id=entity.entity_id, tier_id=tier_id
                )
                created += 1
        return created

    async def claim_tier_atomic(
        self,
        entity: EntityRef,
        tier_id: str,
        points: int,
        *,
        actor_id: Optional[str] = None,
        is_admin_claim: bool = False,
        level_resolver: Any = None,
    ) -> ClaimWriteResult:
        if self.fail_claims_with is not None:
            raise self.fail_claims_with

        async with self._lock:
            await asyncio.sleep(0)
            row = self.unlocked.get((entity.key, tier_id))
            if row is not None and row.is_claimed:
                return ClaimWriteResult(False, True, self.xp.get(entity.key, 0))

            self.unlocked[(entity.key, tier_id)] = UnlockedAchievement(
                entity_kind=entity.kind,
                entity_id=entity.entity_id,
                tier_id=tier_id,
                is_claimed=True,
                claimed_by=actor_id,
            )
            total = self.xp.get(entity.key, 0) + points
            self.xp[entity.key] = total
            self.levels[entity.key] = level_resolver(total) if level_resolver else 1
            self.audit.append(
                {
                    "entity": entity.key,
                    "tier_id": tier_id,
                    "xp_awarded": points,
                    "actor_id": actor_id,
                    "is_admin_claim": is_admin_claim,
                }
            )
            return ClaimWriteResult(True, False, total)

    async def add_xp(self, entity: EntityRef, amount: int) -> int:
        self.xp[entity.key] = self.xp.get(entity.key, 0) + amount
        return self.xp[entity.key]

    async def get_total_xp(self, entity: EntityRef) -> int:
        return self.xp.get(entity.key, 0)

    async def entity_exists(self, entity: EntityRef) -> bool:
        return entity.key in self.entities


# ============================================================================
# DOMAIN FIXTURES
# ============================================================================


@pytest.fixture
def player() -> EntityRef:
    return EntityRef.player(PLAYER_UUID)


@pytest.fixture
def town() -> EntityRef:
    return EntityRef.town(TOWN_ID)


@pytest.fixture
def player_curve() -> LevelCurve:
    return LevelCurve(
        [LevelDefinition(level=i + 1, xp_required=xp) for i, xp in enumerate(PLAYER_FLOORS)],
        kind="player",
    )


@pytest.fixture
def town_curve() -> LevelCurve:
    return LevelCurve.from_definitions(
        ConfigManager.get("levels.town.definitions"), kind="town"
    )


@pytest.fixture
def curve_registry(player_curve: LevelCurve, town_curve: LevelCurve) -> LevelCurveRegistry:
    return LevelCurveRegistry(
        FakeLevelSource(
            {
                EntityKind.PLAYER: list(player_curve.definitions),
                EntityKind.TOWN: list(town_curve.definitions),
            }
        )
    )


@pytest.fixture
def stats_source() -> FakeStatsSource:
    return FakeStatsSource()


@pytest.fixture
def role_source() -> FakeRoleSource:
    source = FakeRoleSource()
    source.roles.update({"admin-1": "admin", "mod-1": "moderator", "member-1": "member"})
    source.usernames.update({"member-1": "Steve"})
    return source


@pytest.fixture
def definition_source() -> FakeDefinitionSource:
    return FakeDefinitionSource({EntityKind.PLAYER: PLAYER_CATALOG, EntityKind.TOWN: TOWN_CATALOG})


@pytest.fixture
def achievement_store(player: EntityRef, town: EntityRef) -> FakeAchievementStore:
    store = FakeAchievementStore()
    store.add_entity(player)
    store.add_entity(town)
    return store


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for unit tests.

    Scope: function
    Uses: Unit tests that assert on published events
    """
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=[])
    mock_bus.subscribe = mocker.MagicMock()
    return mock_bus


@pytest.fixture
def engine(
    achievement_store: FakeAchievementStore,
    stats_source: FakeStatsSource,
    definition_source: FakeDefinitionSource,
    curve_registry: LevelCurveRegistry,
    role_source: FakeRoleSource,
    mock_event_bus,
) -> AchievementEngine:
    return AchievementEngine(
        store=achievement_store,
        stats_source=stats_source,
        definition_source=definition_source,
        curves=curve_registry,
        authorizer=ClaimAuthorizer(role_source, ConfigManager),
        config_manager=ConfigManager,
        event_bus=mock_event_bus,
    )


@pytest.fixture
def fast_retry_policy() -> DatabaseRetryPolicy:
    return DatabaseRetryPolicy(
        DatabaseRetryConfig(max_attempts=3, initial_backoff_ms=1, max_backoff_ms=2, jitter_ms=0)
    )


@pytest.fixture
def transient_failure() -> TransientStoreError:
    return TransientStoreError("achievements.claim_tier", "OperationalError")


# ============================================================================
# DATABASE FIXTURES (Integration Tests)
# ============================================================================


@pytest_asyncio.fixture
async def sqlite_database(tmp_path) -> AsyncGenerator[str, None]:
    """
    DatabaseService bound to a fresh SQLite file with the full schema.

    Scope: function (clean database per test)
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'nordics.db'}"
    await DatabaseService.shutdown()
    await DatabaseService.initialize(url=url)
    await DatabaseService.create_all()

    yield url

    await DatabaseService.shutdown()


@pytest.fixture(scope="session")
def postgres_url() -> Generator[str, None, None]:
    """
    Start a PostgreSQL testcontainer; skip when Docker is unavailable.

    Scope: session (container persists across all tests)
    """
    try:
        container = PostgresContainer(image="postgres:16-alpine", driver="asyncpg")
        container.start()
    except Exception as exc:
        pytest.skip(f"PostgreSQL testcontainer unavailable: {exc}")

    logger.info("PostgreSQL testcontainer started")
    yield container.get_connection_url()

    container.stop()


@pytest_asyncio.fixture
async def postgres_database(postgres_url: str) -> AsyncGenerator[str, None]:
    await DatabaseService.shutdown()
    await DatabaseService.initialize(url=postgres_url)
    await DatabaseService.drop_all()
    await DatabaseService.create_all()

    yield postgres_url

    await DatabaseService.shutdown()
