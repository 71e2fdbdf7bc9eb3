"""
Tiered achievements for players and towns.

- **definitions.py**: definition/tier/unlock value types, ``AchievementCatalog``
- **catalog.py**: YAML loading and definition sources
- **stats.py**: stats flattening, unit conversion, town stats
- **sources.py**: stats and role boundaries
- **store.py**: persistence and the atomic claim
- **authorization.py**: role hierarchy and town claim rules
- **results.py**: ``ClaimResult``, ``AchievementState`` and friends
- **engine.py**: ``AchievementEngine``
- **seeding.py**: ``DefinitionSeeder``
"""
