"""Domain modules: leveling and achievements."""
