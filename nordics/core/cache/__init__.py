"""
Stats caching.

- **stats_cache.py**: the ``StatsCache`` protocol, in-memory and Redis
  implementations, and ``CachedStatsSource``
"""
