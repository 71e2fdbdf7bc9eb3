"""
Core infrastructure for Nordics progression.

- **config**: ``Config`` (environment) and ``ConfigManager`` (YAML)
- **database**: async engine, sessions, transactions, retry policy
- **event**: ``EventBus`` with priority tiers
- **logging**: structured logging and ``LogContext``
- **cache**: stats caching (memory, Redis)
- **validation**: ``InputValidator``
- **services**: ``ServiceContainer`` wiring

Submodules are imported directly; this package re-exports nothing so that
importing one subsystem never drags in the others.
"""
