"""
Nordics Progression Test Suite
==============================

Test Organization
-----------------
- tests/unit/          : Fast unit tests with in-memory fakes (no external dependencies)
- tests/unit/domain/   : Pure domain logic (level curves, stats, catalogs)
- tests/integration/   : SQLite-backed store tests and PostgreSQL testcontainers

Testing Philosophy
------------------
- Unit tests: Fast, isolated, test business logic
- Integration tests: Slower, test real infrastructure interactions
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
