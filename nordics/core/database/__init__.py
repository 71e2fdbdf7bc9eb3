"""
Database subsystem for Nordics.

Provides the async SQLAlchemy engine, session and transaction management,
and the retry policy for transient failures. Also exports the ORM base
classes and mixins for model definitions.
"""

from nordics.core.database.base import Base, IdMixin, JSONType, TimestampMixin, utcnow
from nordics.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from nordics.core.database.service import DatabaseService
from nordics.core.exceptions import DatabaseInitializationError, DatabaseNotInitializedError

__all__ = [
    "Base",
    "IdMixin",
    "JSONType",
    "TimestampMixin",
    "utcnow",
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
