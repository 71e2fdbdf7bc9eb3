"""
Database Service - Core Infrastructure Layer

Purpose
-------
Centralized async database engine and session management for Nordics
progression. Provides atomic transactions and health
checks for every store that persists levels, stats and achievement claims.

Responsibilities
----------------
- Initialize and manage a single AsyncEngine instance with connection pooling
- Provide async context managers for read-only sessions and atomic transactions
- Enforce transaction discipline: automatic commit on success, rollback on exception
- Expose health checks for infrastructure monitoring
- Configure statement timeouts for PostgreSQL connections
- Create the schema for development databases and test runs

Non-Responsibilities
--------------------
- Retry policies for transient failures (handled by DatabaseRetryPolicy)
- Database migrations for production deployments
- Domain logic or business rules

Architecture Notes
------------------
**Transaction Model**:
- `get_transaction()` is the primary interface for all state mutations
- Automatic commit on success, rollback on any exception
- Never manually call `session.commit()` inside service code

**Connection Pooling**:
- AsyncAdaptedQueuePool for PostgreSQL (configurable pool_size and max_overflow)
- NullPool for testing environments and SQLite files

**Configuration**:
All values sourced from Config with safe defaults:
- DATABASE_URL (required, or passed to `initialize(url=...)`)
- DATABASE_POOL_SIZE / DATABASE_MAX_OVERFLOW
- DATABASE_POOL_RECYCLE / DATABASE_POOL_TIMEOUT
- DATABASE_STATEMENT_TIMEOUT_MS
- DATABASE_ECHO

Usage Example
-------------
>>> async with DatabaseService.get_transaction() as session:
>>>     await session.execute(
>>>         update(EntityProgression)
>>>         .where(EntityProgression.entity_id == player_uuid)
>>>         .values(total_xp=EntityProgression.total_xp + 50)
>>>     )
>>>     # Automatic commit on exit
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional, Type

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, Pool

from nordics.core.config.config import Config
from nordics.core.database.base import Base
from nordics.core.exceptions import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
)
from nordics.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Configuration Snapshot
# ============================================================================


@dataclass(frozen=True)
class _DatabaseConfigSnapshot:
    """
    Immutable snapshot of database configuration.

    Provides a stable configuration view for the lifetime of the engine.
    """

    url: str
    echo: bool
    pool_class: Type[Pool]
    pool_size: int
    max_overflow: int
    pool_recycle: int
    pool_timeout: int
    statement_timeout_ms: int

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith(("postgresql://", "postgresql+asyncpg://"))

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def url_scheme(self) -> str:
        return self.url.split(":", 1)[0] if ":" in self.url else "unknown"


# ============================================================================
# DatabaseService - Core Infrastructure
# ============================================================================


class DatabaseService:
    """
    Centralized async database engine and session management.

    Public API
    ----------
    **Lifecycle**:
    - initialize(url=None) -> Initialize engine and session factory
    - shutdown() -> Dispose engine and cleanup resources
    - create_all() / drop_all() -> Schema management for dev and tests

    **Session Management**:
    - get_session() -> Read-only or manual transaction control
    - get_transaction() -> Atomic write transaction (preferred)

    **Utilities**:
    - health_check() -> Fast database reachability check
    - dialect_name() -> "postgresql" or "sqlite", used for dialect-specific SQL
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _config_snapshot: Optional[_DatabaseConfigSnapshot] = None
    _init_lock: asyncio.Lock = asyncio.Lock()

    # ========================================================================
    # Initialization & Shutdown
    # ========================================================================

    @classmethod
    def _build_config_snapshot(cls, url: Optional[str] = None) -> _DatabaseConfigSnapshot:
        """
        Build an immutable configuration snapshot from Config.

        Raises
        ------
        DatabaseInitializationError
            If DATABASE_URL is missing or invalid.
        """
        database_url = url or getattr(Config, "DATABASE_URL", None)
        if not database_url or not isinstance(database_url, str):
            logger.error("DATABASE_URL is not configured or invalid")
            raise DatabaseInitializationError(
                "DATABASE_URL must be configured as a non-empty string"
            )

        is_testing = Config.is_testing()
        is_sqlite = database_url.startswith("sqlite")

        pool_class: Type[Pool] = (
            NullPool if (is_testing or is_sqlite) else AsyncAdaptedQueuePool
        )

        snapshot = _DatabaseConfigSnapshot(
            url=database_url,
            echo=bool(getattr(Config, "DATABASE_ECHO", False)),
            pool_class=pool_class,
            pool_size=int(getattr(Config, "DATABASE_POOL_SIZE", 10)),
            max_overflow=int(getattr(Config, "DATABASE_MAX_OVERFLOW", 10)),
            pool_recycle=int(getattr(Config, "DATABASE_POOL_RECYCLE", 1800)),
            pool_timeout=int(getattr(Config, "DATABASE_POOL_TIMEOUT", 30)),
            statement_timeout_ms=int(
                getattr(Config, "DATABASE_STATEMENT_TIMEOUT_MS", 30_000)
            ),
        )

        logger.debug(
            "Database configuration snapshot created",
            extra={
                "url_scheme": snapshot.url_scheme,
                "pool_class": pool_class.__name__,
                "pool_size": snapshot.pool_size,
                "max_overflow": snapshot.max_overflow,
                "statement_timeout_ms": snapshot.statement_timeout_ms,
                "is_testing": is_testing,
            },
        )

        return snapshot

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Initialize the database engine and session factory.

        Idempotent: returns immediately when already initialized. ``url``
        overrides Config.DATABASE_URL (tests point this at SQLite or a
        throwaway PostgreSQL container).

        Raises
        ------
        DatabaseInitializationError
            If configuration is invalid or engine creation fails.
        """
        async with cls._init_lock:
            if cls._engine is not None:
                logger.debug("DatabaseService already initialized; skipping")
                return

            logger.info("Initializing DatabaseService")

            try:
                config = cls._build_config_snapshot(url)
                cls._config_snapshot = config

                engine_kwargs: dict[str, Any] = {
                    "echo": config.echo,
                    "poolclass": config.pool_class,
                }

                if config.pool_class is AsyncAdaptedQueuePool:
                    engine_kwargs.update(
                        {
                            "pool_size": config.pool_size,
                            "max_overflow": config.max_overflow,
                            "pool_recycle": config.pool_recycle,
                            "pool_timeout": config.pool_timeout,
                            "pool_pre_ping": True,
                        }
                    )

                cls._engine = create_async_engine(config.url, **engine_kwargs)
                cls._session_factory = async_sessionmaker(
                    bind=cls._engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                )

                logger.info(
                    "DatabaseService initialized successfully",
                    extra={
                        "url_scheme": config.url_scheme,
                        "pool_class": config.pool_class.__name__,
                    },
                )

            except Exception as exc:
                cls._engine = None
                cls._session_factory = None
                cls._config_snapshot = None
                logger.error(
                    "DatabaseService initialization failed",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "config_error": isinstance(exc, DatabaseInitializationError),
                    },
                    exc_info=True,
                )
                raise DatabaseInitializationError(
                    f"Database initialization failed: {exc}"
                ) from exc

    @classmethod
    async def shutdown(cls) -> None:
        """
        Dispose the engine and reset internal state.

        Safe to call multiple times; no-op if already shut down.
        """
        async with cls._init_lock:
            if cls._engine is None:
                logger.debug("DatabaseService not initialized; nothing to shutdown")
                return

            logger.info("Shutting down DatabaseService")

            try:
                await cls._engine.dispose()
                logger.info("DatabaseService shutdown complete")

            except Exception as exc:
                logger.error(
                    "Error during DatabaseService shutdown",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                raise

            finally:
                cls._engine = None
                cls._session_factory = None
                cls._config_snapshot = None

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    @classmethod
    def dialect_name(cls) -> str:
        cls._ensure_initialized()
        assert cls._engine is not None
        return cls._engine.dialect.name

    # ========================================================================
    # Schema Management
    # ========================================================================

    @classmethod
    async def create_all(cls) -> None:
        """Create every table registered on ``Base.metadata``."""
        cls._ensure_initialized()
        assert cls._engine is not None

        # Registers all models on Base.metadata.
        import nordics.database.models  # noqa: F401

        async with cls._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info(
            "Database schema created",
            extra={"table_count": len(Base.metadata.tables)},
        )

    @classmethod
    async def drop_all(cls) -> None:
        cls._ensure_initialized()
        assert cls._engine is not None

        import nordics.database.models  # noqa: F401

        async with cls._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        logger.warning("Database schema dropped")

    # ========================================================================
    # Health Check
    # ========================================================================

    @classmethod
    async def health_check(cls) -> bool:
        """
        Perform a lightweight health check by executing ``SELECT 1``.

        Never raises; returns False on any failure.
        """
        if cls._engine is None:
            logger.warning("Health check called on uninitialized DatabaseService")
            return False

        start = time.perf_counter()
        success = False

        try:
            async with cls._engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            success = True
            return True

        except (OperationalError, DBAPIError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return False

        except Exception as exc:
            logger.error(
                "Unexpected error during database health check",
                extra={"error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )
            return False

        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            logger.debug(
                "Database health check completed",
                extra={"success": success, "duration_ms": duration_ms},
            )

    # ========================================================================
    # Session & Transaction Context Managers
    # ========================================================================

    @classmethod
    def _ensure_initialized(cls) -> None:
        if cls._session_factory is None or cls._engine is None:
            logger.error("DatabaseService operation attempted before initialization")
            raise DatabaseNotInitializedError(
                "DatabaseService must be initialized before use. "
                "Call DatabaseService.initialize() during startup."
            )

    @classmethod
    def _get_config_snapshot(cls) -> _DatabaseConfigSnapshot:
        if cls._config_snapshot is None:
            raise DatabaseNotInitializedError("DatabaseService is not initialized")
        return cls._config_snapshot

    @classmethod
    async def _apply_statement_timeout(cls, session: AsyncSession) -> None:
        config = cls._get_config_snapshot()
        if config.is_postgres:
            await session.execute(
                text(f"SET LOCAL statement_timeout = {config.statement_timeout_ms}")
            )

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Create a database session without automatic commit.

        For write operations, prefer `get_transaction()`.

        Raises
        ------
        DatabaseNotInitializedError
            If DatabaseService has not been initialized.
        """
        cls._ensure_initialized()
        assert cls._session_factory is not None

        start = time.perf_counter()
        async with cls._session_factory() as session:
            try:
                await cls._apply_statement_timeout(session)
                logger.debug("Database session opened (read-only)")
                yield session

            finally:
                await session.close()
                logger.debug(
                    "Database session closed",
                    extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
                )

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Create a database session wrapped in an atomic transaction.

        Commits when the block exits normally; rolls back and re-raises on
        any exception, including task cancellation.

        Raises
        ------
        DatabaseNotInitializedError
            If DatabaseService has not been initialized.
        OperationalError, DBAPIError
            For database connection or database-level errors.
        """
        cls._ensure_initialized()
        assert cls._session_factory is not None

        start = time.perf_counter()
        async with cls._session_factory() as session:
            committed = False

            try:
                await cls._apply_statement_timeout(session)
                logger.debug("Database transaction started")
                yield session

                await session.commit()
                committed = True
                logger.debug(
                    "Database transaction committed",
                    extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
                )

            except OperationalError as exc:
                await session.rollback()
                logger.error(
                    "OperationalError in transaction; rolled back",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "committed": committed,
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                    exc_info=True,
                )
                raise

            except DBAPIError as exc:
                await session.rollback()
                logger.error(
                    "DBAPIError in transaction; rolled back",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "committed": committed,
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                    exc_info=True,
                )
                raise

            except (Exception, asyncio.CancelledError) as exc:
                # Domain exceptions and cancellation also roll back.
                await session.rollback()
                logger.debug(
                    "Transaction rolled back",
                    extra={
                        "error_type": type(exc).__name__,
                        "committed": committed,
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                )
                raise

            finally:
                await session.close()
                logger.debug("Database transaction session closed")
