"""
Database Retry Policy - Infrastructure Resilience

Purpose
-------
Configurable retry policy for transient database failures with exponential
backoff and jitter. Achievement claims run through it so a dropped
connection or a serialization failure does not surface to the player.

Architecture Notes
------------------
**Retry Classification**:
- Retriable: OperationalError, DBAPIError (connection/transient issues)
- Never retried: IntegrityError (constraint violations are deterministic),
  and every non-database exception

**Backoff Strategy**:
- min(initial * 2^(attempt-1), max) + random(0, jitter)

**Transaction Ownership**:
- The retried operation opens its own transaction. Never retry inside one.

Configuration
-------------
All values sourced from Config:
- DATABASE_RETRY_MAX_ATTEMPTS (default: 3)
- DATABASE_RETRY_INITIAL_BACKOFF_MS (default: 50)
- DATABASE_RETRY_MAX_BACKOFF_MS (default: 1000)
- DATABASE_RETRY_JITTER_MS (default: 50)

Usage Example
-------------
>>> retry_policy = DatabaseRetryPolicy.from_config()
>>>
>>> async def claim() -> ClaimWriteResult:
>>>     async with DatabaseService.get_transaction() as session:
>>>         ...
>>>
>>> await retry_policy.execute(
>>>     claim,
>>>     operation_name="achievements.claim_tier",
>>>     context={"tier_id": "playtime_tier_1"},
>>> )
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from nordics.core.config.config import Config
from nordics.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class DatabaseRetryConfig:
    """
    Configuration for database retry behavior.

    Attributes
    ----------
    max_attempts : int
        Maximum number of attempts (including initial attempt).
    initial_backoff_ms : int
        Initial backoff duration in milliseconds.
    max_backoff_ms : int
        Maximum backoff duration in milliseconds.
    jitter_ms : int
        Maximum random jitter to add to backoff in milliseconds.
    retriable_exceptions : Tuple[Type[BaseException], ...]
        Exception types considered retriable.
    non_retriable_exceptions : Tuple[Type[BaseException], ...]
        Subclasses of the retriable types that must fail immediately.
    """

    max_attempts: int
    initial_backoff_ms: int
    max_backoff_ms: int
    jitter_ms: int
    retriable_exceptions: Tuple[Type[BaseException], ...] = (
        OperationalError,
        DBAPIError,
    )
    non_retriable_exceptions: Tuple[Type[BaseException], ...] = (IntegrityError,)

    @classmethod
    def from_config(cls) -> DatabaseRetryConfig:
        return cls(
            max_attempts=max(1, int(getattr(Config, "DATABASE_RETRY_MAX_ATTEMPTS", 3))),
            initial_backoff_ms=int(
                getattr(Config, "DATABASE_RETRY_INITIAL_BACKOFF_MS", 50)
            ),
            max_backoff_ms=int(getattr(Config, "DATABASE_RETRY_MAX_BACKOFF_MS", 1000)),
            jitter_ms=int(getattr(Config, "DATABASE_RETRY_JITTER_MS", 50)),
        )


# ============================================================================
# Retry Policy
# ============================================================================


class DatabaseRetryPolicy:
    """
    Execute async database operations with retry semantics.

    Public API
    ----------
    - from_config() -> Create policy from Config
    - execute(operation, operation_name, context) -> Execute with retries
    """

    def __init__(self, config: DatabaseRetryConfig) -> None:
        self._config = config

    @property
    def config(self) -> DatabaseRetryConfig:
        return self._config

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(DatabaseRetryConfig.from_config())

    def is_retriable(self, exc: BaseException) -> bool:
        if isinstance(exc, self._config.non_retriable_exceptions):
            return False
        return isinstance(exc, self._config.retriable_exceptions)

    def compute_backoff_ms(self, attempt: int) -> int:
        """
        Compute backoff duration for a 1-indexed attempt, capped and jittered.
        """
        exponent = max(attempt - 1, 0)
        base = self._config.initial_backoff_ms * (2**exponent)
        capped = min(base, self._config.max_backoff_ms)
        jitter = (
            random.randint(0, self._config.jitter_ms)
            if self._config.jitter_ms > 0
            else 0
        )
        return capped + jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Execute an async operation, retrying transient database failures.

        Parameters
        ----------
        operation : Callable[[], Awaitable[T]]
            Zero-argument async callable performing the whole unit of work,
            including opening its transaction.
        operation_name : str
            Stable identifier for logging (e.g., "achievements.claim_tier").
        context : Optional[dict[str, Any]]
            Additional structured context for logs.

        Raises
        ------
        BaseException
            The last exception once retries are exhausted, or any
            non-retriable exception immediately. Cancellation is never
            retried.
        """
        ctx_extra = context.copy() if context else {}
        ctx_extra["operation"] = operation_name

        attempt = 0

        while True:
            attempt += 1

            try:
                logger.debug(
                    "Executing database operation with retry policy",
                    extra={**ctx_extra, "attempt": attempt},
                )
                return await operation()

            except Exception as exc:
                error_type = type(exc).__name__
                retriable = self.is_retriable(exc)
                will_retry = retriable and attempt < self._config.max_attempts

                if not retriable:
                    raise

                logger.warning(
                    "Database operation failed",
                    extra={
                        **ctx_extra,
                        "attempt": attempt,
                        "error_type": error_type,
                        "will_retry": will_retry,
                    },
                )

                if not will_retry:
                    logger.error(
                        "Database operation retries exhausted",
                        extra={
                            **ctx_extra,
                            "attempt": attempt,
                            "error_type": error_type,
                            "max_attempts": self._config.max_attempts,
                        },
                    )
                    raise

                backoff_ms = self.compute_backoff_ms(attempt)
                logger.debug(
                    "Backing off before retry",
                    extra={**ctx_extra, "attempt": attempt, "backoff_ms": backoff_ms},
                )
                await asyncio.sleep(backoff_ms / 1000.0)
