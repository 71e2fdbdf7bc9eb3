"""
Infrastructure exceptions for Nordics progression.

Purpose
-------
Define the structured exception hierarchy for infrastructure-level concerns:
database failures, configuration errors, and malformed data catalogs. These
need engineering attention and never reach players as-is.

Design Notes
------------
- All infrastructure exceptions inherit from `NordicsInfrastructureException`.
- Each exception carries `message`, `details`, `severity`, `is_retryable`
  and `error_code`, mirroring the domain exceptions in
  `nordics.modules.shared.exceptions`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from nordics.modules.shared.exceptions import ErrorSeverity


class NordicsInfrastructureException(Exception):
    """
    Base exception for all infrastructure-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"


class ConfigurationError(NordicsInfrastructureException):
    """
    Raised when a configuration key is invalid or missing.

    Args:
        config_key: The configuration key that has issues
        message: Description of the configuration problem
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )


class InvalidLevelTableError(ConfigurationError):
    """
    Raised when a level table violates its ordering invariants.

    Level tables are validated once at load time so that level calculation
    itself can never fail.
    """

    def __init__(self, kind: str, reason: str) -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(f"levels.{kind}", reason)
        self.error_code = "INVALID_LEVEL_TABLE"


class InvalidAchievementCatalogError(ConfigurationError):
    """Raised when an achievement catalog has malformed or misordered tiers."""

    def __init__(self, achievement_id: str, reason: str) -> None:
        self.achievement_id = achievement_id
        self.reason = reason
        super().__init__(f"achievements.{achievement_id}", reason)
        self.error_code = "INVALID_ACHIEVEMENT_CATALOG"


class DatabaseError(NordicsInfrastructureException):
    """
    Raised when database operations fail.

    Args:
        operation: Name of the database operation that failed
        original_error: The underlying exception
    """

    DEFAULT_SEVERITY = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, original_error: Optional[Exception] = None) -> None:
        self.operation = operation
        self.original_error = original_error
        message = f"Database operation failed: {operation}"
        if original_error is not None:
            message = f"{message} ({type(original_error).__name__})"
        super().__init__(
            message,
            details={
                "operation": operation,
                "original_error": str(original_error) if original_error else None,
            },
            error_code="DATABASE_ERROR",
        )


class DatabaseInitializationError(RuntimeError):
    """Raised when database engine initialization fails."""


class DatabaseNotInitializedError(RuntimeError):
    """Raised when database operations are attempted before initialization."""
