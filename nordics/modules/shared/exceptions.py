"""
Domain exceptions for Nordics progression.

Purpose
-------
Define the structured, domain-specific exception hierarchy for leveling and
achievement claiming. Services raise these for business rule violations;
the achievement engine converts them into structured ClaimResult values so
callers never see a raw exception for an expected failure.

Design Notes
------------
- All domain exceptions inherit from `NordicsDomainException`.
- Each exception carries:
  - `message`: human-readable description
  - `details`: additional structured context (dict-like)
  - `severity`: `ErrorSeverity` value for logging/alerting
  - `is_retryable`: whether the operation can be retried
  - `error_code`: short, stable identifier for programmatic use
- Helper functions (`is_transient_error`, `get_error_severity`, `should_alert`)
  centralize common exception handling patterns.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"  # Expected, not concerning (e.g., double claims)
    INFO = "info"  # Normal operation (e.g., validation failures)
    WARNING = "warning"  # Concerning but handled (e.g., retryable errors)
    ERROR = "error"  # Unexpected errors requiring attention
    CRITICAL = "critical"  # System-level failures requiring immediate action


class NordicsDomainException(Exception):
    """
    Base exception for all domain-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error (dict-like)
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling

    Example:
        >>> raise NordicsDomainException(
        ...     "Claim failed",
        ...     {"tier_id": "playtime_tier_1"}
        ... )
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
        """Convert exception to dictionary for logging/serialization."""
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

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r}"
            ")"
        )


class NotFoundError(NordicsDomainException):
    """
    Raised when a requested resource cannot be found.

    Args:
        resource_type: Type of resource (e.g., "Tier", "Entity")
        identifier: Optional identifier for the missing resource
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class InvalidInputError(NordicsDomainException):
    """
    Raised when caller input fails validation.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field, "validation_message": message},
            error_code="INVALID_INPUT",
        )


class ThresholdNotMetError(NordicsDomainException):
    """
    Raised when a claim is attempted before the stat reaches the threshold.

    Args:
        tier_id: Tier being claimed
        current_value: The entity's current stat value
        threshold: The tier's threshold
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, tier_id: str, current_value: float, threshold: float) -> None:
        self.tier_id = tier_id
        self.current_value = current_value
        self.threshold = threshold
        super().__init__(
            f"Requirement not met for {tier_id}: {current_value:g} of {threshold:g}",
            details={
                "tier_id": tier_id,
                "current_value": current_value,
                "threshold": threshold,
                "remaining": threshold - current_value,
            },
            error_code="THRESHOLD_NOT_MET",
        )


class AlreadyClaimedError(NordicsDomainException):
    """
    Raised when a tier has already been claimed for an entity.

    Repeat claims are an expected no-op: clients retry, double-click, or
    race each other. Logged at debug level.
    """

    DEFAULT_SEVERITY = ErrorSeverity.DEBUG

    def __init__(self, entity_id: str, tier_id: str) -> None:
        self.entity_id = entity_id
        self.tier_id = tier_id
        super().__init__(
            f"Achievement tier {tier_id} already claimed",
            details={"entity_id": entity_id, "tier_id": tier_id},
            error_code="ALREADY_CLAIMED",
        )


class UnauthorizedError(NordicsDomainException):
    """
    Raised when a caller lacks the privilege required for an operation.

    Args:
        actor_id: The caller's user id
        action: The attempted action
        required_role: The minimum role for the action, when role-gated
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(
        self,
        actor_id: Optional[str],
        action: str,
        required_role: Optional[str] = None,
    ) -> None:
        self.actor_id = actor_id
        self.action = action
        self.required_role = required_role
        message = f"Not authorized to {action}"
        if required_role:
            message = f"{message} (requires {required_role})"
        super().__init__(
            message,
            details={
                "actor_id": actor_id,
                "action": action,
                "required_role": required_role,
            },
            error_code="UNAUTHORIZED",
        )


class TransientStoreError(NordicsDomainException):
    """
    Raised when the store fails for a reason that may succeed on retry.

    Nothing was committed: the claim transaction rolled back.
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(
            f"Temporary storage failure during {operation}",
            details={"operation": operation, "reason": reason},
            error_code="TRANSIENT_STORE_ERROR",
        )


# Utility functions for exception handling patterns


def is_transient_error(exc: Exception) -> bool:
    """Check if an exception represents a transient error that can be retried."""
    if isinstance(exc, NordicsDomainException):
        return exc.is_retryable
    return False


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """Get the severity level of an exception for logging."""
    if isinstance(exc, NordicsDomainException):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    """True if severity is ERROR or CRITICAL."""
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
