"""
Input Validation Layer

Purpose
-------
Centralized validation for caller-supplied values: entity ids, tier ids,
user ids and XP amounts. Every public progression operation validates its
input here before touching a store.

Responsibilities
----------------
- Validate and convert inputs to the correct types
- Enforce bounds and format rules
- Raise InvalidInputError with a user-presentable message

Non-Responsibilities
--------------------
- Business rules (threshold checks, ownership) belong to the services
- Authorization belongs to ``nordics.modules.achievements.authorization``

Observability
-------------
Every failure is logged at debug level with field_name, raw_value (repr)
and reason.
"""

from __future__ import annotations

import re
from typing import Any, NoReturn, Optional, Sequence

from nordics.core.logging.logger import get_logger
from nordics.modules.shared.entities import EntityKind, EntityRef
from nordics.modules.shared.exceptions import InvalidInputError

logger = get_logger(__name__)

TIER_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,127}$")
ENTITY_ID_MAX_LENGTH = 64


def _raise_validation_error(field_name: str, value: Any, message: str) -> NoReturn:
    logger.debug(
        "Input validation failed",
        extra={
            "field_name": field_name,
            "raw_value": repr(value),
            "reason": message,
        },
    )
    raise InvalidInputError(field_name, message)


class InputValidator:
    """
    Stateless validators. Each returns the normalized value or raises
    InvalidInputError.
    """

    # =========================================================================
    # INTEGER VALIDATION
    # =========================================================================

    @staticmethod
    def validate_integer(
        value: Any,
        field_name: str,
        min_value: Optional[int] = None,
        max_value: Optional[int] = None,
        allow_zero: bool = True,
    ) -> int:
        if value is None:
            _raise_validation_error(field_name, value, "Value is required")

        if isinstance(value, bool):
            _raise_validation_error(field_name, value, "Must be a whole number")

        try:
            int_value = int(value)
        except (ValueError, TypeError, OverflowError):
            _raise_validation_error(
                field_name,
                value,
                f"Must be a whole number, got '{value}'",
            )

        if not allow_zero and int_value == 0:
            _raise_validation_error(field_name, int_value, "Cannot be zero")

        if min_value is not None and int_value < min_value:
            _raise_validation_error(
                field_name,
                int_value,
                f"Must be at least {min_value}, got {int_value}",
            )

        if max_value is not None and int_value > max_value:
            _raise_validation_error(
                field_name,
                int_value,
                f"Cannot exceed {max_value}, got {int_value}",
            )

        return int_value

    @staticmethod
    def validate_non_negative_integer(
        value: Any,
        field_name: str,
        max_value: Optional[int] = None,
    ) -> int:
        return InputValidator.validate_integer(
            value=value,
            field_name=field_name,
            min_value=0,
            max_value=max_value,
        )

    # =========================================================================
    # STRING VALIDATION
    # =========================================================================

    @staticmethod
    def validate_string(
        value: Any,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
        pattern: Optional[re.Pattern[str]] = None,
    ) -> str:
        """
        Validate a string with optional length and format constraints.

        Surrounding whitespace is stripped before checks.
        """
        if value is None:
            _raise_validation_error(field_name, value, "Value is required")

        if not isinstance(value, (str, int)) or isinstance(value, bool):
            _raise_validation_error(field_name, value, "Must be a string")

        str_value = str(value).strip()

        if min_length is not None and len(str_value) < min_length:
            _raise_validation_error(
                field_name,
                str_value,
                f"Must be at least {min_length} characters",
            )

        if max_length is not None and len(str_value) > max_length:
            _raise_validation_error(
                field_name,
                str_value,
                f"Cannot exceed {max_length} characters",
            )

        if pattern is not None and not pattern.match(str_value):
            _raise_validation_error(field_name, str_value, "Contains invalid characters")

        return str_value

    @staticmethod
    def validate_choice(
        value: Any,
        field_name: str,
        valid_choices: Sequence[str],
    ) -> str:
        """Validate a case-insensitive choice; returns the lowercased value."""
        str_value = str(value).lower().strip()
        normalized_choices = {choice.lower() for choice in valid_choices}

        if str_value not in normalized_choices:
            choices_str = ", ".join(sorted(valid_choices))
            _raise_validation_error(
                field_name,
                value,
                f"Invalid choice '{value}'. Must be one of: {choices_str}",
            )

        return str_value

    # =========================================================================
    # DOMAIN IDENTIFIERS
    # =========================================================================

    @staticmethod
    def validate_tier_id(value: Any, field_name: str = "tier_id") -> str:
        return InputValidator.validate_string(
            value, field_name, min_length=1, max_length=128, pattern=TIER_ID_PATTERN
        )

    @staticmethod
    def validate_user_id(value: Any, field_name: str = "actor_id") -> str:
        return InputValidator.validate_string(value, field_name, min_length=1, max_length=64)

    @staticmethod
    def validate_entity(value: Any, field_name: str = "entity") -> EntityRef:
        """Validate an EntityRef: known kind and a non-empty, bounded id."""
        if not isinstance(value, EntityRef):
            _raise_validation_error(field_name, value, "Must be an EntityRef")

        kind = EntityKind.parse(value.kind)
        entity_id = InputValidator.validate_string(
            value.entity_id,
            f"{field_name}.entity_id",
            min_length=1,
            max_length=ENTITY_ID_MAX_LENGTH,
        )
        if kind is value.kind and entity_id == value.entity_id:
            return value
        return EntityRef(kind, entity_id)
