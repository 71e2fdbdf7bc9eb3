"""
Base Service Foundation

Purpose
-------
Foundational class for Nordics domain services. Services implement business
logic, enforce rules and emit domain events; transactions belong to the
stores they call.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Safe config access
- Event emission that never lets a listener failure escape

Usage
-----
    class AchievementEngine(BaseService):
        def __init__(self, store, ..., config_manager, event_bus, logger):
            super().__init__(config_manager, event_bus, logger)
            self._store = store
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from logging import Logger

    from nordics.core.config.manager import ConfigManager
    from nordics.core.event.bus import EventBus


class BaseService:
    """
    Base class for domain services.

    Args:
        config_manager: Configuration manager (class or instance exposing ``get``)
        event_bus: Event bus for cross-module communication, or None
        logger: Structured logger instance
    """

    def __init__(
        self,
        config_manager: type[ConfigManager] | ConfigManager,
        event_bus: Optional[EventBus],
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(
        self, key: str, default: Optional[Any] = None, required: bool = False
    ) -> Any:
        """
        Retrieve a configuration value.

        Raises:
            ConfigurationError: If required=True and key is missing
        """
        from nordics.core.exceptions import ConfigurationError

        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(
                key, f"Required configuration key '{key}' is missing"
            )
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Publish a domain event.

        The bus isolates listener errors; a failure in the bus itself is
        logged and swallowed because events fire after state is committed.
        """
        if self._events is None:
            return

        try:
            await self._events.publish(event_type, {**data, **(context or {})})
        except Exception as exc:
            self.log_error("emit_event", exc, event_type=event_type)

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def log_error(
        self,
        operation: str,
        error: Exception,
        **context: Any,
    ) -> None:
        self.log.error(
            f"Service error during {operation}: {str(error)}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                **context,
            },
        )
