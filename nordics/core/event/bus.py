"""
Nordics EventBus: async pub/sub with tiered concurrency.

Purpose
-------
Decouple progression side effects (notifications, leaderboards, cache
invalidation) from the claim path. The achievement engine publishes
``achievement.claimed`` and ``progression.leveled_up`` here after a claim
commits; listeners can never fail or roll back a claim.

Responsibilities
----------------
- Register/unregister listeners with priorities
- Publish events to all matching listeners (exact + wildcard, e.g. "achievement.*")
- Execute listeners according to the tiered concurrency model:
  * CRITICAL / HIGH: sequential, ordered, awaited with timeout
  * NORMAL: concurrent (gather), awaited
  * LOW: fire-and-forget background tasks
- Error isolation: one failing listener never blocks others or the publisher

Design Notes
------------
- Instance-based so tests can build an isolated bus.
- Listener timeouts come from ConfigManager
  (``core.event.listener_timeout.critical_seconds`` / ``high_seconds``).
"""

from __future__ import annotations

import asyncio
import inspect
from fnmatch import fnmatchcase
from typing import Any, Optional

from nordics.core.config.manager import ConfigManager
from nordics.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from nordics.core.logging.logger import get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Async EventBus with priority tiers and wildcard subscriptions.

    Designed for single-threaded asyncio usage. Registry mutations are atomic
    between awaits.

    Examples
    --------
    >>> bus = EventBus()
    >>> bus.subscribe("achievement.claimed", on_claim, priority=ListenerPriority.HIGH)
    >>> await bus.publish("achievement.claimed", {"tier_id": "playtime_tier_1"})
    """

    def __init__(
        self,
        config_manager: Optional[type[ConfigManager]] = None,
        *,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._config_manager = config_manager
        self._listeners: dict[str, list[EventListener]] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._error_count = 0

        self._critical_timeout = self._load_timeout(
            key="core.event.listener_timeout.critical_seconds",
            override=critical_timeout_seconds,
            default=5.0,
        )
        self._high_timeout = self._load_timeout(
            key="core.event.listener_timeout.high_seconds",
            override=high_timeout_seconds,
            default=5.0,
        )

        logger.debug(
            "EventBus initialized",
            extra={
                "critical_timeout_seconds": self._critical_timeout,
                "high_timeout_seconds": self._high_timeout,
            },
        )

    # ------------------------------------------------------------------ #
    # Configuration Loading
    # ------------------------------------------------------------------ #

    def _load_timeout(self, key: str, override: Optional[float], default: float) -> float:
        """Resolve a timeout: override, then config, then default."""
        if override is not None:
            return float(override)

        if self._config_manager is None:
            return float(default)

        value = self._config_manager.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid listener timeout in config, using default",
                extra={"config_key": key, "default_value": default, "value": value},
            )
            return float(default)

    # ------------------------------------------------------------------ #
    # Subscription API
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_callback_signature(callback: CallbackType) -> None:
        """Reject callbacks that cannot accept exactly one payload argument."""
        try:
            sig = inspect.signature(callback)
        except (TypeError, ValueError):
            return

        params = list(sig.parameters.values())
        if len(params) != 1:
            callback_name = getattr(callback, "__qualname__", None) or getattr(
                callback, "__name__", repr(callback)
            )
            raise ValueError(
                f"Event listener must accept exactly 1 parameter (EventPayload), "
                f"got {len(params)} parameters for '{callback_name}'"
            )

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event name or wildcard pattern.

        Returns the listener identifier for ``unsubscribe``. Registering the
        same identifier twice for one event is a no-op.
        """
        self._validate_callback_signature(callback)

        listener = EventListener.from_callback(
            event_name=event_name,
            callback=callback,
            priority=priority,
            identifier=identifier,
            once=once,
        )

        bucket = self._listeners.setdefault(event_name, [])
        if any(existing.identifier == listener.identifier for existing in bucket):
            logger.warning(
                "EventBus: duplicate listener prevented",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
            return listener.identifier

        bucket.append(listener)
        logger.debug(
            "EventBus: subscribed listener",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": listener.priority.name,
                "once": listener.once,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        bucket = self._listeners.get(event_name, [])
        remaining = [lst for lst in bucket if lst.identifier != identifier]
        removed = len(remaining) != len(bucket)

        if remaining:
            self._listeners[event_name] = remaining
        else:
            self._listeners.pop(event_name, None)

        if removed:
            logger.debug(
                "EventBus: unsubscribed listener",
                extra={"event_name": event_name, "listener_id": identifier},
            )
        return removed

    def clear(self) -> None:
        """Remove all listeners. Intended for tests and full reinit."""
        total = self.get_listener_count()
        self._listeners.clear()
        logger.info(
            "EventBus: cleared all listeners",
            extra={"previous_listener_count": total},
        )

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #

    @staticmethod
    def matches(event_name: str, pattern: str) -> bool:
        if "*" not in pattern:
            return event_name == pattern
        return fnmatchcase(event_name, pattern)

    def _extract_listeners(self, event_name: str) -> list[EventListener]:
        """
        Collect matching listeners ordered by priority and prune ``once``
        listeners before they run.
        """
        matched: list[EventListener] = []
        for pattern in list(self._listeners):
            if not self.matches(event_name, pattern):
                continue
            bucket = self._listeners[pattern]
            matched.extend(bucket)
            kept = [lst for lst in bucket if not lst.once]
            if kept:
                self._listeners[pattern] = kept
            else:
                del self._listeners[pattern]

        # sorted() is stable, so subscription order holds within a tier.
        return sorted(matched, key=lambda lst: lst.priority.value)

    # ------------------------------------------------------------------ #
    # Publish API
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Publish an event to all subscribed listeners.

        Returns results from CRITICAL/HIGH/NORMAL listeners; failed or timed
        out listeners contribute ``None``. LOW-tier results are not collected.
        """
        listeners = self._extract_listeners(event_name)

        logger.debug(
            "EventBus: publishing event",
            extra={
                "event_name": event_name,
                "payload_keys": list(data.keys()),
                "listener_count": len(listeners),
            },
        )

        if not listeners:
            return []

        results: list[Any] = []

        for listener in listeners:
            if listener.priority is ListenerPriority.CRITICAL:
                results.append(
                    await self._run_with_timeout(listener, event_name, data, self._critical_timeout)
                )
            elif listener.priority is ListenerPriority.HIGH:
                results.append(
                    await self._run_with_timeout(listener, event_name, data, self._high_timeout)
                )

        normal = [lst for lst in listeners if lst.priority is ListenerPriority.NORMAL]
        if normal:
            results.extend(
                await asyncio.gather(
                    *[self._run_listener(lst, event_name, data) for lst in normal]
                )
            )

        low = [lst for lst in listeners if lst.priority is ListenerPriority.LOW]
        if low:
            loop = asyncio.get_running_loop()
            for listener in low:
                task = loop.create_task(
                    self._run_listener(listener, event_name, data),
                    name=f"eventbus-low-{event_name}-{listener.identifier}",
                )
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)

        return results

    async def _run_with_timeout(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        timeout: Optional[float],
    ) -> Any:
        if timeout is None or timeout <= 0:
            return await self._run_listener(listener, event_name, payload)

        try:
            return await asyncio.wait_for(
                self._run_listener(listener, event_name, payload),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self._error_count += 1
            logger.error(
                "EventBus listener timeout",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "timeout_seconds": timeout,
                },
            )
            return None

    async def _run_listener(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
    ) -> Any:
        """Run one listener; sync callbacks go to the default executor."""
        try:
            if inspect.iscoroutinefunction(listener.callback):
                return await listener.callback(payload)

            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, listener.callback, payload)
            if inspect.isawaitable(result):
                return await result
            return result

        except Exception as exc:
            self._error_count += 1
            logger.error(
                "EventBus listener failed",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return None

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name is None:
            return sum(len(bucket) for bucket in self._listeners.values())
        return sum(
            len(bucket)
            for pattern, bucket in self._listeners.items()
            if self.matches(event_name, pattern)
        )

    def get_all_events(self) -> list[str]:
        return sorted(self._listeners)

    @property
    def error_count(self) -> int:
        return self._error_count

    async def drain(self) -> None:
        """Await outstanding LOW-tier tasks (shutdown and tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
