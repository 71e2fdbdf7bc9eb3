"""
Event system for Nordics.

Instance-based: whoever wires the application (``ServiceContainer``) owns
the bus and injects it into services.
"""

from .bus import EventBus
from .types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)

__all__ = [
    "EventBus",
    "EventPayload",
    "ListenerPriority",
    "EventListener",
    "CallbackType",
]
