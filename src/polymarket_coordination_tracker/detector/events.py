"""Observer-style notifications published by the coordinated trading detector.

Events are an optional side channel: detection never depends on whether
anyone is subscribed, and a failing listener is logged and skipped.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

EventPayload = dict[str, Any]
EventCallback = Callable[[EventPayload], None]
AnyEventCallback = Callable[["DetectorEvent", EventPayload], None]
Unsubscribe = Callable[[], None]


class DetectorEvent(str, Enum):
    """Notifications emitted by the detector."""

    TRADES_ADDED = "trades_added"
    TRADES_CLEARED = "trades_cleared"
    ALL_TRADES_CLEARED = "all_trades_cleared"
    ANALYSIS_COMPLETE = "analysis_complete"
    BATCH_ANALYSIS_COMPLETE = "batch_analysis_complete"
    HIGH_RISK_GROUP_DETECTED = "high_risk_group_detected"
    CACHE_CLEARED = "cache_cleared"


class EventBus:
    """Synchronous callback registry.

    Args:
        enabled: When False, ``publish`` is a no-op.
    """

    def __init__(self, *, enabled: bool = True) -> None:
        self.enabled = enabled
        self._listeners: dict[DetectorEvent, list[EventCallback]] = defaultdict(list)
        self._any_listeners: list[AnyEventCallback] = []

    def subscribe(self, event: DetectorEvent, callback: EventCallback) -> Unsubscribe:
        """Register ``callback`` for one event; returns a function that removes it."""
        self._listeners[event].append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def subscribe_all(self, callback: AnyEventCallback) -> Unsubscribe:
        """Register ``callback`` for every event, called as ``callback(event, payload)``."""
        self._any_listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._any_listeners:
                self._any_listeners.remove(callback)

        return unsubscribe

    def publish(self, event: DetectorEvent, payload: EventPayload | None = None) -> int:
        """Deliver ``payload`` to listeners; return how many were called."""
        if not self.enabled:
            return 0
        data = payload or {}
        delivered = 0
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(data)
            except Exception as e:
                logger.warning("Listener for %s failed: %s", event.value, e)
            delivered += 1
        for any_callback in list(self._any_listeners):
            try:
                any_callback(event, data)
            except Exception as e:
                logger.warning("Listener for %s failed: %s", event.value, e)
            delivered += 1
        return delivered

    def listener_count(self, event: DetectorEvent | None = None) -> int:
        if event is None:
            return sum(len(v) for v in self._listeners.values()) + len(self._any_listeners)
        return len(self._listeners.get(event, [])) + len(self._any_listeners)

    def clear(self) -> None:
        self._listeners.clear()
        self._any_listeners.clear()
