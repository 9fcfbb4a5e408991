"""Session and progress events published by the diagnostic core.

The core only emits; transports (CLI spinner, dashboard) subscribe.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger("credfix.events")

SCAN_START = "scan-start"
SCAN_PROGRESS = "scan-progress"
SCAN_COMPLETE = "scan-complete"
FIX_START = "fix-start"
FIX_PROGRESS = "fix-progress"
FIX_COMPLETE = "fix-complete"

EVENT_TYPES = (SCAN_START, SCAN_PROGRESS, SCAN_COMPLETE, FIX_START, FIX_PROGRESS, FIX_COMPLETE)

Listener = Callable[[dict], None]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class EventBroadcaster:
    """Fan-out of plain structured events to registered listeners."""

    def __init__(self, history: int = 200):
        self.listeners: list[Listener] = []
        self.events: deque[dict] = deque(maxlen=history)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self.listeners:
                self.listeners.remove(listener)

        return unsubscribe

    def emit(
        self,
        type: str,
        session_id: str,
        progress: int,
        message: str | None = None,
        result: Any = None,
    ) -> dict:
        if type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {type}")

        event: dict[str, Any] = {
            "type": type,
            "sessionId": session_id,
            "timestamp": _utc_timestamp(),
            "progress": max(0, min(100, progress)),
        }
        if result is not None:
            event["result"] = result
        else:
            event["message"] = message or ""

        self.events.append(event)
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception:
                # A broken listener must not break the scan that emitted.
                logger.warning("Event listener failed for %s", type, exc_info=True)
        return event

    def since(self, session_id: str) -> list[dict]:
        return [e for e in self.events if e["sessionId"] == session_id]
