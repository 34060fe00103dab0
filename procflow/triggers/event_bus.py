"""In-process pub/sub for run and process lifecycle events.

Subscribers are plain callables (sync or async) taking the event payload. The
bus snapshots the subscriber list before iterating so handlers may subscribe
or unsubscribe while an event is being delivered.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

# ── Well-known event names ─────────────────────────────────────────────────
EVENT_RUN_STARTED       = "run.started"
EVENT_RUN_WAITING       = "run.waiting"
EVENT_RUN_COMPLETED     = "run.completed"
EVENT_RUN_FLAGGED       = "run.flagged"
EVENT_PROCESS_COMPLETED = "process.completed"
EVENT_PROCESS_FAILED    = "process.failed"


class EventBus:
    """Lightweight, in-process pub/sub bus.

    Usage::

        bus = EventBus()
        bus.subscribe(EVENT_RUN_COMPLETED, coordinator.on_run_completed)
        await bus.emit(EVENT_RUN_COMPLETED, run)
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable]] = {}

    def subscribe(self, event: str, callback: Callable) -> None:
        self._subscribers.setdefault(event, []).append(callback)

    def unsubscribe(self, event: str, callback: Callable) -> None:
        """Remove the first occurrence of *callback* from *event*. Ignores missing."""
        callbacks = self._subscribers.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def subscriber_count(self, event: str) -> int:
        return len(self._subscribers.get(event, []))

    async def emit(self, event: str, data: Any = None) -> None:
        """Deliver *data* to every subscriber of *event*.

        A failing subscriber is logged and skipped so the others still run.
        """
        for cb in list(self._subscribers.get(event, [])):
            try:
                result = cb(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("EventBus subscriber raised for event=%r", event)
