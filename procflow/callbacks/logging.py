"""Structured JSON logging callback for run lifecycle events."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from procflow.callbacks.base import BaseCallback

logger = logging.getLogger("procflow.audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _short(value: Any) -> Any:
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    return str(value)[:200]


class LoggingCallback(BaseCallback):
    """Emits one self-contained JSON log line per lifecycle event.

    Each line carries ``event``, ``ts`` (ISO-8601 UTC) and the event's fields,
    with long values truncated. Flags are logged at WARNING, everything else at
    INFO. Logger name: ``procflow.audit``.
    """

    def _emit(self, event: str, data: dict[str, Any], level: int = logging.INFO) -> None:
        payload = {"event": event, "ts": _now(), **{k: _short(v) for k, v in data.items()}}
        logger.log(level, json.dumps(payload))

    async def on_run_start(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("run_start", data)

    async def on_step_executed(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("step_executed", {
            "run_id": data.get("run_id", ""),
            "step_id": data.get("step_id", ""),
            "action": data.get("action", ""),
            "outcome": data.get("outcome", ""),
        })

    async def on_run_waiting(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("run_waiting", data)

    async def on_run_resumed(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("run_resumed", data)

    async def on_run_complete(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("run_complete", data)

    async def on_run_flagged(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("run_flagged", data, level=logging.WARNING)

    async def on_run_reassigned(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("run_reassigned", data)

    async def on_process_event(self, data: dict[str, Any], **kwargs: Any) -> None:
        event = kwargs.get("event", "process_event")
        level = logging.WARNING if event == "process_failed" else logging.INFO
        self._emit(event, data, level=level)

    async def on_trigger_fired(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("trigger_fired", data)
