"""Base callback protocol for run lifecycle hooks.

Callbacks observe the engine without changing it. The engine and the
process coordinator call every registered callback as
``await cb(event, data)``; ``BaseCallback`` maps those calls onto named hooks.

Usage:
    class MyCallback(BaseCallback):
        async def on_run_flagged(self, data, **kw):
            page_someone(data["run_id"])

    engine = RunEngine(..., callbacks=[MyCallback()])
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class RunCallback(Protocol):
    async def __call__(self, event: str, data: dict[str, Any]) -> None:
        ...


class BaseCallback:
    """No-op implementations of every hook. Subclass and override what you need."""

    _HOOKS = {
        "run_started": "on_run_start",
        "step_executed": "on_step_executed",
        "run_waiting": "on_run_waiting",
        "run_resumed": "on_run_resumed",
        "run_completed": "on_run_complete",
        "run_flagged": "on_run_flagged",
        "run_reassigned": "on_run_reassigned",
        "process_started": "on_process_event",
        "process_advanced": "on_process_event",
        "process_waiting": "on_process_event",
        "process_completed": "on_process_event",
        "process_failed": "on_process_event",
        "trigger_fired": "on_trigger_fired",
    }

    async def __call__(self, event: str, data: dict[str, Any]) -> None:
        hook = self._HOOKS.get(event)
        if hook is not None:
            await getattr(self, hook)(data, event=event)

    async def on_run_start(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_step_executed(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_run_waiting(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_run_resumed(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_run_complete(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_run_flagged(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_run_reassigned(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_process_event(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_trigger_fired(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass
