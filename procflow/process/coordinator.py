"""ProcessCoordinator: chains Procedures and delays into a ProcessRun.

A ProcessRun walks its definition's steps in order:

    procedure step ──► child Run started with process_run_id
                          │ (run.completed event)
                          ▼
                   output bound into context_data ──► next step
    delay step ─────► WAITING_DELAY until resume_at ──► next step
    past last step ──► COMPLETED

A child Run's output becomes ``step_<n>_output``, ``step_<n>`` (as
``{"output": ...}``) and ``step_<n>_title`` in ``context_data``, where ``n`` is
the 1-based position of the step in the process. Later steps map values out of
that context into their own input with ``{{...}}`` templates.

The child Run id is generated and recorded in the step history before the
ProcessRun lock is released and the Run is started. A child that completes
synchronously re-enters :meth:`on_run_completed`, which must be able to take
the same lock and find its history entry.
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from procflow.cache.locks import LockManager
from procflow.config import ProcflowConfig, config as default_config
from procflow.engine.variables import resolve_value
from procflow.exceptions import InvalidState, ProcessNotFound
from procflow.store.repository import Repository
from procflow.triggers.event_bus import EVENT_PROCESS_COMPLETED, EVENT_PROCESS_FAILED, EVENT_RUN_COMPLETED
from procflow.types import (
    ActiveRun, DelayStep, OrgContext, ProcedureStepRef, ProcessRun, ProcessRunStatus,
    ProcessStepStatus, StepHistoryEntry, new_id, output_value,
)

if TYPE_CHECKING:
    from procflow.engine.runner import RunEngine

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _process_key(process_run_id: str) -> str:
    return f"process:{process_run_id}"


class _ChildStart:
    """A child Run to start once the ProcessRun lock has been released."""

    def __init__(self, run_id: str, step: ProcedureStepRef, initial_input: dict[str, Any]) -> None:
        self.run_id = run_id
        self.step = step
        self.initial_input = initial_input


class ProcessCoordinator:
    """Drives ProcessRuns. Subscribes itself to ``run.completed`` on the engine's bus."""

    def __init__(
        self,
        repo: Repository,
        engine: "RunEngine",
        locks: LockManager = None,
        callbacks: list = None,
        config: ProcflowConfig = None,
        subscribe: bool = True,
    ) -> None:
        self.repo = repo
        self.engine = engine
        self.config = config or default_config
        self.locks = locks or engine.locks
        self.event_bus = engine.event_bus
        self.callbacks = callbacks if callbacks is not None else engine.callbacks
        if subscribe:
            self.event_bus.subscribe(EVENT_RUN_COMPLETED, self.on_run_completed)

    # ── Public API ───────────────────────────────────────────────────────────

    async def start_process(
        self,
        process_id: str,
        ctx: OrgContext,
        initial_input: Optional[dict[str, Any]] = None,
    ) -> ProcessRun:
        """Create a ProcessRun and execute its first step.

        Raises:
            ProcessNotFound: unknown process or another organization's
            InvalidState: process inactive or without steps
            ProcflowError: the first child Run could not be started; the
                ProcessRun is left FAILED
        """
        definition = await self.repo.get_process(process_id, ctx.organization_id)
        if definition is None:
            raise ProcessNotFound(f"Process {process_id!r} not found", resource_id=process_id)
        if not definition.is_active:
            raise InvalidState(f"Process {process_id!r} is not active")
        if not definition.steps:
            raise InvalidState(f"Process {process_id!r} has no steps")

        prun = await self.repo.create_process_run(ProcessRun(
            process_id=definition.id,
            process_title=definition.title,
            organization_id=definition.organization_id,
            started_by=ctx.actor_id,
            current_step_instance_id=definition.steps[0].instance_id,
            context_data=dict(initial_input or {}),
        ))
        logger.info("ProcessRun %s started for process %s by %s", prun.id, process_id, ctx.actor_id)
        await self._fire("process_started", {
            "process_run_id": prun.id,
            "process_id": process_id,
            "started_by": ctx.actor_id,
        })

        async with self.locks.hold(_process_key(prun.id)):
            prun, child = await self._advance(prun, 0)
        await self._start_child(prun, child, reraise=True)
        return await self.repo.get_process_run(prun.id) or prun

    async def on_run_completed(self, run: ActiveRun) -> None:
        """Bind a finished child Run's output and move its ProcessRun on."""
        if not run.process_run_id:
            return

        async with self.locks.hold(_process_key(run.process_run_id)):
            prun = await self.repo.get_process_run(run.process_run_id)
            if prun is None:
                logger.warning("Run %s points at missing ProcessRun %s", run.id, run.process_run_id)
                return
            if prun.status != ProcessRunStatus.RUNNING:
                logger.warning(
                    "ProcessRun %s is %s; ignoring completion of run %s",
                    prun.id, prun.status.value, run.id,
                )
                return

            history = list(prun.step_history)
            index = next(
                (i for i in range(len(history) - 1, -1, -1)
                 if history[i].active_run_id == run.id and history[i].status == ProcessStepStatus.RUNNING),
                None,
            )
            if index is None:
                logger.warning("ProcessRun %s has no running entry for run %s", prun.id, run.id)
                return

            now = _now()
            history[index] = history[index].model_copy(update={
                "status": ProcessStepStatus.COMPLETED,
                "completed_at": now,
            })
            n = prun.current_step_index + 1
            output = self._final_output(run)
            context = dict(prun.context_data)
            context[f"step_{n}_output"] = output
            context[f"step_{n}"] = {"output": output}
            context[f"step_{n}_title"] = run.procedure_title
            prun = await self.repo.update_process_run(prun.model_copy(update={
                "step_history": history,
                "context_data": context,
                "updated_at": now,
            }))
            await self._fire("process_advanced", {
                "process_run_id": prun.id,
                "step_index": prun.current_step_index,
                "run_id": run.id,
            })
            prun, child = await self._advance(prun, prun.current_step_index + 1)

        await self._start_child(prun, child)

    async def resume_after_delay(self, process_run_id: str) -> ProcessRun:
        """Finish the current delay step and continue with the next one.

        Raises:
            ProcessNotFound: unknown ProcessRun
            InvalidState: the ProcessRun is not waiting on a delay
        """
        async with self.locks.hold(_process_key(process_run_id)):
            prun = await self.repo.get_process_run(process_run_id)
            if prun is None:
                raise ProcessNotFound(f"ProcessRun {process_run_id!r} not found", resource_id=process_run_id)
            if prun.status != ProcessRunStatus.WAITING_DELAY:
                raise InvalidState(
                    f"ProcessRun {process_run_id} is {prun.status.value}, not waiting on a delay",
                    status=prun.status.value,
                )

            now = _now()
            history = list(prun.step_history)
            for i in range(len(history) - 1, -1, -1):
                if history[i].status == ProcessStepStatus.WAITING_DELAY:
                    history[i] = history[i].model_copy(update={
                        "status": ProcessStepStatus.COMPLETED,
                        "completed_at": now,
                    })
                    break
            prun = await self.repo.update_process_run(prun.model_copy(update={
                "status": ProcessRunStatus.RUNNING,
                "resume_at": None,
                "step_history": history,
                "updated_at": now,
            }))
            prun, child = await self._advance(prun, prun.current_step_index + 1)

        await self._start_child(prun, child)
        return await self.repo.get_process_run(prun.id) or prun

    async def resume_due(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Resume every ProcessRun whose delay has elapsed.

        Per-run failures are logged and collected, never raised.
        """
        now = now or _now()
        resumed: list[str] = []
        errors: dict[str, str] = {}
        for prun in await self.repo.list_due_process_runs(now):
            try:
                await self.resume_after_delay(prun.id)
            except InvalidState as exc:
                # another scheduler got there first
                logger.info("Skipping ProcessRun %s: %s", prun.id, exc)
                continue
            except Exception as exc:
                logger.exception("Resuming ProcessRun %s raised", prun.id)
                errors[prun.id] = f"{type(exc).__name__}: {exc}"
                continue
            resumed.append(prun.id)
        if resumed or errors:
            logger.info("Resumed %d delayed process run(s), %d error(s)", len(resumed), len(errors))
        return {"resumed": resumed, "errors": errors}

    # ── Internal ─────────────────────────────────────────────────────────────

    async def _advance(self, prun: ProcessRun, index: int) -> tuple[ProcessRun, Optional[_ChildStart]]:
        """Move *prun* to step *index*. Caller holds the ProcessRun lock."""
        definition = await self.repo.get_process(prun.process_id)
        steps = definition.steps if definition is not None else []
        now = _now()

        if index >= len(steps):
            prun = await self.repo.update_process_run(prun.model_copy(update={
                "status": ProcessRunStatus.COMPLETED,
                "current_step_index": len(steps),
                "current_step_instance_id": None,
                "updated_at": now,
            }))
            logger.info("ProcessRun %s completed", prun.id)
            await self._fire("process_completed", {"process_run_id": prun.id, "process_id": prun.process_id})
            await self.event_bus.emit(EVENT_PROCESS_COMPLETED, prun)
            return prun, None

        step = steps[index]
        if isinstance(step, DelayStep):
            resume_at = now + step.delta()
            prun = await self.repo.update_process_run(prun.model_copy(update={
                "status": ProcessRunStatus.WAITING_DELAY,
                "current_step_index": index,
                "current_step_instance_id": step.instance_id,
                "resume_at": resume_at,
                "step_history": [*prun.step_history, StepHistoryEntry(
                    step_instance_id=step.instance_id,
                    status=ProcessStepStatus.WAITING_DELAY,
                    executed_at=now,
                )],
                "updated_at": now,
            }))
            logger.info("ProcessRun %s waiting until %s", prun.id, resume_at.isoformat())
            await self._fire("process_waiting", {
                "process_run_id": prun.id,
                "resume_at": resume_at.isoformat(),
            })
            return prun, None

        child_id = new_id("run")
        initial_input = {
            key: resolve_value(template, prun.context_data)
            for key, template in step.input_mappings.items()
        }
        prun = await self.repo.update_process_run(prun.model_copy(update={
            "status": ProcessRunStatus.RUNNING,
            "current_step_index": index,
            "current_step_instance_id": step.instance_id,
            "step_history": [*prun.step_history, StepHistoryEntry(
                step_instance_id=step.instance_id,
                status=ProcessStepStatus.RUNNING,
                active_run_id=child_id,
                executed_at=now,
            )],
            "updated_at": now,
        }))
        return prun, _ChildStart(child_id, step, initial_input)

    async def _start_child(self, prun: ProcessRun, child: Optional[_ChildStart], reraise: bool = False) -> None:
        if child is None:
            return
        ctx = OrgContext(organization_id=prun.organization_id, actor_id=prun.started_by)
        try:
            await self.engine.start(
                child.step.procedure_id,
                ctx,
                initial_input=child.initial_input,
                trigger_context={"process_run_id": prun.id, "process_id": prun.process_id},
                process_run_id=prun.id,
                run_id=child.run_id,
            )
        except Exception as exc:
            await self._mark_failed(prun.id, child, exc)
            if reraise:
                raise
            logger.exception("ProcessRun %s could not start procedure %s", prun.id, child.step.procedure_id)

    async def _mark_failed(self, process_run_id: str, child: _ChildStart, exc: Exception) -> None:
        detail = f"Step '{child.step.title or child.step.instance_id}' could not start: {exc}"
        async with self.locks.hold(_process_key(process_run_id)):
            prun = await self.repo.get_process_run(process_run_id)
            if prun is None:
                return
            prun = await self.repo.update_process_run(prun.model_copy(update={
                "status": ProcessRunStatus.FAILED,
                "error_detail": detail,
                "updated_at": _now(),
            }))
        logger.warning("ProcessRun %s failed: %s", process_run_id, detail)
        await self._fire("process_failed", {"process_run_id": process_run_id, "error_detail": detail})
        await self.event_bus.emit(EVENT_PROCESS_FAILED, prun)

    @staticmethod
    def _final_output(run: ActiveRun) -> Any:
        for log in reversed(run.logs):
            if log.output is not None:
                return output_value(log.output)
        return {}

    async def _fire(self, event: str, data: dict) -> None:
        for cb in self.callbacks:
            try:
                result = cb(event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("Callback error on %r: %s", event, exc)
