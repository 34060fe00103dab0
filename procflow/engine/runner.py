"""Run state machine: starts Runs, executes AUTO steps, pauses on HUMAN steps.

    start ──► IN_PROGRESS ──auto step ok──► next step ...
                  │                           │
                  │ HUMAN step                └─► COMPLETED (past last step)
                  ▼
           WAITING_FOR_USER ──resume──► IN_PROGRESS ...
                  │
    any execution error / FLAGGED outcome ──► FLAGGED

AUTO steps run in-process in a bounded loop. Every mutation of a Run happens
while holding that Run's lock and is written with an optimistic version
check, so a concurrent resume or double trigger can never re-enter the loop.
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from procflow.cache.locks import LocalLocks, LockManager
from procflow.collaborators import NotificationSink, RepositoryIdentityLookup, RepositoryNotificationSink
from procflow.config import ProcflowConfig, config as default_config
from procflow.engine.actions import ActionContext, ActionRegistry, ActionResult, HttpRequestAction, default_registry
from procflow.engine.assignee import AssigneeResolver
from procflow.engine.classifier import classify
from procflow.engine.variables import build_run_context
from procflow.exceptions import (
    AssignmentUnresolved, ExecutionFailure, InvalidState, NotWaiting, ProcedureNotFound,
    RunNotFound, StepMismatch, UserNotFound,
)
from procflow.store.repository import Repository
from procflow.triggers.event_bus import (
    EVENT_RUN_COMPLETED, EVENT_RUN_FLAGGED, EVENT_RUN_STARTED, EVENT_RUN_WAITING, EventBus,
)
from procflow.types import (
    ActiveRun, Assignment, AssignmentType, ExecutionType, OrgContext, ResolvedAssignee,
    ResumeResult, RunLog, RunStatus, StartResult, Step, StepOutcome, TaskStatus, TriggerType,
    UserTask, coerce_output,
)

logger = logging.getLogger(__name__)

Event = tuple[str, ActiveRun]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _run_key(run_id: str) -> str:
    return f"run:{run_id}"


def _step_id_at(run: ActiveRun, index: int) -> Optional[str]:
    return run.steps[index].id if 0 <= index < len(run.steps) else None


class RunEngine:
    """Drives ActiveRuns through their Procedure's steps.

    Collaborators default to store-backed implementations; tests and
    deployments swap in their own.
    """

    def __init__(
        self,
        repo: Repository,
        actions: ActionRegistry = None,
        assignees: AssigneeResolver = None,
        notifier: NotificationSink = None,
        locks: LockManager = None,
        event_bus: EventBus = None,
        callbacks: list = None,
        config: ProcflowConfig = None,
    ):
        self.repo = repo
        self.config = config or default_config
        self.actions = actions or default_registry(
            http_action=HttpRequestAction(timeout_seconds=self.config.http_timeout_seconds)
        )
        self.assignees = assignees or AssigneeResolver(
            identity=RepositoryIdentityLookup(repo),
            system_actor_id=self.config.system_actor_id,
            default_assignee_id=self.config.default_assignee_id,
        )
        self.notifier = notifier or RepositoryNotificationSink(repo)
        self.locks = locks or LocalLocks(timeout_seconds=self.config.lock_timeout_seconds)
        self.event_bus = event_bus or EventBus()
        self.callbacks = callbacks or []

    # ── Public API ───────────────────────────────────────────────────────────

    async def start(
        self,
        procedure_id: str,
        ctx: OrgContext,
        initial_input: Optional[dict[str, Any]] = None,
        trigger_context: Optional[dict[str, Any]] = None,
        triggered_by: TriggerType = TriggerType.MANUAL,
        process_run_id: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> StartResult:
        """Create a Run for *procedure_id* and drive it to its first pause.

        Every HUMAN step's assignment is checked up front, so an unresolvable
        policy fails here with nothing persisted.

        Raises:
            ProcedureNotFound: unknown procedure or another organization's
            InvalidState: procedure has no steps
            AssignmentUnresolved: a HUMAN step cannot be assigned
        """
        procedure = await self.repo.get_procedure(procedure_id, ctx.organization_id)
        if procedure is None:
            raise ProcedureNotFound(f"Procedure {procedure_id!r} not found", resource_id=procedure_id)
        if not procedure.steps:
            raise InvalidState(f"Procedure {procedure_id!r} has no steps")

        for step in procedure.steps:
            if classify(step.action) == ExecutionType.HUMAN:
                self.assignees.check(step.assignment, ctx.actor_id, step.id)

        fields: dict[str, Any] = dict(
            procedure_id=procedure.id,
            procedure_title=procedure.title,
            organization_id=procedure.organization_id,
            status=RunStatus.IN_PROGRESS,
            current_step_index=0,
            current_step_id=procedure.steps[0].id,
            started_by=ctx.actor_id,
            steps=[s.model_copy(deep=True) for s in procedure.steps],
            trigger_context=trigger_context or {},
            initial_input=initial_input or {},
            triggered_by=triggered_by,
            process_run_id=process_run_id,
        )
        if run_id:
            fields["id"] = run_id
        run = await self.repo.create_run(ActiveRun(**fields))
        logger.info("Run %s started for procedure %s by %s", run.id, procedure.id, ctx.actor_id)
        await self._fire_callbacks("run_started", {
            "run_id": run.id,
            "procedure_id": procedure.id,
            "organization_id": run.organization_id,
            "started_by": ctx.actor_id,
            "triggered_by": triggered_by.value,
            "step_count": len(run.steps),
        })

        async with self.locks.hold(_run_key(run.id)):
            run, events = await self._proceed(run)
        await self._publish([(EVENT_RUN_STARTED, run), *events])
        return StartResult(run_id=run.id, initial_status=run.status)

    async def resume(
        self,
        run_id: str,
        step_id: str,
        outcome: StepOutcome,
        ctx: OrgContext,
        output: Any = None,
    ) -> ResumeResult:
        """Complete the paused HUMAN step and keep going.

        A provided *output* replaces the pending entry's output; otherwise the
        existing output is kept. An outcome of FLAGGED flags the Run.

        Raises:
            RunNotFound: unknown run or another organization's
            NotWaiting: run is not WAITING_FOR_USER (nothing is changed)
            StepMismatch: *step_id* is not the current step
        """
        outcome = StepOutcome(outcome)
        async with self.locks.hold(_run_key(run_id)):
            run = await self._load(run_id, ctx)
            if run.status != RunStatus.WAITING_FOR_USER:
                raise NotWaiting(
                    f"Run {run_id} is {run.status.value}, not waiting for user input",
                    status=run.status.value,
                )
            step = run.current_step
            if step is None or step.id != step_id:
                raise StepMismatch(
                    f"Run {run_id} is waiting on step {run.current_step_id!r}, not {step_id!r}",
                    status=run.status.value,
                    expected_step_id=run.current_step_id or "",
                )

            now = _now()
            logs = self._finalize_pending(run, step, outcome, ctx.actor_id, output, now)

            if outcome == StepOutcome.FLAGGED:
                run = await self.repo.update_run(run.model_copy(update={
                    "logs": logs,
                    "status": RunStatus.FLAGGED,
                    "error_detail": f"Step '{step.title or step.id}' flagged by {ctx.actor_id}",
                }))
                await self._complete_task(run, step, outcome, ctx.actor_id, now)
                await self._fire_callbacks("run_flagged", self._summary(run))
                events: list[Event] = [(EVENT_RUN_FLAGGED, run)]
            else:
                next_index = run.current_step_index + 1
                run = await self.repo.update_run(run.model_copy(update={
                    "logs": logs,
                    "status": RunStatus.IN_PROGRESS,
                    "current_step_index": next_index,
                    "current_step_id": _step_id_at(run, next_index),
                    "current_assignee_id": None,
                    "current_assignee_email": None,
                    "assignee_type": None,
                }))
                await self._complete_task(run, step, outcome, ctx.actor_id, now)
                await self._fire_callbacks("run_resumed", {
                    "run_id": run.id,
                    "step_id": step.id,
                    "outcome": outcome.value,
                    "executed_by": ctx.actor_id,
                })
                run, events = await self._proceed(run)

        await self._publish(events)
        next_step = run.current_step_id if run.status != RunStatus.COMPLETED else None
        return ResumeResult(status=run.status, next_step_id=next_step)

    async def flag(
        self,
        run_id: str,
        ctx: OrgContext,
        error_detail: str,
    ) -> ActiveRun:
        """Manually flag a Run that is still in flight."""
        async with self.locks.hold(_run_key(run_id)):
            run = await self._load(run_id, ctx)
            if run.status in (RunStatus.COMPLETED, RunStatus.FLAGGED):
                raise InvalidState(f"Run {run_id} is already {run.status.value}", status=run.status.value)

            step = run.current_step
            now = _now()
            logs = list(run.logs)
            pending = self._pending_index(run, step)
            if pending is not None:
                logs[pending] = logs[pending].model_copy(update={
                    "outcome": StepOutcome.FLAGGED,
                    "executed_by": ctx.actor_id,
                    "error": error_detail,
                    "completed_at": now,
                })
            elif step is not None:
                logs.append(RunLog(
                    step_id=step.id,
                    step_title=step.title,
                    action=step.action,
                    execution_type=classify(step.action),
                    outcome=StepOutcome.FLAGGED,
                    executed_by=ctx.actor_id,
                    error=error_detail,
                    started_at=now,
                    completed_at=now,
                ))
            run = await self.repo.update_run(run.model_copy(update={
                "logs": logs,
                "status": RunStatus.FLAGGED,
                "error_detail": error_detail,
            }))
            logger.warning("Run %s flagged by %s: %s", run.id, ctx.actor_id, error_detail)
            await self._fire_callbacks("run_flagged", self._summary(run))

        await self._publish([(EVENT_RUN_FLAGGED, run)])
        return run

    async def reassign(
        self,
        run_id: str,
        ctx: OrgContext,
        assignee_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> ActiveRun:
        """Hand the current HUMAN step to another user.

        Works on WAITING_FOR_USER and FLAGGED runs; a flagged run is reopened
        and waits on the new assignee. The user may be given by id or by email
        within the organization.
        """
        if email and not assignee_id:
            user = await self.repo.find_user_by_email(ctx.organization_id, email)
            if user is None:
                raise UserNotFound(f"No user with email {email!r} in this organization", resource_id=email)
            assignee_id = user.id
        if not assignee_id:
            raise AssignmentUnresolved("Reassignment needs an assignee id or email")

        async with self.locks.hold(_run_key(run_id)):
            run = await self._load(run_id, ctx)
            if run.status not in (RunStatus.WAITING_FOR_USER, RunStatus.FLAGGED):
                raise InvalidState(
                    f"Run {run_id} is {run.status.value}; only waiting or flagged runs can be reassigned",
                    status=run.status.value,
                )
            step = run.current_step
            if step is None or classify(step.action) != ExecutionType.HUMAN:
                raise InvalidState(f"Run {run_id} is not on a human step", status=run.status.value)

            assignment = Assignment(type=AssignmentType.SPECIFIC_USER, assignee_id=assignee_id)
            steps = list(run.steps)
            steps[run.current_step_index] = step.model_copy(update={"assignment": assignment})
            step = steps[run.current_step_index]
            assignee = await self.assignees.resolve(assignment, run.started_by, step.id)

            previous = run.current_assignee_id
            run = await self.repo.update_run(run.model_copy(update={
                "steps": steps,
                "status": RunStatus.WAITING_FOR_USER,
                "error_detail": None,
                "current_assignee_id": assignee.assignee_id,
                "current_assignee_email": assignee.email,
                "assignee_type": assignee.assignee_type,
            }))
            await self._open_task(run, step, assignee)
            await self._notify(run, step, assignee)
            await self._fire_callbacks("run_reassigned", {
                "run_id": run.id,
                "step_id": step.id,
                "from": previous,
                "to": assignee.assignee_id,
                "by": ctx.actor_id,
            })

        await self._publish([(EVENT_RUN_WAITING, run)])
        return run

    async def get_run(self, run_id: str, ctx: OrgContext) -> ActiveRun:
        return await self._load(run_id, ctx)

    async def list_tasks(
        self,
        ctx: OrgContext,
        assignee_id: Optional[str] = None,
        status: Optional[TaskStatus] = TaskStatus.PENDING,
    ) -> list[UserTask]:
        return await self.repo.list_tasks(ctx.organization_id, assignee_id=assignee_id, status=status)

    # ── State machine ────────────────────────────────────────────────────────

    async def _proceed(self, run: ActiveRun) -> tuple[ActiveRun, list[Event]]:
        """Advance from the current index until the Run pauses, flags or completes.

        Each pass either returns or moves the index forward by one, so the loop
        runs at most ``len(run.steps) + 1`` times.
        """
        while True:
            step = run.current_step
            if step is None:
                run = await self.repo.update_run(run.model_copy(update={
                    "status": RunStatus.COMPLETED,
                    "completed_at": _now(),
                    "current_step_id": None,
                    "current_assignee_id": None,
                    "current_assignee_email": None,
                    "assignee_type": None,
                }))
                logger.info("Run %s completed", run.id)
                await self._fire_callbacks("run_completed", self._summary(run))
                return run, [(EVENT_RUN_COMPLETED, run)]

            if classify(step.action) == ExecutionType.HUMAN:
                try:
                    run = await self._pause(run, step)
                except AssignmentUnresolved as exc:
                    run = await self._flag_failure(run, str(exc))
                    return run, [(EVENT_RUN_FLAGGED, run)]
                return run, [(EVENT_RUN_WAITING, run)]

            run, ok = await self._execute_auto(run, step)
            if not ok:
                return run, [(EVENT_RUN_FLAGGED, run)]

    async def _execute_auto(self, run: ActiveRun, step: Step) -> tuple[ActiveRun, bool]:
        started = _now()
        ctx = ActionContext(run=run, variables=build_run_context(run), repo=self.repo)
        try:
            result = await self.actions.execute(step, ctx)
        except ExecutionFailure as exc:
            result = ActionResult.failure(str(exc), output=exc.output)
        except Exception as exc:
            logger.exception("Run %s: %s step %s raised", run.id, step.action.value, step.id)
            result = ActionResult.failure(f"{type(exc).__name__}: {exc}")

        log = RunLog(
            step_id=step.id,
            step_title=step.title,
            action=step.action,
            execution_type=ExecutionType.AUTO,
            output=coerce_output(result.output),
            outcome=result.outcome,
            executed_by=self.config.system_actor_id,
            error=result.error,
            started_at=started,
            completed_at=_now(),
        )
        await self._fire_callbacks("step_executed", {
            "run_id": run.id,
            "step_id": step.id,
            "action": step.action.value,
            "outcome": result.outcome.value,
        })

        if result.outcome != StepOutcome.SUCCESS:
            detail = f"Step '{step.title or step.id}' ({step.action.value}) failed: {result.error or 'no detail'}"
            run = await self._flag_failure(run.model_copy(update={"logs": [*run.logs, log]}), detail)
            return run, False

        next_index = run.current_step_index + 1
        run = await self.repo.update_run(run.model_copy(update={
            "logs": [*run.logs, log],
            "current_step_index": next_index,
            "current_step_id": _step_id_at(run, next_index),
        }))
        return run, True

    async def _flag_failure(self, run: ActiveRun, detail: str) -> ActiveRun:
        run = await self.repo.update_run(run.model_copy(update={
            "status": RunStatus.FLAGGED,
            "error_detail": detail,
        }))
        logger.warning("Run %s flagged: %s", run.id, detail)
        await self._fire_callbacks("run_flagged", self._summary(run))
        return run

    async def _pause(self, run: ActiveRun, step: Step) -> ActiveRun:
        assignee = await self.assignees.resolve(step.assignment, run.started_by, step.id)
        run = await self.repo.update_run(run.model_copy(update={
            "status": RunStatus.WAITING_FOR_USER,
            "current_step_id": step.id,
            "current_assignee_id": assignee.assignee_id,
            "current_assignee_email": assignee.email,
            "assignee_type": assignee.assignee_type,
            "logs": [*run.logs, self._pending_log(step)],
        }))
        await self._open_task(run, step, assignee)
        await self._notify(run, step, assignee)
        await self._fire_callbacks("run_waiting", {
            "run_id": run.id,
            "step_id": step.id,
            "assignee_id": assignee.assignee_id,
            "assignee_type": assignee.assignee_type.value,
        })
        return run

    # ── Helpers ──────────────────────────────────────────────────────────────

    async def _load(self, run_id: str, ctx: OrgContext) -> ActiveRun:
        run = await self.repo.get_run(run_id)
        if run is None or run.organization_id != ctx.organization_id:
            raise RunNotFound(f"Run {run_id!r} not found", resource_id=run_id)
        return run

    @staticmethod
    def _pending_log(step: Step) -> RunLog:
        return RunLog(
            step_id=step.id,
            step_title=step.title,
            action=step.action,
            execution_type=ExecutionType.HUMAN,
        )

    @staticmethod
    def _pending_index(run: ActiveRun, step: Optional[Step]) -> Optional[int]:
        if step is None:
            return None
        for i in range(len(run.logs) - 1, -1, -1):
            log = run.logs[i]
            if log.step_id == step.id and log.outcome is None:
                return i
        return None

    def _finalize_pending(
        self,
        run: ActiveRun,
        step: Step,
        outcome: StepOutcome,
        actor_id: str,
        output: Any,
        now: datetime,
    ) -> list[RunLog]:
        logs = list(run.logs)
        index = self._pending_index(run, step)
        if index is None:
            logs.append(self._pending_log(step))
            index = len(logs) - 1
        entry = logs[index]
        logs[index] = entry.model_copy(update={
            "output": coerce_output(output) if output is not None else entry.output,
            "outcome": outcome,
            "executed_by": actor_id,
            "completed_at": now,
        })
        return logs

    async def _open_task(self, run: ActiveRun, step: Step, assignee: ResolvedAssignee) -> None:
        task_id = UserTask.task_id(run.id, step.id)
        existing = await self.repo.get_task(task_id)
        task = UserTask(
            id=task_id,
            run_id=run.id,
            step_id=step.id,
            title=step.title,
            procedure_id=run.procedure_id,
            procedure_title=run.procedure_title,
            organization_id=run.organization_id,
            assignee_id=assignee.assignee_id,
            assignee_email=assignee.email,
            assignee_type=assignee.assignee_type,
            created_at=existing.created_at if existing is not None else _now(),
        )
        await self.repo.save_task(task)

    async def _complete_task(
        self,
        run: ActiveRun,
        step: Step,
        outcome: StepOutcome,
        actor_id: str,
        now: datetime,
    ) -> None:
        task = await self.repo.get_task(UserTask.task_id(run.id, step.id))
        if task is None:
            logger.warning("Run %s: no task found for step %s", run.id, step.id)
            return
        await self.repo.save_task(task.model_copy(update={
            "status": TaskStatus.COMPLETED,
            "outcome": outcome,
            "completed_by": actor_id,
            "completed_at": now,
        }))

    async def _notify(self, run: ActiveRun, step: Step, assignee: ResolvedAssignee) -> None:
        try:
            await self.notifier.notify(
                organization_id=run.organization_id,
                recipient_id=assignee.assignee_id,
                recipient_type=assignee.assignee_type,
                title=f"New task: {step.title or step.action.value}",
                message=f"'{run.procedure_title}' is waiting on you.",
                link=f"/run/{run.id}",
            )
        except Exception as exc:
            logger.warning("Notification for run %s failed: %s", run.id, exc)

    @staticmethod
    def _summary(run: ActiveRun) -> dict[str, Any]:
        return {
            "run_id": run.id,
            "procedure_id": run.procedure_id,
            "status": run.status.value,
            "step_index": run.current_step_index,
            "error_detail": run.error_detail,
            "process_run_id": run.process_run_id,
        }

    async def _publish(self, events: list[Event]) -> None:
        for name, run in events:
            await self.event_bus.emit(name, run)

    async def _fire_callbacks(self, event: str, data: dict) -> None:
        """Invoke all registered callbacks for a lifecycle event."""
        for cb in self.callbacks:
            try:
                result = cb(event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as cb_exc:
                logger.warning("Callback error on %r: %s", event, cb_exc)
