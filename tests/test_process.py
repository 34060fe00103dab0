"""ProcessCoordinator chains and the DelayScheduler."""

from datetime import datetime, timedelta, timezone

import pytest

from procflow.exceptions import InvalidState, ProcedureNotFound, ProcessNotFound
from procflow.process import DelayScheduler, ProcessCoordinator
from procflow.triggers.event_bus import EVENT_PROCESS_COMPLETED, EVENT_PROCESS_FAILED
from procflow.types import (
    DelayStep, OrgContext, ProcedureStepRef, ProcessDefinition, ProcessRunStatus, ProcessStepStatus,
    RunStatus, StepAction, StepOutcome,
)
from tests.conftest import ORG, OTHER_ORG, ALICE, make_procedure, make_step, starter


def later(hours=2):
    return datetime.now(timezone.utc) + timedelta(hours=hours)


@pytest.fixture
def coordinator(repo, engine, config):
    return ProcessCoordinator(repo, engine, config=config)


@pytest.fixture
async def procedures(repo):
    await repo.save_procedure(make_procedure(
        [make_step(StepAction.CALCULATE, "calc", "Total", formula="2+3")],
        proc_id="p-calc", title="Compute total",
    ))
    await repo.save_procedure(make_procedure(
        [
            make_step(StepAction.APPROVAL, "approve", "Approve", assignment=starter()),
            make_step(StepAction.CALCULATE, "double", formula="{{initial_input.total}} * 2"),
        ],
        proc_id="p-approve", title="Approve total",
    ))


async def save_process(repo, steps, process_id="pd-1", **kwargs):
    return await repo.save_process(ProcessDefinition(
        id=process_id, organization_id=kwargs.pop("org", ORG), title="Month end", steps=steps, **kwargs,
    ))


def calc_then_approve():
    return [
        ProcedureStepRef(instance_id="s1", procedure_id="p-calc"),
        ProcedureStepRef(instance_id="s2", procedure_id="p-approve",
                         input_mappings={"total": "{{step_1.output.result}}"}),
    ]


# ── Chains ──────────────────────────────────────────────────────────────────

class TestChains:

    async def test_output_flows_into_next_procedure(self, coordinator, engine, repo, ctx, procedures):
        await save_process(repo, calc_then_approve())

        prun = await coordinator.start_process("pd-1", ctx)

        # p-calc finishes synchronously, so the process is already on step 2
        assert prun.status == ProcessRunStatus.RUNNING
        assert prun.current_step_index == 1
        assert prun.context_data["step_1_output"]["result"] == 5
        assert prun.context_data["step_1"] == {"output": prun.context_data["step_1_output"]}
        assert prun.context_data["step_1_title"] == "Compute total"
        assert [h.status for h in prun.step_history] == [ProcessStepStatus.COMPLETED, ProcessStepStatus.RUNNING]

        child_id = prun.step_history[-1].active_run_id
        child = await engine.get_run(child_id, ctx)
        assert child.process_run_id == prun.id
        assert child.initial_input == {"total": 5}
        assert child.trigger_context == {"process_run_id": prun.id, "process_id": "pd-1"}
        assert child.status == RunStatus.WAITING_FOR_USER

        await engine.resume(child_id, "approve", StepOutcome.SUCCESS, ctx)

        done = await repo.get_process_run(prun.id)
        assert done.status == ProcessRunStatus.COMPLETED
        assert done.current_step_instance_id is None
        assert done.context_data["step_2_output"]["result"] == 10
        assert all(h.status == ProcessStepStatus.COMPLETED for h in done.step_history)

    async def test_all_auto_chain_completes_inside_start(self, coordinator, repo, ctx, procedures, bus, recorder):
        completed = []
        bus.subscribe(EVENT_PROCESS_COMPLETED, completed.append)
        await save_process(repo, [
            ProcedureStepRef(instance_id="a", procedure_id="p-calc"),
            ProcedureStepRef(instance_id="b", procedure_id="p-calc"),
        ])

        prun = await coordinator.start_process("pd-1", ctx, initial_input={"month": "2026-09"})

        assert prun.status == ProcessRunStatus.COMPLETED
        assert prun.context_data["month"] == "2026-09"
        assert set(prun.context_data) >= {"step_1_output", "step_2_output"}
        assert [p.id for p in completed] == [prun.id]
        assert recorder.names().count("process_advanced") == 2
        assert "process_completed" in recorder.names()

    async def test_child_started_by_process_starter(self, coordinator, engine, repo, procedures):
        await save_process(repo, calc_then_approve())
        bob_ctx = OrgContext(organization_id=ORG, actor_id="user-bob")

        prun = await coordinator.start_process("pd-1", bob_ctx)

        child = await engine.get_run(prun.step_history[-1].active_run_id, bob_ctx)
        assert child.started_by == "user-bob"
        assert child.current_assignee_id == "user-bob"

    async def test_flagged_child_leaves_process_running(self, coordinator, engine, repo, ctx, procedures):
        await save_process(repo, calc_then_approve())
        prun = await coordinator.start_process("pd-1", ctx)
        child_id = prun.step_history[-1].active_run_id

        await engine.resume(child_id, "approve", StepOutcome.FLAGGED, ctx)
        assert (await repo.get_process_run(prun.id)).status == ProcessRunStatus.RUNNING

        await engine.reassign(child_id, ctx, assignee_id=ALICE)
        await engine.resume(child_id, "approve", StepOutcome.SUCCESS, ctx)
        assert (await repo.get_process_run(prun.id)).status == ProcessRunStatus.COMPLETED

    async def test_standalone_runs_are_ignored(self, coordinator, engine, repo, ctx, procedures):
        started = await engine.start("p-calc", ctx)
        assert started.initial_status == RunStatus.COMPLETED
        assert await repo.store.query("process_runs", []) == []


# ── Failures & validation ───────────────────────────────────────────────────

class TestProcessErrors:

    async def test_unknown_first_procedure_fails_the_process(self, coordinator, repo, ctx, bus):
        failed = []
        bus.subscribe(EVENT_PROCESS_FAILED, failed.append)
        await save_process(repo, [ProcedureStepRef(instance_id="s1", procedure_id="ghost", title="Ghost")])

        with pytest.raises(ProcedureNotFound):
            await coordinator.start_process("pd-1", ctx)

        docs = await repo.store.query("process_runs", [])
        assert len(docs) == 1
        prun = await repo.get_process_run(docs[0]["id"])
        assert prun.status == ProcessRunStatus.FAILED
        assert prun.error_detail.startswith("Step 'Ghost' could not start")
        assert [p.id for p in failed] == [prun.id]

    async def test_later_step_failure_marks_process_failed(self, coordinator, repo, ctx, procedures):
        await save_process(repo, [
            ProcedureStepRef(instance_id="s1", procedure_id="p-calc"),
            ProcedureStepRef(instance_id="s2", procedure_id="ghost"),
        ])

        prun = await coordinator.start_process("pd-1", ctx)

        assert prun.status == ProcessRunStatus.FAILED

    async def test_unknown_process(self, coordinator, ctx):
        with pytest.raises(ProcessNotFound):
            await coordinator.start_process("nope", ctx)

    async def test_other_organizations_process(self, coordinator, repo, ctx):
        await save_process(repo, calc_then_approve(), org=OTHER_ORG)
        with pytest.raises(ProcessNotFound):
            await coordinator.start_process("pd-1", ctx)

    async def test_inactive_or_empty_process(self, coordinator, repo, ctx):
        await save_process(repo, calc_then_approve(), is_active=False)
        with pytest.raises(InvalidState):
            await coordinator.start_process("pd-1", ctx)
        await save_process(repo, [], process_id="pd-empty")
        with pytest.raises(InvalidState):
            await coordinator.start_process("pd-empty", ctx)


# ── Delays ──────────────────────────────────────────────────────────────────

class TestDelays:

    async def test_delay_pauses_until_resumed(self, coordinator, repo, ctx, procedures, recorder):
        await save_process(repo, [
            ProcedureStepRef(instance_id="s1", procedure_id="p-calc"),
            DelayStep(instance_id="wait", duration=1, unit="hours"),
            ProcedureStepRef(instance_id="s3", procedure_id="p-calc"),
        ])

        prun = await coordinator.start_process("pd-1", ctx)

        assert prun.status == ProcessRunStatus.WAITING_DELAY
        assert prun.current_step_instance_id == "wait"
        assert timedelta(minutes=59) < prun.resume_at - datetime.now(timezone.utc) <= timedelta(hours=1)
        assert "process_waiting" in recorder.names()

        nothing = await coordinator.resume_due()
        assert nothing == {"resumed": [], "errors": {}}

        result = await coordinator.resume_due(now=later())
        assert result["resumed"] == [prun.id]

        done = await repo.get_process_run(prun.id)
        assert done.status == ProcessRunStatus.COMPLETED
        assert done.resume_at is None
        assert [h.step_instance_id for h in done.step_history] == ["s1", "wait", "s3"]
        assert "step_3_output" in done.context_data
        assert "step_2_output" not in done.context_data

    async def test_resume_after_delay_requires_waiting(self, coordinator, repo, ctx, procedures):
        await save_process(repo, calc_then_approve())
        prun = await coordinator.start_process("pd-1", ctx)
        with pytest.raises(InvalidState):
            await coordinator.resume_after_delay(prun.id)
        with pytest.raises(ProcessNotFound):
            await coordinator.resume_after_delay("prun-missing")

    async def test_delay_resumed_once(self, coordinator, repo, ctx, procedures):
        await save_process(repo, [
            DelayStep(instance_id="wait", duration=30, unit="minutes"),
            ProcedureStepRef(instance_id="s2", procedure_id="p-calc"),
        ])
        prun = await coordinator.start_process("pd-1", ctx)

        first = await coordinator.resume_due(now=later())
        second = await coordinator.resume_due(now=later())

        assert first["resumed"] == [prun.id]
        assert second["resumed"] == []
        runs = await repo.list_runs(ORG, process_run_id=prun.id)
        assert len(runs) == 1

    async def test_scheduler_tick(self, coordinator, repo, ctx, procedures):
        await save_process(repo, [DelayStep(instance_id="wait", duration=1, unit="days")])
        prun = await coordinator.start_process("pd-1", ctx)
        scheduler = DelayScheduler(coordinator, tick_seconds=3600)

        summary = await scheduler.check_due(now=later(hours=25))

        assert summary["resumed"] == [prun.id]
        assert (await repo.get_process_run(prun.id)).status == ProcessRunStatus.COMPLETED

    async def test_scheduler_lifecycle(self, coordinator):
        scheduler = DelayScheduler(coordinator, tick_seconds=3600)
        assert not scheduler.running
        await scheduler.start()
        assert scheduler.running
        await scheduler.stop()
        assert not scheduler.running
