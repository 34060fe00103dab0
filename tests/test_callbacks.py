"""Lifecycle callbacks, the audit logger and runtime wiring."""

import json
import logging

from procflow.callbacks import BaseCallback, LoggingCallback
from procflow.runtime import build_runtime
from procflow.store.memory import MemoryDocumentStore
from procflow.cache.locks import LocalLocks
from procflow.types import OrgContext, RunStatus, StepAction, StepOutcome
from tests.conftest import ALICE, ORG, make_procedure, make_step, starter


class CountingCallback(BaseCallback):
    def __init__(self):
        self.seen = []

    async def on_run_complete(self, data, **kwargs):
        self.seen.append(("complete", data["run_id"]))

    async def on_process_event(self, data, **kwargs):
        self.seen.append((kwargs["event"], data["process_run_id"]))


# ── BaseCallback dispatch ─────────────────────────────────────────────────────

class TestBaseCallback:

    async def test_events_map_to_hooks(self):
        cb = CountingCallback()
        await cb("run_completed", {"run_id": "r1"})
        await cb("process_waiting", {"process_run_id": "p1"})
        await cb("run_started", {"run_id": "r1"})   # default no-op
        await cb("something_else", {})               # unknown events are ignored
        assert cb.seen == [("complete", "r1"), ("process_waiting", "p1")]


# ── LoggingCallback ───────────────────────────────────────────────────────────

class TestLoggingCallback:

    async def test_one_json_line_per_event(self, caplog):
        cb = LoggingCallback()
        with caplog.at_level(logging.INFO, logger="procflow.audit"):
            await cb("run_started", {"run_id": "r1", "step_count": 3})

        record = caplog.records[-1]
        payload = json.loads(record.getMessage())
        assert payload["event"] == "run_start"
        assert payload["run_id"] == "r1"
        assert payload["step_count"] == 3
        assert "ts" in payload
        assert record.levelno == logging.INFO

    async def test_flags_and_failures_log_at_warning(self, caplog):
        cb = LoggingCallback()
        with caplog.at_level(logging.INFO, logger="procflow.audit"):
            await cb("run_flagged", {"run_id": "r1", "error_detail": "x" * 500})
            await cb("process_failed", {"process_run_id": "p1"})

        flagged, failed = caplog.records[-2:]
        assert flagged.levelno == logging.WARNING
        assert len(json.loads(flagged.getMessage())["error_detail"]) == 200
        assert failed.levelno == logging.WARNING
        assert json.loads(failed.getMessage())["event"] == "process_failed"


# ── Runtime wiring ────────────────────────────────────────────────────────────

class TestRuntime:

    async def test_build_runtime_with_memory_store(self, config, caplog):
        runtime = await build_runtime(config, store=MemoryDocumentStore())
        try:
            assert isinstance(runtime.locks, LocalLocks)
            assert runtime.redis is None
            assert runtime.engine.locks is runtime.locks
            assert runtime.coordinator.event_bus is runtime.event_bus
            assert runtime.dispatcher._engine is runtime.engine

            await runtime.repo.save_procedure(make_procedure([
                make_step(StepAction.APPROVAL, "approve", assignment=starter()),
            ]))
            ctx = OrgContext(organization_id=ORG, actor_id=ALICE)
            with caplog.at_level(logging.INFO, logger="procflow.audit"):
                started = await runtime.engine.start("proc-1", ctx)
                result = await runtime.engine.resume(started.run_id, "approve", StepOutcome.SUCCESS, ctx)
            assert result.status == RunStatus.COMPLETED

            events = [json.loads(r.getMessage())["event"] for r in caplog.records if r.name == "procflow.audit"]
            assert events == ["run_start", "run_waiting", "run_resumed", "run_complete"]
        finally:
            await runtime.close()

    async def test_custom_callbacks_replace_audit_logging(self, config):
        cb = CountingCallback()
        runtime = await build_runtime(config, store=MemoryDocumentStore(), callbacks=[cb])
        await runtime.repo.save_procedure(make_procedure([make_step(StepAction.CALCULATE, "c", formula="1")]))

        started = await runtime.engine.start("proc-1", OrgContext(organization_id=ORG, actor_id=ALICE))

        assert cb.seen == [("complete", started.run_id)]
        assert runtime.dispatcher._callbacks == [cb]

    async def test_sql_store_uses_the_given_database_url(self, config, tmp_path):
        db_path = tmp_path / "runs.db"
        cfg = config.model_copy(update={"database_url": f"sqlite+aiosqlite:///{db_path}"})

        runtime = await build_runtime(cfg, callbacks=[])
        try:
            assert runtime.db_engine.url.database == str(db_path)
            await runtime.repo.save_procedure(make_procedure([make_step(StepAction.CALCULATE, "c", formula="1")]))
            assert (await runtime.repo.get_procedure("proc-1")).id == "proc-1"
        finally:
            await runtime.close()
        assert db_path.exists()
