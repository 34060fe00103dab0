"""Document stores (memory and SQL) and the typed Repository on top of them."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from procflow.db.database import init_db
from procflow.exceptions import VersionConflict
from procflow.store.base import matches
from procflow.store.memory import MemoryDocumentStore
from procflow.store.repository import Repository
from procflow.store.sql import SqlDocumentStore
from procflow.types import (
    ActiveRun, ProcessRun, ProcessRunStatus, RunStatus, StepAction, TriggerSpec, TriggerType,
    UserProfile,
)
from tests.conftest import ALICE, ORG, OTHER_ORG, make_procedure, make_step, starter


@pytest.fixture(params=["memory", "sql"])
async def doc_store(request):
    if request.param == "memory":
        yield MemoryDocumentStore()
        return
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_db(engine)
    yield SqlDocumentStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
    await engine.dispose()


# ── DocumentStore contract ──────────────────────────────────────────────────

class TestDocumentStore:

    async def test_create_then_get(self, doc_store):
        version = await doc_store.create("things", "t1", {"organization_id": ORG, "name": "a"})
        assert version == 1
        doc = await doc_store.get("things", "t1")
        assert doc["name"] == "a"
        assert doc["version"] == 1
        assert doc["id"] == "t1"

    async def test_create_duplicate_conflicts(self, doc_store):
        await doc_store.create("things", "t1", {"name": "a"})
        with pytest.raises(VersionConflict):
            await doc_store.create("things", "t1", {"name": "b"})

    async def test_put_bumps_version(self, doc_store):
        assert await doc_store.put("things", "t1", {"name": "a"}) == 1
        assert await doc_store.put("things", "t1", {"name": "b"}, expected_version=1) == 2
        assert (await doc_store.get("things", "t1"))["name"] == "b"

    async def test_stale_write_rejected(self, doc_store):
        await doc_store.put("things", "t1", {"name": "a"})
        await doc_store.put("things", "t1", {"name": "b"}, expected_version=1)
        with pytest.raises(VersionConflict) as exc_info:
            await doc_store.put("things", "t1", {"name": "c"}, expected_version=1)
        assert exc_info.value.actual == 2
        assert (await doc_store.get("things", "t1"))["name"] == "b"

    async def test_query_filters(self, doc_store):
        await doc_store.put("things", "a", {"organization_id": ORG, "status": "OPEN", "meta": {"n": 1}})
        await doc_store.put("things", "b", {"organization_id": ORG, "status": "DONE", "meta": {"n": 5}})
        await doc_store.put("things", "c", {"organization_id": OTHER_ORG, "status": "OPEN", "meta": {"n": 9}})

        ids = lambda docs: sorted(d["id"] for d in docs)
        assert ids(await doc_store.query("things", [("organization_id", "==", ORG)])) == ["a", "b"]
        assert ids(await doc_store.query("things", [("status", "==", "OPEN"), ("meta.n", ">", 3)])) == ["c"]
        assert ids(await doc_store.query("things", [("status", "in", ["DONE"])])) == ["b"]
        assert len(await doc_store.query("things", [], limit=2)) == 2

    async def test_delete(self, doc_store):
        await doc_store.put("things", "a", {})
        assert await doc_store.delete("things", "a") is True
        assert await doc_store.delete("things", "a") is False
        assert await doc_store.get("things", "a") is None


def test_matches_compares_iso_dates():
    stored = TypeAdapter(datetime).dump_python(datetime(2026, 1, 1, 10, tzinfo=timezone.utc), mode="json")
    assert stored.endswith("Z")
    doc = {"resume_at": stored}
    cutoff = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)
    assert matches(doc, [("resume_at", "<=", cutoff)])
    assert not matches(doc, [("resume_at", ">", cutoff)])
    assert not matches({}, [("resume_at", "<=", cutoff)])


def test_matches_rejects_unknown_operator():
    with pytest.raises(ValueError):
        matches({"a": 1}, [("a", "~", 1)])


# ── Repository ──────────────────────────────────────────────────────────────

class TestRepository:

    async def test_procedure_lookup_is_org_scoped(self, doc_store):
        repo = Repository(doc_store)
        await repo.save_procedure(make_procedure([make_step(StepAction.APPROVAL, "a", assignment=starter())]))

        assert await repo.get_procedure("proc-1", ORG) is not None
        assert await repo.get_procedure("proc-1", OTHER_ORG) is None
        assert (await repo.get_procedure("proc-1")).steps[0].action == StepAction.APPROVAL

    async def test_list_procedures_by_trigger(self, doc_store):
        repo = Repository(doc_store)
        await repo.save_procedure(make_procedure([], proc_id="manual"))
        await repo.save_procedure(make_procedure(
            [], proc_id="files", trigger=TriggerSpec(type=TriggerType.ON_FILE_CREATED, folder_path="/in"),
        ))
        await repo.save_procedure(make_procedure(
            [], proc_id="draft", published=False,
            trigger=TriggerSpec(type=TriggerType.ON_FILE_CREATED, folder_path="/in"),
        ))

        found = await repo.list_procedures(ORG, trigger_type=TriggerType.ON_FILE_CREATED, published=True)
        assert [p.id for p in found] == ["files"]

    async def test_run_updates_are_versioned(self, doc_store):
        repo = Repository(doc_store)
        run = await repo.create_run(ActiveRun(id="run-1", procedure_id="p", organization_id=ORG, started_by=ALICE))
        assert run.version == 1

        moved = await repo.update_run(run.model_copy(update={"status": RunStatus.FLAGGED}))
        assert moved.version == 2
        with pytest.raises(VersionConflict):
            await repo.update_run(run.model_copy(update={"status": RunStatus.COMPLETED}))
        assert (await repo.get_run("run-1")).status == RunStatus.FLAGGED

    async def test_due_process_runs(self, doc_store):
        repo = Repository(doc_store)
        now = datetime.now(timezone.utc)
        for prun_id, offset in (("due", -5), ("later", 60)):
            await repo.create_process_run(ProcessRun(
                id=prun_id, process_id="pd", organization_id=ORG, started_by=ALICE,
                status=ProcessRunStatus.WAITING_DELAY, resume_at=now + timedelta(minutes=offset),
            ))
        await repo.create_process_run(ProcessRun(id="running", process_id="pd", organization_id=ORG,
                                                 started_by=ALICE))

        due = await repo.list_due_process_runs(now)
        assert [p.id for p in due] == ["due"]

    async def test_users_found_by_email_case_insensitively(self, doc_store):
        repo = Repository(doc_store)
        await repo.save_user(UserProfile(id=ALICE, organization_id=ORG, email=" Alice@Acme.TEST "))

        assert (await repo.find_user_by_email(ORG, "alice@acme.test")).id == ALICE
        assert await repo.find_user_by_email(OTHER_ORG, "alice@acme.test") is None
        assert (await repo.get_user(ALICE)).email == "alice@acme.test"

    async def test_seen_files(self, doc_store):
        repo = Repository(doc_store)
        assert not await repo.is_file_seen("k1")
        await repo.mark_file_seen("k1", {"file_id": "f"})
        assert await repo.is_file_seen("k1")
