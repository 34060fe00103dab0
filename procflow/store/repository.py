"""Typed data access over a DocumentStore.

This is the ONLY layer that knows collection names and document shapes.
Runs, ProcessRuns and tasks are written with optimistic version checks.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, TypeVar

from pydantic import BaseModel

from procflow.store.base import DocumentStore
from procflow.types import (
    ActiveRun, DataCollection, DataRecord, Notification, Procedure, ProcessDefinition,
    ProcessRun, ProcessRunStatus, RunStatus, TaskStatus, TriggerType, UserProfile, UserTask,
)

M = TypeVar("M", bound=BaseModel)

PROCEDURES = "procedures"
RUNS = "active_runs"
TASKS = "user_tasks"
PROCESSES = "process_definitions"
PROCESS_RUNS = "process_runs"
USERS = "users"
NOTIFICATIONS = "notifications"
COLLECTIONS = "collections"
RECORDS = "records"
SEEN_FILES = "file_watcher_cache"


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", exclude={"version"})


def _load(cls: type[M], doc: Optional[dict[str, Any]]) -> Optional[M]:
    return cls.model_validate(doc) if doc is not None else None


class Repository:
    """All engine persistence. Lookups that take organization_id are org-scoped."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def _put(self, collection: str, model: M, check_version: bool = False) -> M:
        version = await self.store.put(
            collection,
            model.id,
            _dump(model),
            expected_version=model.version if check_version else None,
        )
        return model.model_copy(update={"version": version})

    async def _create(self, collection: str, model: M) -> M:
        version = await self.store.create(collection, model.id, _dump(model))
        return model.model_copy(update={"version": version})

    # ── Procedures ──
    async def get_procedure(
        self, procedure_id: str, organization_id: Optional[str] = None
    ) -> Optional[Procedure]:
        proc = _load(Procedure, await self.store.get(PROCEDURES, procedure_id))
        if proc is not None and organization_id is not None and proc.organization_id != organization_id:
            return None
        return proc

    async def save_procedure(self, procedure: Procedure) -> Procedure:
        return await self._put(PROCEDURES, procedure)

    async def list_procedures(
        self,
        organization_id: Optional[str] = None,
        trigger_type: Optional[TriggerType] = None,
        published: Optional[bool] = None,
        active: Optional[bool] = None,
    ) -> list[Procedure]:
        filters = []
        if organization_id is not None:
            filters.append(("organization_id", "==", organization_id))
        if trigger_type is not None:
            filters.append(("trigger.type", "==", trigger_type.value))
        if published is not None:
            filters.append(("is_published", "==", published))
        if active is not None:
            filters.append(("is_active", "==", active))
        return [Procedure.model_validate(d) for d in await self.store.query(PROCEDURES, filters)]

    # ── Runs ──
    async def get_run(self, run_id: str) -> Optional[ActiveRun]:
        return _load(ActiveRun, await self.store.get(RUNS, run_id))

    async def create_run(self, run: ActiveRun) -> ActiveRun:
        return await self._create(RUNS, run)

    async def update_run(self, run: ActiveRun) -> ActiveRun:
        """Write *run* if nobody else has written it since it was read."""
        return await self._put(RUNS, run, check_version=True)

    async def list_runs(
        self,
        organization_id: str,
        status: Optional[RunStatus] = None,
        process_run_id: Optional[str] = None,
    ) -> list[ActiveRun]:
        filters = [("organization_id", "==", organization_id)]
        if status is not None:
            filters.append(("status", "==", status.value))
        if process_run_id is not None:
            filters.append(("process_run_id", "==", process_run_id))
        return [ActiveRun.model_validate(d) for d in await self.store.query(RUNS, filters)]

    # ── Tasks ──
    async def get_task(self, task_id: str) -> Optional[UserTask]:
        return _load(UserTask, await self.store.get(TASKS, task_id))

    async def save_task(self, task: UserTask) -> UserTask:
        return await self._put(TASKS, task)

    async def list_tasks(
        self,
        organization_id: str,
        assignee_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
    ) -> list[UserTask]:
        filters = [("organization_id", "==", organization_id)]
        if assignee_id is not None:
            filters.append(("assignee_id", "==", assignee_id))
        if status is not None:
            filters.append(("status", "==", status.value))
        return [UserTask.model_validate(d) for d in await self.store.query(TASKS, filters)]

    # ── Processes ──
    async def get_process(
        self, process_id: str, organization_id: Optional[str] = None
    ) -> Optional[ProcessDefinition]:
        proc = _load(ProcessDefinition, await self.store.get(PROCESSES, process_id))
        if proc is not None and organization_id is not None and proc.organization_id != organization_id:
            return None
        return proc

    async def save_process(self, process: ProcessDefinition) -> ProcessDefinition:
        return await self._put(PROCESSES, process)

    async def get_process_run(self, process_run_id: str) -> Optional[ProcessRun]:
        return _load(ProcessRun, await self.store.get(PROCESS_RUNS, process_run_id))

    async def create_process_run(self, process_run: ProcessRun) -> ProcessRun:
        return await self._create(PROCESS_RUNS, process_run)

    async def update_process_run(self, process_run: ProcessRun) -> ProcessRun:
        return await self._put(PROCESS_RUNS, process_run, check_version=True)

    async def list_due_process_runs(self, now: datetime) -> list[ProcessRun]:
        """ProcessRuns waiting on a delay whose resume time has passed."""
        docs = await self.store.query(PROCESS_RUNS, [
            ("status", "==", ProcessRunStatus.WAITING_DELAY.value),
            ("resume_at", "<=", now),
        ])
        return [ProcessRun.model_validate(d) for d in docs]

    # ── Users ──
    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        return _load(UserProfile, await self.store.get(USERS, user_id))

    async def save_user(self, user: UserProfile) -> UserProfile:
        user = user.model_copy(update={"email": user.email.strip().lower()})
        await self.store.put(USERS, user.id, user.model_dump(mode="json"))
        return user

    async def find_user_by_email(self, organization_id: str, email: str) -> Optional[UserProfile]:
        docs = await self.store.query(USERS, [
            ("organization_id", "==", organization_id),
            ("email", "==", email.strip().lower()),
        ], limit=1)
        return UserProfile.model_validate(docs[0]) if docs else None

    # ── Notifications ──
    async def add_notification(self, notification: Notification) -> Notification:
        await self.store.put(NOTIFICATIONS, notification.id, notification.model_dump(mode="json"))
        return notification

    async def list_notifications(self, recipient_id: str) -> list[Notification]:
        docs = await self.store.query(NOTIFICATIONS, [("recipient_id", "==", recipient_id)])
        return [Notification.model_validate(d) for d in docs]

    # ── Data collections ──
    async def save_collection(self, collection: DataCollection) -> DataCollection:
        await self.store.put(COLLECTIONS, collection.id, collection.model_dump(mode="json"))
        return collection

    async def find_collection(self, organization_id: str, name: str) -> Optional[DataCollection]:
        docs = await self.store.query(COLLECTIONS, [
            ("organization_id", "==", organization_id),
            ("name", "==", name),
        ], limit=1)
        return DataCollection.model_validate(docs[0]) if docs else None

    async def insert_record(self, record: DataRecord) -> DataRecord:
        await self.store.create(RECORDS, record.id, record.model_dump(mode="json"))
        return record

    async def list_records(self, collection_id: str) -> list[DataRecord]:
        docs = await self.store.query(RECORDS, [("collection_id", "==", collection_id)])
        return [DataRecord.model_validate(d) for d in docs]

    # ── Folder watcher cache ──
    async def is_file_seen(self, cache_key: str) -> bool:
        return await self.store.get(SEEN_FILES, cache_key) is not None

    async def mark_file_seen(self, cache_key: str, data: dict[str, Any]) -> None:
        await self.store.put(SEEN_FILES, cache_key, data)
