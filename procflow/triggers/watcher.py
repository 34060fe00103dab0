"""FolderWatcher: polls watched folders and dispatches newly seen files.

Folders come from the published, active ON_FILE_CREATED procedures and are
grouped per organization so each folder is listed once per tick. A file is
remembered in the ``file_watcher_cache`` collection only after its dispatch
returned, so a crash mid-dispatch makes the next tick try again.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from procflow.store.repository import Repository
from procflow.triggers.dispatcher import TriggerDispatcher
from procflow.triggers.folders import normalize_folder
from procflow.types import TriggerType

logger = logging.getLogger(__name__)


class RemoteFile(BaseModel):
    id: str
    path: str
    url: Optional[str] = None


@runtime_checkable
class FileSource(Protocol):
    """Lists the files currently present in a storage folder."""

    async def list_files(self, organization_id: str, folder: str) -> list[RemoteFile]:
        ...


class LocalFileSource:
    """FileSource over a local directory tree; watched folders are relative to *root*."""

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    async def list_files(self, organization_id: str, folder: str) -> list[RemoteFile]:
        base = self.root / normalize_folder(folder)
        if not base.is_dir():
            return []
        files = []
        for p in sorted(base.iterdir()):
            if p.is_file():
                rel = p.relative_to(self.root).as_posix()
                files.append(RemoteFile(id=rel, path="/" + rel, url=p.resolve().as_uri()))
        return files


def cache_key(organization_id: str, folder: str, file_id: str) -> str:
    digest = hashlib.sha256(f"{organization_id}\x00{folder}\x00{file_id}".encode()).hexdigest()
    return digest[:32]


class FolderWatcher:
    """Runs :meth:`tick` every *tick_seconds* until stopped."""

    def __init__(
        self,
        source: FileSource,
        dispatcher: TriggerDispatcher,
        repo: Repository,
        tick_seconds: int = 30,
    ) -> None:
        self._source = source
        self._dispatcher = dispatcher
        self._repo = repo
        self._tick_seconds = tick_seconds
        self._task: asyncio.Task | None = None

    async def watched_folders(self) -> dict[tuple[str, str], list[str]]:
        """(organization_id, folder) -> ids of the procedures watching it."""
        procedures = await self._repo.list_procedures(
            trigger_type=TriggerType.ON_FILE_CREATED, published=True, active=True,
        )
        folders: dict[tuple[str, str], list[str]] = {}
        for proc in procedures:
            folder = proc.trigger.folder_path or proc.trigger.provider_id
            if folder:
                folders.setdefault((proc.organization_id, folder), []).append(proc.id)
        return folders

    async def tick(self) -> dict[str, Any]:
        """Check every watched folder once. Returns a summary of the pass."""
        folders = await self.watched_folders()
        runs_created: list[str] = []
        errors: list[str] = []

        for (org_id, folder), proc_ids in folders.items():
            try:
                files = await self._source.list_files(org_id, folder)
            except Exception as exc:
                logger.warning("Listing folder %r for org %s failed: %s", folder, org_id, exc)
                errors.append(f"{folder}: {exc}")
                continue

            normalized = normalize_folder(folder)
            for f in files:
                key = cache_key(org_id, normalized, f.id)
                if await self._repo.is_file_seen(key):
                    continue
                try:
                    result = await self._dispatcher.dispatch_file_event(
                        f.path, org_id, file_url=f.url, file_id=f.id,
                    )
                except Exception as exc:
                    logger.exception("Dispatch of %s for org %s raised", f.path, org_id)
                    errors.append(f"{f.path}: {exc}")
                    continue
                runs_created.extend(result.runs_created)
                if result.failures:
                    # left unseen so the next tick retries it
                    for proc_id, error in result.failures.items():
                        errors.append(f"{f.path}: {proc_id}: {error}")
                    continue
                await self._repo.mark_file_seen(key, {
                    "organization_id": org_id,
                    "folder_path": folder,
                    "file_id": f.id,
                    "file_path": f.path,
                    "detected_at": datetime.now(timezone.utc).isoformat(),
                })
            logger.debug("Checked folder %r (%d procedure(s)) for org %s", folder, len(proc_ids), org_id)

        return {
            "checked_folders": len(folders),
            "runs_created": runs_created,
            "errors": errors,
        }

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name="procflow-folder-watcher")
        logger.info("FolderWatcher started (tick=%ds)", self._tick_seconds)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("FolderWatcher stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            try:
                summary = await self.tick()
            except Exception:
                logger.exception("FolderWatcher tick raised unexpectedly")
                continue
            if summary["runs_created"]:
                logger.info("FolderWatcher created %d run(s)", len(summary["runs_created"]))
