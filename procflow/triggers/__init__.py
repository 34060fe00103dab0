"""procflow trigger system: file events, webhooks, folder polling and the event bus."""

from procflow.triggers.dispatcher import TriggerDispatcher
from procflow.triggers.event_bus import (
    EVENT_PROCESS_COMPLETED,
    EVENT_PROCESS_FAILED,
    EVENT_RUN_COMPLETED,
    EVENT_RUN_FLAGGED,
    EVENT_RUN_STARTED,
    EVENT_RUN_WAITING,
    EventBus,
)
from procflow.triggers.folders import match_folder, normalize_folder
from procflow.triggers.watcher import FileSource, FolderWatcher, LocalFileSource, RemoteFile

__all__ = [
    "EventBus",
    "EVENT_RUN_STARTED",
    "EVENT_RUN_WAITING",
    "EVENT_RUN_COMPLETED",
    "EVENT_RUN_FLAGGED",
    "EVENT_PROCESS_COMPLETED",
    "EVENT_PROCESS_FAILED",
    "TriggerDispatcher",
    "FolderWatcher",
    "FileSource",
    "LocalFileSource",
    "RemoteFile",
    "match_folder",
    "normalize_folder",
]
