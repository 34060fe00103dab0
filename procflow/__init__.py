"""procflow: run execution engine for human + automated procedures.

Usage:
    from procflow import RunEngine, Repository, MemoryDocumentStore, OrgContext

    engine = RunEngine(Repository(MemoryDocumentStore()))
    started = await engine.start("proc-invoice", OrgContext(organization_id="org-1", actor_id="u-1"))
"""

from procflow.types import (
    ActiveRun, Procedure, Step, StepAction, ExecutionType, RunStatus, StepOutcome,
    AssignmentType, Assignment, TriggerType, TriggerSpec, OrgContext, RunLog, UserTask,
    ProcessDefinition, ProcessRun, ProcessRunStatus, StartResult, ResumeResult,
)
from procflow.exceptions import (
    ProcflowError, NotFound, ProcedureNotFound, RunNotFound, ProcessNotFound,
    InvalidState, NotWaiting, StepMismatch, AssignmentUnresolved, ExecutionFailure,
    TriggerError, TriggerRejected, WebhookSecretMismatch, VersionConflict,
)
from procflow.store import MemoryDocumentStore, Repository, SqlDocumentStore
from procflow.engine import RunEngine
from procflow.triggers import EventBus, TriggerDispatcher
from procflow.process import ProcessCoordinator
from procflow.version import __version__

__all__ = [
    "ActiveRun", "Procedure", "Step", "StepAction", "ExecutionType", "RunStatus",
    "StepOutcome", "AssignmentType", "Assignment", "TriggerType", "TriggerSpec",
    "OrgContext", "RunLog", "UserTask", "ProcessDefinition", "ProcessRun",
    "ProcessRunStatus", "StartResult", "ResumeResult",
    "ProcflowError", "NotFound", "ProcedureNotFound", "RunNotFound", "ProcessNotFound",
    "InvalidState", "NotWaiting", "StepMismatch", "AssignmentUnresolved",
    "ExecutionFailure", "TriggerError", "TriggerRejected", "WebhookSecretMismatch",
    "VersionConflict",
    "MemoryDocumentStore", "Repository", "SqlDocumentStore",
    "RunEngine", "EventBus", "TriggerDispatcher", "ProcessCoordinator",
    "__version__",
]
