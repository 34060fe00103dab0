"""Typed exception hierarchy. Every error procflow can raise."""


class ProcflowError(Exception):
    """Base exception for all procflow errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


# ── Lookup failures ─────────────────────────────────────────────────────────


class NotFound(ProcflowError):
    """A referenced document does not exist or belongs to another organization."""
    def __init__(self, message: str, resource_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.resource_id = resource_id


class ProcedureNotFound(NotFound):
    pass


class RunNotFound(NotFound):
    pass


class ProcessNotFound(NotFound):
    pass


class UserNotFound(NotFound):
    pass


# ── State machine ───────────────────────────────────────────────────────────


class InvalidState(ProcflowError):
    """Operation is not permitted in the current Run or ProcessRun state."""
    def __init__(self, message: str, status: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.status = status


class NotWaiting(InvalidState):
    """Resume was called on a Run that is not WAITING_FOR_USER."""
    pass


class StepMismatch(InvalidState):
    """Resume named a step other than the Run's current step."""
    def __init__(self, message: str, expected_step_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.expected_step_id = expected_step_id


class AssignmentUnresolved(ProcflowError):
    """A step's assignment policy cannot produce an assignee."""
    def __init__(self, message: str, step_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.step_id = step_id


class ExecutionFailure(ProcflowError):
    """An AUTO action failed. Recovered into the Run as FLAGGED."""
    def __init__(self, message: str, action: str = "", output=None, **kwargs):
        super().__init__(message, **kwargs)
        self.action = action
        self.output = output


# ── Triggers ────────────────────────────────────────────────────────────────


class TriggerError(ProcflowError):
    """A trigger could not start a Run."""
    def __init__(self, message: str, trigger_type: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.trigger_type = trigger_type


class TriggerRejected(TriggerError):
    """Procedure is inactive or not configured for this trigger type."""
    pass


class WebhookSecretMismatch(TriggerError):
    """The x-webhook-secret header did not match the procedure's secret."""
    def __init__(self, message: str):
        super().__init__(message, trigger_type="WEBHOOK")


# ── Storage ─────────────────────────────────────────────────────────────────


class StoreError(ProcflowError):
    """Document store operation failed."""
    pass


class VersionConflict(StoreError):
    """Optimistic write lost: the stored document moved on since it was read."""
    def __init__(self, message: str, expected: int = 0, actual: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class LockTimeout(StoreError):
    """Per-run lock could not be acquired in time."""
    pass
