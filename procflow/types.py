"""All shared types, enums, and type aliases. Everything imports from here."""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from datetime import datetime, timedelta, timezone
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# ── Enums ──────────────────────────────────────────────────────────────

class StepAction(str, Enum):
    # human
    INPUT = "INPUT"
    APPROVAL = "APPROVAL"
    MANUAL_TASK = "MANUAL_TASK"
    NEGOTIATE = "NEGOTIATE"
    INSPECT = "INSPECT"
    # automated
    AI_PARSE = "AI_PARSE"
    DB_INSERT = "DB_INSERT"
    HTTP_REQUEST = "HTTP_REQUEST"
    SEND_EMAIL = "SEND_EMAIL"
    GOOGLE_SHEET = "GOOGLE_SHEET"
    DOC_GENERATE = "DOC_GENERATE"
    CALCULATE = "CALCULATE"
    GATEWAY = "GATEWAY"
    VALIDATE = "VALIDATE"
    COMPARE = "COMPARE"

class ExecutionType(str, Enum):
    AUTO = "AUTO"
    HUMAN = "HUMAN"

class AssignmentType(str, Enum):
    STARTER = "STARTER"
    SPECIFIC_USER = "SPECIFIC_USER"
    TEAM_QUEUE = "TEAM_QUEUE"

class AssigneeType(str, Enum):
    USER = "USER"
    TEAM = "TEAM"

class RunStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_FOR_USER = "WAITING_FOR_USER"
    COMPLETED = "COMPLETED"
    FLAGGED = "FLAGGED"

class StepOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    FLAGGED = "FLAGGED"

class TaskStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"

class TriggerType(str, Enum):
    MANUAL = "MANUAL"
    ON_FILE_CREATED = "ON_FILE_CREATED"
    WEBHOOK = "WEBHOOK"

class ProcessRunStatus(str, Enum):
    RUNNING = "RUNNING"
    WAITING_DELAY = "WAITING_DELAY"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"            # first step could not be started

class ProcessStepStatus(str, Enum):
    RUNNING = "RUNNING"
    WAITING_DELAY = "WAITING_DELAY"
    COMPLETED = "COMPLETED"


# ── Step configs (one variant per action) ──────────────────────────────

class _StepConfigBase(BaseModel):
    output_variable_name: Optional[str] = None  # extra context alias for this step's output

class InputConfig(_StepConfigBase):
    action: Literal["INPUT"] = "INPUT"
    instruction: str = ""
    fields: list[dict[str, Any]] = Field(default_factory=list)

class ApprovalConfig(_StepConfigBase):
    action: Literal["APPROVAL"] = "APPROVAL"
    instruction: str = ""
    require_signature: bool = False
    actions: list[str] = Field(default_factory=lambda: ["Approve", "Reject"])

class ManualTaskConfig(_StepConfigBase):
    action: Literal["MANUAL_TASK"] = "MANUAL_TASK"
    instruction: str = ""
    due_in_hours: Optional[int] = None

class NegotiateConfig(_StepConfigBase):
    action: Literal["NEGOTIATE"] = "NEGOTIATE"
    instruction: str = ""

class InspectConfig(_StepConfigBase):
    action: Literal["INSPECT"] = "INSPECT"
    instruction: str = ""
    proof_type: Optional[Literal["photo", "signature", "checkbox"]] = None

class AiParseConfig(_StepConfigBase):
    action: Literal["AI_PARSE"] = "AI_PARSE"
    file_url: Optional[str] = None              # template, e.g. "{{trigger.fileUrl}}"
    fields_to_extract: list[str] = Field(default_factory=list)
    file_type: Optional[Literal["pdf", "excel", "image"]] = None

class DbInsertConfig(_StepConfigBase):
    action: Literal["DB_INSERT"] = "DB_INSERT"
    collection_name: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)

class HttpRequestConfig(_StepConfigBase):
    action: Literal["HTTP_REQUEST"] = "HTTP_REQUEST"
    url: str = ""
    method: Literal["GET", "POST", "PUT", "DELETE"] = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    request_body: Optional[Any] = None
    response_path: Optional[str] = None         # JMESPath applied to a JSON response
    timeout_seconds: Optional[float] = None
    max_retries: int = 0

class SendEmailConfig(_StepConfigBase):
    action: Literal["SEND_EMAIL"] = "SEND_EMAIL"
    recipient: str = ""
    subject: str = ""
    email_body: str = ""
    attachments: list[str] = Field(default_factory=list)

class GoogleSheetConfig(_StepConfigBase):
    action: Literal["GOOGLE_SHEET"] = "GOOGLE_SHEET"
    spreadsheet_id: str = ""
    sheet_name: str = ""
    operation: Literal["APPEND_ROW", "UPDATE_ROW", "LOOKUP_ROW"] = "APPEND_ROW"
    column_mapping: dict[str, str] = Field(default_factory=dict)

class DocGenerateConfig(_StepConfigBase):
    action: Literal["DOC_GENERATE"] = "DOC_GENERATE"
    template_id: Optional[str] = None
    data_mapping: dict[str, Any] = Field(default_factory=dict)
    inline_content: Optional[str] = None
    output_format: Literal["pdf", "docx"] = "pdf"

class CalculateConfig(_StepConfigBase):
    action: Literal["CALCULATE"] = "CALCULATE"
    formula: str = ""
    variables: dict[str, str] = Field(default_factory=dict)  # name -> context path

class GatewayCondition(BaseModel):
    variable: str
    operator: Literal[
        "eq", "neq", "gt", "gte", "lt", "lte",
        "contains", "not_contains", "starts_with", "is_empty", "is_not_empty",
    ] = "eq"
    value: Any = None
    next_step_id: Optional[str] = None
    label: Optional[str] = None

class GatewayConfig(_StepConfigBase):
    action: Literal["GATEWAY"] = "GATEWAY"
    conditions: list[GatewayCondition] = Field(default_factory=list)
    default_next_step_id: Optional[str] = None

class ValidateConfig(_StepConfigBase):
    action: Literal["VALIDATE"] = "VALIDATE"
    target: str = ""                            # context path of the value under test
    rule: Literal[
        "IS_NOT_EMPTY", "IS_VALID_EMAIL", "IS_VALID_PHONE", "CONTAINS",
        "GREATER_THAN", "LESS_THAN", "EQUAL", "REGEX",
    ] = "REGEX"
    value: Any = None
    validation_rule: Optional[str] = None       # regex pattern for REGEX
    error_message: Optional[str] = None

class CompareConfig(_StepConfigBase):
    action: Literal["COMPARE"] = "COMPARE"
    target_a: str = ""
    target_b: str = ""
    comparison_type: Literal["exact", "fuzzy", "numeric", "date"] = "exact"


StepConfig = Annotated[
    Union[
        InputConfig, ApprovalConfig, ManualTaskConfig, NegotiateConfig, InspectConfig,
        AiParseConfig, DbInsertConfig, HttpRequestConfig, SendEmailConfig,
        GoogleSheetConfig, DocGenerateConfig, CalculateConfig, GatewayConfig,
        ValidateConfig, CompareConfig,
    ],
    Field(discriminator="action"),
]


# ── Procedures ─────────────────────────────────────────────────────────

class Assignment(BaseModel):
    """Who is responsible for a HUMAN step."""
    type: AssignmentType
    assignee_id: Optional[str] = None   # user id (SPECIFIC_USER) or team id (TEAM_QUEUE)

class Step(BaseModel):
    """One atomic step. ``config`` is always the variant matching ``action``."""
    id: str = Field(default_factory=lambda: new_id("step"))
    title: str = ""
    action: StepAction
    assignment: Optional[Assignment] = None
    config: StepConfig

    @model_validator(mode="before")
    @classmethod
    def _tag_config(cls, data: Any) -> Any:
        if isinstance(data, dict):
            action = data.get("action")
            if isinstance(action, Enum):
                action = action.value
            cfg = data.get("config")
            if cfg is None:
                cfg = {}
            if isinstance(cfg, dict) and action is not None:
                data = {**data, "config": {**cfg, "action": action}}
        return data

    @model_validator(mode="after")
    def _check_config(self) -> "Step":
        if self.config.action != self.action.value:
            raise ValueError(
                f"step {self.id!r}: config is for {self.config.action}, step action is {self.action.value}"
            )
        return self

class TriggerSpec(BaseModel):
    type: TriggerType = TriggerType.MANUAL
    folder_path: Optional[str] = None      # ON_FILE_CREATED
    provider_id: Optional[str] = None      # storage provider folder id
    webhook_secret: Optional[str] = None   # WEBHOOK, checked against x-webhook-secret

class Procedure(BaseModel):
    """A reusable, ordered list of steps owned by an organization."""
    id: str = Field(default_factory=lambda: new_id("proc"))
    organization_id: str
    title: str
    description: str = ""
    steps: list[Step] = Field(default_factory=list)
    trigger: TriggerSpec = Field(default_factory=TriggerSpec)
    is_published: bool = False
    is_active: bool = True
    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


# ── Step outputs ───────────────────────────────────────────────────────

class FileOutput(BaseModel):
    kind: Literal["file"] = "file"
    url: Optional[str] = None
    path: Optional[str] = None
    file_id: Optional[str] = None
    name: Optional[str] = None

    def as_value(self) -> Any:
        return self.model_dump(mode="json", exclude={"kind"})

class ProofOutput(BaseModel):
    kind: Literal["proof"] = "proof"
    proof_type: str
    reference: Optional[str] = None
    signed_by: Optional[str] = None

    def as_value(self) -> Any:
        return self.model_dump(mode="json", exclude={"kind"})

class ScalarOutput(BaseModel):
    kind: Literal["scalar"] = "scalar"
    value: Union[bool, int, float, str, None] = None

    def as_value(self) -> Any:
        return self.value

class RecordOutput(BaseModel):
    kind: Literal["record"] = "record"
    data: dict[str, Any] = Field(default_factory=dict)

    def as_value(self) -> Any:
        return self.data

class OpaqueOutput(BaseModel):
    """Anything that fits no other shape. Kept verbatim."""
    kind: Literal["opaque"] = "opaque"
    value: Any = None

    def as_value(self) -> Any:
        return self.value


StepOutput = Annotated[
    Union[FileOutput, ProofOutput, ScalarOutput, RecordOutput, OpaqueOutput],
    Field(discriminator="kind"),
]
_OUTPUT_KINDS = {"file", "proof", "scalar", "record", "opaque"}
_output_adapter = TypeAdapter(StepOutput)


def coerce_output(raw: Any) -> Optional[StepOutput]:
    """Map a raw step payload to a StepOutput variant.

    Dicts carrying a known ``kind`` tag are parsed as that variant; other dicts
    become records, primitives become scalars, and everything else is opaque.
    """
    if raw is None:
        return None
    if isinstance(raw, (FileOutput, ProofOutput, ScalarOutput, RecordOutput, OpaqueOutput)):
        return raw
    if isinstance(raw, dict):
        if raw.get("kind") in _OUTPUT_KINDS:
            try:
                return _output_adapter.validate_python(raw)
            except ValidationError:
                pass  # a plain record that happens to use a "kind" key
        return RecordOutput(data=raw)
    if isinstance(raw, (bool, int, float, str)):
        return ScalarOutput(value=raw)
    return OpaqueOutput(value=raw)


def output_value(output: Optional[StepOutput]) -> Any:
    """Plain value bound into run and process contexts."""
    return output.as_value() if output is not None else None


# ── Runs ───────────────────────────────────────────────────────────────

class RunLog(BaseModel):
    """One executed step. ``outcome`` is None only for a pending HUMAN entry."""
    step_id: str
    step_title: str = ""
    action: StepAction
    execution_type: ExecutionType
    output: Optional[StepOutput] = None
    outcome: Optional[StepOutcome] = None
    executed_by: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

class ActiveRun(BaseModel):
    """A single execution of a Procedure."""
    id: str = Field(default_factory=lambda: new_id("run"))
    procedure_id: str
    procedure_title: str = ""
    organization_id: str
    status: RunStatus = RunStatus.IN_PROGRESS
    current_step_index: int = 0
    current_step_id: Optional[str] = None
    current_assignee_id: Optional[str] = None
    current_assignee_email: Optional[str] = None
    assignee_type: Optional[AssigneeType] = None
    started_by: str
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    logs: list[RunLog] = Field(default_factory=list)
    steps: list[Step] = Field(default_factory=list)   # snapshot taken at start
    trigger_context: dict[str, Any] = Field(default_factory=dict)
    initial_input: dict[str, Any] = Field(default_factory=dict)
    triggered_by: TriggerType = TriggerType.MANUAL
    process_run_id: Optional[str] = None
    error_detail: Optional[str] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def current_step(self) -> Optional[Step]:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

class UserTask(BaseModel):
    """Inbox item for the assignee of a paused HUMAN step."""
    id: str
    run_id: str
    step_id: str
    title: str = ""
    procedure_id: str
    procedure_title: str = ""
    organization_id: str
    assignee_id: str
    assignee_email: Optional[str] = None
    assignee_type: AssigneeType = AssigneeType.USER
    status: TaskStatus = TaskStatus.PENDING
    outcome: Optional[StepOutcome] = None
    completed_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    version: int = 0

    @staticmethod
    def task_id(run_id: str, step_id: str) -> str:
        return f"task-{run_id}-{step_id}"


# ── Processes ──────────────────────────────────────────────────────────

class ProcedureStepRef(BaseModel):
    type: Literal["procedure"] = "procedure"
    instance_id: str
    procedure_id: str
    title: str = ""
    input_mappings: dict[str, str] = Field(default_factory=dict)  # child input key -> template

class DelayStep(BaseModel):
    type: Literal["delay"] = "delay"
    instance_id: str
    duration: int = Field(gt=0)
    unit: Literal["minutes", "hours", "days"] = "hours"

    def delta(self) -> timedelta:
        return timedelta(**{self.unit: self.duration})


ProcessStep = Annotated[Union[ProcedureStepRef, DelayStep], Field(discriminator="type")]

class ProcessDefinition(BaseModel):
    """An ordered chain of Procedures and delays."""
    id: str = Field(default_factory=lambda: new_id("pdef"))
    organization_id: str
    title: str
    steps: list[ProcessStep] = Field(default_factory=list)
    is_active: bool = True
    version: int = 0

class StepHistoryEntry(BaseModel):
    step_instance_id: str
    status: ProcessStepStatus
    active_run_id: Optional[str] = None
    executed_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

class ProcessRun(BaseModel):
    """One execution of a ProcessDefinition; ``context_data`` flows between child runs."""
    id: str = Field(default_factory=lambda: new_id("prun"))
    process_id: str
    process_title: str = ""
    organization_id: str
    started_by: str
    status: ProcessRunStatus = ProcessRunStatus.RUNNING
    current_step_index: int = 0
    current_step_instance_id: Optional[str] = None
    context_data: dict[str, Any] = Field(default_factory=dict)
    step_history: list[StepHistoryEntry] = Field(default_factory=list)
    resume_at: Optional[datetime] = None
    error_detail: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    version: int = 0


# ── Directory & notifications ──────────────────────────────────────────

class UserProfile(BaseModel):
    id: str
    organization_id: str
    email: str
    display_name: str = ""
    team_ids: list[str] = Field(default_factory=list)

class DataCollection(BaseModel):
    """Organization-owned table that DB_INSERT steps write records into."""
    id: str = Field(default_factory=lambda: new_id("col"))
    organization_id: str
    name: str
    fields: list[dict[str, Any]] = Field(default_factory=list)

class DataRecord(BaseModel):
    id: str = Field(default_factory=lambda: new_id("rec"))
    collection_id: str
    organization_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    source_run_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

class Notification(BaseModel):
    id: str = Field(default_factory=lambda: new_id("ntf"))
    organization_id: str
    recipient_id: str
    recipient_type: AssigneeType = AssigneeType.USER
    title: str
    message: str = ""
    link: Optional[str] = None
    read: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


# ── Request context & results ──────────────────────────────────────────

class OrgContext(BaseModel):
    """Caller identity, passed explicitly into every engine entry point."""
    organization_id: str
    actor_id: str

class ResolvedAssignee(BaseModel):
    assignee_id: str
    assignee_type: AssigneeType
    email: Optional[str] = None

class StartResult(BaseModel):
    run_id: str
    initial_status: RunStatus

class ResumeResult(BaseModel):
    status: RunStatus
    next_step_id: Optional[str] = None

class FileDispatchResult(BaseModel):
    runs_created: list[str] = Field(default_factory=list)
    folder_path: str = ""
    matched_procedure_ids: list[str] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)   # procedure id -> error

class WebhookDispatchResult(BaseModel):
    run_id: str
    status: RunStatus
