"""Pydantic models for API request/response. Engine types are returned as-is."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from procflow.types import StepOutcome


# ── Requests ──

class StartRunRequest(BaseModel):
    procedure_id: str
    initial_input: dict[str, Any] = Field(default_factory=dict)


class ResumeRunRequest(BaseModel):
    step_id: str
    outcome: StepOutcome = StepOutcome.SUCCESS
    output: Any = None


class FlagRunRequest(BaseModel):
    error_detail: str = Field(..., min_length=1, max_length=2000)


class ReassignRunRequest(BaseModel):
    assignee_id: Optional[str] = None
    email: Optional[str] = None


class FileEventRequest(BaseModel):
    file_path: str = Field(..., min_length=1)
    file_url: Optional[str] = None
    file_id: Optional[str] = None


class StartProcessRequest(BaseModel):
    initial_input: dict[str, Any] = Field(default_factory=dict)


# ── Responses ──

class ResumeDueResponse(BaseModel):
    resumed: list[str]
    errors: dict[str, str]


class HealthResponse(BaseModel):
    status: str                    # "ok" or "degraded"
    version: str
    services: dict[str, bool]      # {"store": true, "redis": false, ...}
