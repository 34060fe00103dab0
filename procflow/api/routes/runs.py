"""Run lifecycle routes: start, inspect, resume, flag, reassign, task inbox."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from procflow.api.deps import get_engine, get_org_context
from procflow.api.schemas import FlagRunRequest, ReassignRunRequest, ResumeRunRequest, StartRunRequest
from procflow.types import OrgContext, TaskStatus, TriggerType

logger = logging.getLogger(__name__)
router = APIRouter(tags=["runs"])


@router.post("/runs", status_code=201)
async def start_run(
    body: StartRunRequest,
    ctx: OrgContext = Depends(get_org_context),
    engine=Depends(get_engine),
):
    """Start a Run of a procedure and drive it to its first pause."""
    result = await engine.start(
        body.procedure_id,
        ctx,
        initial_input=body.initial_input,
        triggered_by=TriggerType.MANUAL,
    )
    return result.model_dump(mode="json")


@router.get("/runs/{run_id}")
async def get_run(
    run_id: str,
    ctx: OrgContext = Depends(get_org_context),
    engine=Depends(get_engine),
):
    run = await engine.get_run(run_id, ctx)
    return run.model_dump(mode="json")


@router.post("/runs/{run_id}/resume")
async def resume_run(
    run_id: str,
    body: ResumeRunRequest,
    ctx: OrgContext = Depends(get_org_context),
    engine=Depends(get_engine),
):
    """Complete the HUMAN step the Run is waiting on."""
    result = await engine.resume(run_id, body.step_id, body.outcome, ctx, output=body.output)
    return result.model_dump(mode="json")


@router.post("/runs/{run_id}/flag")
async def flag_run(
    run_id: str,
    body: FlagRunRequest,
    ctx: OrgContext = Depends(get_org_context),
    engine=Depends(get_engine),
):
    run = await engine.flag(run_id, ctx, body.error_detail)
    return {"run_id": run.id, "status": run.status.value}


@router.post("/runs/{run_id}/reassign")
async def reassign_run(
    run_id: str,
    body: ReassignRunRequest,
    ctx: OrgContext = Depends(get_org_context),
    engine=Depends(get_engine),
):
    run = await engine.reassign(run_id, ctx, assignee_id=body.assignee_id, email=body.email)
    return {
        "run_id": run.id,
        "status": run.status.value,
        "assignee_id": run.current_assignee_id,
    }


@router.get("/tasks")
async def list_tasks(
    assignee_id: Optional[str] = None,
    status: Optional[TaskStatus] = TaskStatus.PENDING,
    ctx: OrgContext = Depends(get_org_context),
    engine=Depends(get_engine),
):
    """Task inbox for the organization, optionally narrowed to one assignee."""
    tasks = await engine.list_tasks(ctx, assignee_id=assignee_id, status=status)
    return {"tasks": [t.model_dump(mode="json") for t in tasks]}
