"""Process chain routes: start a ProcessRun, inspect it, resume elapsed delays."""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from procflow.api.deps import get_coordinator, get_org_context
from procflow.api.schemas import ResumeDueResponse, StartProcessRequest
from procflow.config import config as procflow_config
from procflow.exceptions import ProcessNotFound
from procflow.types import OrgContext

logger = logging.getLogger(__name__)
router = APIRouter(tags=["processes"])


def _check_cron_secret(x_cron_secret: Optional[str] = Header(default=None)) -> None:
    """Guards the scheduler hook when ``cron_secret`` is configured."""
    expected = procflow_config.cron_secret
    if not expected:
        return
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret.encode(), expected.encode()):
        logger.warning("Rejected resume-due call with a missing or wrong cron secret")
        raise HTTPException(status_code=401, detail="Invalid cron secret.")


@router.post("/processes/resume-due", response_model=ResumeDueResponse)
async def resume_due(
    _: None = Depends(_check_cron_secret),
    coordinator=Depends(get_coordinator),
):
    """Resume every ProcessRun whose delay has elapsed. Called by an external scheduler."""
    return await coordinator.resume_due()


@router.post("/processes/{process_id}/start", status_code=201)
async def start_process(
    process_id: str,
    body: StartProcessRequest,
    ctx: OrgContext = Depends(get_org_context),
    coordinator=Depends(get_coordinator),
):
    prun = await coordinator.start_process(process_id, ctx, initial_input=body.initial_input)
    return prun.model_dump(mode="json")


@router.get("/processes/runs/{process_run_id}")
async def get_process_run(
    process_run_id: str,
    ctx: OrgContext = Depends(get_org_context),
    coordinator=Depends(get_coordinator),
):
    prun = await coordinator.repo.get_process_run(process_run_id)
    if prun is None or prun.organization_id != ctx.organization_id:
        raise ProcessNotFound(f"ProcessRun {process_run_id!r} not found", resource_id=process_run_id)
    return prun.model_dump(mode="json")
