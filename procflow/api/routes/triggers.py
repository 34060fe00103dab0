"""POST /v1/triggers/file: a file appeared in a storage folder."""

import logging

from fastapi import APIRouter, Depends

from procflow.api.deps import get_dispatcher, get_org_context
from procflow.api.schemas import FileEventRequest
from procflow.types import OrgContext

logger = logging.getLogger(__name__)
router = APIRouter(tags=["triggers"])


@router.post("/triggers/file")
async def file_created(
    body: FileEventRequest,
    ctx: OrgContext = Depends(get_org_context),
    dispatcher=Depends(get_dispatcher),
):
    """Start a Run for every published, active procedure watching the file's folder.

    No matching procedure is not an error; ``runs_created`` is then empty.
    """
    result = await dispatcher.dispatch_file_event(
        body.file_path,
        ctx.organization_id,
        file_url=body.file_url,
        file_id=body.file_id,
    )
    return result.model_dump(mode="json")
