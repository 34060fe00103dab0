"""Webhook endpoint. No org headers: the procedure id identifies the organization.

A configured ``webhook_secret`` must arrive in the ``x-webhook-secret``
header. Form bodies (urlencoded or multipart) become a dict of their fields,
uploaded files reduced to their name and content type. Anything else is
parsed as JSON and otherwise passed on as ``{"raw": <text>}``.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from starlette.datastructures import UploadFile

from procflow.api.deps import get_dispatcher

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def _form_value(value: Any) -> Any:
    if isinstance(value, UploadFile):
        return {"filename": value.filename, "content_type": value.content_type}
    return value


async def _parse_body(request: Request) -> Any:
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(_FORM_TYPES):
        form = await request.form()
        return {key: _form_value(value) for key, value in form.multi_items()}

    raw = await request.body()
    if not raw:
        return {}
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


@router.api_route("/webhooks/{procedure_id}", methods=["POST", "PUT", "PATCH"])
async def receive_webhook(
    procedure_id: str,
    request: Request,
    dispatcher=Depends(get_dispatcher),
):
    body = await _parse_body(request)
    result = await dispatcher.dispatch_webhook(
        procedure_id,
        body=body,
        headers=dict(request.headers),
        method=request.method,
        url=str(request.url),
    )
    logger.info("Webhook for procedure %s started run %s", procedure_id, result.run_id)
    return result.model_dump(mode="json")
