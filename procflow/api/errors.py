"""Maps the procflow exception hierarchy onto HTTP status codes."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from procflow.exceptions import (
    AssignmentUnresolved, ExecutionFailure, InvalidState, LockTimeout, NotFound,
    ProcflowError, TriggerRejected, VersionConflict, WebhookSecretMismatch,
)

logger = logging.getLogger(__name__)

# most specific first
STATUS_CODES: list[tuple[type, int]] = [
    (WebhookSecretMismatch, 401),
    (TriggerRejected, 400),
    (NotFound, 404),
    (InvalidState, 409),
    (VersionConflict, 409),
    (LockTimeout, 503),
    (AssignmentUnresolved, 422),
    (ExecutionFailure, 502),
]


def status_for(exc: ProcflowError) -> int:
    for exc_type, status in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status
    return 400


async def procflow_error_handler(request: Request, exc: ProcflowError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        {"error": str(exc), "type": type(exc).__name__, "details": exc.details},
        status_code=status,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProcflowError, procflow_error_handler)
