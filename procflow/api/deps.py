"""Request dependencies shared by the route modules."""

from typing import Optional

from fastapi import Header, HTTPException, Request

from procflow.types import OrgContext


def get_org_context(
    x_org_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> OrgContext:
    """Organization and acting user, taken from the ``x-org-id`` / ``x-user-id`` headers."""
    if not x_org_id or not x_user_id:
        raise HTTPException(status_code=401, detail="x-org-id and x-user-id headers are required.")
    return OrgContext(organization_id=x_org_id, actor_id=x_user_id)


def _service(request: Request, name: str):
    svc = getattr(request.app.state, name, None)
    if svc is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialised.")
    return svc


def get_engine(request: Request):
    return _service(request, "engine")


def get_dispatcher(request: Request):
    return _service(request, "dispatcher")


def get_coordinator(request: Request):
    return _service(request, "coordinator")
