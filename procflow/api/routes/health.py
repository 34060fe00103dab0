"""GET /v1/health: health check with real service probes."""

import logging

from fastapi import APIRouter, Request

from procflow.api.schemas import HealthResponse
from procflow.version import __version__

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Check health of all services. Redis is only probed when locks use it."""
    services: dict[str, bool] = {"api": True, "store": False}

    try:
        repo = request.app.state.repo
        await repo.store.query("procedures", [], limit=1)
        services["store"] = True
    except Exception as exc:
        logger.warning("[health] store check failed: %s", exc)

    redis_client = getattr(request.app.state, "redis", None)
    if redis_client is not None:
        services["redis"] = await redis_client.health()

    overall = "ok" if all(services.values()) else "degraded"
    return HealthResponse(status=overall, version=__version__, services=services)
