"""FastAPI application factory with lifespan management."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from procflow.api.errors import register_error_handlers
from procflow.config import config
from procflow.version import __version__


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        return response

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # ── Startup ──
    logger.info("procflow v%s starting...", __version__)

    # 1. Store, locks, engine, dispatcher, coordinator
    from procflow.runtime import build_runtime
    runtime = await build_runtime(config)
    app.state.runtime = runtime
    app.state.repo = runtime.repo
    app.state.redis = runtime.redis
    app.state.event_bus = runtime.event_bus
    app.state.engine = runtime.engine
    app.state.dispatcher = runtime.dispatcher
    app.state.coordinator = runtime.coordinator

    # 2. In-process delay scheduler (an external cron may call /v1/processes/resume-due instead)
    from procflow.process.scheduler import DelayScheduler
    scheduler = DelayScheduler(runtime.coordinator, tick_seconds=config.scheduler_tick_seconds)
    await scheduler.start()
    app.state.scheduler = scheduler

    logger.info(
        "procflow v%s ready (%d auto actions registered)",
        __version__, len(runtime.engine.actions.list_actions()),
    )

    yield

    # ── Shutdown ──
    logger.info("procflow shutting down...")
    await scheduler.stop()
    await runtime.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=config.app_name,
        description="Run execution engine for human and automated procedures.",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH"],
        allow_headers=["*"],
    )

    # Security headers, outermost middleware
    app.add_middleware(SecurityHeadersMiddleware)

    register_error_handlers(app)

    # Routes
    from procflow.api.routes import health, processes, runs, triggers, webhooks
    app.include_router(runs.router, prefix="/v1")
    app.include_router(triggers.router, prefix="/v1")
    app.include_router(webhooks.router, prefix="/v1")
    app.include_router(processes.router, prefix="/v1")
    app.include_router(health.router, prefix="/v1")

    return app


app = create_app()
