"""Application configuration. All env vars defined here with defaults."""

from pydantic_settings import BaseSettings
from typing import Optional


class ProcflowConfig(BaseSettings):
    # ── App ──
    app_name: str = "procflow"
    debug: bool = False
    log_level: str = "INFO"

    # ── Database ──
    database_url: str = "sqlite+aiosqlite:///./procflow.db"

    # ── Redis ──
    redis_url: str = "redis://localhost:6379/0"
    use_redis_locks: bool = False              # asyncio locks are enough for a single worker
    lock_ttl_seconds: int = 60                 # auto loop may call slow connectors
    lock_timeout_seconds: float = 10.0

    # ── Server ──
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]

    # ── Scheduling ──
    cron_secret: Optional[str] = None          # guards POST /v1/processes/resume-due
    scheduler_tick_seconds: float = 60.0
    watcher_tick_seconds: float = 30.0

    # ── Triggers ──
    provider_id_min_length: int = 20           # drive folder ids are long opaque tokens
    system_actor_id: str = "system"
    default_assignee_id: Optional[str] = None  # used when a STARTER step is started by the system

    # ── Connectors ──
    http_timeout_seconds: float = 30.0

    model_config = {"env_prefix": "PROCFLOW_", "env_file": ".env", "extra": "ignore"}


config = ProcflowConfig()
