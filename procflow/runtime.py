"""Dependency wiring shared by the API server, the scheduler and the CLI.

    store ─► Repository ─► RunEngine ─► TriggerDispatcher
                              │
                              └──────► ProcessCoordinator (run.completed)
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from procflow.cache.locks import LocalLocks, LockManager, RedisLocks
from procflow.cache.redis_client import RedisClient
from procflow.callbacks.logging import LoggingCallback
from procflow.config import ProcflowConfig, config as default_config
from procflow.engine.runner import RunEngine
from procflow.process.coordinator import ProcessCoordinator
from procflow.store.base import DocumentStore
from procflow.store.repository import Repository
from procflow.triggers.dispatcher import TriggerDispatcher
from procflow.triggers.event_bus import EventBus

logger = logging.getLogger(__name__)


class Runtime:
    """Every long-lived service of one procflow process."""

    def __init__(
        self,
        store: DocumentStore,
        repo: Repository,
        locks: LockManager,
        event_bus: EventBus,
        engine: RunEngine,
        dispatcher: TriggerDispatcher,
        coordinator: ProcessCoordinator,
        redis: Optional[RedisClient] = None,
        db_engine: Optional[AsyncEngine] = None,
    ) -> None:
        self.store = store
        self.repo = repo
        self.locks = locks
        self.event_bus = event_bus
        self.engine = engine
        self.dispatcher = dispatcher
        self.coordinator = coordinator
        self.redis = redis
        self.db_engine = db_engine

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.close()
        if self.db_engine is not None:
            await self.db_engine.dispose()


async def build_runtime(
    cfg: ProcflowConfig = None,
    store: Optional[DocumentStore] = None,
    callbacks: Optional[list] = None,
) -> Runtime:
    """Build the service graph.

    Without an explicit *store*, documents go to the SQL database named by
    ``database_url`` (tables are created if missing).
    """
    cfg = cfg or default_config
    db_engine = None
    if store is None:
        from procflow.db.database import init_db, make_engine, make_session_factory
        from procflow.store.sql import SqlDocumentStore
        db_engine = make_engine(cfg.database_url, echo=cfg.debug)
        await init_db(db_engine)
        store = SqlDocumentStore(make_session_factory(db_engine))

    redis = None
    if cfg.use_redis_locks:
        redis = RedisClient(cfg.redis_url)
        locks: LockManager = RedisLocks(
            redis, ttl_seconds=cfg.lock_ttl_seconds, timeout_seconds=cfg.lock_timeout_seconds,
        )
        logger.info("Using Redis run locks at %s", cfg.redis_url)
    else:
        locks = LocalLocks(timeout_seconds=cfg.lock_timeout_seconds)

    repo = Repository(store)
    event_bus = EventBus()
    engine = RunEngine(
        repo,
        locks=locks,
        event_bus=event_bus,
        callbacks=callbacks if callbacks is not None else [LoggingCallback()],
        config=cfg,
    )
    dispatcher = TriggerDispatcher(engine, repo, config=cfg)
    coordinator = ProcessCoordinator(repo, engine, config=cfg)
    return Runtime(
        store=store,
        repo=repo,
        locks=locks,
        event_bus=event_bus,
        engine=engine,
        dispatcher=dispatcher,
        coordinator=coordinator,
        redis=redis,
        db_engine=db_engine,
    )
