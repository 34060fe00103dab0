"""DelayScheduler: polls for ProcessRuns whose delay has elapsed.

Run it inside the API process (``start``/``stop``) or standalone:

    procflow scheduler
    python -m procflow.process.scheduler

Several schedulers may run at once. ``resume_after_delay`` takes the
ProcessRun lock and re-checks the status, so a delay is resumed only once.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime, timezone
from typing import Any

from procflow.process.coordinator import ProcessCoordinator

logger = logging.getLogger(__name__)

_DEFAULT_TICK_SECONDS = 60


class DelayScheduler:
    """Calls :meth:`ProcessCoordinator.resume_due` every *tick_seconds*."""

    def __init__(self, coordinator: ProcessCoordinator, tick_seconds: int = _DEFAULT_TICK_SECONDS) -> None:
        self._coordinator = coordinator
        self._tick_seconds = tick_seconds
        self._task: asyncio.Task | None = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name="procflow-delay-scheduler")
        logger.info("DelayScheduler started (tick=%ds)", self._tick_seconds)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("DelayScheduler stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Core tick ────────────────────────────────────────────────────────────

    async def check_due(self, now: datetime | None = None) -> dict[str, Any]:
        """Resume everything that is due (single tick)."""
        return await self._coordinator.resume_due(now or datetime.now(timezone.utc))

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            try:
                await self.check_due()
            except Exception:
                logger.exception("DelayScheduler tick raised unexpectedly")


async def run() -> None:
    """Standalone entry point: wire the services and poll until SIGINT/SIGTERM."""
    from procflow.config import config
    from procflow.runtime import build_runtime

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    loop.add_signal_handler(signal.SIGINT, stop_event.set)

    runtime = await build_runtime(config)
    scheduler = DelayScheduler(runtime.coordinator, tick_seconds=config.scheduler_tick_seconds)
    await scheduler.start()

    await stop_event.wait()

    logger.info("Shutting down DelayScheduler…")
    await scheduler.stop()
    await runtime.close()


def main() -> None:
    from procflow.config import config

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
