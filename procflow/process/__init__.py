"""Process chains: Procedures and delays run one after another."""

from procflow.process.coordinator import ProcessCoordinator
from procflow.process.scheduler import DelayScheduler

__all__ = ["ProcessCoordinator", "DelayScheduler"]
