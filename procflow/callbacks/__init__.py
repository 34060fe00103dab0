"""Callback/hook system for run lifecycle events."""

from procflow.callbacks.base import BaseCallback, RunCallback
from procflow.callbacks.logging import LoggingCallback

__all__ = ["BaseCallback", "RunCallback", "LoggingCallback"]
