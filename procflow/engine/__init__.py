"""Run execution: step classification, assignees, variables, actions and the run state machine."""

from procflow.engine.assignee import AssigneeResolver, resolve_assignee
from procflow.engine.classifier import HUMAN_ACTIONS, classify, is_auto, is_human
from procflow.engine.runner import RunEngine
from procflow.engine.variables import build_run_context, resolve_template, resolve_value

__all__ = [
    "AssigneeResolver",
    "HUMAN_ACTIONS",
    "RunEngine",
    "build_run_context",
    "classify",
    "is_auto",
    "is_human",
    "resolve_assignee",
    "resolve_template",
    "resolve_value",
]
