"""AUTO action executors and their registry."""

from typing import Optional

from procflow.engine.actions.connectors import Connector, ConnectorAction
from procflow.engine.actions.data import db_insert
from procflow.engine.actions.http_request import HttpRequestAction
from procflow.engine.actions.logic import calculate, compare, gateway, validate
from procflow.engine.actions.registry import ActionContext, ActionRegistry, ActionResult, Executor
from procflow.types import StepAction

CONNECTOR_ACTIONS = (
    StepAction.SEND_EMAIL,
    StepAction.GOOGLE_SHEET,
    StepAction.DOC_GENERATE,
    StepAction.AI_PARSE,
)


def default_registry(
    connectors: Optional[dict[StepAction, Connector]] = None,
    http_action: Optional[HttpRequestAction] = None,
) -> ActionRegistry:
    """Registry with an executor for every AUTO action."""
    connectors = connectors or {}
    registry = ActionRegistry()
    registry.register(StepAction.COMPARE, compare)
    registry.register(StepAction.CALCULATE, calculate)
    registry.register(StepAction.VALIDATE, validate)
    registry.register(StepAction.GATEWAY, gateway)
    registry.register(StepAction.DB_INSERT, db_insert)
    registry.register(StepAction.HTTP_REQUEST, http_action or HttpRequestAction())
    for action in CONNECTOR_ACTIONS:
        registry.register(action, ConnectorAction(action, connectors.get(action)))
    return registry


__all__ = [
    "ActionContext",
    "ActionRegistry",
    "ActionResult",
    "Connector",
    "ConnectorAction",
    "Executor",
    "HttpRequestAction",
    "default_registry",
]
