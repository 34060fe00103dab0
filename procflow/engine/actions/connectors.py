"""Connector-backed actions: SEND_EMAIL, GOOGLE_SHEET, DOC_GENERATE and AI_PARSE.

The engine resolves and checks the payload; the actual third-party call is
delegated to a Connector supplied by the deployment.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, runtime_checkable

from procflow.engine.actions.registry import ActionContext, ActionResult
from procflow.engine.variables import MISSING, lookup, resolve_value, unresolved_placeholders
from procflow.exceptions import ExecutionFailure
from procflow.types import Step, StepAction

logger = logging.getLogger(__name__)


@runtime_checkable
class Connector(Protocol):
    async def __call__(self, action: StepAction, payload: dict[str, Any], ctx: ActionContext) -> Any:
        """Perform the external operation and return its output."""
        ...


# each inner tuple needs at least one non-empty field
REQUIRED_FIELDS: dict[StepAction, tuple[tuple[str, ...], ...]] = {
    StepAction.SEND_EMAIL: (("recipient",), ("subject",)),
    StepAction.GOOGLE_SHEET: (("spreadsheet_id",), ("sheet_name",)),
    StepAction.DOC_GENERATE: (("template_id", "inline_content"),),
    StepAction.AI_PARSE: (("file_url",), ("fields_to_extract",)),
}


class ConnectorAction:
    """Executor that resolves a step's config and hands it to a Connector."""

    def __init__(self, action: StepAction, connector: Optional[Connector] = None):
        self.action = StepAction(action)
        self.connector = connector

    def build_payload(self, step: Step, ctx: ActionContext) -> dict[str, Any]:
        payload = resolve_value(
            step.config.model_dump(mode="json", exclude={"action", "output_variable_name"}),
            ctx.variables,
        )
        if self.action == StepAction.AI_PARSE and not payload.get("file_url"):
            # file-triggered runs parse the file that started them
            found = lookup(ctx.variables, "trigger.file_url")
            if found is not MISSING:
                payload["file_url"] = found
        return payload

    async def __call__(self, step: Step, ctx: ActionContext) -> ActionResult:
        payload = self.build_payload(step, ctx)

        for group in REQUIRED_FIELDS.get(self.action, ()):
            if not any(payload.get(name) for name in group):
                return ActionResult.failure(f"{' or '.join(group)} is required for {self.action.value}")
        missing = unresolved_placeholders(payload)
        if missing:
            return ActionResult.failure(
                f"Unresolved variables in {self.action.value}: {', '.join(sorted(set(missing)))}"
            )

        if self.connector is None:
            raise ExecutionFailure(f"No connector configured for {self.action.value}", action=self.action.value)

        logger.info("Run %s dispatching %s to connector", ctx.run.id, self.action.value)
        result = await self.connector(self.action, payload, ctx)
        return ActionResult(output=result)
