"""Registry of AUTO action executors."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict

from procflow.exceptions import ExecutionFailure
from procflow.store.repository import Repository
from procflow.types import ActiveRun, Step, StepAction, StepOutcome


class ActionContext(BaseModel):
    """Everything an executor may read while running one step."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    run: ActiveRun
    variables: dict[str, Any]
    repo: Optional[Repository] = None


class ActionResult(BaseModel):
    output: Any = None
    outcome: StepOutcome = StepOutcome.SUCCESS
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, output: Any = None) -> "ActionResult":
        return cls(output=output if output is not None else {"error": error},
                   outcome=StepOutcome.FAILURE, error=error)


Executor = Callable[[Step, ActionContext], Awaitable[ActionResult]]


class ActionRegistry:
    """Maps each AUTO action to the coroutine that performs it."""

    def __init__(self):
        self._executors: dict[StepAction, Executor] = {}

    def register(self, action: StepAction, executor: Executor) -> None:
        """Register (or replace) the executor for *action*."""
        self._executors[StepAction(action)] = executor

    def get(self, action: StepAction) -> Executor:
        """Get the executor for *action*.

        Raises:
            ExecutionFailure: if nothing is registered for it
        """
        action = StepAction(action)
        if action not in self._executors:
            raise ExecutionFailure(f"No executor registered for {action.value}", action=action.value)
        return self._executors[action]

    def list_actions(self) -> list[StepAction]:
        return list(self._executors)

    async def execute(self, step: Step, ctx: ActionContext) -> ActionResult:
        """Run *step*. Executors signal failure by raising ExecutionFailure or
        returning a FAILURE result; both are handled by the caller."""
        executor = self.get(step.action)
        return await executor(step, ctx)
