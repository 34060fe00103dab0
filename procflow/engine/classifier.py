"""Step classification: which actions a person performs and which run unattended."""

from procflow.types import ExecutionType, StepAction

HUMAN_ACTIONS: frozenset[StepAction] = frozenset({
    StepAction.INPUT,
    StepAction.APPROVAL,
    StepAction.MANUAL_TASK,
    StepAction.NEGOTIATE,
    StepAction.INSPECT,
})


def classify(action: StepAction) -> ExecutionType:
    """Return HUMAN for the five manual actions and AUTO for every other action.

    Accepts the enum or its string value.
    """
    return ExecutionType.HUMAN if StepAction(action) in HUMAN_ACTIONS else ExecutionType.AUTO


def is_human(action: StepAction) -> bool:
    return classify(action) == ExecutionType.HUMAN


def is_auto(action: StepAction) -> bool:
    return classify(action) == ExecutionType.AUTO
