"""Assignee resolution for HUMAN steps."""

from __future__ import annotations

import logging
from typing import Optional

from procflow.collaborators import IdentityLookup
from procflow.exceptions import AssignmentUnresolved
from procflow.types import AssigneeType, Assignment, AssignmentType, ResolvedAssignee

logger = logging.getLogger(__name__)


def resolve_assignee(
    assignment: Optional[Assignment],
    started_by: str,
    step_id: str = "",
) -> ResolvedAssignee:
    """Map an assignment policy to a concrete assignee.

    STARTER goes to whoever started the Run, SPECIFIC_USER to the configured
    user and TEAM_QUEUE to the configured team (no fan-out to members).

    Raises:
        AssignmentUnresolved: no policy, or the policy lacks the id it needs.
    """
    if assignment is None:
        raise AssignmentUnresolved(f"Step {step_id!r} has no assignment policy", step_id=step_id)

    if assignment.type == AssignmentType.STARTER:
        if not started_by:
            raise AssignmentUnresolved(
                f"Step {step_id!r} is assigned to the starter but the run has no starter",
                step_id=step_id,
            )
        return ResolvedAssignee(assignee_id=started_by, assignee_type=AssigneeType.USER)

    if not assignment.assignee_id:
        raise AssignmentUnresolved(
            f"Step {step_id!r} uses {assignment.type.value} without an assignee id",
            step_id=step_id,
        )
    if assignment.type == AssignmentType.TEAM_QUEUE:
        return ResolvedAssignee(assignee_id=assignment.assignee_id, assignee_type=AssigneeType.TEAM)
    return ResolvedAssignee(assignee_id=assignment.assignee_id, assignee_type=AssigneeType.USER)


class AssigneeResolver:
    """Resolves assignees and looks up their contact address.

    A STARTER step in a Run started by the system actor is handed to
    *default_assignee_id* when one is configured.
    """

    def __init__(
        self,
        identity: Optional[IdentityLookup] = None,
        system_actor_id: str = "system",
        default_assignee_id: Optional[str] = None,
    ):
        self.identity = identity
        self.system_actor_id = system_actor_id
        self.default_assignee_id = default_assignee_id

    def _starter(self, assignment: Optional[Assignment], started_by: str) -> str:
        if (
            assignment is not None
            and assignment.type == AssignmentType.STARTER
            and started_by == self.system_actor_id
            and self.default_assignee_id
        ):
            return self.default_assignee_id
        return started_by

    def check(self, assignment: Optional[Assignment], started_by: str, step_id: str = "") -> ResolvedAssignee:
        """Resolve without the contact lookup. Raises AssignmentUnresolved."""
        return resolve_assignee(assignment, self._starter(assignment, started_by), step_id)

    async def resolve(
        self,
        assignment: Optional[Assignment],
        started_by: str,
        step_id: str = "",
    ) -> ResolvedAssignee:
        resolved = self.check(assignment, started_by, step_id)
        if resolved.assignee_type != AssigneeType.USER or self.identity is None:
            return resolved

        try:
            email = await self.identity.email_for(resolved.assignee_id)
        except Exception as exc:
            logger.warning("Email lookup failed for %s: %s", resolved.assignee_id, exc)
            email = None
        return resolved.model_copy(update={"email": email})
