"""Engine collaborators: identity lookup and notification delivery.

Both are best-effort from the engine's point of view. The engine logs and
swallows their failures so a broken mailer never blocks a Run.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

from procflow.store.repository import Repository
from procflow.types import AssigneeType, Notification

logger = logging.getLogger(__name__)


@runtime_checkable
class IdentityLookup(Protocol):
    async def email_for(self, user_id: str) -> Optional[str]:
        """Contact address for *user_id*, or None if unknown."""
        ...


@runtime_checkable
class NotificationSink(Protocol):
    async def notify(
        self,
        organization_id: str,
        recipient_id: str,
        recipient_type: AssigneeType,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> None:
        ...


class RepositoryIdentityLookup:
    """Resolves emails from the ``users`` collection."""

    def __init__(self, repo: Repository):
        self.repo = repo

    async def email_for(self, user_id: str) -> Optional[str]:
        user = await self.repo.get_user(user_id)
        return user.email if user is not None else None


class RepositoryNotificationSink:
    """Stores in-app notifications; delivery (email, push) is someone else's job."""

    def __init__(self, repo: Repository):
        self.repo = repo

    async def notify(
        self,
        organization_id: str,
        recipient_id: str,
        recipient_type: AssigneeType,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> None:
        await self.repo.add_notification(Notification(
            organization_id=organization_id,
            recipient_id=recipient_id,
            recipient_type=recipient_type,
            title=title,
            message=message,
            link=link,
        ))
        logger.debug("Notified %s %s: %s", recipient_type.value, recipient_id, title)
