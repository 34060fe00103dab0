"""Test fixtures: in-memory store, fake collaborators, procedure builders.

All tests should use these fixtures for consistency.
"""

from typing import Any, Optional

import pytest

from procflow.config import ProcflowConfig
from procflow.engine.assignee import AssigneeResolver
from procflow.engine.runner import RunEngine
from procflow.store.memory import MemoryDocumentStore
from procflow.store.repository import Repository
from procflow.triggers.event_bus import EventBus
from procflow.types import (
    Assignment, AssignmentType, OrgContext, Procedure, Step, StepAction, TriggerSpec,
    TriggerType, UserProfile,
)

ORG = "org-acme"
OTHER_ORG = "org-globex"
ALICE = "user-alice"
BOB = "user-bob"


# ── Fake collaborators ──────────────────────────────────────────────────────

class FakeNotifier:
    """Records notifications instead of delivering them."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def notify(self, organization_id, recipient_id, recipient_type, title, message, link=None):
        if self.fail:
            raise RuntimeError("mail server down")
        self.sent.append({
            "organization_id": organization_id,
            "recipient_id": recipient_id,
            "recipient_type": recipient_type,
            "title": title,
            "message": message,
            "link": link,
        })


class FakeIdentity:
    def __init__(self, emails: Optional[dict[str, str]] = None, fail: bool = False):
        self.emails = emails or {}
        self.fail = fail

    async def email_for(self, user_id: str) -> Optional[str]:
        if self.fail:
            raise RuntimeError("directory unavailable")
        return self.emails.get(user_id)


class RecordingCallback:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def __call__(self, event: str, data: dict) -> None:
        self.events.append((event, data))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


# ── Builders ────────────────────────────────────────────────────────────────

def make_step(
    action: StepAction,
    step_id: str,
    title: str = "",
    assignment: Optional[Assignment] = None,
    **config: Any,
) -> Step:
    return Step(id=step_id, title=title or step_id, action=action, assignment=assignment, config=config)


def starter() -> Assignment:
    return Assignment(type=AssignmentType.STARTER)


def make_procedure(
    steps: list[Step],
    proc_id: str = "proc-1",
    org: str = ORG,
    trigger: Optional[TriggerSpec] = None,
    published: bool = True,
    active: bool = True,
    title: str = "Invoice intake",
) -> Procedure:
    return Procedure(
        id=proc_id,
        organization_id=org,
        title=title,
        steps=steps,
        trigger=trigger or TriggerSpec(type=TriggerType.MANUAL),
        is_published=published,
        is_active=active,
    )


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def config():
    """Test configuration with safe defaults (no .env, no Redis)."""
    return ProcflowConfig(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        use_redis_locks=False,
        lock_timeout_seconds=2.0,
        cron_secret=None,
    )


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def repo(store):
    return Repository(store)


@pytest.fixture
def ctx():
    return OrgContext(organization_id=ORG, actor_id=ALICE)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def identity():
    return FakeIdentity({ALICE: "alice@acme.test", BOB: "bob@acme.test"})


@pytest.fixture
def recorder():
    return RecordingCallback()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def engine(repo, notifier, identity, recorder, bus, config):
    return RunEngine(
        repo,
        assignees=AssigneeResolver(identity=identity, system_actor_id=config.system_actor_id),
        notifier=notifier,
        event_bus=bus,
        callbacks=[recorder],
        config=config,
    )


@pytest.fixture
async def users(repo):
    alice = await repo.save_user(UserProfile(id=ALICE, organization_id=ORG, email="Alice@Acme.test"))
    bob = await repo.save_user(UserProfile(id=BOB, organization_id=ORG, email="bob@acme.test"))
    return alice, bob
