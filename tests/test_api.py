"""HTTP API tests.

Route handlers run in minimal FastAPI test apps wired to the in-memory store
and fake collaborators from conftest; no database or external services.
"""

import asyncio

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from procflow.api.errors import register_error_handlers, status_for
from procflow.api.routes import health, processes, runs, triggers, webhooks
from procflow.exceptions import (
    LockTimeout, NotWaiting, ProcflowError, RunNotFound, TriggerRejected, WebhookSecretMismatch,
)
from procflow.process import ProcessCoordinator
from procflow.triggers import TriggerDispatcher
from procflow.types import (
    DelayStep, ProcedureStepRef, ProcessDefinition, StepAction, TriggerSpec, TriggerType,
)
from tests.conftest import ALICE, BOB, ORG, OTHER_ORG, make_procedure, make_step, starter

HEADERS = {"x-org-id": ORG, "x-user-id": ALICE}


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_test_app(*routers, state_attrs=None):
    """Create minimal test app with the given routers and app.state services."""
    app = FastAPI()
    for router in routers:
        app.include_router(router, prefix="/v1")
    register_error_handlers(app)

    if state_attrs:
        for key, value in state_attrs.items():
            setattr(app.state, key, value)
    return app


@pytest.fixture
def services(repo, engine, config):
    dispatcher = TriggerDispatcher(engine, repo, config=config)
    coordinator = ProcessCoordinator(repo, engine, config=config)
    return {"repo": repo, "engine": engine, "dispatcher": dispatcher, "coordinator": coordinator}


@pytest.fixture
def client(services):
    app = make_test_app(
        runs.router, triggers.router, webhooks.router, processes.router, health.router,
        state_attrs=services,
    )
    with TestClient(app) as c:
        yield c


def seed(repo, *procedures):
    async def _save():
        for proc in procedures:
            await repo.save_procedure(proc)
    asyncio.run(_save())


def approval_procedure(proc_id="proc-1", **kwargs):
    return make_procedure(
        [
            make_step(StepAction.CALCULATE, "calc", formula="{{initial_input.qty}} * 4"),
            make_step(StepAction.APPROVAL, "approve", "Approve order", assignment=starter()),
        ],
        proc_id=proc_id,
        **kwargs,
    )


# ── Runs ──────────────────────────────────────────────────────────────────────

class TestRunRoutes:

    def test_start_and_resume(self, client, repo):
        seed(repo, approval_procedure())

        resp = client.post("/v1/runs", json={"procedure_id": "proc-1", "initial_input": {"qty": 3}},
                           headers=HEADERS)
        assert resp.status_code == 201
        run_id = resp.json()["run_id"]
        assert resp.json()["initial_status"] == "WAITING_FOR_USER"

        run = client.get(f"/v1/runs/{run_id}", headers=HEADERS).json()
        assert run["current_step_id"] == "approve"
        assert run["logs"][0]["output"]["data"]["result"] == 12

        tasks = client.get("/v1/tasks", params={"assignee_id": ALICE}, headers=HEADERS).json()["tasks"]
        assert [t["run_id"] for t in tasks] == [run_id]

        resp = client.post(f"/v1/runs/{run_id}/resume", json={"step_id": "approve", "output": "ok"},
                           headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {"status": "COMPLETED", "next_step_id": None}

        resp = client.post(f"/v1/runs/{run_id}/resume", json={"step_id": "approve"}, headers=HEADERS)
        assert resp.status_code == 409
        assert resp.json()["type"] == "NotWaiting"

    def test_org_headers_required(self, client):
        resp = client.post("/v1/runs", json={"procedure_id": "proc-1"})
        assert resp.status_code == 401

    def test_unknown_procedure_is_404(self, client):
        resp = client.post("/v1/runs", json={"procedure_id": "missing"}, headers=HEADERS)
        assert resp.status_code == 404
        assert resp.json()["type"] == "ProcedureNotFound"

    def test_other_org_cannot_read_run(self, client, repo):
        seed(repo, approval_procedure())
        run_id = client.post("/v1/runs", json={"procedure_id": "proc-1", "initial_input": {"qty": 1}},
                             headers=HEADERS).json()["run_id"]

        resp = client.get(f"/v1/runs/{run_id}", headers={"x-org-id": OTHER_ORG, "x-user-id": BOB})
        assert resp.status_code == 404

    def test_unassignable_step_is_422(self, client, repo):
        seed(repo, make_procedure([make_step(StepAction.INPUT, "form")]))
        resp = client.post("/v1/runs", json={"procedure_id": "proc-1"}, headers=HEADERS)
        assert resp.status_code == 422
        assert resp.json()["type"] == "AssignmentUnresolved"

    def test_flag_and_reassign(self, client, repo):
        seed(repo, approval_procedure())
        run_id = client.post("/v1/runs", json={"procedure_id": "proc-1", "initial_input": {"qty": 1}},
                             headers=HEADERS).json()["run_id"]

        resp = client.post(f"/v1/runs/{run_id}/flag", json={"error_detail": "Wrong vendor"}, headers=HEADERS)
        assert resp.json() == {"run_id": run_id, "status": "FLAGGED"}

        resp = client.post(f"/v1/runs/{run_id}/reassign", json={"assignee_id": BOB}, headers=HEADERS)
        assert resp.json() == {"run_id": run_id, "status": "WAITING_FOR_USER", "assignee_id": BOB}

    def test_wrong_step_is_409(self, client, repo):
        seed(repo, approval_procedure())
        run_id = client.post("/v1/runs", json={"procedure_id": "proc-1", "initial_input": {"qty": 1}},
                             headers=HEADERS).json()["run_id"]
        resp = client.post(f"/v1/runs/{run_id}/resume", json={"step_id": "calc"}, headers=HEADERS)
        assert resp.status_code == 409
        assert resp.json()["type"] == "StepMismatch"


# ── Triggers & webhooks ───────────────────────────────────────────────────────

class TestTriggerRoutes:

    def test_file_event(self, client, repo):
        seed(repo, make_procedure(
            [make_step(StepAction.CALCULATE, "calc", formula="1+1")],
            trigger=TriggerSpec(type=TriggerType.ON_FILE_CREATED, folder_path="/scans"),
        ))
        resp = client.post("/v1/triggers/file", json={"file_path": "/scans/a.png"}, headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["matched_procedure_ids"] == ["proc-1"]
        assert len(body["runs_created"]) == 1

    def test_webhook_json(self, client, repo):
        seed(repo, make_procedure(
            [make_step(StepAction.CALCULATE, "calc", formula="{{initial_input.n}} + 1")],
            proc_id="hook", trigger=TriggerSpec(type=TriggerType.WEBHOOK, webhook_secret="abc"),
        ))

        resp = client.post("/v1/webhooks/hook", json={"n": 41}, headers={"x-webhook-secret": "abc"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "COMPLETED"

        resp = client.post("/v1/webhooks/hook", json={"n": 41}, headers={"x-webhook-secret": "nope"})
        assert resp.status_code == 401
        assert resp.json()["type"] == "WebhookSecretMismatch"

    def test_webhook_form_and_text_bodies(self, client, repo, engine):
        seed(repo, make_procedure(
            [make_step(StepAction.APPROVAL, "ok", assignment=starter())],
            proc_id="hook", trigger=TriggerSpec(type=TriggerType.WEBHOOK),
        ))

        form = client.post("/v1/webhooks/hook", data={"name": "Ada", "plan": "pro"})
        text = client.put("/v1/webhooks/hook", content=b"plain text", headers={"content-type": "text/plain"})

        async def _runs():
            return [await repo.get_run(form.json()["run_id"]), await repo.get_run(text.json()["run_id"])]

        form_run, text_run = asyncio.run(_runs())
        assert form_run.initial_input == {"name": "Ada", "plan": "pro"}
        assert text_run.trigger_context["body"] == {"raw": "plain text"}
        assert text_run.trigger_context["method"] == "PUT"

    def test_webhook_multipart_body(self, client, repo):
        seed(repo, make_procedure(
            [make_step(StepAction.APPROVAL, "ok", assignment=starter())],
            proc_id="hook", trigger=TriggerSpec(type=TriggerType.WEBHOOK),
        ))

        resp = client.post(
            "/v1/webhooks/hook",
            data={"vendor": "Acme"},
            files={"scan": ("invoice.pdf", b"%PDF-1.4", "application/pdf")},
        )
        assert resp.status_code == 200

        run = asyncio.run(repo.get_run(resp.json()["run_id"]))
        assert run.initial_input == {
            "vendor": "Acme",
            "scan": {"filename": "invoice.pdf", "content_type": "application/pdf"},
        }

    def test_webhook_to_inactive_procedure(self, client, repo):
        seed(repo, make_procedure(
            [make_step(StepAction.CALCULATE, "calc", formula="1")],
            proc_id="hook", active=False, trigger=TriggerSpec(type=TriggerType.WEBHOOK),
        ))
        resp = client.post("/v1/webhooks/hook", json={})
        assert resp.status_code == 400
        assert resp.json()["type"] == "TriggerRejected"


# ── Processes ─────────────────────────────────────────────────────────────────

class TestProcessRoutes:

    def _seed_process(self, repo):
        seed(repo, make_procedure([make_step(StepAction.CALCULATE, "calc", formula="1+1")]))

        async def _save():
            await repo.save_process(ProcessDefinition(
                id="pd-1", organization_id=ORG, title="Chain",
                steps=[
                    ProcedureStepRef(instance_id="s1", procedure_id="proc-1"),
                    DelayStep(instance_id="d", duration=5, unit="minutes"),
                ],
            ))
        asyncio.run(_save())

    def test_start_and_read_process(self, client, repo):
        self._seed_process(repo)

        resp = client.post("/v1/processes/pd-1/start", json={}, headers=HEADERS)
        assert resp.status_code == 201
        prun = resp.json()
        assert prun["status"] == "WAITING_DELAY"

        resp = client.get(f"/v1/processes/runs/{prun['id']}", headers=HEADERS)
        assert resp.json()["context_data"]["step_1_output"]["result"] == 2

        resp = client.get(f"/v1/processes/runs/{prun['id']}",
                          headers={"x-org-id": OTHER_ORG, "x-user-id": BOB})
        assert resp.status_code == 404

    def test_resume_due_without_secret(self, client):
        resp = client.post("/v1/processes/resume-due")
        assert resp.status_code == 200
        assert resp.json() == {"resumed": [], "errors": {}}

    def test_resume_due_checks_cron_secret(self, client, monkeypatch):
        monkeypatch.setattr(processes.procflow_config, "cron_secret", "tick-tock")

        assert client.post("/v1/processes/resume-due").status_code == 401
        assert client.post("/v1/processes/resume-due", headers={"x-cron-secret": "nope"}).status_code == 401
        assert client.post("/v1/processes/resume-due", headers={"x-cron-secret": "tick-tock"}).status_code == 200


# ── Health & errors ───────────────────────────────────────────────────────────

class TestHealthAndErrors:

    def test_health(self, client):
        resp = client.get("/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["services"] == {"api": True, "store": True}

    def test_missing_service_is_503(self):
        app = make_test_app(runs.router)
        with TestClient(app) as c:
            resp = c.get("/v1/runs/r-1", headers=HEADERS)
        assert resp.status_code == 503

    @pytest.mark.parametrize("exc,status", [
        (WebhookSecretMismatch("x"), 401),
        (TriggerRejected("x"), 400),
        (RunNotFound("x"), 404),
        (NotWaiting("x"), 409),
        (LockTimeout("x"), 503),
        (ProcflowError("x"), 400),
    ])
    def test_status_mapping(self, exc, status):
        assert status_for(exc) == status

    def test_app_factory_mounts_all_routes(self):
        from procflow.api.main import create_app

        paths = {route.path for route in create_app().routes}
        assert {"/v1/runs", "/v1/tasks", "/v1/triggers/file", "/v1/webhooks/{procedure_id}",
                "/v1/processes/resume-due", "/v1/health"} <= paths
