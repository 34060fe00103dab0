"""TriggerDispatcher: turns file events and webhook calls into Runs.

Pure routing. Candidate selection and validation happen here; everything
about executing the Run is delegated to the RunEngine.
"""

from __future__ import annotations

import hmac
import inspect
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from procflow.config import ProcflowConfig, config as default_config
from procflow.exceptions import ProcedureNotFound, ProcflowError, TriggerRejected, WebhookSecretMismatch
from procflow.store.repository import Repository
from procflow.triggers.folders import match_folder, normalize_folder
from procflow.types import (
    FileDispatchResult, OrgContext, Procedure, TriggerType, WebhookDispatchResult,
)

if TYPE_CHECKING:
    from procflow.engine.runner import RunEngine

logger = logging.getLogger(__name__)

WEBHOOK_SECRET_HEADER = "x-webhook-secret"


class TriggerDispatcher:
    """Starts Runs for procedures whose trigger matches an inbound event."""

    def __init__(
        self,
        engine: "RunEngine",
        repo: Repository,
        config: ProcflowConfig = None,
        callbacks: list = None,
    ) -> None:
        self._engine = engine
        self._repo = repo
        self._config = config or default_config
        self._callbacks = callbacks if callbacks is not None else engine.callbacks

    # ── File events ──────────────────────────────────────────────────────────

    async def matching_procedures(self, file_path: str, organization_id: str) -> list[tuple[Procedure, str]]:
        """Published, active ON_FILE_CREATED procedures of the org watching *file_path*."""
        candidates = await self._repo.list_procedures(
            organization_id,
            trigger_type=TriggerType.ON_FILE_CREATED,
            published=True,
            active=True,
        )
        matches = []
        for proc in sorted(candidates, key=lambda p: p.id):
            configured = proc.trigger.folder_path or proc.trigger.provider_id
            rule = match_folder(configured, file_path, self._config.provider_id_min_length)
            if rule is None and proc.trigger.folder_path and proc.trigger.provider_id:
                rule = match_folder(proc.trigger.provider_id, file_path, self._config.provider_id_min_length)
            if rule is not None:
                logger.debug("Procedure %s matches %s (%s)", proc.id, file_path, rule)
                matches.append((proc, rule))
        return matches

    async def dispatch_file_event(
        self,
        file_path: str,
        organization_id: str,
        file_url: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> FileDispatchResult:
        """Start one Run per matching procedure.

        A procedure that fails to start is logged and recorded in
        ``failures``; the remaining matches still run. No match is not an
        error: the result is simply empty.
        """
        result = FileDispatchResult(folder_path=normalize_folder(file_path).rpartition("/")[0])
        file_name = file_path.replace("\\", "/").rstrip("/").rpartition("/")[2]
        trigger_context = {
            "file": file_name,
            "file_path": file_path,
            "file_url": file_url,
            "file_id": file_id,
        }
        initial_input = {"file_path": file_path, "file_url": file_url, "file_id": file_id}
        ctx = OrgContext(organization_id=organization_id, actor_id=self._config.system_actor_id)

        for proc, rule in await self.matching_procedures(file_path, organization_id):
            result.matched_procedure_ids.append(proc.id)
            try:
                started = await self._engine.start(
                    proc.id,
                    ctx,
                    initial_input=dict(initial_input),
                    trigger_context=dict(trigger_context),
                    triggered_by=TriggerType.ON_FILE_CREATED,
                )
            except ProcflowError as exc:
                logger.warning("File trigger for procedure %s failed: %s", proc.id, exc)
                result.failures[proc.id] = str(exc)
                continue
            except Exception as exc:
                logger.exception("File trigger for procedure %s raised", proc.id)
                result.failures[proc.id] = f"{type(exc).__name__}: {exc}"
                continue
            result.runs_created.append(started.run_id)
            await self._fire("trigger_fired", {
                "trigger_type": TriggerType.ON_FILE_CREATED.value,
                "procedure_id": proc.id,
                "run_id": started.run_id,
                "rule": rule,
                "file_path": file_path,
            })

        logger.info(
            "File event %s in org %s: %d run(s) created, %d failure(s)",
            file_path, organization_id, len(result.runs_created), len(result.failures),
        )
        return result

    # ── Webhooks ─────────────────────────────────────────────────────────────

    async def dispatch_webhook(
        self,
        procedure_id: str,
        body: Any = None,
        headers: Optional[dict[str, str]] = None,
        method: str = "POST",
        url: Optional[str] = None,
    ) -> WebhookDispatchResult:
        """Start a Run of *procedure_id* carrying the request in its trigger context.

        Raises:
            ProcedureNotFound: no such procedure
            TriggerRejected: procedure inactive or not webhook-triggered
            WebhookSecretMismatch: secret configured and header missing or wrong
        """
        proc = await self._repo.get_procedure(procedure_id)
        if proc is None:
            raise ProcedureNotFound(f"Procedure {procedure_id!r} not found", resource_id=procedure_id)
        if not proc.is_active:
            raise TriggerRejected(f"Procedure {procedure_id!r} is not active", trigger_type="WEBHOOK")
        if proc.trigger.type != TriggerType.WEBHOOK:
            raise TriggerRejected(
                f"Procedure {procedure_id!r} is triggered by {proc.trigger.type.value}, not WEBHOOK",
                trigger_type="WEBHOOK",
            )

        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        if proc.trigger.webhook_secret:
            supplied = lowered.get(WEBHOOK_SECRET_HEADER, "")
            if not hmac.compare_digest(supplied.encode(), proc.trigger.webhook_secret.encode()):
                raise WebhookSecretMismatch(f"Invalid webhook secret for procedure {procedure_id!r}")

        trigger_context = {
            "body": body,
            "headers": lowered,
            "method": method.upper(),
            "url": url,
            "received_at": datetime.now(timezone.utc).isoformat(),
        }
        initial_input = dict(body) if isinstance(body, dict) else {}
        ctx = OrgContext(organization_id=proc.organization_id, actor_id=self._config.system_actor_id)
        started = await self._engine.start(
            proc.id,
            ctx,
            initial_input=initial_input,
            trigger_context=trigger_context,
            triggered_by=TriggerType.WEBHOOK,
        )
        await self._fire("trigger_fired", {
            "trigger_type": TriggerType.WEBHOOK.value,
            "procedure_id": proc.id,
            "run_id": started.run_id,
        })
        return WebhookDispatchResult(run_id=started.run_id, status=started.initial_status)

    async def _fire(self, event: str, data: dict) -> None:
        for cb in self._callbacks:
            try:
                result = cb(event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("Callback error on %r: %s", event, exc)
