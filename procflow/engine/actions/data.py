"""DB_INSERT: write a record into one of the organization's data collections."""

from __future__ import annotations

import logging

from procflow.engine.actions.registry import ActionContext, ActionResult
from procflow.engine.variables import resolve_value, unresolved_placeholders
from procflow.exceptions import ExecutionFailure
from procflow.types import DataRecord, DbInsertConfig, Step

logger = logging.getLogger(__name__)


async def db_insert(step: Step, ctx: ActionContext) -> ActionResult:
    cfg: DbInsertConfig = step.config
    if not cfg.collection_name:
        return ActionResult.failure("collection_name is required for DB_INSERT")
    if ctx.repo is None:
        raise ExecutionFailure("DB_INSERT needs a repository", action=step.action.value)

    data = resolve_value(cfg.data, ctx.variables)
    missing = unresolved_placeholders(data)
    if missing:
        return ActionResult.failure(
            f"Unresolved variables in data: {', '.join(sorted(set(missing)))}",
            output={"error": "unresolved variables", "variables": sorted(set(missing))},
        )

    collection = await ctx.repo.find_collection(ctx.run.organization_id, cfg.collection_name)
    if collection is None:
        return ActionResult.failure(f"Collection {cfg.collection_name!r} not found")

    record = await ctx.repo.insert_record(DataRecord(
        collection_id=collection.id,
        organization_id=ctx.run.organization_id,
        data=data,
        source_run_id=ctx.run.id,
    ))
    logger.info("Run %s inserted record %s into %s", ctx.run.id, record.id, collection.name)
    return ActionResult(output={"record_id": record.id, "collection_id": collection.id, **data})
