"""HTTP_REQUEST: call an external API with values resolved from the run context."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import httpx
import jmespath

from procflow.engine.actions.registry import ActionContext, ActionResult
from procflow.engine.variables import resolve_value, unresolved_placeholders
from procflow.exceptions import ExecutionFailure
from procflow.types import HttpRequestConfig, Step

logger = logging.getLogger(__name__)

RETRY_STATUS = (502, 503, 504)


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text


class HttpRequestAction:
    """Executor for HTTP_REQUEST.

    *client_factory* builds the ``httpx.AsyncClient``; tests pass one wired to
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        client_factory: Optional[Callable[..., httpx.AsyncClient]] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.client_factory = client_factory or httpx.AsyncClient

    async def __call__(self, step: Step, ctx: ActionContext) -> ActionResult:
        cfg: HttpRequestConfig = step.config
        url = resolve_value(cfg.url, ctx.variables)
        headers = resolve_value(cfg.headers, ctx.variables)
        body = resolve_value(cfg.request_body, ctx.variables)
        if isinstance(body, str) and body.strip().startswith(("{", "[")):
            try:
                body = json.loads(body)
            except json.JSONDecodeError:
                pass  # send as text

        if not url:
            return ActionResult.failure("url is required for HTTP_REQUEST")
        missing = unresolved_placeholders([url, headers])
        if missing:
            return ActionResult.failure(f"Unresolved variables in request: {', '.join(missing)}")

        request_kwargs: dict[str, Any] = {"headers": {k: str(v) for k, v in headers.items()}}
        if body is not None and cfg.method in ("POST", "PUT"):
            if isinstance(body, (dict, list)):
                request_kwargs["json"] = body
            else:
                request_kwargs["content"] = str(body).encode()

        timeout = cfg.timeout_seconds or self.timeout_seconds
        response = await self._send(cfg.method, str(url), timeout, cfg.max_retries, request_kwargs)

        parsed = _parse_body(response)
        if cfg.response_path and isinstance(parsed, (dict, list)):
            parsed = jmespath.search(cfg.response_path, parsed)

        output = {"status_code": response.status_code, "body": parsed, "url": str(response.url)}
        if response.status_code >= 400:
            return ActionResult.failure(
                f"{cfg.method} {url} returned {response.status_code}", output=output
            )
        return ActionResult(output=output)

    async def _send(
        self,
        method: str,
        url: str,
        timeout: float,
        max_retries: int,
        request_kwargs: dict[str, Any],
    ) -> httpx.Response:
        tries = max_retries + 1
        last_error: Optional[Exception] = None
        async with self.client_factory(timeout=timeout) as client:
            for attempt in range(tries):
                try:
                    response = await client.request(method, url, **request_kwargs)
                except (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout) as exc:
                    last_error = exc
                    logger.warning("HTTP_REQUEST %s %s failed (attempt %d): %s", method, url, attempt + 1, exc)
                else:
                    if response.status_code not in RETRY_STATUS or attempt == tries - 1:
                        return response
                if attempt < tries - 1:
                    await asyncio.sleep(min(2 ** attempt, 8))
        raise ExecutionFailure(
            f"Connection failed after {tries} attempts: {last_error}", action="HTTP_REQUEST"
        )
