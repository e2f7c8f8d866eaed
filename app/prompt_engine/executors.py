"""ToolExecutor backends.

HttpToolExecutor calls a remote execution service; LocalToolExecutor runs
registered in-process callables. Both honour task cancellation, which the
dispatcher uses to stop a call that lost its timeout race.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from app.core.config import settings
from app.prompt_engine.types import CatalogNamespace, ToolInvocationResult

logger = logging.getLogger(__name__)


class HttpToolExecutor:
    """POSTs `{inputVariables, envVariables, requestingServiceId}` to `{base_url}/{id}/execute`.

    The service replies with `{success, output, executionTimeMs}`; the
    legacy `{toolSuccess, toolResult, toolExecutionTime}` shape is accepted too.
    """

    def __init__(self, namespace: CatalogNamespace, base_url: str, client: httpx.AsyncClient | None = None):
        self.namespace = namespace
        self.base_url = base_url.rstrip("/")
        self._client = client

    async def invoke(
        self,
        descriptor_id: str,
        args: Any,
        env_vars: dict[str, Any],
        timeout_ms: int,
        request_metadata: dict[str, Any] | None = None,
    ) -> ToolInvocationResult:
        payload = {
            "inputVariables": args,
            "envVariables": env_vars or {},
            "requestingServiceId": (request_metadata or {}).get("sourceService") or settings.requesting_service_id,
        }
        url = f"{self.base_url}/{descriptor_id}/execute"
        start = time.monotonic()

        if self._client is not None:
            resp = await self._client.post(url, json=payload, timeout=timeout_ms / 1000)
        else:
            async with httpx.AsyncClient(timeout=timeout_ms / 1000) as client:
                resp = await client.post(url, json=payload)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        try:
            data = resp.json()
        except ValueError:
            data = {"error": resp.text[:500]}

        if resp.status_code >= 400:
            error = data.get("error") or data.get("message") if isinstance(data, dict) else None
            return ToolInvocationResult(
                success=False,
                output={"error": error or f"HTTP {resp.status_code}"},
                elapsed_ms=elapsed_ms,
            )

        if not isinstance(data, dict):
            return ToolInvocationResult(success=True, output=data, elapsed_ms=elapsed_ms)

        success = data.get("success", data.get("toolSuccess", True))
        output = data.get("output", data.get("toolResult"))
        reported = data.get("executionTimeMs", data.get("toolExecutionTime"))
        return ToolInvocationResult(
            success=bool(success),
            output=output,
            elapsed_ms=int(reported) if reported else elapsed_ms,
        )


class LocalToolExecutor:
    """Registry of in-process callables keyed by descriptor id.

    A handler receives `(args, env_vars)` and may be sync or async. Its
    return value is the call output; raising marks the call as failed.
    Sync handlers run in a worker thread.
    """

    def __init__(self, namespace: CatalogNamespace = CatalogNamespace.TOOL):
        self.namespace = namespace
        self._handlers: dict[str, Callable[..., Any]] = {}

    def register(self, descriptor_id: str, handler: Callable[..., Any]) -> None:
        self._handlers[descriptor_id] = handler

    def __contains__(self, descriptor_id: str) -> bool:
        return descriptor_id in self._handlers

    async def invoke(
        self,
        descriptor_id: str,
        args: Any,
        env_vars: dict[str, Any],
        timeout_ms: int,
        request_metadata: dict[str, Any] | None = None,
    ) -> ToolInvocationResult:
        handler = self._handlers.get(descriptor_id)
        if handler is None:
            return ToolInvocationResult(success=False, output={"error": f"No local handler for {descriptor_id}"})

        start = time.monotonic()
        if inspect.iscoroutinefunction(handler):
            output = await handler(args, env_vars)
        else:
            output = await asyncio.to_thread(handler, args, env_vars)
        # Partials and callable objects can still hand back a coroutine
        if inspect.isawaitable(output):
            output = await output
        return ToolInvocationResult(success=True, output=output, elapsed_ms=int((time.monotonic() - start) * 1000))
