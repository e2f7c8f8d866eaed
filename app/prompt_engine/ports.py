"""Collaborator interfaces consumed by the execution engine.

Implementations live in app.prompt_engine.stores (SQLAlchemy),
app.prompt_engine.executors (tool backends) and app.gateway (LLM).
"""

from __future__ import annotations

from typing import Any, Protocol

from app.gateway.types import LlmRequest, LlmResponse
from app.prompt_engine.types import (
    CatalogNamespace,
    ExecutionLogEntry,
    PromptDefinition,
    ToolDescriptor,
    ToolInvocationResult,
)


class PromptStore(Protocol):
    async def get(self, prompt_id: str) -> PromptDefinition:
        """Raise NotFoundError when the prompt does not exist."""
        ...

    async def record_stats(self, prompt_id: str, elapsed_ms: int) -> None: ...


class CatalogStore(Protocol):
    async def find_by_ids(self, namespace: CatalogNamespace, ids: list[str]) -> list[ToolDescriptor]: ...

    async def find_by_external_names(
        self, namespace: CatalogNamespace, names: list[str]
    ) -> list[ToolDescriptor]: ...


class ToolExecutor(Protocol):
    namespace: CatalogNamespace

    async def invoke(
        self,
        descriptor_id: str,
        args: Any,
        env_vars: dict[str, Any],
        timeout_ms: int,
        request_metadata: dict[str, Any] | None = None,
    ) -> ToolInvocationResult: ...


class LlmClient(Protocol):
    async def complete(self, request: LlmRequest) -> LlmResponse: ...


class ExecutionLogSink(Protocol):
    async def append(self, entry: ExecutionLogEntry) -> None: ...

    async def append_tool_call_log(self, record: dict[str, Any]) -> None: ...
