"""SQLAlchemy implementations of the engine's stores and log sink.

Each operation opens its own short-lived session and commits before
returning, so an execution's failure log is persisted even when the
surrounding request errors out.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import NotFoundError
from app.models.catalog_item import CatalogItem
from app.models.execution_log import PromptExecutionLog
from app.models.prompt import Prompt
from app.prompt_engine.telemetry import PortkeyLogExporter
from app.prompt_engine.types import (
    CatalogNamespace,
    ExecutionLogEntry,
    PromptDefinition,
    PromptStatus,
    ToolDescriptor,
    VariableSpec,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row → engine type
# ---------------------------------------------------------------------------


def _variable_specs(raw: dict | None) -> dict[str, VariableSpec]:
    return {name: VariableSpec.from_dict(spec or {}) for name, spec in (raw or {}).items()}


def prompt_definition(row: Prompt) -> PromptDefinition:
    return PromptDefinition(
        id=row.id,
        name=row.name,
        system_prompt_template=row.system_prompt,
        user_prompt_template=row.user_prompt,
        system_variable_spec=_variable_specs(row.system_prompt_variables),
        user_variable_spec=_variable_specs(row.user_prompt_variables),
        default_llm_config=dict(row.default_config or {}),
        tool_ids=tuple(row.available_tools or ()),
        activity_ids=tuple(row.available_activities or ()),
        workflow_ids=tuple(row.available_workflows or ()),
        response_schema=row.response_format,
        validation_required=bool(row.validation_required),
        validation_gate=bool(row.validation_gate),
        status=PromptStatus(row.status),
        execution_count=row.execution_count or 0,
        avg_response_time_ms=row.avg_response_time_ms or 0.0,
    )


def tool_descriptor(row: CatalogItem) -> ToolDescriptor:
    return ToolDescriptor(
        id=row.id,
        external_name=row.external_name,
        description=row.description or "",
        input_schema=dict(row.input_schema or {}),
        output_schema=dict(row.output_schema or {}),
        namespace=CatalogNamespace(row.namespace),
        status=row.status,
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class SqlPromptStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, prompt_id: str) -> PromptDefinition:
        async with self.session_factory() as session:
            row = await session.get(Prompt, prompt_id)
        if row is None:
            raise NotFoundError(f"Prompt with ID {prompt_id} not found", details={"prompt_id": prompt_id})
        return prompt_definition(row)

    async def record_stats(self, prompt_id: str, elapsed_ms: int) -> None:
        """Bump the execution count and fold `elapsed_ms` into the running mean."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(Prompt)
                .where(Prompt.id == prompt_id)
                .values(
                    avg_response_time_ms=(Prompt.avg_response_time_ms * Prompt.execution_count + elapsed_ms)
                    / (Prompt.execution_count + 1),
                    execution_count=Prompt.execution_count + 1,
                )
            )
            await session.commit()
        if result.rowcount == 0:
            raise NotFoundError(f"Prompt with ID {prompt_id} not found", details={"prompt_id": prompt_id})


class SqlCatalogStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_by_ids(self, namespace: CatalogNamespace, ids: list[str]) -> list[ToolDescriptor]:
        if not ids:
            return []
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(CatalogItem).where(CatalogItem.namespace == namespace.value, CatalogItem.id.in_(ids))
            )
            return [tool_descriptor(r) for r in rows]

    async def find_by_external_names(self, namespace: CatalogNamespace, names: list[str]) -> list[ToolDescriptor]:
        if not names:
            return []
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(CatalogItem).where(
                    CatalogItem.namespace == namespace.value, CatalogItem.external_name.in_(names)
                )
            )
            return [tool_descriptor(r) for r in rows]


class SqlExecutionLogStore:
    """ExecutionLogSink backed by prompt_execution_logs, plus the history query."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        exporter: PortkeyLogExporter | None = None,
    ):
        self.session_factory = session_factory
        self.exporter = exporter

    async def append(self, entry: ExecutionLogEntry) -> None:
        async with self.session_factory() as session:
            session.add(
                PromptExecutionLog(
                    prompt_id=entry.prompt_id,
                    attempt=entry.attempt,
                    system_variables=entry.system_variables,
                    user_variables=entry.user_variables,
                    llm_config=entry.llm_config,
                    processed_system_prompt=entry.processed_system_prompt,
                    processed_user_prompt=entry.processed_user_prompt,
                    response=entry.response,
                    response_time_ms=entry.response_time_ms,
                    token_usage=entry.token_usage,
                    successful=entry.successful,
                    error_message=entry.error_message,
                    tool_calls=[log.to_dict() for log in entry.tool_calls],
                    tracing=entry.tracing,
                    request_metadata=entry.request_metadata,
                    validation_passed=entry.validation_passed,
                    validation_results=entry.validation_results,
                )
            )
            await session.commit()

    async def append_tool_call_log(self, record: dict[str, Any]) -> None:
        metadata = record.get("metadata") or {}
        logger.info(
            "Tool log %s: status=%s time=%sms",
            metadata.get("span_name", "-"),
            record.get("response", {}).get("status"),
            record.get("response", {}).get("response_time"),
            extra={"trace_id": metadata.get("trace_id"), "span_id": metadata.get("span_id")},
        )
        if self.exporter is not None:
            await self.exporter.export(record)

    async def list(
        self,
        prompt_id: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        successful: bool | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> tuple[list[PromptExecutionLog], int]:
        """Logs for a prompt, newest first, with the unpaginated total."""
        conditions = [PromptExecutionLog.prompt_id == prompt_id]
        if start_date is not None:
            conditions.append(PromptExecutionLog.executed_at >= start_date)
        if end_date is not None:
            conditions.append(PromptExecutionLog.executed_at <= end_date)
        if successful is not None:
            conditions.append(PromptExecutionLog.successful == successful)

        async with self.session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(PromptExecutionLog).where(*conditions))
            rows = await session.scalars(
                select(PromptExecutionLog)
                .where(*conditions)
                .order_by(PromptExecutionLog.executed_at.desc())
                .limit(limit or 10)
                .offset(offset or 0)
            )
            return list(rows), total or 0
