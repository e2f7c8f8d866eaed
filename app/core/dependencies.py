"""FastAPI dependencies wiring the engine to its collaborators.

Tests override get_session_factory, get_llm_client and get_tool_executors
through app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.db.postgres import async_session_factory
from app.gateway.gateway import LlmGateway
from app.prompt_engine.dispatcher import ToolDispatcher
from app.prompt_engine.executors import HttpToolExecutor
from app.prompt_engine.orchestrator import PromptExecutionOrchestrator
from app.prompt_engine.ports import LlmClient, ToolExecutor
from app.prompt_engine.stores import SqlCatalogStore, SqlExecutionLogStore, SqlPromptStore
from app.prompt_engine.telemetry import PortkeyLogExporter
from app.prompt_engine.types import CatalogNamespace


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


@lru_cache
def get_llm_gateway() -> LlmGateway:
    # One gateway per process so circuit state is shared across requests
    return LlmGateway.from_settings()


def get_llm_client() -> LlmClient:
    return get_llm_gateway()


def get_tool_executors() -> dict[CatalogNamespace, ToolExecutor]:
    return {
        CatalogNamespace.TOOL: HttpToolExecutor(CatalogNamespace.TOOL, settings.tool_service_url),
        CatalogNamespace.ACTIVITY: HttpToolExecutor(CatalogNamespace.ACTIVITY, settings.activity_service_url),
        CatalogNamespace.WORKFLOW: HttpToolExecutor(CatalogNamespace.WORKFLOW, settings.workflow_service_url),
    }


def get_execution_log_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SqlExecutionLogStore:
    return SqlExecutionLogStore(session_factory, exporter=PortkeyLogExporter.from_settings())


def get_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    llm: LlmClient = Depends(get_llm_client),
    executors: dict[CatalogNamespace, ToolExecutor] = Depends(get_tool_executors),
    log_store: SqlExecutionLogStore = Depends(get_execution_log_store),
) -> PromptExecutionOrchestrator:
    catalog = SqlCatalogStore(session_factory)
    dispatchers = {
        namespace: ToolDispatcher(namespace, catalog, executor, log_sink=log_store)
        for namespace, executor in executors.items()
    }
    return PromptExecutionOrchestrator(
        prompts=SqlPromptStore(session_factory),
        catalog=catalog,
        llm=llm,
        log_sink=log_store,
        dispatchers=dispatchers,
    )
