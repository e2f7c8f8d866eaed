"""Prompt definitions CRUD, execution and execution history.

Provides:
  - POST /prompts, GET /prompts, GET /prompts/{id}, PATCH /prompts/{id}
  - POST /prompts/{id}/execute: run the prompt through the execution engine
  - GET /prompts/{id}/execution-logs: execution attempts, newest first
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_execution_log_store, get_orchestrator
from app.core.exceptions import NotFoundError
from app.db.postgres import get_db
from app.models.prompt import Prompt
from app.prompt_engine.orchestrator import PromptExecutionOrchestrator
from app.prompt_engine.stores import SqlExecutionLogStore
from app.prompt_engine.types import CatalogNamespace, ExecutionRequest, PromptConfig, Tracing
from app.schemas.prompt import (
    ExecutePromptRequest,
    ExecutePromptResponse,
    ExecutionLogList,
    ExecutionLogResponse,
    PromptCreate,
    PromptResponse,
    PromptUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/prompts", tags=["prompts"])


async def _get_prompt(prompt_id: str, db: AsyncSession) -> Prompt:
    prompt = await db.get(Prompt, prompt_id)
    if not prompt:
        raise NotFoundError(f"Prompt with ID {prompt_id} not found")
    return prompt


# ── CRUD ─────────────────────────────────────────────────────────


@router.post("", response_model=PromptResponse, status_code=201)
async def create_prompt(body: PromptCreate, db: AsyncSession = Depends(get_db)):
    prompt = Prompt(**body.model_dump())
    db.add(prompt)
    await db.flush()
    await db.refresh(prompt)
    logger.info("Created prompt %s (%s)", prompt.id, prompt.name)
    return prompt


@router.get("", response_model=list[PromptResponse])
async def list_prompts(
    status: str | None = Query(None, pattern=r"^(DRAFT|ACTIVE|ARCHIVED)$"),
    category: str | None = Query(None),
    search: str | None = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    query = select(Prompt)
    if status:
        query = query.where(Prompt.status == status)
    if category:
        query = query.where(Prompt.category == category)
    if search:
        pattern = f"%{search.lower()}%"
        query = query.where(or_(func.lower(Prompt.name).like(pattern), func.lower(Prompt.description).like(pattern)))

    result = await db.scalars(query.order_by(Prompt.created_at.desc()).offset(offset).limit(limit))
    return list(result)


@router.get("/{prompt_id}", response_model=PromptResponse)
async def get_prompt(prompt_id: str, db: AsyncSession = Depends(get_db)):
    return await _get_prompt(prompt_id, db)


@router.patch("/{prompt_id}", response_model=PromptResponse)
async def update_prompt(prompt_id: str, body: PromptUpdate, db: AsyncSession = Depends(get_db)):
    prompt = await _get_prompt(prompt_id, db)
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(prompt, field, value)
    await db.flush()
    await db.refresh(prompt)
    return prompt


# ── Execution ────────────────────────────────────────────────────


@router.post("/{prompt_id}/execute", response_model=ExecutePromptResponse)
async def execute_prompt(
    prompt_id: str,
    body: ExecutePromptRequest,
    request: Request,
    orchestrator: PromptExecutionOrchestrator = Depends(get_orchestrator),
):
    """Execute a prompt: LLM call loop with tool dispatch and optional validation.

    Errors are returned as {"message", "details"} with the error's status code.
    """
    request_id = body.request_id or getattr(request.state, "request_id", None) or uuid.uuid4().hex
    execution = ExecutionRequest(
        prompt_id=prompt_id,
        request_id=request_id,
        system_prompt_variables=body.system_prompt_variables,
        user_prompt=body.user_prompt,
        user_prompt_variables=body.user_prompt_variables,
        request_metadata=body.request_metadata,
        llm_config=body.llm_config,
        prompt_config=PromptConfig(**body.prompt_config.model_dump()),
        env_variables={
            CatalogNamespace.TOOL: body.tool_env_variables,
            CatalogNamespace.ACTIVITY: body.activity_env_variables,
            CatalogNamespace.WORKFLOW: body.workflow_env_variables,
        },
        message_history=body.message_history,
        tracing=Tracing(**body.tracing.model_dump()) if body.tracing else None,
    )
    result = await orchestrator.execute(execution)
    return result.to_dict()


@router.get("/{prompt_id}/execution-logs", response_model=ExecutionLogList)
async def list_execution_logs(
    prompt_id: str,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    successful: bool | None = Query(None),
    limit: int = Query(10, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    log_store: SqlExecutionLogStore = Depends(get_execution_log_store),
):
    await _get_prompt(prompt_id, db)
    logs, total = await log_store.list(
        prompt_id,
        start_date=start_date,
        end_date=end_date,
        successful=successful,
        limit=limit,
        offset=offset,
    )
    return ExecutionLogList(logs=[ExecutionLogResponse.model_validate(log) for log in logs], total=total)
