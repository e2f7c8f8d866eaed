"""Pydantic schemas for prompt definitions, execution and execution logs."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

_STATUS_PATTERN = r"^(DRAFT|ACTIVE|ARCHIVED)$"


# ---------------------------------------------------------------------------
# Prompt definitions
# ---------------------------------------------------------------------------


class VariableSpecSchema(BaseModel):
    type: str = "string"
    required: bool = False
    default: Any = None
    description: str = ""


class PromptCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    category: str | None = Field(None, max_length=255)
    status: str = Field("DRAFT", pattern=_STATUS_PATTERN)
    system_prompt: str = Field(min_length=1)
    user_prompt: str | None = None
    system_prompt_variables: dict[str, VariableSpecSchema] = Field(default_factory=dict)
    user_prompt_variables: dict[str, VariableSpecSchema] = Field(default_factory=dict)
    default_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Default LLM config: provider, model, temperature, max_tokens",
    )
    available_tools: list[str] = Field(default_factory=list)
    available_activities: list[str] = Field(default_factory=list)
    available_workflows: list[str] = Field(default_factory=list)
    response_format: dict[str, Any] | None = None
    validation_required: bool = False
    validation_gate: bool = False


class PromptUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    category: str | None = None
    status: str | None = Field(None, pattern=_STATUS_PATTERN)
    system_prompt: str | None = Field(None, min_length=1)
    user_prompt: str | None = None
    system_prompt_variables: dict[str, VariableSpecSchema] | None = None
    user_prompt_variables: dict[str, VariableSpecSchema] | None = None
    default_config: dict[str, Any] | None = None
    available_tools: list[str] | None = None
    available_activities: list[str] | None = None
    available_workflows: list[str] | None = None
    response_format: dict[str, Any] | None = None
    validation_required: bool | None = None
    validation_gate: bool | None = None


class PromptResponse(BaseModel):
    id: str
    name: str
    description: str
    category: str | None
    status: str
    system_prompt: str
    user_prompt: str | None
    system_prompt_variables: dict[str, Any]
    user_prompt_variables: dict[str, Any]
    default_config: dict[str, Any]
    available_tools: list[str]
    available_activities: list[str]
    available_workflows: list[str]
    response_format: dict[str, Any] | None
    validation_required: bool
    validation_gate: bool
    execution_count: int
    avg_response_time_ms: float
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class PromptConfigSchema(BaseModel):
    max_llm_calls: int | None = Field(None, ge=1, le=50)
    max_tool_calls: int | None = Field(None, ge=1, le=100)
    tool_timeout_ms: int | None = Field(None, ge=1, le=600_000)
    max_total_execution_ms: int | None = Field(None, ge=1, le=3_600_000)


class TracingSchema(BaseModel):
    trace_id: str
    parent_span_id: str | None = None
    span_id: str | None = None
    span_name: str | None = None


class ExecutePromptRequest(BaseModel):
    system_prompt_variables: dict[str, Any] = Field(default_factory=dict)
    user_prompt: str | None = Field(None, description="Literal user prompt; bypasses the user template")
    user_prompt_variables: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = None
    request_metadata: dict[str, Any] = Field(default_factory=dict)
    llm_config: dict[str, Any] = Field(default_factory=dict)
    prompt_config: PromptConfigSchema = Field(default_factory=PromptConfigSchema)
    tool_env_variables: dict[str, Any] = Field(default_factory=dict)
    activity_env_variables: dict[str, Any] = Field(default_factory=dict)
    workflow_env_variables: dict[str, Any] = Field(default_factory=dict)
    message_history: list[dict[str, Any]] = Field(default_factory=list)
    tracing: TracingSchema | None = None


class ExecutePromptResponse(BaseModel):
    content: Any
    usage: dict[str, int]
    model: str
    provider: str
    message_history: list[dict[str, Any]]
    llm_call_count: int
    tool_call_count: int
    attempts: int
    trace_id: str
    validation_passed: bool | None = None
    validation_results: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Execution logs
# ---------------------------------------------------------------------------


class ExecutionLogResponse(BaseModel):
    id: str
    prompt_id: str
    attempt: int
    system_variables: dict[str, Any]
    user_variables: dict[str, Any]
    llm_config: dict[str, Any]
    processed_system_prompt: str
    processed_user_prompt: str
    response: Any
    response_time_ms: int
    token_usage: dict[str, Any]
    successful: bool
    error_message: str | None
    tool_calls: list[dict[str, Any]]
    tracing: dict[str, Any]
    request_metadata: dict[str, Any]
    validation_passed: bool | None
    validation_results: dict[str, Any] | None
    executed_at: datetime

    model_config = {"from_attributes": True}


class ExecutionLogList(BaseModel):
    logs: list[ExecutionLogResponse]
    total: int
