"""Core types for the prompt execution engine.

Plain dataclasses passed by value between the orchestrator, the catalog
resolver, the tool dispatcher and the validation scorer. Persistence
models live in app.models; wire DTOs for the LLM live in app.gateway.types.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PromptStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class CatalogNamespace(str, Enum):
    """The three disjoint namespaces an LLM-callable function can live in."""

    TOOL = "tool"
    ACTIVITY = "activity"
    WORKFLOW = "workflow"


class CatalogStatus(str, Enum):
    ACTIVE = "active"
    DEPLOYED = "deployed"
    TESTING = "testing"
    DEPRECATED = "deprecated"
    DISABLED = "disabled"


# Statuses that may be offered to the LLM
CALLABLE_STATUSES = frozenset({CatalogStatus.ACTIVE.value, CatalogStatus.DEPLOYED.value})


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolDescriptor:
    """A callable exposed to the LLM via function-calling.

    `external_name` is the function name the LLM sees and returns; it must
    be unique across all namespaces of a single execution.
    """

    id: str
    external_name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    output_schema: dict[str, Any] = field(default_factory=dict)
    namespace: CatalogNamespace = CatalogNamespace.TOOL
    status: str = CatalogStatus.ACTIVE.value

    def to_function_schema(self) -> dict:
        """Descriptor as an OpenAI-style function definition."""
        return {
            "type": "function",
            "function": {
                "name": self.external_name,
                "description": self.description,
                "parameters": self.input_schema or {"type": "object", "properties": {}},
            },
        }


@dataclass(frozen=True)
class CallTarget:
    """Where a returned LLM tool call is routed: (namespace, descriptor id)."""

    namespace: CatalogNamespace
    descriptor_id: str
    external_name: str


# ---------------------------------------------------------------------------
# Tracing
# ---------------------------------------------------------------------------


def new_span_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Tracing:
    """Trace context, propagated by value.

    trace_id is stable for a whole execution; every LLM call and tool call
    gets a fresh span whose parent is its logical predecessor.
    """

    trace_id: str
    parent_span_id: str | None = None
    span_id: str | None = None
    span_name: str | None = None

    def child(self, span_name: str) -> Tracing:
        return Tracing(
            trace_id=self.trace_id,
            parent_span_id=self.span_id,
            span_id=new_span_id(),
            span_name=span_name,
        )

    def to_dict(self) -> dict:
        data = {"trace_id": self.trace_id}
        if self.parent_span_id:
            data["parent_span_id"] = self.parent_span_id
        if self.span_id:
            data["span_id"] = self.span_id
        if self.span_name:
            data["span_name"] = self.span_name
        return data

    def log_extra(self) -> dict:
        return {"trace_id": self.trace_id, "span_id": self.span_id}


# ---------------------------------------------------------------------------
# Prompt definition (read-only view for the engine)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VariableSpec:
    type: str = "string"
    required: bool = False
    default: Any = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> VariableSpec:
        return cls(
            type=data.get("type", "string"),
            required=bool(data.get("required", False)),
            default=data.get("default", data.get("defaultValue")),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class PromptDefinition:
    id: str
    name: str
    system_prompt_template: str
    user_prompt_template: str | None = None
    system_variable_spec: dict[str, VariableSpec] = field(default_factory=dict)
    user_variable_spec: dict[str, VariableSpec] = field(default_factory=dict)
    default_llm_config: dict[str, Any] = field(default_factory=dict)
    tool_ids: tuple[str, ...] = ()
    activity_ids: tuple[str, ...] = ()
    workflow_ids: tuple[str, ...] = ()
    response_schema: dict[str, Any] | None = None
    validation_required: bool = False
    validation_gate: bool = False
    status: PromptStatus = PromptStatus.DRAFT
    execution_count: int = 0
    avg_response_time_ms: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.status == PromptStatus.ACTIVE

    def ids_for(self, namespace: CatalogNamespace) -> tuple[str, ...]:
        return {
            CatalogNamespace.TOOL: self.tool_ids,
            CatalogNamespace.ACTIVITY: self.activity_ids,
            CatalogNamespace.WORKFLOW: self.workflow_ids,
        }[namespace]


# ---------------------------------------------------------------------------
# Execution request
# ---------------------------------------------------------------------------


@dataclass
class PromptConfig:
    """Per-request limits; None means "use the service default"."""

    max_llm_calls: int | None = None
    max_tool_calls: int | None = None
    tool_timeout_ms: int | None = None
    max_total_execution_ms: int | None = None


@dataclass
class ExecutionRequest:
    prompt_id: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    system_prompt_variables: dict[str, Any] = field(default_factory=dict)
    user_prompt: str | None = None  # literal user prompt; bypasses the user template
    user_prompt_variables: dict[str, Any] = field(default_factory=dict)
    request_metadata: dict[str, Any] = field(default_factory=dict)
    llm_config: dict[str, Any] = field(default_factory=dict)
    prompt_config: PromptConfig = field(default_factory=PromptConfig)
    env_variables: dict[CatalogNamespace, dict[str, Any]] = field(default_factory=dict)
    message_history: list[dict[str, Any]] = field(default_factory=list)
    tracing: Tracing | None = None

    def root_tracing(self) -> Tracing:
        return self.tracing or Tracing(trace_id=self.request_id)


# ---------------------------------------------------------------------------
# Tool execution results
# ---------------------------------------------------------------------------


@dataclass
class ToolInvocationResult:
    """What a ToolExecutor backend returns for one invocation."""

    success: bool
    output: Any = None
    elapsed_ms: int = 0


@dataclass
class ToolResultMessage:
    """Normalized tool outcome folded back into the LLM message history."""

    tool_call_id: str
    name: str
    output: Any
    successful: bool
    error: str | None = None

    @property
    def content(self) -> dict:
        return {
            "name": self.name,
            "output": self.output,
            "successful": self.successful,
            "error": self.error,
        }

    def to_message(self) -> dict:
        return {
            "role": "tool",
            "content": json.dumps(self.content, ensure_ascii=False, default=str),
            "tool_call_id": self.tool_call_id,
        }


@dataclass
class ToolCallLog:
    tool_name: str
    input_arguments: Any
    output: Any
    execution_time_ms: int
    description: str = ""
    namespace: str = CatalogNamespace.TOOL.value
    successful: bool = True

    def to_dict(self) -> dict:
        return {
            "tool_name": self.tool_name,
            "input_arguments": self.input_arguments,
            "output": self.output,
            "execution_time_ms": self.execution_time_ms,
            "description": self.description,
            "namespace": self.namespace,
            "successful": self.successful,
        }


@dataclass
class BatchResult:
    results: list[ToolResultMessage] = field(default_factory=list)
    logs: list[ToolCallLog] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


VALIDATION_WEIGHTS: dict[str, float] = {
    "relevance": 0.35,
    "tool_usage": 0.15,
    "clarity": 0.25,
    "accuracy": 0.25,
}


@dataclass
class ValidationMetrics:
    relevance: float = 0.0
    tool_usage: float = 0.0
    clarity: float = 0.0
    accuracy: float = 0.0

    def weighted(self) -> float:
        return round(
            self.relevance * VALIDATION_WEIGHTS["relevance"]
            + self.tool_usage * VALIDATION_WEIGHTS["tool_usage"]
            + self.clarity * VALIDATION_WEIGHTS["clarity"]
            + self.accuracy * VALIDATION_WEIGHTS["accuracy"],
            4,
        )


@dataclass
class ValidationScore:
    metrics: ValidationMetrics
    explanations: dict[str, Any] = field(default_factory=dict)
    critical_issues: list[Any] = field(default_factory=list)
    overall_score: float = 0.0
    passed: bool = False
    threshold: float = 70.0

    def to_dict(self) -> dict:
        return {
            "metrics": {
                "relevance": self.metrics.relevance,
                "tool_usage": self.metrics.tool_usage,
                "clarity": self.metrics.clarity,
                "accuracy": self.metrics.accuracy,
            },
            "explanations": self.explanations,
            "critical_issues": self.critical_issues,
            "overall_score": self.overall_score,
            "passed": self.passed,
            "threshold": self.threshold,
        }


# ---------------------------------------------------------------------------
# Execution log + result
# ---------------------------------------------------------------------------


@dataclass
class ExecutionLogEntry:
    """One persisted record per top-level execution attempt."""

    prompt_id: str
    successful: bool
    attempt: int = 1
    system_variables: dict[str, Any] = field(default_factory=dict)
    user_variables: dict[str, Any] = field(default_factory=dict)
    llm_config: dict[str, Any] = field(default_factory=dict)
    processed_system_prompt: str = ""
    processed_user_prompt: str = ""
    response: Any = ""
    response_time_ms: int = 0
    token_usage: dict[str, int] = field(
        default_factory=lambda: {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    )
    error_message: str | None = None
    tool_calls: list[ToolCallLog] = field(default_factory=list)
    tracing: dict[str, Any] = field(default_factory=dict)
    request_metadata: dict[str, Any] = field(default_factory=dict)
    validation_passed: bool | None = None
    validation_results: dict[str, Any] | None = None


@dataclass
class ExecutionResult:
    """Final LLM response plus execution bookkeeping returned to the caller."""

    content: Any
    usage: dict[str, int]
    model: str = ""
    provider: str = ""
    message_history: list[dict[str, Any]] = field(default_factory=list)
    llm_call_count: int = 0
    tool_call_count: int = 0
    attempts: int = 1
    trace_id: str = ""
    validation_passed: bool | None = None
    validation_results: ValidationScore | None = None

    def to_dict(self) -> dict:
        data = {
            "content": self.content,
            "usage": self.usage,
            "model": self.model,
            "provider": self.provider,
            "message_history": self.message_history,
            "llm_call_count": self.llm_call_count,
            "tool_call_count": self.tool_call_count,
            "attempts": self.attempts,
            "trace_id": self.trace_id,
        }
        if self.validation_passed is not None:
            data["validation_passed"] = self.validation_passed
            data["validation_results"] = self.validation_results.to_dict() if self.validation_results else None
        return data
