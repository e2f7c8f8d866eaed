"""Core types and DTOs for the LLM gateway (the engine's LLMClient)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.core.exceptions import BadRequestError
from app.prompt_engine.types import ToolDescriptor, Tracing


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class LlmProvider(str, Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class ToolChoice(str, Enum):
    NONE = "none"
    AUTO = "auto"
    REQUIRED = "required"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@dataclass
class LlmConfig:
    provider: LlmProvider = LlmProvider.OPENAI
    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LlmConfig:
        data = data or {}
        name = str(data.get("provider") or LlmProvider.OPENAI.value).lower()
        try:
            provider = LlmProvider(name)
        except ValueError:
            raise BadRequestError(
                f"Unsupported LLM provider: {name}",
                details={"supported": [p.value for p in LlmProvider]},
            ) from None
        return cls(
            provider=provider,
            model=data.get("model", ""),
            temperature=data.get("temperature"),
            max_tokens=data.get("max_tokens", data.get("maxTokens")),
        )

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"provider": self.provider.value, "model": self.model}
        if self.temperature is not None:
            data["temperature"] = self.temperature
        if self.max_tokens is not None:
            data["max_tokens"] = self.max_tokens
        return data


@dataclass
class LlmRequest:
    """One completion request.

    On the first call of an execution system_prompt/user_prompt are set;
    once tool exchange has begun they are None and message_history holds
    the full transcript.
    """

    config: LlmConfig
    tracing: Tracing
    system_prompt: str | None = None
    user_prompt: str | None = None
    message_history: list[dict[str, Any]] = field(default_factory=list)
    tools: list[ToolDescriptor] = field(default_factory=list)
    tool_choice: ToolChoice | None = None
    response_format: dict[str, Any] | None = None
    request_metadata: dict[str, Any] = field(default_factory=dict)

    def build_messages(self) -> list[dict[str, Any]]:
        """Provider-neutral message list (OpenAI chat shape)."""
        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(self.message_history)
        if self.user_prompt:
            messages.append({"role": "user", "content": self.user_prompt})
        return messages


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


@dataclass
class ToolCall:
    """A function call requested by the model. `arguments` is a JSON string."""

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> Any:
        return json.loads(self.arguments) if self.arguments else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class LlmResponse:
    """Unified response DTO from any provider.

    message_history is the transcript up to and including this assistant
    turn, so a follow-up request only needs tool results appended.
    """

    content: Any = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    message_history: list[dict[str, Any]] = field(default_factory=list)
    model: str = ""
    provider: str = ""
    latency_ms: int = 0

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "usage": self.usage.to_dict(),
            "model": self.model,
            "provider": self.provider,
            "latency_ms": self.latency_ms,
        }


# ---------------------------------------------------------------------------
# Provider config
# ---------------------------------------------------------------------------


@dataclass
class ProviderConfig:
    """Connection and retry configuration for a provider."""

    provider: LlmProvider
    api_key: str = ""
    base_url: str = ""
    default_model: str = ""
    timeout_seconds: float = 120.0
    max_retries: int = 3
    base_retry_delay: float = 1.0  # Base delay for exponential backoff (seconds)
    max_retry_delay: float = 30.0  # Cap on retry delay
