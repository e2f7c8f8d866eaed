"""Provider-specific adapters: protocol-level handling for each LLM provider.

Each adapter translates an LlmRequest into the provider's HTTP protocol,
sends it, and returns an LlmResponse. Message history is kept in the
OpenAI chat shape regardless of provider, so a transcript can be handed
back on the next call unchanged.

Provider-specific behaviors:
  - OpenAI: chat completions, native function calling and response_format
  - Anthropic: messages API, tool_use / tool_result content blocks,
    JSON output requested through the system prompt
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from app.gateway.types import (
    LlmProvider,
    LlmRequest,
    LlmResponse,
    ProviderConfig,
    TokenUsage,
    ToolCall,
    ToolChoice,
)

logger = logging.getLogger(__name__)


class ProviderCallError(Exception):
    """Raised by an adapter when a provider call fails."""

    def __init__(self, message: str, status_code: int = 0, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def trace_headers(request: LlmRequest) -> dict[str, str]:
    tracing = request.tracing
    headers = {"x-trace-id": tracing.trace_id}
    if tracing.span_id:
        headers["x-span-id"] = tracing.span_id
    if tracing.parent_span_id:
        headers["x-parent-span-id"] = tracing.parent_span_id
    if tracing.span_name:
        headers["x-span-name"] = tracing.span_name
    return headers


def _wants_json(response_format: dict[str, Any] | None) -> bool:
    return bool(response_format) and response_format.get("type") in ("json_schema", "json_object")


def _maybe_json(content: Any, response_format: dict[str, Any] | None) -> Any:
    """Parse text content as JSON when structured output was requested."""
    if not _wants_json(response_format) or not isinstance(content, str):
        return content
    try:
        return json.loads(content)
    except ValueError:
        logger.warning("Structured output requested but content is not valid JSON")
        return content


class BaseProviderAdapter(ABC):
    provider: LlmProvider
    default_model: str = ""

    def __init__(self, config: ProviderConfig):
        self.config = config

    @abstractmethod
    def build_payload(self, request: LlmRequest) -> dict[str, Any]: ...

    @abstractmethod
    def headers(self) -> dict[str, str]: ...

    @abstractmethod
    def parse(self, request: LlmRequest, data: dict[str, Any]) -> LlmResponse: ...

    @property
    def url(self) -> str:
        raise NotImplementedError

    def model_for(self, request: LlmRequest) -> str:
        return request.config.model or self.config.default_model or self.default_model

    async def send(self, request: LlmRequest) -> LlmResponse:
        """Send one request. Raises ProviderCallError on any failure."""
        payload = self.build_payload(request)
        start = time.monotonic()

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                resp = await client.post(
                    self.url,
                    json=payload,
                    headers={**self.headers(), **trace_headers(request), "Content-Type": "application/json"},
                )
        except httpx.TimeoutException as e:
            raise ProviderCallError(
                f"Timeout after {self.config.timeout_seconds}s calling {self.provider.value}", retryable=True
            ) from e
        except httpx.HTTPError as e:
            raise ProviderCallError(f"{self.provider.value} transport error: {e}", retryable=True) from e

        if resp.status_code >= 400:
            raise ProviderCallError(
                f"{self.provider.value} returned HTTP {resp.status_code}: {resp.text[:500]}",
                status_code=resp.status_code,
                retryable=_is_retryable(resp.status_code),
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderCallError(f"{self.provider.value} returned a non-JSON body", resp.status_code) from e

        response = self.parse(request, data)
        response.latency_ms = int((time.monotonic() - start) * 1000)
        return response


# ---------------------------------------------------------------------------
# OpenAI Adapter
# ---------------------------------------------------------------------------


class OpenAIAdapter(BaseProviderAdapter):
    """OpenAI Chat Completions adapter."""

    provider = LlmProvider.OPENAI
    default_model = "gpt-4o-mini"

    @property
    def url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def build_payload(self, request: LlmRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model_for(request),
            "messages": request.build_messages(),
        }
        if request.config.temperature is not None:
            payload["temperature"] = request.config.temperature
        if request.config.max_tokens is not None:
            payload["max_tokens"] = request.config.max_tokens
        if request.tools:
            payload["tools"] = [d.to_function_schema() for d in request.tools]
            if request.tool_choice is not None:
                payload["tool_choice"] = request.tool_choice.value
        if request.response_format:
            payload["response_format"] = request.response_format
        return payload

    def parse(self, request: LlmRequest, data: dict[str, Any]) -> LlmResponse:
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderCallError("OpenAI response has no choices") from e

        tool_calls = [
            ToolCall(
                id=tc["id"],
                name=tc["function"]["name"],
                arguments=tc["function"].get("arguments") or "{}",
            )
            for tc in message.get("tool_calls") or []
        ]
        content = message.get("content") or ""

        assistant: dict[str, Any] = {"role": "assistant", "content": content}
        if tool_calls:
            assistant["tool_calls"] = [tc.to_dict() for tc in tool_calls]

        usage = data.get("usage") or {}
        prompt_tokens = usage.get("prompt_tokens", 0)
        completion_tokens = usage.get("completion_tokens", 0)

        return LlmResponse(
            content=content if tool_calls else _maybe_json(content, request.response_format),
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=usage.get("total_tokens", prompt_tokens + completion_tokens),
            ),
            message_history=[*request.build_messages(), assistant],
            model=data.get("model", self.model_for(request)),
            provider=self.provider.value,
        )


# ---------------------------------------------------------------------------
# Anthropic Adapter
# ---------------------------------------------------------------------------

_ANTHROPIC_DEFAULT_MAX_TOKENS = 4096

_ANTHROPIC_TOOL_CHOICE = {
    ToolChoice.AUTO: {"type": "auto"},
    ToolChoice.REQUIRED: {"type": "any"},
    ToolChoice.NONE: {"type": "none"},
}


def to_anthropic_messages(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
    """Split OpenAI-shaped messages into (system, messages) for the messages API.

    Consecutive tool results are merged into a single user turn.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []

    for msg in messages:
        role = msg.get("role")
        content = msg.get("content")

        if role == "system":
            if content:
                system_parts.append(str(content))
            continue

        if role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.get("tool_call_id", ""),
                "content": content if isinstance(content, str) else json.dumps(content),
            }
            if converted and converted[-1]["role"] == "user" and isinstance(converted[-1]["content"], list):
                converted[-1]["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if role == "assistant" and msg.get("tool_calls"):
            blocks: list[dict[str, Any]] = []
            if content:
                blocks.append({"type": "text", "text": str(content)})
            for tc in msg["tool_calls"]:
                fn = tc.get("function", {})
                try:
                    args = json.loads(fn.get("arguments") or "{}")
                except ValueError:
                    args = {}
                blocks.append({"type": "tool_use", "id": tc.get("id", ""), "name": fn.get("name", ""), "input": args})
            converted.append({"role": "assistant", "content": blocks})
            continue

        text = content if isinstance(content, str) else json.dumps(content)
        converted.append({"role": "assistant" if role == "assistant" else "user", "content": text})

    return "\n\n".join(system_parts), converted


class AnthropicAdapter(BaseProviderAdapter):
    """Anthropic Messages API adapter."""

    provider = LlmProvider.ANTHROPIC
    default_model = "claude-sonnet-4-5"

    def __init__(self, config: ProviderConfig, api_version: str = "2023-06-01"):
        super().__init__(config)
        self.api_version = api_version

    @property
    def url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/messages"

    def headers(self) -> dict[str, str]:
        return {"x-api-key": self.config.api_key, "anthropic-version": self.api_version}

    def build_payload(self, request: LlmRequest) -> dict[str, Any]:
        system, messages = to_anthropic_messages(request.build_messages())

        if _wants_json(request.response_format):
            schema = (request.response_format.get("json_schema") or {}).get("schema")
            instruction = "Respond only with a single JSON object"
            if schema:
                instruction += f" matching this JSON schema:\n{json.dumps(schema)}"
            system = f"{system}\n\n{instruction}" if system else instruction

        payload: dict[str, Any] = {
            "model": self.model_for(request),
            "messages": messages,
            "max_tokens": request.config.max_tokens or _ANTHROPIC_DEFAULT_MAX_TOKENS,
        }
        if system:
            payload["system"] = system
        if request.config.temperature is not None:
            payload["temperature"] = request.config.temperature
        if request.tools:
            payload["tools"] = [
                {
                    "name": d.external_name,
                    "description": d.description,
                    "input_schema": d.input_schema or {"type": "object", "properties": {}},
                }
                for d in request.tools
            ]
            if request.tool_choice is not None:
                payload["tool_choice"] = _ANTHROPIC_TOOL_CHOICE[request.tool_choice]
        return payload

    def parse(self, request: LlmRequest, data: dict[str, Any]) -> LlmResponse:
        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(id=block["id"], name=block["name"], arguments=json.dumps(block.get("input") or {}))
                )
        content = "".join(texts)

        assistant: dict[str, Any] = {"role": "assistant", "content": content}
        if tool_calls:
            assistant["tool_calls"] = [tc.to_dict() for tc in tool_calls]

        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)

        return LlmResponse(
            content=content if tool_calls else _maybe_json(content, request.response_format),
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            message_history=[*request.build_messages(), assistant],
            model=data.get("model", self.model_for(request)),
            provider=self.provider.value,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def get_adapter(config: ProviderConfig, **kwargs) -> BaseProviderAdapter:
    """Create the adapter for a provider config."""
    adapters: dict[LlmProvider, type[BaseProviderAdapter]] = {
        LlmProvider.OPENAI: OpenAIAdapter,
        LlmProvider.ANTHROPIC: AnthropicAdapter,
    }
    return adapters[config.provider](config, **kwargs)
