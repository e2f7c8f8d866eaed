"""Application error taxonomy.

Every error carries an HTTP-like status code, a human-readable message and
an optional details payload. The API layer renders them as
``{"message": ..., "details": ...}``.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for all errors surfaced to callers."""

    status_code: int = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"message": self.message, "details": self.details}


# ---------------------------------------------------------------------------
# 400: bad input / inactive prompt / unusable catalog
# ---------------------------------------------------------------------------


class ValidationError(AppError):
    status_code = 400


class BadRequestError(ValidationError):
    """Generic malformed request."""


class MissingVariableError(ValidationError):
    """A template placeholder has no value in the variable map."""

    def __init__(self, name: str):
        super().__init__(f"Missing required variable: {name}", details={"variable": name})
        self.name = name


class MissingRequiredVariableError(ValidationError):
    def __init__(self, name: str, kind: str, message: str | None = None):
        super().__init__(
            message or f"Missing required {kind} prompt variable: {name}",
            details={"variable": name, "kind": kind},
        )
        self.name = name
        self.kind = kind


class TypeMismatchError(ValidationError):
    def __init__(self, name: str, kind: str, expected: str, actual: str):
        super().__init__(
            f'Invalid type for {kind} variable "{name}": expected {expected}, but received {actual}',
            details={"variable": name, "kind": kind, "expected": expected, "actual": actual},
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class PromptInactiveError(ValidationError):
    def __init__(self, prompt_id: str, status: str):
        super().__init__(f"Prompt is not active: {prompt_id}", details={"prompt_id": prompt_id, "status": status})


class ToolUnavailableError(ValidationError):
    def __init__(self, names: list[str]):
        super().__init__(f"Following tools are not available: {', '.join(names)}", details={"tools": names})
        self.names = names


class DuplicateToolNameError(ValidationError):
    def __init__(self, name: str, namespaces: list[str]):
        super().__init__(
            f"External name '{name}' is declared in more than one namespace: {', '.join(namespaces)}",
            details={"name": name, "namespaces": namespaces},
        )


# ---------------------------------------------------------------------------
# 404
# ---------------------------------------------------------------------------


class NotFoundError(AppError):
    status_code = 404


class CatalogItemsNotFoundError(NotFoundError):
    def __init__(self, namespace: str, missing: list[str]):
        super().__init__(
            f"{namespace.capitalize()}s not found: {', '.join(missing)}",
            details={"namespace": namespace, "missing": missing},
        )
        self.namespace = namespace
        self.missing = missing


# ---------------------------------------------------------------------------
# Budgets
# ---------------------------------------------------------------------------


class BudgetExceededError(AppError):
    status_code = 400


class MaxLLMCallsExceededError(BudgetExceededError):
    def __init__(self, limit: int, details: Any = None):
        super().__init__(f"Max LLM calls reached: {limit}", details=details)
        self.limit = limit


class MaxToolCallsExceededError(BudgetExceededError):
    def __init__(self, limit: int, requested: int, details: Any = None):
        super().__init__(f"Max tool calls reached: {requested} requested, limit {limit}", details=details)
        self.limit = limit
        self.requested = requested


class ExecutionTimeExceededError(BudgetExceededError):
    def __init__(self, limit_ms: int, elapsed_ms: int):
        super().__init__(
            f"Max total execution time exceeded: {elapsed_ms}ms > {limit_ms}ms",
            details={"limit_ms": limit_ms, "elapsed_ms": elapsed_ms},
        )


# ---------------------------------------------------------------------------
# Timeouts, gate, upstream, unexpected
# ---------------------------------------------------------------------------


class ToolTimeoutError(AppError):
    status_code = 504

    def __init__(self, tool_name: str, timeout_ms: int):
        super().__init__(f"Tool execution timeout: {tool_name} exceeded {timeout_ms}ms")
        self.tool_name = tool_name
        self.timeout_ms = timeout_ms


class ValidationGateFailure(AppError):
    """Every validation-gate attempt scored below threshold."""

    status_code = 422

    def __init__(self, attempts: int, last_response: Any, last_score: Any):
        super().__init__(
            f"Response failed validation after {attempts} attempts",
            details={"attempts": attempts, "last_response": last_response, "validation_results": last_score},
        )
        self.attempts = attempts
        self.last_response = last_response
        self.last_score = last_score


class LlmProviderError(AppError):
    status_code = 502

    def __init__(self, message: str, provider: str = "", status: int = 0):
        super().__init__(message, details={"provider": provider, "status": status} if provider else None)
        self.provider = provider
        self.status = status


class UnexpectedError(AppError):
    status_code = 500

    @classmethod
    def wrap(cls, exc: BaseException) -> "UnexpectedError":
        err = cls(str(exc) or type(exc).__name__, details={"type": type(exc).__name__})
        err.__cause__ = exc
        return err
