"""Prompt execution state machine.

    INIT → LLM_CALL → {DONE | TOOL_DISPATCH → LLM_CALL ...} → DONE

wrapped in an outer validation-gate loop that re-runs the whole cycle when
the prompt requires a passing quality score. Each attempt writes exactly
one execution log entry, success or failure.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from app.core.config import settings
from app.core.exceptions import (
    AppError,
    ExecutionTimeExceededError,
    MaxLLMCallsExceededError,
    MaxToolCallsExceededError,
    NotFoundError,
    PromptInactiveError,
    UnexpectedError,
    ValidationGateFailure,
)
from app.core.metrics import PROMPT_EXECUTION_DURATION, PROMPT_EXECUTIONS
from app.gateway.types import LlmConfig, LlmRequest, LlmResponse, ToolCall, ToolChoice
from app.prompt_engine.catalog import CatalogIndex, ToolCatalogResolver
from app.prompt_engine.dispatcher import ToolDispatcher, failed_result
from app.prompt_engine.interpolation import apply_defaults, interpolate, validate_variables
from app.prompt_engine.ports import CatalogStore, ExecutionLogSink, LlmClient, PromptStore
from app.prompt_engine.types import (
    BatchResult,
    CatalogNamespace,
    ExecutionLogEntry,
    ExecutionRequest,
    ExecutionResult,
    PromptDefinition,
    ToolCallLog,
    ToolResultMessage,
    Tracing,
    ValidationScore,
)
from app.prompt_engine.validation import ValidationScorer

logger = logging.getLogger(__name__)


@dataclass
class Limits:
    max_llm_calls: int
    max_tool_calls: int
    tool_timeout_ms: int
    max_total_execution_ms: int

    @classmethod
    def for_request(cls, request: ExecutionRequest) -> Limits:
        cfg = request.prompt_config
        return cls(
            max_llm_calls=cfg.max_llm_calls or settings.default_max_llm_calls,
            max_tool_calls=cfg.max_tool_calls or settings.default_max_tool_calls,
            tool_timeout_ms=cfg.tool_timeout_ms or settings.default_tool_timeout_ms,
            max_total_execution_ms=cfg.max_total_execution_ms or settings.default_max_total_execution_ms,
        )


@dataclass
class _Attempt:
    """Mutable state owned by one attempt."""

    number: int
    started: float = field(default_factory=time.perf_counter)
    llm_config: LlmConfig | None = None
    system_variables: dict[str, Any] = field(default_factory=dict)
    user_variables: dict[str, Any] = field(default_factory=dict)
    system_prompt: str = ""
    user_prompt: str | None = None
    llm_call_count: int = 0
    tool_call_count: int = 0
    tool_call_logs: list[ToolCallLog] = field(default_factory=list)

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)


class PromptExecutionOrchestrator:
    def __init__(
        self,
        prompts: PromptStore,
        catalog: CatalogStore,
        llm: LlmClient,
        log_sink: ExecutionLogSink,
        dispatchers: dict[CatalogNamespace, ToolDispatcher] | None = None,
        scorer: ValidationScorer | None = None,
        gate_retries: int | None = None,
    ):
        self.prompts = prompts
        self.resolver = ToolCatalogResolver(catalog)
        self.llm = llm
        self.log_sink = log_sink
        self.dispatchers = dispatchers or {}
        self.scorer = scorer or ValidationScorer(llm)
        self.gate_retries = settings.validation_gate_retries if gate_retries is None else gate_retries

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run a prompt, retrying whole attempts while the validation gate fails.

        Raises NotFoundError (no log written) when the prompt does not exist.
        """
        prompt = await self.prompts.get(request.prompt_id)

        gated = prompt.validation_gate and prompt.validation_required
        max_attempts = max(self.gate_retries, 1) if gated else 1

        last: ExecutionResult | None = None
        for number in range(1, max_attempts + 1):
            result = await self._run_attempt(prompt, request, number)
            if not gated or result.validation_passed:
                return result
            last = result
            logger.warning(
                "Prompt %s attempt %d/%d failed validation (score %.2f)",
                prompt.id,
                number,
                max_attempts,
                result.validation_results.overall_score if result.validation_results else 0.0,
                extra={"request_id": request.request_id, "prompt_id": prompt.id},
            )

        raise ValidationGateFailure(
            attempts=max_attempts,
            last_response=last.to_dict() if last else None,
            last_score=last.validation_results.to_dict() if last and last.validation_results else None,
        )

    # ------------------------------------------------------------------
    # One attempt: INIT..DONE
    # ------------------------------------------------------------------

    async def _run_attempt(self, prompt: PromptDefinition, request: ExecutionRequest, number: int) -> ExecutionResult:
        attempt = _Attempt(number=number)
        tracing = request.root_tracing()
        log_extra = {"request_id": request.request_id, "prompt_id": prompt.id, "trace_id": tracing.trace_id}

        try:
            index = await self._init(prompt, request, attempt)
            response = await self._loop(prompt, request, attempt, index, tracing)
            result = ExecutionResult(
                content=response.content,
                usage=response.usage.to_dict(),
                model=response.model,
                provider=response.provider,
                message_history=response.message_history,
                llm_call_count=attempt.llm_call_count,
                tool_call_count=attempt.tool_call_count,
                attempts=number,
                trace_id=tracing.trace_id,
            )
            if prompt.validation_required:
                score = await self._validate(request, attempt, response, tracing)
                result.validation_passed = score.passed
                result.validation_results = score
        except AppError as exc:
            await self._log_failure(prompt, request, attempt, tracing, exc)
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error executing prompt %s", prompt.id, extra=log_extra)
            wrapped = UnexpectedError.wrap(exc)
            await self._log_failure(prompt, request, attempt, tracing, wrapped)
            raise wrapped from exc

        elapsed_ms = attempt.elapsed_ms
        await self.log_sink.append(
            ExecutionLogEntry(
                prompt_id=prompt.id,
                successful=True,
                attempt=number,
                system_variables=attempt.system_variables,
                user_variables=attempt.user_variables,
                llm_config=attempt.llm_config.to_dict() if attempt.llm_config else {},
                processed_system_prompt=attempt.system_prompt,
                processed_user_prompt=attempt.user_prompt or "",
                response=result.content,
                response_time_ms=elapsed_ms,
                token_usage=result.usage,
                tool_calls=attempt.tool_call_logs,
                tracing={"trace_id": tracing.trace_id},
                request_metadata=request.request_metadata,
                validation_passed=result.validation_passed,
                validation_results=result.validation_results.to_dict() if result.validation_results else None,
            )
        )
        try:
            await self.prompts.record_stats(prompt.id, elapsed_ms)
        except Exception:
            # Success is already logged
            logger.warning("Failed to update stats for prompt %s", prompt.id, exc_info=True, extra=log_extra)

        PROMPT_EXECUTIONS.labels(status="success").inc()
        PROMPT_EXECUTION_DURATION.observe(elapsed_ms / 1000)
        logger.info(
            "Prompt %s executed in %dms (%d LLM call(s), %d tool call(s))",
            prompt.id,
            elapsed_ms,
            attempt.llm_call_count,
            attempt.tool_call_count,
            extra=log_extra,
        )
        return result

    async def _init(self, prompt: PromptDefinition, request: ExecutionRequest, attempt: _Attempt) -> CatalogIndex:
        if not prompt.is_active:
            raise PromptInactiveError(prompt.id, prompt.status.value)

        attempt.llm_config = LlmConfig.from_dict({**prompt.default_llm_config, **request.llm_config})

        system_vars = apply_defaults(request.system_prompt_variables, prompt.system_variable_spec)
        attempt.system_variables = system_vars
        validate_variables(system_vars, prompt.system_variable_spec, "system")
        attempt.system_prompt = interpolate(prompt.system_prompt_template, system_vars)

        if request.user_prompt is not None:
            attempt.user_prompt = request.user_prompt
        elif prompt.user_prompt_template:
            user_vars = apply_defaults(request.user_prompt_variables, prompt.user_variable_spec)
            attempt.user_variables = user_vars
            validate_variables(user_vars, prompt.user_variable_spec, "user")
            attempt.user_prompt = interpolate(prompt.user_prompt_template, user_vars)

        return await CatalogIndex.build(self.resolver, {ns: prompt.ids_for(ns) for ns in CatalogNamespace})

    async def _loop(
        self,
        prompt: PromptDefinition,
        request: ExecutionRequest,
        attempt: _Attempt,
        index: CatalogIndex,
        root: Tracing,
    ) -> LlmResponse:
        limits = Limits.for_request(request)
        llm_request = LlmRequest(
            config=attempt.llm_config,
            tracing=root.child("initial_llm_call"),
            system_prompt=attempt.system_prompt,
            user_prompt=attempt.user_prompt,
            message_history=list(request.message_history),
            tools=list(index.descriptors),
            tool_choice=ToolChoice.AUTO if len(index) else None,
            response_format=prompt.response_schema,
            request_metadata=request.request_metadata,
        )

        while True:
            elapsed_ms = attempt.elapsed_ms
            if elapsed_ms > limits.max_total_execution_ms:
                raise ExecutionTimeExceededError(limits.max_total_execution_ms, elapsed_ms)

            attempt.llm_call_count += 1
            if attempt.llm_call_count > limits.max_llm_calls:
                raise MaxLLMCallsExceededError(
                    limits.max_llm_calls,
                    details={"tool_calls": [log.to_dict() for log in attempt.tool_call_logs]},
                )

            response = await self.llm.complete(llm_request)
            if not response.has_tool_calls:
                return response

            batch_size = len(response.tool_calls)
            if attempt.tool_call_count + batch_size > limits.max_tool_calls:
                raise MaxToolCallsExceededError(
                    limits.max_tool_calls,
                    attempt.tool_call_count + batch_size,
                    details={"partial_response": response.to_dict()},
                )
            attempt.tool_call_count += batch_size

            batch = await self._dispatch(response.tool_calls, index, request, llm_request.tracing, limits)
            attempt.tool_call_logs.extend(batch.logs)

            # Once tools are in play the transcript supersedes the prompt fields
            llm_request.system_prompt = None
            llm_request.user_prompt = None
            llm_request.message_history = [
                *response.message_history,
                *(r.to_message() for r in batch.results),
            ]
            llm_request.tracing = llm_request.tracing.child(
                f"followup_llm_call_{attempt.llm_call_count}_with_tool_results"
            )

    async def _dispatch(
        self,
        calls: list[ToolCall],
        index: CatalogIndex,
        request: ExecutionRequest,
        tracing: Tracing,
        limits: Limits,
    ) -> BatchResult:
        """Route calls to their namespace dispatchers; results keep input order."""
        groups: dict[CatalogNamespace, list[int]] = {}
        for i, call in enumerate(calls):
            target = index.target_for(call.name)
            if target is None:
                raise NotFoundError(f"Tool not found: {call.name}", details={"name": call.name})
            groups.setdefault(target.namespace, []).append(i)

        slots: list[tuple[ToolResultMessage, ToolCallLog] | None] = [None] * len(calls)
        jobs = []
        for namespace, positions in groups.items():
            dispatcher = self.dispatchers.get(namespace)
            if dispatcher is None or not _dispatch_enabled(namespace):
                for i in positions:
                    slots[i] = failed_result(calls[i], f"{namespace.value} dispatch is disabled")
                continue
            jobs.append((positions, dispatcher, [calls[i] for i in positions]))

        batches = await asyncio.gather(
            *(
                dispatcher.execute_parallel(
                    group_calls,
                    request.env_variables.get(dispatcher.namespace),
                    tracing,
                    limits.tool_timeout_ms,
                    request.request_metadata,
                )
                for _, dispatcher, group_calls in jobs
            )
        )
        for (positions, _, _), batch in zip(jobs, batches):
            for i, result, log in zip(positions, batch.results, batch.logs):
                slots[i] = (result, log)

        merged = BatchResult()
        for result, log in slots:
            merged.results.append(result)
            merged.logs.append(log)
        return merged

    async def _validate(
        self,
        request: ExecutionRequest,
        attempt: _Attempt,
        response: LlmResponse,
        tracing: Tracing,
    ) -> ValidationScore:
        return await self.scorer.score(
            original_prompts={"systemPrompt": attempt.system_prompt, "userPrompt": attempt.user_prompt},
            tool_call_history=attempt.tool_call_logs,
            final_response=response.content,
            tracing=tracing,
            request_metadata=request.request_metadata,
        )

    async def _log_failure(
        self,
        prompt: PromptDefinition,
        request: ExecutionRequest,
        attempt: _Attempt,
        tracing: Tracing,
        error: AppError,
    ) -> None:
        elapsed_ms = attempt.elapsed_ms
        PROMPT_EXECUTIONS.labels(status="failure").inc()
        PROMPT_EXECUTION_DURATION.observe(elapsed_ms / 1000)
        logger.warning(
            "Prompt %s attempt %d failed: %s",
            prompt.id,
            attempt.number,
            error.message,
            extra={"request_id": request.request_id, "prompt_id": prompt.id, "trace_id": tracing.trace_id},
        )
        await self.log_sink.append(
            ExecutionLogEntry(
                prompt_id=prompt.id,
                successful=False,
                attempt=attempt.number,
                system_variables=attempt.system_variables or dict(request.system_prompt_variables),
                user_variables=attempt.user_variables or dict(request.user_prompt_variables),
                llm_config=attempt.llm_config.to_dict() if attempt.llm_config else dict(request.llm_config),
                processed_system_prompt=attempt.system_prompt,
                processed_user_prompt=attempt.user_prompt or "",
                response="",
                response_time_ms=elapsed_ms,
                error_message=error.message,
                tool_calls=attempt.tool_call_logs,
                tracing={"trace_id": tracing.trace_id},
                request_metadata=request.request_metadata,
            )
        )


def _dispatch_enabled(namespace: CatalogNamespace) -> bool:
    return {
        CatalogNamespace.TOOL: settings.enable_tool_dispatch,
        CatalogNamespace.ACTIVITY: settings.enable_activity_dispatch,
        CatalogNamespace.WORKFLOW: settings.enable_workflow_dispatch,
    }[namespace]
