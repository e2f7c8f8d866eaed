"""Parallel dispatch of one batch of LLM tool calls.

Every call in the batch runs concurrently and is raced against the
per-call timeout. Failures are isolated to the call that produced them:
the batch always yields one ToolResultMessage and one ToolCallLog per call,
in input order. Only an unresolvable call name fails the whole batch.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from app.core.exceptions import NotFoundError, ToolTimeoutError
from app.core.metrics import TOOL_CALLS
from app.gateway.types import ToolCall
from app.prompt_engine.ports import CatalogStore, ExecutionLogSink, ToolExecutor
from app.prompt_engine.types import (
    BatchResult,
    CatalogNamespace,
    ToolCallLog,
    ToolDescriptor,
    ToolResultMessage,
    Tracing,
)

logger = logging.getLogger(__name__)


def _consume_exception(task: asyncio.Task) -> None:
    # An abandoned task must not report "exception was never retrieved"
    if not task.cancelled():
        task.exception()


def failed_result(call: ToolCall, message: str) -> tuple[ToolResultMessage, ToolCallLog]:
    """Result/log pair for a call that never reached its executor."""
    output = {"error": message}
    result = ToolResultMessage(
        tool_call_id=call.id, name=call.name, output=output, successful=False, error=message
    )
    log = ToolCallLog(
        tool_name=call.name,
        input_arguments=_safe_arguments(call),
        output=output,
        execution_time_ms=0,
        successful=False,
    )
    return result, log


def _failure_reason(output: Any, name: str) -> str:
    if isinstance(output, dict):
        reason = output.get("error") or output.get("message")
        if reason:
            return str(reason)
    return f"{name} execution failed"


def _safe_arguments(call: ToolCall) -> Any:
    try:
        return call.parsed_arguments()
    except ValueError:
        return call.arguments


class ToolDispatcher:
    """Executes batches of calls for one catalog namespace."""

    def __init__(
        self,
        namespace: CatalogNamespace,
        catalog: CatalogStore,
        executor: ToolExecutor,
        log_sink: ExecutionLogSink | None = None,
    ):
        self.namespace = namespace
        self.catalog = catalog
        self.executor = executor
        self.log_sink = log_sink

    async def execute_parallel(
        self,
        calls: list[ToolCall],
        env_vars: dict[str, Any] | None,
        tracing: Tracing,
        timeout_ms: int,
        request_metadata: dict[str, Any] | None = None,
    ) -> BatchResult:
        """Run `calls` concurrently; results[i] corresponds to calls[i]."""
        if not calls:
            return BatchResult()

        started = time.perf_counter()
        batch_tracing = tracing.child(f"{self.namespace.value}_calls")
        env_vars = env_vars or {}
        request_metadata = request_metadata or {}

        # One catalog round-trip per batch
        names = list(dict.fromkeys(c.name for c in calls))
        descriptors = {
            d.external_name: d for d in await self.catalog.find_by_external_names(self.namespace, names)
        }
        missing = [n for n in names if n not in descriptors]
        if missing:
            raise NotFoundError(
                f"{self.namespace.value.capitalize()} not found: {', '.join(missing)}",
                details={"namespace": self.namespace.value, "missing": missing},
            )

        logger.info(
            "Dispatching %d %s call(s): %s",
            len(calls),
            self.namespace.value,
            ", ".join(c.name for c in calls),
            extra=batch_tracing.log_extra(),
        )

        outcomes = await asyncio.gather(
            *(
                self._execute_one(call, descriptors[call.name], env_vars, batch_tracing, timeout_ms, request_metadata)
                for call in calls
            )
        )

        batch = BatchResult()
        for result, log in outcomes:
            batch.results.append(result)
            batch.logs.append(log)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        await self._emit(
            {
                "request": {
                    "body": {
                        "messages": [{"role": "tool", "content": json.dumps([c.to_dict() for c in calls])}]
                    }
                },
                "response": {
                    "status": 200,
                    "body": {
                        "choices": [
                            {
                                "message": {
                                    "role": "tool",
                                    "content": json.dumps([log.to_dict() for log in batch.logs], default=str),
                                    "tool_calls": [log.tool_name for log in batch.logs],
                                }
                            }
                        ]
                    },
                    "response_time": elapsed_ms,
                },
                "metadata": batch_tracing.to_dict(),
            }
        )
        return batch

    async def _execute_one(
        self,
        call: ToolCall,
        descriptor: ToolDescriptor,
        env_vars: dict[str, Any],
        batch_tracing: Tracing,
        timeout_ms: int,
        request_metadata: dict[str, Any],
    ) -> tuple[ToolResultMessage, ToolCallLog]:
        call_tracing = batch_tracing.child(f"{self.namespace.value}_execution_{descriptor.external_name}")
        started = time.perf_counter()

        try:
            args = call.parsed_arguments()
        except ValueError as exc:
            args = call.arguments
            success, output = False, {"error": f"Invalid arguments for {call.name}: {exc}"}
            elapsed_ms = 0
        else:
            success, output, elapsed_ms = await self._invoke(
                descriptor, args, env_vars, call_tracing, timeout_ms, request_metadata
            )
            if not elapsed_ms:
                elapsed_ms = int((time.perf_counter() - started) * 1000)

        error = None if success else _failure_reason(output, descriptor.external_name)
        TOOL_CALLS.labels(namespace=self.namespace.value, status="success" if success else "failure").inc()

        result = ToolResultMessage(
            tool_call_id=call.id,
            name=descriptor.external_name,
            output=output,
            successful=success,
            error=error,
        )
        log = ToolCallLog(
            tool_name=descriptor.external_name,
            input_arguments=args,
            output=output,
            execution_time_ms=elapsed_ms,
            description=descriptor.description,
            namespace=self.namespace.value,
            successful=success,
        )

        await self._emit(
            {
                "request": {
                    "body": {
                        "messages": [
                            {
                                "role": "tool",
                                "content": json.dumps(
                                    {"toolCall": call.to_dict(), "descriptorId": descriptor.id, "timeout": timeout_ms},
                                    default=str,
                                ),
                                "tool_call_id": call.id,
                            }
                        ]
                    }
                },
                "response": {
                    "status": 200 if success else 500,
                    "body": {
                        "choices": [
                            {
                                "message": {
                                    "role": "tool",
                                    "content": json.dumps(result.to_message(), default=str),
                                    "tool_calls": call.id,
                                }
                            }
                        ]
                    },
                    "response_time": elapsed_ms,
                },
                "metadata": call_tracing.to_dict(),
            }
        )
        return result, log

    async def _invoke(
        self,
        descriptor: ToolDescriptor,
        args: Any,
        env_vars: dict[str, Any],
        tracing: Tracing,
        timeout_ms: int,
        request_metadata: dict[str, Any],
    ) -> tuple[bool, Any, int]:
        logger.info("Executing %s: %s", self.namespace.value, descriptor.external_name, extra=tracing.log_extra())

        task = asyncio.ensure_future(
            self.executor.invoke(descriptor.id, args, env_vars, timeout_ms, request_metadata)
        )
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)

        if task not in done:
            # The executor is told to stop but not waited on
            task.add_done_callback(_consume_exception)
            task.cancel()
            err = ToolTimeoutError(descriptor.external_name, timeout_ms)
            logger.warning("%s", err.message, extra=tracing.log_extra())
            return False, {"error": err.message}, timeout_ms

        exc = task.exception()
        if exc is not None:
            logger.error(
                "%s execution failed: %s: %s",
                descriptor.external_name,
                type(exc).__name__,
                exc,
                exc_info=exc,
                extra=tracing.log_extra(),
            )
            return False, {"error": str(exc) or type(exc).__name__}, 0

        outcome = task.result()
        output = outcome.output
        if not outcome.success and not isinstance(output, dict):
            output = {"error": str(output) if output is not None else "Execution failed"}
        return outcome.success, output, outcome.elapsed_ms

    async def _emit(self, record: dict[str, Any]) -> None:
        if self.log_sink is not None:
            await self.log_sink.append_tool_call_log(record)
