"""Tests for parallel tool dispatch: ordering, timeouts and failure isolation."""

from __future__ import annotations

import asyncio
import time

import pytest

from app.core.exceptions import NotFoundError
from app.gateway.types import ToolCall
from app.prompt_engine.dispatcher import ToolDispatcher, failed_result
from app.prompt_engine.executors import LocalToolExecutor
from app.prompt_engine.types import CatalogNamespace, ToolInvocationResult, Tracing
from tests.fakes import InMemoryCatalogStore, MemoryLogSink, descriptor, never_finishes, tool_call


ROOT = Tracing(trace_id="trace-1", span_id="root-span")


def _dispatcher(executor: LocalToolExecutor, *names: str, sink: MemoryLogSink | None = None) -> ToolDispatcher:
    catalog = InMemoryCatalogStore(*(descriptor(n) for n in names))
    return ToolDispatcher(CatalogNamespace.TOOL, catalog, executor, log_sink=sink)


@pytest.fixture
def executor() -> LocalToolExecutor:
    tools = LocalToolExecutor(CatalogNamespace.TOOL)

    async def slow(args, env):
        await asyncio.sleep(0.1)
        return {"value": "slow"}

    async def fast(args, env):
        return {"value": "fast"}

    def add(args, env):
        return {"sum": args["a"] + args["b"]}

    def boom(args, env):
        raise RuntimeError("disk full")

    async def echo_env(args, env):
        return {"env": env}

    tools.register("tool-slow", slow)
    tools.register("tool-fast", fast)
    tools.register("tool-add", add)
    tools.register("tool-boom", boom)
    tools.register("tool-echo_env", echo_env)
    tools.register("tool-hang", never_finishes)
    return tools


# ==========================================================================
# Ordering and concurrency
# ==========================================================================


class TestOrdering:
    @pytest.mark.asyncio
    async def test_results_follow_input_order(self, executor):
        dispatcher = _dispatcher(executor, "slow", "fast", "add")
        calls = [tool_call("slow", "c1"), tool_call("fast", "c2"), tool_call("add", "c3", a=1, b=2)]

        batch = await dispatcher.execute_parallel(calls, {}, ROOT, timeout_ms=5000)

        assert [r.tool_call_id for r in batch.results] == ["c1", "c2", "c3"]
        assert [log.tool_name for log in batch.logs] == ["slow", "fast", "add"]
        assert batch.results[0].output == {"value": "slow"}
        assert batch.results[2].output == {"sum": 3}

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self):
        tools = LocalToolExecutor(CatalogNamespace.TOOL)

        async def nap(args, env):
            await asyncio.sleep(0.2)
            return "ok"

        for name in ("a", "b", "c"):
            tools.register(f"tool-{name}", nap)
        dispatcher = _dispatcher(tools, "a", "b", "c")

        started = time.perf_counter()
        batch = await dispatcher.execute_parallel(
            [tool_call("a"), tool_call("b"), tool_call("c")], {}, ROOT, timeout_ms=5000
        )
        assert time.perf_counter() - started < 0.5
        assert all(r.successful for r in batch.results)

    @pytest.mark.asyncio
    async def test_empty_batch(self, executor):
        dispatcher = _dispatcher(executor, "add")
        batch = await dispatcher.execute_parallel([], {}, ROOT, timeout_ms=100)
        assert batch.results == [] and batch.logs == []
        assert dispatcher.catalog.name_lookups == []

    @pytest.mark.asyncio
    async def test_single_catalog_lookup_per_batch(self, executor):
        dispatcher = _dispatcher(executor, "add")
        calls = [tool_call("add", "c1", a=1, b=2), tool_call("add", "c2", a=3, b=4)]
        batch = await dispatcher.execute_parallel(calls, {}, ROOT, timeout_ms=5000)

        assert dispatcher.catalog.name_lookups == [(CatalogNamespace.TOOL, ["add"])]
        assert [r.output for r in batch.results] == [{"sum": 3}, {"sum": 7}]


# ==========================================================================
# Failure isolation
# ==========================================================================


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_timeout_fails_only_that_call(self, executor):
        dispatcher = _dispatcher(executor, "add", "hang")
        calls = [tool_call("add", "c1", a=1, b=1), tool_call("hang", "c2"), tool_call("add", "c3", a=2, b=2)]

        started = time.perf_counter()
        batch = await dispatcher.execute_parallel(calls, {}, ROOT, timeout_ms=100)
        assert time.perf_counter() - started < 1.0

        first, hung, third = batch.results
        assert first.successful and third.successful
        assert not hung.successful
        assert hung.error == "Tool execution timeout: hang exceeded 100ms"
        assert hung.output == {"error": "Tool execution timeout: hang exceeded 100ms"}
        assert batch.logs[1].execution_time_ms == 100

    @pytest.mark.asyncio
    async def test_executor_exception_becomes_result(self, executor):
        dispatcher = _dispatcher(executor, "boom", "add")
        batch = await dispatcher.execute_parallel(
            [tool_call("boom", "c1"), tool_call("add", "c2", a=1, b=2)], {}, ROOT, timeout_ms=5000
        )

        assert batch.results[0].successful is False
        assert batch.results[0].error == "disk full"
        assert batch.results[1].output == {"sum": 3}

    @pytest.mark.asyncio
    async def test_malformed_arguments_fail_only_that_call(self, executor):
        dispatcher = _dispatcher(executor, "add")
        calls = [ToolCall(id="c1", name="add", arguments="{not json"), tool_call("add", "c2", a=5, b=5)]

        batch = await dispatcher.execute_parallel(calls, {}, ROOT, timeout_ms=5000)

        assert batch.results[0].successful is False
        assert batch.results[0].error.startswith("Invalid arguments for add")
        assert batch.logs[0].input_arguments == "{not json"
        assert batch.results[1].output == {"sum": 10}

    @pytest.mark.asyncio
    async def test_unsuccessful_non_dict_output_is_wrapped(self):
        class Refusing:
            namespace = CatalogNamespace.TOOL

            async def invoke(self, descriptor_id, args, env_vars, timeout_ms, request_metadata=None):
                return ToolInvocationResult(success=False, output="quota exhausted")

        dispatcher = ToolDispatcher(CatalogNamespace.TOOL, InMemoryCatalogStore(descriptor("q")), Refusing())
        batch = await dispatcher.execute_parallel([tool_call("q")], {}, ROOT, timeout_ms=1000)
        assert batch.results[0].output == {"error": "quota exhausted"}
        assert batch.results[0].error == "quota exhausted"

    @pytest.mark.asyncio
    async def test_unsuccessful_output_without_error_key_still_has_reason(self):
        class Failing:
            namespace = CatalogNamespace.TOOL

            async def invoke(self, descriptor_id, args, env_vars, timeout_ms, request_metadata=None):
                if descriptor_id == "tool-quota":
                    return ToolInvocationResult(success=False, output={"message": "quota exhausted"})
                return ToolInvocationResult(success=False, output={"code": 7})

        catalog = InMemoryCatalogStore(descriptor("quota"), descriptor("opaque"))
        dispatcher = ToolDispatcher(CatalogNamespace.TOOL, catalog, Failing())
        batch = await dispatcher.execute_parallel([tool_call("quota"), tool_call("opaque")], {}, ROOT, 1000)

        quota, opaque = batch.results
        assert quota.error == "quota exhausted"
        assert quota.output == {"message": "quota exhausted"}
        assert opaque.error == "opaque execution failed"
        assert '"error": "opaque execution failed"' in opaque.to_message()["content"]

    @pytest.mark.asyncio
    async def test_unknown_name_fails_whole_batch(self, executor):
        dispatcher = _dispatcher(executor, "add")
        with pytest.raises(NotFoundError) as exc_info:
            await dispatcher.execute_parallel([tool_call("add", a=1, b=1), tool_call("ghost")], {}, ROOT, 1000)
        assert exc_info.value.message == "Tool not found: ghost"
        assert exc_info.value.details["missing"] == ["ghost"]

    def test_failed_result_pair(self):
        result, log = failed_result(tool_call("x", "c9", a=1), "activity dispatch is disabled")
        assert result.tool_call_id == "c9"
        assert result.successful is False
        assert log.input_arguments == {"a": 1}
        assert log.execution_time_ms == 0


# ==========================================================================
# Env vars, tracing, telemetry
# ==========================================================================


class TestContext:
    @pytest.mark.asyncio
    async def test_env_vars_passed_to_executor(self, executor):
        dispatcher = _dispatcher(executor, "echo_env")
        batch = await dispatcher.execute_parallel([tool_call("echo_env")], {"API_KEY": "k"}, ROOT, 1000)
        assert batch.results[0].output == {"env": {"API_KEY": "k"}}

    @pytest.mark.asyncio
    async def test_emits_per_call_and_batch_records(self, executor):
        sink = MemoryLogSink()
        dispatcher = _dispatcher(executor, "add", "boom", sink=sink)
        await dispatcher.execute_parallel(
            [tool_call("add", "c1", a=1, b=1), tool_call("boom", "c2")], {}, ROOT, timeout_ms=5000
        )

        assert len(sink.tool_logs) == 3
        per_call, batch_record = sink.tool_logs[:2], sink.tool_logs[2]

        spans = {r["metadata"]["span_name"] for r in per_call}
        assert spans == {"tool_execution_add", "tool_execution_boom"}
        assert batch_record["metadata"]["span_name"] == "tool_calls"
        assert batch_record["metadata"]["parent_span_id"] == "root-span"
        assert batch_record["metadata"]["trace_id"] == "trace-1"
        for record in per_call:
            assert record["metadata"]["parent_span_id"] == batch_record["metadata"]["span_id"]

        statuses = sorted(r["response"]["status"] for r in per_call)
        assert statuses == [200, 500]

    def test_result_message_shape(self):
        result, _ = failed_result(tool_call("x", "c1"), "nope")
        message = result.to_message()
        assert message["role"] == "tool"
        assert message["tool_call_id"] == "c1"
        assert '"successful": false' in message["content"]
