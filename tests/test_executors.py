"""Tests for the HTTP and in-process tool executors."""

from __future__ import annotations

import functools
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.prompt_engine.executors import HttpToolExecutor, LocalToolExecutor
from app.prompt_engine.types import CatalogNamespace


def _make_httpx_response(status_code: int, json_data=None, text: str = "") -> httpx.Response:
    request = httpx.Request("POST", "https://tools.example.com")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, request=request)
    return httpx.Response(status_code, text=text, request=request)


async def _invoke(response: httpx.Response, **kwargs):
    executor = HttpToolExecutor(CatalogNamespace.TOOL, "https://tools.example.com/tools/")

    with patch("app.prompt_engine.executors.httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.post.return_value = response
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)
        mock_client_cls.return_value = mock_client

        result = await executor.invoke("t-1", {"a": 1}, {"KEY": "v"}, 5000, **kwargs)

    return result, mock_client


class TestHttpToolExecutor:
    @pytest.mark.asyncio
    async def test_posts_execute_payload(self):
        result, mock_client = await _invoke(
            _make_httpx_response(200, {"success": True, "output": {"sum": 3}, "executionTimeMs": 42}),
            request_metadata={"sourceService": "billing"},
        )

        assert result.success is True
        assert result.output == {"sum": 3}
        assert result.elapsed_ms == 42

        url = mock_client.post.call_args.args[0]
        payload = mock_client.post.call_args.kwargs["json"]
        assert url == "https://tools.example.com/tools/t-1/execute"
        assert payload == {"inputVariables": {"a": 1}, "envVariables": {"KEY": "v"}, "requestingServiceId": "billing"}

    @pytest.mark.asyncio
    async def test_default_requesting_service(self):
        _, mock_client = await _invoke(_make_httpx_response(200, {"success": True, "output": 1}))
        assert mock_client.post.call_args.kwargs["json"]["requestingServiceId"] == "prompt-runtime"

    @pytest.mark.asyncio
    async def test_legacy_reply_shape(self):
        result, _ = await _invoke(
            _make_httpx_response(200, {"toolSuccess": False, "toolResult": "quota", "toolExecutionTime": 7})
        )
        assert result.success is False
        assert result.output == "quota"
        assert result.elapsed_ms == 7

    @pytest.mark.asyncio
    async def test_http_error_is_failure(self):
        result, _ = await _invoke(_make_httpx_response(503, {"error": "service down"}))
        assert result.success is False
        assert result.output == {"error": "service down"}

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        result, _ = await _invoke(_make_httpx_response(500, text="<html>oops</html>"))
        assert result.success is False
        assert result.output == {"error": "<html>oops</html>"}


class TestLocalToolExecutor:
    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        tools = LocalToolExecutor()

        async def shout(args, env):
            return args["text"].upper()

        tools.register("t-shout", shout)
        tools.register("t-env", lambda args, env: env["KEY"])

        assert "t-shout" in tools
        assert (await tools.invoke("t-shout", {"text": "hi"}, {}, 1000)).output == "HI"
        assert (await tools.invoke("t-env", {}, {"KEY": "v"}, 1000)).output == "v"

    @pytest.mark.asyncio
    async def test_partial_and_callable_object_handlers_are_awaited(self):
        tools = LocalToolExecutor()

        async def scale(factor, args, env):
            return args["n"] * factor

        class Greeter:
            async def __call__(self, args, env):
                return f"hello {args['name']}"

        tools.register("t-double", functools.partial(scale, 2))
        tools.register("t-greet", Greeter())

        assert (await tools.invoke("t-double", {"n": 21}, {}, 1000)).output == 42
        assert (await tools.invoke("t-greet", {"name": "ada"}, {}, 1000)).output == "hello ada"

    @pytest.mark.asyncio
    async def test_unknown_handler(self):
        result = await LocalToolExecutor().invoke("missing", {}, {}, 1000)
        assert result.success is False
        assert result.output == {"error": "No local handler for missing"}

    @pytest.mark.asyncio
    async def test_handler_errors_propagate(self):
        tools = LocalToolExecutor()

        def fail(args, env):
            raise ValueError("bad input")

        tools.register("t-fail", fail)
        with pytest.raises(ValueError, match="bad input"):
            await tools.invoke("t-fail", {}, {}, 1000)
