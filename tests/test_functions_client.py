from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from autodidact.orchestrator import (
    TOKEN_HEADER,
    DisabledFunctionsClient,
    FunctionsClient,
    RemoteInvocationError,
)


def run_invoke(handler, **invoke_kwargs):
    async def scenario():
        client = FunctionsClient(
            "https://project.example.co/",
            api_key="anon-key",
            transport=httpx.MockTransport(handler),
        )
        try:
            return await client.invoke("process-task", {"taskId": "t1"}, **invoke_kwargs)
        finally:
            await client.aclose()

    return asyncio.run(scenario())


def test_invoke_posts_json_with_headers() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["method"] = request.method
        captured["body"] = json.loads(request.content)
        captured["headers"] = dict(request.headers)
        return httpx.Response(200, json={"success": True})

    result = run_invoke(handler, headers={TOKEN_HEADER: "ghp_abc"})

    assert result == {"success": True}
    assert captured["method"] == "POST"
    assert captured["url"] == "https://project.example.co/functions/v1/process-task"
    assert captured["body"] == {"taskId": "t1"}
    headers = captured["headers"]
    assert headers["authorization"] == "Bearer anon-key"
    assert headers[TOKEN_HEADER] == "ghp_abc"


def test_error_status_raises_with_server_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "Task not found"})

    with pytest.raises(RemoteInvocationError) as excinfo:
        run_invoke(handler)

    assert str(excinfo.value) == "Task not found"
    assert excinfo.value.status_code == 500
    assert excinfo.value.name == "process-task"


def test_error_status_without_body_uses_status_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502)

    with pytest.raises(RemoteInvocationError, match="HTTP 502"):
        run_invoke(handler)


def test_transport_errors_become_invocation_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteInvocationError, match="connection refused"):
        run_invoke(handler)


def test_empty_success_body_returns_empty_dict() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    assert run_invoke(handler) == {}


def test_disabled_client_always_fails() -> None:
    with pytest.raises(RemoteInvocationError, match="not configured"):
        asyncio.run(DisabledFunctionsClient().invoke("process-task", {"taskId": "t1"}))
