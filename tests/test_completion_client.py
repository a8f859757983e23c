from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import httpx
import pytest

from codegen_service.common.errors import (
    UpstreamAuthFailure,
    UpstreamError,
    UpstreamMalformedResponse,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from codegen_service.common.schema import CompletionOptions, CompletionResult
from codegen_service.llm.completion_client import CompletionBackend, CompletionClient, describe_shape

BASE_URL = "https://llm.test/v1"
OPTIONS = CompletionOptions(model="test-model", temperature=0.3, max_output_tokens=2048)


def _ok_body(content: Any = "print('hi')", usage: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": "test-model-2024",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": usage if usage is not None else {"prompt_tokens": 80, "completion_tokens": 40, "total_tokens": 120},
    }


def _complete(handler: Callable[[httpx.Request], Any], timeout_s: float = 5.0) -> CompletionResult:
    async def go() -> CompletionResult:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = CompletionClient(BASE_URL, "sk-test", timeout_s=timeout_s, http_client=http)
            return await client.complete("system text", "user text", OPTIONS)

    return asyncio.run(go())


def test_client_satisfies_backend_protocol() -> None:
    client = CompletionClient(BASE_URL, "sk-test", http_client=httpx.AsyncClient())
    assert isinstance(client, CompletionBackend)


def test_request_wire_format() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_ok_body())

    _complete(handler)

    assert seen["url"] == f"{BASE_URL}/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    body = seen["body"]
    assert body["model"] == "test-model"
    assert body["messages"] == [
        {"role": "system", "content": "system text"},
        {"role": "user", "content": "user text"},
    ]
    assert body["temperature"] == 0.3
    assert body["max_tokens"] == 2048
    assert body["stream"] is False


def test_successful_completion_reports_usage_and_latency() -> None:
    result = _complete(lambda request: httpx.Response(200, json=_ok_body()))
    assert result.text == "print('hi')"
    assert result.tokens_used == 120
    assert result.elapsed_seconds >= 0
    assert result.model_id == "test-model-2024"


def test_tokens_fall_back_to_prompt_plus_completion() -> None:
    body = _ok_body(usage={"prompt_tokens": 7, "completion_tokens": 5})
    body.pop("model")
    result = _complete(lambda request: httpx.Response(200, json=body))
    assert result.tokens_used == 12
    assert result.model_id == "test-model"


@pytest.mark.parametrize("status", [401, 403])
def test_auth_failures(status: int) -> None:
    with pytest.raises(UpstreamAuthFailure) as excinfo:
        _complete(lambda request: httpx.Response(status, json={"error": "bad key"}))
    assert excinfo.value.status_code == status
    assert excinfo.value.retryable is False


def test_rate_limit_with_retry_after() -> None:
    with pytest.raises(UpstreamRateLimited) as excinfo:
        _complete(lambda request: httpx.Response(429, headers={"Retry-After": "7"}, json={}))
    assert excinfo.value.retry_after_seconds == 7.0
    assert excinfo.value.retryable is True


def test_rate_limit_with_http_date_retry_after() -> None:
    headers = {"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}
    with pytest.raises(UpstreamRateLimited) as excinfo:
        _complete(lambda request: httpx.Response(429, headers=headers, json={}))
    assert excinfo.value.retry_after_seconds is None


def test_slow_provider_times_out() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1.0)
        return httpx.Response(200, json=_ok_body())

    with pytest.raises(UpstreamTimeout) as excinfo:
        _complete(handler, timeout_s=0.05)
    assert excinfo.value.retryable is True


def test_transport_timeout_is_translated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(UpstreamTimeout) as excinfo:
        _complete(handler)
    assert isinstance(excinfo.value.__cause__, httpx.ReadTimeout)


def test_gateway_timeout_status_is_a_timeout() -> None:
    with pytest.raises(UpstreamTimeout):
        _complete(lambda request: httpx.Response(504, text="gateway timeout"))


def test_connection_error_is_generic_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError) as excinfo:
        _complete(handler)
    assert type(excinfo.value) is UpstreamError
    assert excinfo.value.retryable is True


@pytest.mark.parametrize("status,retryable", [(500, True), (503, True), (400, False), (404, False)])
def test_other_statuses(status: int, retryable: bool) -> None:
    with pytest.raises(UpstreamError) as excinfo:
        _complete(lambda request: httpx.Response(status, json={"error": "nope"}))
    assert type(excinfo.value) is UpstreamError
    assert excinfo.value.status_code == status
    assert excinfo.value.retryable is retryable


@pytest.mark.parametrize(
    "body",
    [
        {"choices": [], "usage": {"total_tokens": 1}},
        {"usage": {"total_tokens": 1}},
        {"choices": [{"message": {}}], "usage": {"total_tokens": 1}},
        {"choices": [{"message": {"content": None}}], "usage": {"total_tokens": 1}},
        {"choices": [{"message": {"content": "x"}}]},
        {"choices": [{"message": {"content": "x"}}], "usage": {"total_tokens": -3}},
        ["not", "an", "object"],
    ],
)
def test_malformed_bodies(body: Any) -> None:
    with pytest.raises(UpstreamMalformedResponse):
        _complete(lambda request: httpx.Response(200, json=body))


def test_non_json_body_is_malformed() -> None:
    with pytest.raises(UpstreamMalformedResponse):
        _complete(lambda request: httpx.Response(200, text="<html>oops</html>"))


def test_malformed_response_logs_shape_not_content(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="codegen.llm.client")
    body = {"choices": [{"message": {"content": "SECRET PROMPT ECHO"}}]}
    with pytest.raises(UpstreamMalformedResponse):
        _complete(lambda request: httpx.Response(200, json=body))
    assert "SECRET" not in caplog.text
    assert "choices" in caplog.text


def test_describe_shape() -> None:
    shape = describe_shape({"choices": [{"message": {"content": "hidden"}}], "n": 1, "empty": []})
    assert shape == {"choices": [{"message": {"content": "str"}}], "n": "int", "empty": []}
