"""Tests for the chat-completion clients."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from editpilot.ai.client import (
    AIClient,
    AIClientError,
    ClientSettings,
    GatewayClient,
    _parse_stream_line,
    create_chat_client,
)


def _settings(**overrides: Any) -> ClientSettings:
    values: dict[str, Any] = {
        "base_url": "https://gateway.test/chat",
        "api_key": "secret-key",
        "model": "test-model",
        "max_retries": 1,
        "retry_min_seconds": 0.0,
        "retry_max_seconds": 0.0,
    }
    values.update(overrides)
    return ClientSettings(**values)


def _gateway(handler, **overrides: Any) -> GatewayClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GatewayClient(_settings(**overrides), http_client=http_client)


def test_build_payload_includes_optional_fields() -> None:
    client = GatewayClient(_settings(), http_client=httpx.AsyncClient())

    payload = client.build_payload(
        [{"role": "user", "content": "hi"}],
        tools=[{"type": "function", "function": {"name": "get_context"}}],
        tool_choice="auto",
        temperature=0.1,
        max_tokens=8192,
        stream=True,
    )

    assert payload["model"] == "test-model"
    assert payload["messages"] == [{"role": "user", "content": "hi"}]
    assert payload["tool_choice"] == "auto"
    assert payload["temperature"] == 0.1
    assert payload["max_tokens"] == 8192
    assert payload["stream"] is True


def test_build_payload_requires_messages() -> None:
    client = GatewayClient(_settings(), http_client=httpx.AsyncClient())

    with pytest.raises(ValueError):
        client.build_payload([])


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ('data: {"choices": []}', {"choices": []}),
        ("data: [DONE]", None),
        (": keep-alive", None),
        ("event: message", None),
        ("data: {broken", None),
        ("", None),
    ],
)
def test_parse_stream_line(line: str, expected: Any) -> None:
    assert _parse_stream_line(line) == expected


@pytest.mark.asyncio
async def test_gateway_stream_yields_chunks_and_sends_api_key_header() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = (
            'data: {"choices": [{"delta": {"content": "Hi"}}]}\n\n'
            ": ping\n\n"
            'data: {"choices": [{"delta": {}, "finish_reason": "stop"}]}\n\n'
            "data: [DONE]\n\n"
        )
        return httpx.Response(200, content=body.encode("utf-8"), headers={"Content-Type": "text/event-stream"})

    client = _gateway(handler)
    payload = client.build_payload([{"role": "user", "content": "hi"}], stream=True)

    chunks = [chunk async for chunk in client.stream_chat(payload)]

    assert len(chunks) == 2
    assert chunks[0]["choices"][0]["delta"]["content"] == "Hi"
    assert seen[0].headers["X-API-Key"] == "secret-key"
    assert json.loads(seen[0].content)["stream"] is True


@pytest.mark.asyncio
async def test_gateway_stream_http_error_raises_client_error() -> None:
    client = _gateway(lambda request: httpx.Response(502, text="bad gateway"))
    payload = client.build_payload([{"role": "user", "content": "hi"}], stream=True)

    with pytest.raises(AIClientError) as excinfo:
        [chunk async for chunk in client.stream_chat(payload)]

    assert excinfo.value.status_code == 502
    assert "bad gateway" in str(excinfo.value)


@pytest.mark.asyncio
async def test_gateway_complete_returns_wrapped_body() -> None:
    body = {"steps": [{"finishReason": "stop", "content": [{"type": "text", "text": "ok"}]}]}

    def handler(request: httpx.Request) -> httpx.Response:
        assert "stream" not in json.loads(request.content)
        return httpx.Response(200, json=body)

    client = _gateway(handler)

    result = await client.complete_chat(client.build_payload([{"role": "user", "content": "hi"}], stream=True))

    assert result == body


@pytest.mark.asyncio
async def test_gateway_retries_transport_errors() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}]})

    client = _gateway(handler, max_retries=2)

    result = await client.complete_chat(client.build_payload([{"role": "user", "content": "hi"}]))

    assert attempts["count"] == 2
    assert result["choices"][0]["message"]["content"] == "ok"


@pytest.mark.asyncio
async def test_gateway_gives_up_after_max_retries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _gateway(handler, max_retries=2)

    with pytest.raises(AIClientError, match="LLM request failed"):
        await client.complete_chat(client.build_payload([{"role": "user", "content": "hi"}]))


def test_create_chat_client_selects_transport() -> None:
    assert isinstance(create_chat_client(_settings(), kind="gateway"), GatewayClient)
    assert isinstance(create_chat_client(_settings(), kind="openai"), AIClient)
    with pytest.raises(ValueError):
        create_chat_client(_settings(), kind="carrier-pigeon")


class _Chunk:
    def __init__(self, content: str) -> None:
        self._content = content

    def model_dump(self, exclude_none: bool = False) -> dict[str, Any]:
        return {"choices": [{"delta": {"content": self._content}}]}


class _RecordingStream:
    def __init__(self, parts: list[str]) -> None:
        self._parts = parts
        self.closed = False

    async def __aenter__(self) -> "_RecordingStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for part in self._parts:
            yield _Chunk(part)


class _StubOpenAI:
    def __init__(self, stream: _RecordingStream) -> None:
        self.stream = stream
        self.requests: list[dict[str, Any]] = []
        self.close_calls = 0
        self.chat = self
        self.completions = self

    async def create(self, **request: Any) -> _RecordingStream:
        self.requests.append(request)
        return self.stream

    async def close(self) -> None:
        self.close_calls += 1


@pytest.mark.asyncio
async def test_openai_stream_is_closed_when_consumer_stops_early() -> None:
    upstream = _StubOpenAI(_RecordingStream(["Hel", "lo", "!"]))
    client = AIClient(_settings(), client=upstream)

    chunks = client.stream_chat(client.build_payload([{"role": "user", "content": "hi"}], stream=True))
    first = await chunks.__anext__()
    await chunks.aclose()

    assert first == {"choices": [{"delta": {"content": "Hel"}}]}
    assert upstream.requests[0]["stream"] is True
    assert upstream.stream.closed


@pytest.mark.asyncio
async def test_openai_client_aclose_closes_sdk_client() -> None:
    upstream = _StubOpenAI(_RecordingStream([]))
    client = AIClient(_settings(), client=upstream)

    await client.aclose()

    assert upstream.close_calls == 1
