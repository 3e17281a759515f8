"""Tests for the client-side stream consumer."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from editpilot.transport.chat_stream import (
    ChatStreamClient,
    StreamCallbacks,
    StreamDispatcher,
    build_agent_request,
    is_binary_path,
)
from editpilot.transport.sse import SSEEvent, encode_event


class CallbackLog:
    def __init__(self) -> None:
        self.texts: list[str] = []
        self.edits: list[list[Any]] = []
        self.tools: list[tuple[str, Any, Any, Any]] = []
        self.errors: list[str] = []
        self.statuses: list[str] = []
        self.cancelled = 0

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_text_update=self.texts.append,
            on_edits=self.edits.append,
            on_tool_call=lambda name, count, violations, progress: self.tools.append(
                (name, count, violations, progress)
            ),
            on_error=self.errors.append,
            on_status=self.statuses.append,
            on_cancelled=self._on_cancelled,
        )

    def _on_cancelled(self) -> None:
        self.cancelled += 1


def _edit(line: int) -> dict[str, Any]:
    return {"editType": "delete", "position": {"line": line}, "originalLineCount": 1}


# =============================================================================
# Request body
# =============================================================================


@pytest.mark.parametrize(
    ("path", "binary"),
    [("figures/plot.PNG", True), ("paper.pdf", True), ("main.tex", False), ("refs.bib", False)],
)
def test_is_binary_path(path: str, binary: bool) -> None:
    assert is_binary_path(path) is binary


def test_build_agent_request_filters_binary_files() -> None:
    body = build_agent_request(
        [{"role": "user", "content": "fix it"}],
        "\\documentclass{article}",
        selection_range={"startLineNumber": 1, "endLineNumber": 1},
        project_files=[
            {"path": "main.tex", "content": "x"},
            {"path": "logo.png", "content": "binary"},
        ],
        current_file_path="main.tex",
    )

    assert body["fileContent"] == "\\documentclass{article}"
    assert body["projectFiles"] == [{"path": "main.tex", "content": "x"}]
    assert body["selectionRange"] == {"startLineNumber": 1, "endLineNumber": 1}
    assert body["currentFilePath"] == "main.tex"
    assert body["textFromEditor"] is None


# =============================================================================
# Dispatcher
# =============================================================================


def test_partial_text_is_appended_and_done_text_not_duplicated() -> None:
    log = CallbackLog()
    dispatcher = StreamDispatcher(log.callbacks())

    dispatcher.dispatch(SSEEvent("assistant_partial", {"text": "Hello"}))
    dispatcher.dispatch(SSEEvent("assistant_partial", {"text": " world"}))
    dispatcher.dispatch(SSEEvent("done", {"text": "Hello world", "edits": []}))

    assert dispatcher.text == "Hello world"
    assert log.texts == ["Hello", "Hello world"]


def test_full_text_extending_current_text_appends_suffix() -> None:
    log = CallbackLog()
    dispatcher = StreamDispatcher(log.callbacks())

    dispatcher.dispatch(SSEEvent("assistant_partial", {"text": "Hel"}))
    dispatcher.dispatch(SSEEvent("result", {"text": "Hello"}))

    assert dispatcher.text == "Hello"


def test_divergent_full_text_replaces_current_text() -> None:
    log = CallbackLog()
    dispatcher = StreamDispatcher(log.callbacks())

    dispatcher.dispatch(SSEEvent("assistant_partial", {"text": "Draft"}))
    dispatcher.dispatch(SSEEvent("assistant_message", {"text": "Final answer"}))

    assert dispatcher.text == "Final answer"


def test_done_forwards_only_undelivered_edits() -> None:
    log = CallbackLog()
    dispatcher = StreamDispatcher(log.callbacks())

    dispatcher.dispatch(SSEEvent("edits", [_edit(1), _edit(2)]))
    dispatcher.dispatch(SSEEvent("done", {"text": "", "edits": [_edit(1), _edit(2), _edit(5)]}))

    assert log.edits == [[_edit(1), _edit(2)], [_edit(5)]]


def test_done_with_already_delivered_edits_is_silent() -> None:
    log = CallbackLog()
    dispatcher = StreamDispatcher(log.callbacks())

    dispatcher.dispatch(SSEEvent("edits", [_edit(1)]))
    dispatcher.dispatch(SSEEvent("done", {"text": "", "edits": [_edit(1)]}))

    assert log.edits == [[_edit(1)]]


def test_tool_status_and_error_events() -> None:
    log = CallbackLog()
    dispatcher = StreamDispatcher(log.callbacks())

    dispatcher.dispatch(SSEEvent("status", {"state": "started"}))
    dispatcher.dispatch(SSEEvent("tool", {"name": "propose_edits", "count": 2, "violations": 1}))
    dispatcher.dispatch(SSEEvent("tool", {"name": "propose_edits", "progress": 1}))
    dispatcher.dispatch(SSEEvent("error", {"message": "Agent reached maximum iteration limit"}))
    dispatcher.dispatch(SSEEvent("error", {}))

    assert log.statuses == ["started"]
    assert log.tools == [("propose_edits", 2, 1, None), ("propose_edits", None, None, 1)]
    assert log.errors == ["Agent reached maximum iteration limit", "An error occurred"]


def test_feed_normalizes_line_endings_and_ignores_pings() -> None:
    log = CallbackLog()
    dispatcher = StreamDispatcher(log.callbacks())

    dispatcher.feed(encode_event("ping", 1000))
    dispatcher.feed(encode_event("assistant_partial", {"text": "a\r\nb"}))

    assert dispatcher.text == "a\nb"


def test_closed_dispatcher_drops_events() -> None:
    log = CallbackLog()
    dispatcher = StreamDispatcher(log.callbacks())

    dispatcher.feed(encode_event("assistant_partial", {"text": "partial"}))
    dispatcher.close()
    dispatcher.feed(encode_event("assistant_partial", {"text": " more"}))

    assert dispatcher.text == ""
    assert log.texts == ["partial"]


# =============================================================================
# Client
# =============================================================================


def _client(handler) -> ChatStreamClient:
    return ChatStreamClient(
        "http://agent.test/agent", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


@pytest.mark.asyncio
async def test_run_streams_events_to_callbacks() -> None:
    wire = (
        encode_event("status", {"state": "started"})
        + encode_event("assistant_partial", {"text": "Removed "})
        + encode_event("edits", [_edit(3)])
        + encode_event("assistant_partial", {"text": "line 3."})
        + encode_event("done", {"text": "Removed line 3.", "edits": [_edit(3)]})
    )
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=wire, headers={"Content-Type": "text/event-stream"})

    log = CallbackLog()
    client = _client(handler)

    text = await client.run(build_agent_request([{"role": "user", "content": "x"}], "a"), log.callbacks())

    assert text == "Removed line 3."
    assert log.edits == [[_edit(3)]]
    assert log.errors == []
    assert requests[0].headers["Accept"] == "text/event-stream"
    assert not client.active


@pytest.mark.asyncio
async def test_run_reports_http_failure() -> None:
    log = CallbackLog()
    client = _client(lambda request: httpx.Response(503, json={"error": "LLM service is not configured"}))

    text = await client.run({"messages": []}, log.callbacks())

    assert text == ""
    assert log.errors == ["Agent request failed (503)"]


@pytest.mark.asyncio
async def test_run_reports_connection_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    log = CallbackLog()

    await _client(handler).run({"messages": []}, log.callbacks())

    assert len(log.errors) == 1
    assert log.errors[0].startswith("Connection to agent failed:")


@pytest.mark.asyncio
async def test_stop_cancels_request_without_error() -> None:
    gate = asyncio.Event()

    async def body():
        yield encode_event("assistant_partial", {"text": "partial"})
        await gate.wait()
        yield encode_event("done", {"text": "never", "edits": []})

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body())

    log = CallbackLog()
    client = _client(handler)
    run = asyncio.create_task(client.run({"messages": []}, log.callbacks()))

    for _ in range(200):
        if log.texts:
            break
        await asyncio.sleep(0.01)
    assert client.active
    client.stop()
    result = await run

    assert result is None
    assert log.cancelled == 1
    assert log.errors == []
    assert not client.active
