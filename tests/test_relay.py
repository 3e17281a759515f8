"""Tests for the pass-through event relay."""

from __future__ import annotations

import logging

import httpx
import pytest

from editpilot.transport.relay import log_event, proxy_agent_stream, relay_stream
from editpilot.transport.sse import SSEEvent, SSEParser, encode_event


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


def _wire() -> bytes:
    return (
        encode_event("status", {"state": "started"})
        + encode_event("tool", {"name": "propose_edits", "count": 1, "violations": 0})
        + encode_event("edits", [{"editType": "delete", "position": {"line": 3}, "originalLineCount": 1}])
        + encode_event("done", {"text": "ok", "edits": []})
    )


@pytest.mark.asyncio
async def test_relay_forwards_chunks_verbatim_and_observes_events() -> None:
    wire = _wire()
    parts = (wire[:7], wire[7:50], wire[50:51], wire[51:])
    observed: list[SSEEvent] = []

    relayed = [chunk async for chunk in relay_stream(_chunks(*parts), observer=observed.append)]

    assert relayed == list(parts)
    assert [event.event for event in observed] == ["status", "tool", "edits", "done"]


@pytest.mark.asyncio
async def test_relay_survives_failing_observer() -> None:
    def explode(event: SSEEvent) -> None:
        raise RuntimeError("observer bug")

    relayed = [chunk async for chunk in relay_stream(_chunks(_wire()), observer=explode)]

    assert b"".join(relayed) == _wire()


def test_log_event_reports_tool_details(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="editpilot.transport.relay")

    log_event(SSEEvent("tool", {"name": "propose_edits", "count": 2, "violations": 1}))
    log_event(SSEEvent("ping", 123))

    assert "propose_edits (count=2, violations=1)" in caplog.text
    assert "ping" not in caplog.text


@pytest.mark.asyncio
async def test_proxy_agent_stream_relays_upstream_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=_wire(), headers={"Content-Type": "text/event-stream"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        body = b"".join(
            [chunk async for chunk in proxy_agent_stream(client, "http://agent.test/agent", {"messages": []}, observer=None)]
        )

    assert body == _wire()
    assert seen[0].method == "POST"


@pytest.mark.asyncio
async def test_proxy_agent_stream_converts_upstream_failure_to_error_event() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal error")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        body = b"".join([chunk async for chunk in proxy_agent_stream(client, "http://agent.test/agent", {})])

    events = SSEParser().feed(body)
    assert events == [SSEEvent("error", {"message": "Agent service error (500)"})]
