"""Pass-through relay for an upstream agent event stream.

The relay forwards every upstream chunk unchanged and in order. It parses
a copy of the bytes only to observe the events flowing through.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any, Callable, Mapping

import httpx

from .sse import SSEEvent, SSEParser, encode_event

__all__ = ["EventObserver", "log_event", "proxy_agent_stream", "relay_stream"]

LOGGER = logging.getLogger(__name__)

EventObserver = Callable[[SSEEvent], None]


def log_event(event: SSEEvent) -> None:
    """Default observer: log each relayed event name, with tool details."""

    if event.event == "ping":
        return
    if event.event == "tool" and isinstance(event.data, Mapping):
        LOGGER.info(
            "Relayed tool event: %s (count=%s, violations=%s)",
            event.data.get("name"),
            event.data.get("count"),
            event.data.get("violations"),
        )
        return
    if event.event == "edits" and isinstance(event.data, list):
        LOGGER.info("Relayed edits event with %d edit(s)", len(event.data))
        return
    LOGGER.debug("Relayed %s event", event.event)


async def relay_stream(
    source: AsyncIterable[bytes],
    *,
    observer: EventObserver | None = log_event,
) -> AsyncIterator[bytes]:
    """Yield ``source`` chunks verbatim while feeding a parser for observation."""

    parser = SSEParser()
    async for chunk in source:
        yield chunk
        if observer is None:
            continue
        for event in parser.feed(chunk):
            try:
                observer(event)
            except Exception:
                LOGGER.exception("Relay observer failed for %s event", event.event)


async def proxy_agent_stream(
    client: httpx.AsyncClient,
    url: str,
    body: Mapping[str, Any],
    *,
    headers: Mapping[str, str] | None = None,
    observer: EventObserver | None = log_event,
) -> AsyncIterator[bytes]:
    """POST ``body`` to an upstream agent and relay its event stream.

    Upstream HTTP failures are converted into a single ``error`` frame so the
    downstream client sees a well-formed stream.
    """

    async with client.stream("POST", url, json=dict(body), headers=dict(headers or {})) as response:
        if response.status_code >= 400:
            detail = (await response.aread()).decode("utf-8", errors="replace")
            LOGGER.error("Upstream agent returned %s: %s", response.status_code, detail[:500])
            yield encode_event("error", {"message": f"Agent service error ({response.status_code})"})
            return
        async for chunk in relay_stream(response.aiter_bytes(), observer=observer):
            yield chunk
