"""Server-sent events: framing, a heartbeat-backed event stream and a chunk parser.

Frames look like::

    event: tool
    data: {"name": "propose_edits", "count": 2}

and are terminated by a blank line. Payloads are JSON; string payloads that
are not JSON are carried verbatim.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Callable

__all__ = [
    "DEFAULT_HEARTBEAT_INTERVAL",
    "EventStream",
    "SSE_HEADERS",
    "SSEEvent",
    "SSEParser",
    "encode_event",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 15.0

SSE_HEADERS: dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_DEFAULT_EVENT = "message"
_FRAME_SEPARATOR = "\n\n"


@dataclass(slots=True, frozen=True)
class SSEEvent:
    """A decoded event: its name and its JSON-decoded (or raw) data."""

    event: str
    data: Any


def encode_event(event: str, data: Any) -> bytes:
    """Serialize one event into its UTF-8 wire frame."""

    payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    lines = [f"event: {event}"]
    lines.extend(f"data: {line}" for line in payload.split("\n"))
    return ("\n".join(lines) + _FRAME_SEPARATOR).encode("utf-8")


class SSEParser:
    """Incremental parser that tolerates arbitrary chunk boundaries.

    Bytes are decoded incrementally, so a multi-byte character split across
    two chunks is reassembled; events are released only once their
    terminating blank line has arrived.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[SSEEvent]:
        """Consume ``chunk`` and return every event it completed."""

        if isinstance(chunk, bytes):
            self._buffer += self._decoder.decode(chunk)
        else:
            self._buffer += chunk
        events: list[SSEEvent] = []
        while True:
            boundary = self._buffer.find(_FRAME_SEPARATOR)
            if boundary < 0:
                break
            frame = self._buffer[:boundary]
            self._buffer = self._buffer[boundary + len(_FRAME_SEPARATOR) :]
            event = _parse_frame(frame)
            if event is not None:
                events.append(event)
        return events

    @property
    def pending(self) -> str:
        """Text received after the last complete event."""
        return self._buffer


def _parse_frame(frame: str) -> SSEEvent | None:
    name = _DEFAULT_EVENT
    data_lines: list[str] = []
    for line in frame.split("\n"):
        if not line or line.startswith(":"):
            continue
        field_name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field_name == "event":
            name = value.strip() or _DEFAULT_EVENT
        elif field_name == "data":
            data_lines.append(value)
    if not data_lines and name == _DEFAULT_EVENT:
        return None
    raw = "\n".join(data_lines)
    try:
        data: Any = json.loads(raw)
    except ValueError:
        data = raw
    return SSEEvent(event=name, data=data)


class EventStream:
    """Queue-backed SSE response body with a periodic ``ping`` heartbeat.

    Producers call :meth:`send` (synchronous, never blocks) and finally
    :meth:`close`. The response writer iterates :meth:`iter_bytes`, which
    runs the heartbeat concurrently and cancels it when the stream ends,
    fails or is abandoned by the client.
    """

    def __init__(
        self,
        *,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._heartbeat_interval = heartbeat_interval
        self._clock = clock
        self._closed = False
        self._heartbeat_task: asyncio.Task[None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: str, data: Any) -> None:
        if self._closed:
            LOGGER.debug("Dropping %s event sent after stream close", event)
            return
        self._queue.put_nowait(encode_event(event, data))

    def __call__(self, event: str, data: Any) -> None:
        self.send(event, data)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        if self._heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat())
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            self._stop_heartbeat()

    async def _heartbeat(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._heartbeat_interval)
            if self._closed:
                break
            self._queue.put_nowait(encode_event("ping", int(self._clock() * 1000)))

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and not task.done():
            task.cancel()
