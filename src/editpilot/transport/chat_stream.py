"""Client-side consumer for the agent event stream.

:class:`StreamDispatcher` turns parsed events into callbacks and keeps the
assistant text consistent; :class:`ChatStreamClient` owns the HTTP request
and its cancellation.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

import httpx

from ..ai.prompts import normalize_line_endings
from .sse import SSEEvent, SSEParser

__all__ = [
    "ChatStreamClient",
    "StreamCallbacks",
    "StreamDispatcher",
    "build_agent_request",
    "is_binary_path",
]

LOGGER = logging.getLogger(__name__)

_BINARY_PATH_RE = re.compile(
    r"\.(png|jpg|jpeg|gif|bmp|svg|ico|webp|eps|ps|ai|pdf|zip|tar|gz|exe|dll|so|dylib)$",
    re.IGNORECASE,
)


def is_binary_path(path: str) -> bool:
    return bool(_BINARY_PATH_RE.search(path))


def build_agent_request(
    messages: Sequence[Mapping[str, Any]],
    file_content: str,
    *,
    text_from_editor: str | None = None,
    selection_range: Mapping[str, Any] | None = None,
    project_files: Sequence[Mapping[str, str]] = (),
    current_file_path: str | None = None,
) -> dict[str, Any]:
    """Build the POST body for the agent endpoint, leaving out image and binary files."""

    text_files = [
        {"path": item["path"], "content": item["content"]}
        for item in project_files
        if isinstance(item.get("path"), str) and not is_binary_path(item["path"])
    ]
    return {
        "messages": [dict(message) for message in messages],
        "fileContent": file_content,
        "textFromEditor": text_from_editor,
        "selectionRange": dict(selection_range) if selection_range else None,
        "projectFiles": text_files,
        "currentFilePath": current_file_path,
    }


@dataclass(slots=True)
class StreamCallbacks:
    """Hooks invoked while a response streams in. All are optional."""

    on_text_update: Callable[[str], None] | None = None
    on_edits: Callable[[list[Any]], None] | None = None
    on_tool_call: Callable[[str, int | None, Any, int | None], None] | None = None
    on_error: Callable[[str], None] | None = None
    on_status: Callable[[str], None] | None = None
    on_cancelled: Callable[[], None] | None = None


class StreamDispatcher:
    """Routes stream events to :class:`StreamCallbacks`.

    ``assistant_partial`` deltas are appended. Events carrying the full text
    (``assistant_message``, ``result``, ``done``) append only the missing
    suffix when they extend the text seen so far and replace it otherwise.
    Edits repeated in ``result``/``done`` are forwarded only past the prefix
    already delivered by ``edits`` events.
    """

    def __init__(self, callbacks: StreamCallbacks) -> None:
        self._callbacks = callbacks
        self._parser = SSEParser()
        self._text = ""
        self._delivered_edits = 0
        self._closed = False

    @property
    def text(self) -> str:
        return self._text

    @property
    def callbacks(self) -> StreamCallbacks:
        return self._callbacks

    def close(self) -> None:
        """Stop forwarding events and drop the partially received text."""
        self._closed = True
        self._text = ""

    def feed(self, chunk: bytes | str) -> None:
        for event in self._parser.feed(chunk):
            if self._closed:
                return
            self.dispatch(event)

    def dispatch(self, event: SSEEvent) -> None:
        payload = event.data
        name = event.event
        if name == "assistant_partial":
            text = _payload_text(payload)
            if text:
                self._set_text(self._text + text)
        elif name == "assistant_message":
            text = _payload_text(payload)
            if text:
                self._apply_full_text(text)
        elif name == "edits":
            if isinstance(payload, list):
                self._deliver_edits(payload)
        elif name == "status":
            if isinstance(payload, Mapping) and payload.get("state") and self._callbacks.on_status:
                self._callbacks.on_status(str(payload["state"]))
        elif name == "tool":
            self._dispatch_tool(payload)
        elif name == "error":
            message = payload.get("message") if isinstance(payload, Mapping) else None
            if self._callbacks.on_error:
                self._callbacks.on_error(str(message) if message else "An error occurred")
        elif name in ("result", "done"):
            text = _payload_text(payload)
            if text:
                self._apply_full_text(text)
            edits = payload.get("edits") if isinstance(payload, Mapping) else None
            if isinstance(edits, list) and len(edits) > self._delivered_edits:
                self._deliver_edits(edits[self._delivered_edits :])

    def _dispatch_tool(self, payload: Any) -> None:
        if self._callbacks.on_tool_call is None:
            return
        data = payload if isinstance(payload, Mapping) else {}
        name = str(data.get("name") or "tool")
        count = data.get("count") if isinstance(data.get("count"), int) else None
        progress = data.get("progress") if isinstance(data.get("progress"), int) else None
        self._callbacks.on_tool_call(name, count, data.get("violations"), progress)

    def _deliver_edits(self, edits: list[Any]) -> None:
        if not edits:
            return
        self._delivered_edits += len(edits)
        if self._callbacks.on_edits:
            self._callbacks.on_edits(list(edits))

    def _apply_full_text(self, text: str) -> None:
        if text.startswith(self._text):
            if len(text) > len(self._text):
                self._set_text(text)
            return
        self._set_text(text)

    def _set_text(self, text: str) -> None:
        self._text = text
        if self._callbacks.on_text_update:
            self._callbacks.on_text_update(text)


def _payload_text(payload: Any) -> str:
    if isinstance(payload, Mapping) and isinstance(payload.get("text"), str):
        return normalize_line_endings(payload["text"])
    return ""


class ChatStreamClient:
    """Posts agent requests and feeds the response stream to callbacks.

    Only one request is in flight at a time: starting a new one or calling
    :meth:`stop` cancels the previous request. A stopped request returns
    ``None`` and is not reported as an error.
    """

    def __init__(self, url: str, *, http_client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=None))
        self._task: asyncio.Task[str] | None = None
        self._stopped: set[asyncio.Task[str]] = set()

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, body: Mapping[str, Any], callbacks: StreamCallbacks) -> str | None:
        """Stream one agent turn; return the final assistant text, or ``None`` if stopped."""

        self.stop()
        dispatcher = StreamDispatcher(callbacks)
        task = asyncio.create_task(self._consume(body, dispatcher))
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            if task not in self._stopped:
                raise
            self._stopped.discard(task)
            dispatcher.close()
            LOGGER.debug("Agent stream stopped by user")
            if callbacks.on_cancelled:
                callbacks.on_cancelled()
            return None
        finally:
            if self._task is task:
                self._task = None

    def stop(self) -> None:
        """Cancel the in-flight request, if any."""

        task = self._task
        if task is None or task.done():
            return
        self._stopped.add(task)
        task.cancel()

    async def _consume(self, body: Mapping[str, Any], dispatcher: StreamDispatcher) -> str:
        callbacks = dispatcher.callbacks
        try:
            async with self._http.stream(
                "POST", self._url, json=dict(body), headers={"Accept": "text/event-stream"}
            ) as response:
                if response.status_code >= 400:
                    detail = (await response.aread()).decode("utf-8", errors="replace")
                    LOGGER.warning("Agent request failed (%s): %s", response.status_code, detail[:500])
                    if callbacks.on_error:
                        callbacks.on_error(f"Agent request failed ({response.status_code})")
                    return dispatcher.text
                async for chunk in response.aiter_bytes():
                    dispatcher.feed(chunk)
        except httpx.HTTPError as exc:
            LOGGER.warning("Agent stream failed: %s", exc)
            if callbacks.on_error:
                callbacks.on_error(f"Connection to agent failed: {exc}")
        return dispatcher.text

    async def aclose(self) -> None:
        self.stop()
        if self._owns_client:
            await self._http.aclose()
