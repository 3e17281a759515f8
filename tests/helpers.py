"""Shared test helpers and stub classes.

Import from here instead of duplicating model-client stubs in individual
test files.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Sequence


class FakeModelClient:
    """Replays canned responses: chunk lists for streaming, bodies otherwise."""

    def __init__(self, responses: Sequence[Any]) -> None:
        self.responses = list(responses)
        self.payloads: list[dict[str, Any]] = []
        self.closed = False

    def build_payload(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        tools: Iterable[Any] | None = None,
        tool_choice: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        payload = {
            "messages": [dict(message) for message in messages],
            "tools": list(tools or ()),
            "tool_choice": tool_choice,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }
        self.payloads.append(payload)
        return payload

    def _next(self) -> Any:
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def stream_chat(self, payload: Mapping[str, Any]):
        for chunk in self._next():
            yield chunk

    async def complete_chat(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        return self._next()

    async def aclose(self) -> None:
        self.closed = True


def text_chunks(*parts: str, finish_reason: str = "stop") -> list[dict[str, Any]]:
    chunks: list[dict[str, Any]] = [{"choices": [{"delta": {"content": part}}]} for part in parts]
    chunks.append({"choices": [{"delta": {}, "finish_reason": finish_reason}]})
    return chunks


def tool_call_chunks(name: str, arguments: Any, *, call_id: str = "call_1") -> list[dict[str, Any]]:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    split = len(raw) // 2
    return [
        {
            "choices": [
                {"delta": {"tool_calls": [{"index": 0, "id": call_id, "function": {"name": name, "arguments": raw[:split]}}]}}
            ]
        },
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": raw[split:]}}]}}]},
        {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
    ]


def wrapped_body(text: str = "", *, tool_calls=None, finish_reason: str = "stop") -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": text}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {"steps": [{"finishReason": finish_reason, "response": {"body": {"choices": [{"message": message}]}}}]}


