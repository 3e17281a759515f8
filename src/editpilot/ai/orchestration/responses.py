"""Normalization of upstream chat responses into :class:`ModelResponse`.

Two envelopes reach the loop. The direct shape is a regular chat
completion (``choices[0].message``); the wrapped shape comes from agent
gateways and nests the completion inside ``steps[0].response.body``.
Every field is read from the direct shape first and falls back to the
wrapped one, and this happens exactly once per response.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .types import ModelResponse, ParsedToolCall, ResponseShape

__all__ = [
    "COMPLETE_FINISH_REASONS",
    "StreamAccumulator",
    "normalize_response",
]

LOGGER = logging.getLogger(__name__)

COMPLETE_FINISH_REASONS = frozenset({"stop", "length"})


def normalize_response(raw: Mapping[str, Any] | None) -> ModelResponse:
    """Convert a raw response body of either envelope into a ModelResponse."""

    if not isinstance(raw, Mapping):
        return ModelResponse(text="", complete=True, shape=ResponseShape.EMPTY)

    direct = _direct_message(raw)
    step = _wrapped_step(raw)
    wrapped = _wrapped_message(step)

    direct_text = _as_text(direct.get("content")) if direct else ""
    direct_calls = direct.get("tool_calls") if direct else None
    direct_finish = _direct_choice(raw).get("finish_reason") if direct is not None else None

    text = direct_text or _wrapped_text(step, wrapped)
    raw_calls = direct_calls if direct_calls else (wrapped.get("tool_calls") if wrapped else None)
    tool_calls = _parse_tool_calls(raw_calls)

    if direct_finish:
        finish_reason: str | None = str(direct_finish)
        complete = finish_reason in COMPLETE_FINISH_REASONS
    elif step is not None:
        finish_reason = _wrapped_finish_reason(step)
        complete = finish_reason in COMPLETE_FINISH_REASONS
    else:
        finish_reason = None
        complete = True

    if direct is not None and (direct_text or direct_calls or direct_finish):
        shape = ResponseShape.DIRECT
    elif step is not None:
        shape = ResponseShape.WRAPPED
    elif direct is not None:
        shape = ResponseShape.DIRECT
    else:
        shape = ResponseShape.EMPTY

    return ModelResponse(
        text=text,
        tool_calls=tool_calls,
        finish_reason=finish_reason,
        complete=complete,
        shape=shape,
    )


# -----------------------------------------------------------------------------
# Streaming
# -----------------------------------------------------------------------------


@dataclass
class _ToolCallFragment:
    call_id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class StreamAccumulator:
    """Accumulates streamed chunks into a single raw response body.

    Direct-shape deltas are merged by tool-call index; a chunk carrying
    ``steps`` replaces everything seen so far with the wrapped envelope.
    """

    text: str = ""
    finish_reason: str | None = None
    chunk_count: int = 0
    _tool_calls: dict[int, _ToolCallFragment] = field(default_factory=dict)
    _wrapped: Mapping[str, Any] | None = None

    def feed(self, chunk: Mapping[str, Any]) -> str:
        """Merge ``chunk`` and return the text delta it carried."""

        if not isinstance(chunk, Mapping):
            LOGGER.debug("Skipping non-object stream chunk: %r", chunk)
            return ""
        self.chunk_count += 1

        if chunk.get("steps"):
            self._wrapped = chunk
            step = _wrapped_step(chunk)
            text = _wrapped_text(step, _wrapped_message(step))
            delta = text[len(self.text) :] if text.startswith(self.text) else ""
            self.text = text
            return delta

        choices = chunk.get("choices")
        if not isinstance(choices, Sequence) or not choices or not isinstance(choices[0], Mapping):
            return ""
        choice = choices[0]
        reason = choice.get("finish_reason")
        if reason:
            self.finish_reason = str(reason)
        delta = choice.get("delta")
        if not isinstance(delta, Mapping):
            return ""

        for raw_call in delta.get("tool_calls") or ():
            self._merge_tool_call(raw_call)

        content = delta.get("content")
        if isinstance(content, str) and content:
            self.text += content
            return content
        return ""

    def result(self) -> Mapping[str, Any]:
        """Return the accumulated response as a raw body for :func:`normalize_response`."""

        if self._wrapped is not None:
            return self._wrapped
        message: dict[str, Any] = {"role": "assistant", "content": self.text}
        if self._tool_calls:
            message["tool_calls"] = [
                {
                    "id": fragment.call_id,
                    "type": "function",
                    "function": {"name": fragment.name, "arguments": fragment.arguments},
                }
                for _, fragment in sorted(self._tool_calls.items())
            ]
        return {"choices": [{"message": message, "finish_reason": self.finish_reason}]}

    def _merge_tool_call(self, raw_call: Any) -> None:
        if not isinstance(raw_call, Mapping):
            return
        index = raw_call.get("index")
        if not isinstance(index, int):
            index = len(self._tool_calls)
        fragment = self._tool_calls.setdefault(index, _ToolCallFragment())
        call_id = raw_call.get("id")
        if call_id and not fragment.call_id:
            fragment.call_id = str(call_id)
        function = raw_call.get("function")
        if isinstance(function, Mapping):
            fragment.name += function.get("name") or ""
            fragment.arguments += function.get("arguments") or ""


# -----------------------------------------------------------------------------
# Envelope helpers
# -----------------------------------------------------------------------------


def _direct_choice(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    choices = raw.get("choices")
    if isinstance(choices, Sequence) and choices and isinstance(choices[0], Mapping):
        return choices[0]
    return {}


def _direct_message(raw: Mapping[str, Any]) -> Mapping[str, Any] | None:
    message = _direct_choice(raw).get("message")
    return message if isinstance(message, Mapping) else None


def _wrapped_step(raw: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if not isinstance(raw, Mapping):
        return None
    steps = raw.get("steps")
    if isinstance(steps, Sequence) and steps and isinstance(steps[0], Mapping):
        return steps[0]
    return None


def _wrapped_body(step: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if step is None:
        return {}
    response = step.get("response")
    body = response.get("body") if isinstance(response, Mapping) else None
    return body if isinstance(body, Mapping) else {}


def _wrapped_message(step: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    message = _direct_choice(_wrapped_body(step)).get("message")
    return message if isinstance(message, Mapping) else None


def _wrapped_text(step: Mapping[str, Any] | None, message: Mapping[str, Any] | None) -> str:
    if step is not None:
        parts = step.get("content")
        if isinstance(parts, Sequence) and not isinstance(parts, str):
            texts = [
                part["text"]
                for part in parts
                if isinstance(part, Mapping) and part.get("type") == "text" and isinstance(part.get("text"), str)
            ]
            if texts:
                return "".join(texts)
    if message is not None:
        return _as_text(message.get("content"))
    return ""


def _wrapped_finish_reason(step: Mapping[str, Any]) -> str | None:
    reason = step.get("finishReason")
    if reason:
        return str(reason)
    inner = _direct_choice(_wrapped_body(step)).get("finish_reason")
    return str(inner) if inner else None


def _as_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, Sequence):
        return "".join(
            part.get("text", "") for part in content if isinstance(part, Mapping) and isinstance(part.get("text"), str)
        )
    return ""


def _parse_tool_calls(raw_calls: Any) -> tuple[ParsedToolCall, ...]:
    if not isinstance(raw_calls, Sequence) or isinstance(raw_calls, str):
        return ()
    parsed: list[ParsedToolCall] = []
    for index, raw_call in enumerate(raw_calls):
        if not isinstance(raw_call, Mapping):
            continue
        function = raw_call.get("function")
        if not isinstance(function, Mapping):
            continue
        name = function.get("name")
        if not name:
            LOGGER.warning("Dropping tool call without a function name at index %d", index)
            continue
        arguments = function.get("arguments")
        if not isinstance(arguments, str):
            arguments = "{}" if arguments is None else _dump_arguments(arguments)
        call_id = raw_call.get("id") or f"call_{index}_{uuid.uuid4().hex[:8]}"
        parsed.append(ParsedToolCall(call_id=str(call_id), name=str(name), arguments=arguments, index=index))
    return tuple(parsed)


def _dump_arguments(arguments: Any) -> str:
    try:
        return json.dumps(arguments)
    except (TypeError, ValueError):
        return "{}"
