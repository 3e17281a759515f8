"""Core type definitions for the agent orchestration loop.

All types are frozen; a turn's inputs are shared with tools and
transports as-is.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    "Message",
    "SelectionRange",
    "ProjectFile",
    "AgentContext",
    "TurnConfig",
    "TurnInput",
    "TurnState",
    "TurnOutput",
    "ParsedToolCall",
    "ResponseShape",
    "ModelResponse",
    "CURRENT_FILE_KEY",
]

CURRENT_FILE_KEY = "current"


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message in the turn's conversation log.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        tool_call_id: ID linking a tool result to its call.
        tool_calls: Tool calls made by the assistant.
    """

    role: MessageRole
    content: str
    tool_call_id: str | None = None
    tool_calls: tuple[Mapping[str, Any], ...] | None = None

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls is not None:
            payload["tool_calls"] = list(self.tool_calls)
        return payload  # type: ignore[return-value]

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Sequence[Mapping[str, Any]] | None = None) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


# -----------------------------------------------------------------------------
# Agent Context
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class SelectionRange:
    """Editor selection expressed as an inclusive 1-indexed line range."""

    start_line: int
    end_line: int

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> SelectionRange | None:
        if not isinstance(payload, Mapping):
            return None
        start = payload.get("startLineNumber")
        end = payload.get("endLineNumber")
        if not isinstance(start, int) or not isinstance(end, int):
            return None
        return cls(start_line=start, end_line=end)

    def to_dict(self) -> dict[str, int]:
        return {"startLineNumber": self.start_line, "endLineNumber": self.end_line}


@dataclass(slots=True, frozen=True)
class ProjectFile:
    """A text file of the project, addressed by its project-relative path."""

    path: str
    content: str

    @property
    def line_count(self) -> int:
        return len(self.content.split("\n"))


@dataclass(slots=True, frozen=True)
class AgentContext:
    """Read-only snapshot of the document and project for a single turn.

    Attributes:
        file_content: Live content of the file open in the editor.
        numbered_content: ``file_content`` rendered with line numbers.
        text_from_editor: Selected text, if any.
        selection_range: Line range of the selection.
        project_files: Other project files the tools may read or edit.
        current_file_path: Path of the file open in the editor.
    """

    file_content: str
    numbered_content: str
    text_from_editor: str | None = None
    selection_range: SelectionRange | None = None
    project_files: tuple[ProjectFile, ...] = ()
    current_file_path: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.project_files, tuple):
            object.__setattr__(self, "project_files", tuple(self.project_files))

    def is_current(self, path: str | None) -> bool:
        return not path or path == CURRENT_FILE_KEY or path == self.current_file_path

    def resolve_file(self, path: str | None) -> ProjectFile | None:
        """Return the file addressed by ``path`` (current file when empty)."""

        if self.is_current(path):
            return ProjectFile(path=self.current_file_path or CURRENT_FILE_KEY, content=self.file_content)
        for item in self.project_files:
            if item.path == path:
                return item
        return None

    def available_paths(self) -> list[str]:
        paths = [item.path for item in self.project_files]
        if self.current_file_path and self.current_file_path not in paths:
            paths.insert(0, self.current_file_path)
        return paths


# -----------------------------------------------------------------------------
# Turn Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TurnConfig:
    """Request parameters and limits for one turn.

    Attributes:
        max_iterations: Maximum LLM round-trips before the turn soft-fails.
        max_tokens: Completion token limit sent with every request.
        temperature: Sampling temperature.
        streaming_enabled: Whether to request streamed responses.
        tool_call_delay: Seconds to wait between LLM calls.
    """

    max_iterations: int = 10
    max_tokens: int = 8192
    temperature: float = 0.1
    streaming_enabled: bool = True
    tool_call_delay: float = 0.0


@dataclass(slots=True, frozen=True)
class TurnInput:
    """Everything needed to run one user-message-to-done cycle.

    Attributes:
        prompt: The user's latest message.
        context: Document and project snapshot.
        history: Previous conversation messages (no system messages).
        config: Limits and request parameters.
    """

    prompt: str
    context: AgentContext
    history: tuple[Message, ...] = ()
    config: TurnConfig = field(default_factory=TurnConfig)

    def __post_init__(self) -> None:
        if not isinstance(self.history, tuple):
            object.__setattr__(self, "history", tuple(self.history))


class TurnState(str, enum.Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    TOOL_DISPATCH = "tool_dispatch"
    COMPLETE = "complete"
    ERRORED = "errored"
    ITERATION_EXHAUSTED = "iteration_exhausted"


@dataclass(slots=True, frozen=True)
class TurnOutput:
    """Result of a finished turn.

    Attributes:
        text: Final assistant text.
        edits: Edits accepted by the validator during the turn.
        state: Terminal state of the loop.
        iterations: Number of LLM round-trips performed.
        error: Error message for errored or exhausted turns.
        metadata: Additional diagnostic flags.
    """

    text: str
    edits: tuple[Any, ...] = ()
    state: TurnState = TurnState.COMPLETE
    iterations: int = 0
    error: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.edits, tuple):
            object.__setattr__(self, "edits", tuple(self.edits))

    @property
    def success(self) -> bool:
        return self.state is TurnState.COMPLETE


# -----------------------------------------------------------------------------
# Model Interaction Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParsedToolCall:
    """A tool call requested by the model.

    Attributes:
        call_id: Identifier echoed back in the tool result message.
        name: Name of the tool to call.
        arguments: Arguments as a JSON string.
        index: Position in the tool_calls array.
    """

    call_id: str
    name: str
    arguments: str
    index: int = 0

    def to_chat_param(self) -> dict[str, Any]:
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ResponseShape(str, enum.Enum):
    """Envelope the upstream response arrived in."""

    DIRECT = "direct"
    WRAPPED = "wrapped"
    EMPTY = "empty"


@dataclass(slots=True, frozen=True)
class ModelResponse:
    """Canonical response consumed by the loop, regardless of envelope.

    Attributes:
        text: The text content of the response.
        tool_calls: Parsed tool calls from the response.
        finish_reason: Why the model stopped generating.
        complete: Whether the model considers its answer finished.
        shape: Envelope the response was extracted from.
    """

    text: str
    tool_calls: tuple[ParsedToolCall, ...] = ()
    finish_reason: str | None = None
    complete: bool = False
    shape: ResponseShape = ResponseShape.DIRECT

    def __post_init__(self) -> None:
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    def to_message(self) -> Message:
        """Convert the response to an assistant message for the conversation."""
        tool_calls_data = None
        if self.tool_calls:
            tool_calls_data = tuple(call.to_chat_param() for call in self.tool_calls)
        return Message.assistant(self.text, tool_calls=tool_calls_data)
