"""Base classes shared by the agent tools.

Tools run synchronously against a per-turn :class:`ToolContext` and never
touch the network. Failures raised as :class:`ToolError` become structured
JSON results the model can read.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Protocol

from ..intent import IntentResult
from ..orchestration.types import AgentContext
from .errors import ErrorCode, ToolError
from .line_edits import LineEdit

__all__ = ["BaseTool", "EventSink", "ToolContext", "ToolResult"]

LOGGER = logging.getLogger(__name__)


class EventSink(Protocol):
    """Receives protocol events (``tool``, ``edits``, ...) emitted during a turn."""

    def __call__(self, event: str, data: Any) -> None:
        ...


def _discard_event(event: str, data: Any) -> None:
    del event, data


@dataclass(slots=True)
class ToolContext:
    """Per-turn state handed to every tool call.

    Attributes:
        agent_context: Document and project snapshot for the turn.
        intent: Permission flags derived from the user's message.
        emit: Sink for protocol events.
        collected_edits: Edits accepted so far in this turn, in order.
    """

    agent_context: AgentContext
    intent: IntentResult
    emit: EventSink = _discard_event
    collected_edits: list[LineEdit] = field(default_factory=list)


@dataclass(slots=True)
class ToolResult:
    """Outcome of a single tool execution.

    Attributes:
        success: Whether the tool completed successfully.
        data: A summary string or a JSON-serializable mapping.
        error: Error details if unsuccessful.
        duration_ms: Execution time in milliseconds.
    """

    success: bool
    data: str | Mapping[str, Any] | None = None
    error: ToolError | None = None
    duration_ms: float = 0.0

    @property
    def content(self) -> str:
        """Return the text fed back to the model as the tool message."""
        if not self.success:
            if self.error is None:
                return json.dumps({"error": "Unknown error", "code": ErrorCode.INTERNAL_ERROR})
            return self.error.to_json()
        if isinstance(self.data, str):
            return self.data
        return json.dumps(dict(self.data or {}), ensure_ascii=False)


class BaseTool(ABC):
    """Abstract base class for the agent tools.

    Subclasses set ``name`` and implement :meth:`execute`.
    """

    name: ClassVar[str] = ""

    def run(self, context: ToolContext, params: Mapping[str, Any] | None = None) -> ToolResult:
        """Execute the tool, converting failures into an error result."""

        start_time = time.perf_counter()
        params = dict(params) if params else {}
        try:
            data = self.execute(context, params)
        except ToolError as exc:
            LOGGER.debug("Tool %s returned error: %s", self.name, exc)
            return ToolResult(success=False, error=exc, duration_ms=_elapsed_ms(start_time))
        except Exception as exc:
            LOGGER.exception("Tool %s failed unexpectedly", self.name)
            error = ToolError(error_code=ErrorCode.INTERNAL_ERROR, message=f"Internal error: {exc}")
            return ToolResult(success=False, error=error, duration_ms=_elapsed_ms(start_time))
        return ToolResult(success=True, data=data, duration_ms=_elapsed_ms(start_time))

    @abstractmethod
    def execute(self, context: ToolContext, params: dict[str, Any]) -> str | Mapping[str, Any]:
        """Perform the tool's work.

        Raises:
            ToolError: For expected error conditions.
        """


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000.0
