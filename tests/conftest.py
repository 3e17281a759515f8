"""Shared pytest fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from editpilot.ai.intent import infer_intent
from editpilot.ai.orchestration.types import AgentContext, ProjectFile
from editpilot.ai.prompts import build_numbered_content
from editpilot.ai.tools.base import ToolContext


class EventRecorder:
    """Collects ``(event, data)`` pairs emitted during a turn."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def __call__(self, event: str, data: Any) -> None:
        self.events.append((event, data))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> list[Any]:
        return [data for event, data in self.events if event == name]


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def ten_line_document() -> str:
    return "\n".join(f"line {index}" for index in range(1, 11))


@pytest.fixture
def agent_context(ten_line_document: str) -> AgentContext:
    return AgentContext(
        file_content=ten_line_document,
        numbered_content=build_numbered_content(ten_line_document),
        project_files=(
            ProjectFile(path="main.tex", content=ten_line_document),
            ProjectFile(path="references.bib", content="@book{a,\n  title={A}\n}"),
        ),
        current_file_path="main.tex",
    )


@pytest.fixture
def make_tool_context(agent_context: AgentContext, recorder: EventRecorder):
    def factory(prompt: str = "fix the introduction", context: AgentContext | None = None) -> ToolContext:
        return ToolContext(agent_context=context or agent_context, intent=infer_intent(prompt), emit=recorder)

    return factory
