"""Tool schemas exposed to the model and the dispatcher that runs them."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from openai.types.chat import ChatCompletionToolParam

from .base import BaseTool, ToolContext
from .errors import UnknownToolError
from .get_context import GetContextTool
from .propose_edits import ProposeEditsTool

__all__ = ["GET_CONTEXT_SCHEMA", "PROPOSE_EDITS_SCHEMA", "ToolDispatcher", "tool_definitions"]

LOGGER = logging.getLogger(__name__)

_PATH_HINT = 'Use paths from the project structure (e.g. "references.bib", "sections/introduction.tex").'

GET_CONTEXT_SCHEMA: ChatCompletionToolParam = {
    "type": "function",
    "function": {
        "name": GetContextTool.name,
        "description": (
            "Retrieve a LaTeX file with numbered lines. Returns the current file unless "
            "filePath names another project file."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "filePath": {
                    "type": "string",
                    "description": f"Optional path of the file to read. {_PATH_HINT}",
                },
                "includeNumbered": {
                    "type": "boolean",
                    "description": "Include the full document with line numbers. Defaults to true.",
                },
                "includeSelection": {
                    "type": "boolean",
                    "description": "Include the user's selected text (current file only). Defaults to true.",
                },
            },
            "required": [],
        },
    },
}

PROPOSE_EDITS_SCHEMA: ChatCompletionToolParam = {
    "type": "function",
    "function": {
        "name": ProposeEditsTool.name,
        "description": (
            "Propose line-based edits (insert, delete or replace) to LaTeX files. Each edit may "
            "name its own file; otherwise the top-level filePath or the current file is used. "
            "The user reviews and accepts or rejects every edit."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "filePath": {
                    "type": "string",
                    "description": f"Optional default file for all edits. {_PATH_HINT}",
                },
                "edits": {
                    "type": "array",
                    "description": "Edit operations to propose",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "properties": {
                            "filePath": {
                                "type": "string",
                                "description": f"Optional file for this edit. {_PATH_HINT}",
                            },
                            "editType": {
                                "type": "string",
                                "enum": ["insert", "delete", "replace"],
                                "description": "The type of edit operation",
                            },
                            "content": {
                                "type": "string",
                                "description": "New content (required for insert and replace)",
                            },
                            "position": {
                                "type": "object",
                                "properties": {
                                    "line": {
                                        "type": "integer",
                                        "minimum": 1,
                                        "description": "Line number (1-indexed)",
                                    },
                                },
                                "required": ["line"],
                            },
                            "originalLineCount": {
                                "type": "integer",
                                "minimum": 0,
                                "description": "Lines affected by delete or replace. Defaults to 1.",
                            },
                            "explanation": {
                                "type": "string",
                                "description": "Why this edit is being made",
                            },
                        },
                        "required": ["editType", "position"],
                    },
                },
            },
            "required": ["edits"],
        },
    },
}


def tool_definitions() -> list[ChatCompletionToolParam]:
    return [GET_CONTEXT_SCHEMA, PROPOSE_EDITS_SCHEMA]


class ToolDispatcher:
    """Runs tool calls for one turn against its :class:`ToolContext`.

    Unknown tool names produce a structured error result instead of an
    exception so the model can correct itself.
    """

    def __init__(self, context: ToolContext, tools: Sequence[BaseTool] | None = None) -> None:
        self._context = context
        registered = tools if tools is not None else (GetContextTool(), ProposeEditsTool())
        self._tools: dict[str, BaseTool] = {tool.name: tool for tool in registered}

    @property
    def context(self) -> ToolContext:
        return self._context

    @property
    def tool_names(self) -> tuple[str, ...]:
        return tuple(self._tools)

    async def execute(self, name: str, arguments: Mapping[str, Any], *, call_id: str) -> str:
        """Run ``name`` with ``arguments`` and return the tool message content."""

        tool = self._tools.get(name)
        if tool is None:
            LOGGER.warning("Model requested unknown tool %s (call %s)", name, call_id)
            return UnknownToolError(tool_name=name, available_tools=self.tool_names).to_json()

        LOGGER.debug("Dispatching tool %s (call %s)", name, call_id)
        result = tool.run(self._context, arguments)
        if not result.success:
            LOGGER.debug("Tool %s failed in %.1fms: %s", name, result.duration_ms, result.error)
        return result.content
