"""The ``get_context`` tool: numbered file content plus a project manifest."""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from ..prompts import build_numbered_content
from .base import BaseTool, ToolContext
from .errors import FileNotFoundToolError

__all__ = ["GetContextTool"]

LOGGER = logging.getLogger(__name__)


class GetContextTool(BaseTool):
    """Return the numbered content of a project file.

    Parameters:
        filePath: File to read; defaults to the file open in the editor.
        includeNumbered: Include the numbered content (default true).
        includeSelection: Include the editor selection, current file only (default true).
    """

    name: ClassVar[str] = "get_context"

    def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        agent_context = context.agent_context
        requested = params.get("filePath")
        file_path = requested if isinstance(requested, str) and requested else None
        include_numbered = params.get("includeNumbered") is not False
        include_selection = params.get("includeSelection") is not False

        target = agent_context.resolve_file(file_path)
        if target is None:
            LOGGER.info("get_context requested unknown file %s", file_path)
            context.emit("tool", {"name": self.name, "error": "file_not_found", "requestedPath": file_path})
            raise FileNotFoundToolError(requested_path=file_path or "", available_paths=agent_context.available_paths())

        is_current = agent_context.is_current(file_path)
        payload: dict[str, Any] = {"filePath": target.path, "lineCount": target.line_count}
        if include_numbered:
            payload["numberedContent"] = (
                agent_context.numbered_content if is_current else build_numbered_content(target.content)
            )
        if include_selection and is_current and agent_context.text_from_editor:
            payload["selection"] = agent_context.text_from_editor
            if agent_context.selection_range is not None:
                payload["selectionRange"] = agent_context.selection_range.to_dict()

        payload["projectFiles"] = [
            {
                "path": item.path,
                "lineCount": item.line_count,
                "size": len(item.content),
                "isCurrent": item.path == agent_context.current_file_path,
            }
            for item in agent_context.project_files
        ]
        payload["currentFilePath"] = agent_context.current_file_path

        context.emit("tool", {"name": self.name, "filePath": target.path})
        return payload
