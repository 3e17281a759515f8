"""Agent tools: ``get_context`` and ``propose_edits``."""

from .errors import ToolError
from .line_edits import LineEdit, ValidationResult, validate_edits
from .registry import ToolDispatcher, tool_definitions

__all__ = ["LineEdit", "ToolDispatcher", "ToolError", "ValidationResult", "tool_definitions", "validate_edits"]
