"""Error types raised and serialized by the agent tools.

Tools recover from these locally: the executor converts them into JSON
tool results so the model can read the failure and correct itself.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Sequence

__all__ = [
    "ErrorCode",
    "ToolError",
    "FileNotFoundToolError",
    "NoEditsProvidedError",
    "UnknownToolError",
    "InvalidArgumentsError",
    "InvalidEditError",
]


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Machine-readable identifiers used in tool error payloads."""

    FILE_NOT_FOUND = "file_not_found"
    NO_EDITS = "no_edits"
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENTS = "invalid_arguments"
    INVALID_EDIT = "invalid_edit"
    INTERNAL_ERROR = "internal_error"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class ToolError(Exception):
    """Base class for tool failures with a stable JSON shape.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable description, shown to the model.
        details: Additional structured information.
        suggestion: Guidance the model can follow to recover.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON tool results."""
        result: dict[str, Any] = {
            "error": self.message,
            "code": self.error_code,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Concrete Errors
# -----------------------------------------------------------------------------

@dataclass
class FileNotFoundToolError(ToolError):
    """Raised when a tool references a file that is not part of the project."""

    error_code: str = field(default=ErrorCode.FILE_NOT_FOUND)
    message: str = field(default="File not found")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Use one of the available paths")

    requested_path: str = ""
    available_paths: Sequence[str] = ()

    def __post_init__(self) -> None:
        if self.requested_path and self.message == "File not found":
            self.message = f"File not found: {self.requested_path}"
        super().__post_init__()

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["availablePaths"] = list(self.available_paths)
        return result


@dataclass
class NoEditsProvidedError(ToolError):
    """Raised when propose_edits is called without any edits."""

    error_code: str = field(default=ErrorCode.NO_EDITS)
    message: str = field(default="No edits provided")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Pass at least one edit in the 'edits' array")


@dataclass
class UnknownToolError(ToolError):
    """Raised when the model calls a tool that is not registered."""

    error_code: str = field(default=ErrorCode.UNKNOWN_TOOL)
    message: str = field(default="Unknown tool")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    tool_name: str = ""
    available_tools: Sequence[str] = ()

    def __post_init__(self) -> None:
        if self.tool_name and self.message == "Unknown tool":
            self.message = f"Unknown tool: {self.tool_name}"
        if self.available_tools and not self.suggestion:
            self.suggestion = "Available tools: " + ", ".join(self.available_tools)
        super().__post_init__()


@dataclass
class InvalidArgumentsError(ToolError):
    """Raised when tool arguments have the wrong type or shape."""

    error_code: str = field(default=ErrorCode.INVALID_ARGUMENTS)
    message: str = field(default="Invalid tool arguments")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


@dataclass
class InvalidEditError(ToolError):
    """Raised when a single proposed edit is structurally malformed."""

    error_code: str = field(default=ErrorCode.INVALID_EDIT)
    message: str = field(default="Malformed edit")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")
