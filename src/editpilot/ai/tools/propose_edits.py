"""The ``propose_edits`` tool: validate and collect line edits per file."""

from __future__ import annotations

import logging
from typing import Any, Callable, ClassVar, Mapping, Sequence

from ..orchestration.types import CURRENT_FILE_KEY
from .base import BaseTool, ToolContext
from .errors import InvalidArgumentsError, NoEditsProvidedError
from .line_edits import LineEdit, validate_edits

__all__ = ["ProposeEditsTool", "group_edits_by_file", "unwrap_edits"]

LOGGER = logging.getLogger(__name__)


def unwrap_edits(params: Mapping[str, Any]) -> list[Any]:
    """Return the edit list from ``params``, flattening ``{edits: {edits: [...]}}``.

    Raises:
        NoEditsProvidedError: if there are no edits.
        InvalidArgumentsError: if ``edits`` is not an array.
    """

    edits = params.get("edits")
    if isinstance(edits, Mapping) and "edits" in edits:
        LOGGER.warning("propose_edits received double-nested edits; unwrapping")
        edits = edits["edits"]
    if edits is None or (isinstance(edits, Sequence) and not isinstance(edits, str) and len(edits) == 0):
        raise NoEditsProvidedError()
    if isinstance(edits, Mapping) and "editType" in edits:
        edits = [edits]
    if not isinstance(edits, Sequence) or isinstance(edits, str):
        raise InvalidArgumentsError(
            message="'edits' must be an array of edit objects",
            details={"received": type(edits).__name__},
        )
    return list(edits)


def group_edits_by_file(
    edits: Sequence[Any],
    default_path: str | None,
    is_current: Callable[[str | None], bool],
) -> dict[str | None, list[Any]]:
    """Group raw edits by target path in arrival order; ``None`` is the current file."""

    groups: dict[str | None, list[Any]] = {}
    for item in edits:
        path = item.get("filePath") if isinstance(item, Mapping) else None
        if not isinstance(path, str) or not path:
            path = default_path
        key = None if is_current(path) else path
        groups.setdefault(key, []).append(item)
    return groups


class ProposeEditsTool(BaseTool):
    """Validate proposed edits and add accepted ones to the turn's edit list."""

    name: ClassVar[str] = "propose_edits"

    def execute(self, context: ToolContext, params: dict[str, Any]) -> str:
        agent_context = context.agent_context
        edits = unwrap_edits(params)
        top_level_path = params.get("filePath")
        default_path = top_level_path if isinstance(top_level_path, str) and top_level_path else None

        groups = group_edits_by_file(edits, default_path, agent_context.is_current)
        parts: list[str] = []
        accepted: list[LineEdit] = []
        for key, items in groups.items():
            target = agent_context.resolve_file(key)
            if target is None:
                LOGGER.info("propose_edits targeted unknown file %s; skipping %d edit(s)", key, len(items))
                context.emit("tool", {"name": self.name, "error": "file_not_found", "requestedPath": key})
                parts.append(f"Cannot edit file: {key} not found")
                continue

            stamp = None if target.path == CURRENT_FILE_KEY else target.path
            result = validate_edits(items, context.intent, target.content, file_path=stamp)
            context.emit(
                "tool",
                {
                    "name": self.name,
                    "filePath": stamp,
                    "count": len(result.accepted_edits),
                    "violations": result.violation_count,
                },
            )
            for _ in result.accepted_edits:
                context.emit("tool", {"name": self.name, "progress": 1})

            label = stamp or "current file"
            if result.accepted_edits:
                parts.append(f"{len(result.accepted_edits)} edit(s) for {label}")
            if result.violations:
                parts.append(f"Blocked {result.violation_count} edit(s) in {label}")
            accepted.extend(result.accepted_edits)

        if accepted:
            context.collected_edits.extend(accepted)
            context.emit("edits", [edit.to_dict() for edit in accepted])

        summary = "; ".join(parts) if parts else "No edits accepted"
        return f"Accepted {len(accepted)} total edit(s): {summary}"
