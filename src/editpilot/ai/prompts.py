"""Prompt builders: numbered document views and the agent system prompt."""

from __future__ import annotations

import re
from typing import Sequence

from .orchestration.types import ProjectFile, SelectionRange

__all__ = [
    "MAX_LINES_FULL_CONTEXT",
    "build_numbered_content",
    "build_system_prompt",
    "is_image_path",
    "normalize_line_endings",
    "number_lines",
]

MAX_LINES_FULL_CONTEXT = 500
ABBREVIATED_HEAD_LINES = 100
ABBREVIATED_TAIL_LINES = 100
_IMAGE_PATH_RE = re.compile(r"\.(png|jpg|jpeg|gif|svg|webp)$", re.IGNORECASE)


def normalize_line_endings(text: str) -> str:
    """Convert CRLF and CR line endings to LF."""

    return text.replace("\r\n", "\n").replace("\r", "\n")


def is_image_path(path: str) -> bool:
    return bool(_IMAGE_PATH_RE.search(path))


def number_lines(lines: Sequence[str], *, start: int = 1) -> str:
    return "\n".join(f"{index}: {line}" for index, line in enumerate(lines, start=start))


def build_numbered_content(file_content: str, text_from_editor: str | None = None) -> str:
    """Render ``file_content`` with 1-indexed line prefixes.

    Documents longer than :data:`MAX_LINES_FULL_CONTEXT` lines are reduced
    to their first and last hundred lines around an omission marker.
    """

    lines = file_content.split("\n")
    if len(lines) <= MAX_LINES_FULL_CONTEXT:
        return number_lines(lines)

    head = number_lines(lines[:ABBREVIATED_HEAD_LINES])
    tail_start = len(lines) - ABBREVIATED_TAIL_LINES
    tail = number_lines(lines[tail_start:], start=tail_start + 1)
    omitted = len(lines) - ABBREVIATED_HEAD_LINES - ABBREVIATED_TAIL_LINES
    numbered = f"{head}\n\n... [{omitted} lines omitted] ...\n\n{tail}"
    if text_from_editor:
        numbered += "\n\n[Selected region context will be provided separately]"
    return numbered


_PROMPT_HEADER = """You are EditPilot, a LaTeX editing assistant. You change documents only by calling the 'propose_edits' tool.

For every editing request:
1. Call 'propose_edits' right away with the edits.
2. Do not describe manual steps instead of editing.
3. Do not report problems instead of calling the tool.

MULTIPLE FILES:
- get_context(filePath: "path/to/file") reads any project file.
- propose_edits(filePath: "path/to/file", edits: [...]) edits any project file.
- Without a filePath, both tools use the current file.

EDIT TYPES:
- INSERT: { editType: 'insert', position: { line: N }, content: '...', originalLineCount: 0 }
- DELETE: { editType: 'delete', position: { line: N }, originalLineCount: M }
- REPLACE: { editType: 'replace', position: { line: N }, content: '...', originalLineCount: M }

EXAMPLES:
User: "add a title" -> call propose_edits with an insert at line 2
User: "remove the introduction" -> call propose_edits with a delete
User: "fix the equation" -> call propose_edits with a replace

After the tool reports success, reply briefly with what changed.

Line numbers below are 1-indexed. Use them exactly."""


def build_system_prompt(
    numbered_content: str,
    text_from_editor: str | None = None,
    selection_range: SelectionRange | None = None,
    project_files: Sequence[ProjectFile] | None = None,
    current_file_path: str | None = None,
) -> str:
    """Assemble the system prompt for one agent turn.

    Args:
        numbered_content: Output of :func:`build_numbered_content`.
        text_from_editor: Text the user selected in the editor, if any.
        selection_range: Line range of the selection.
        project_files: Other files of the project, listed by path only.
        current_file_path: Path of the file shown in ``numbered_content``.

    Returns:
        The full system prompt text.
    """

    sections = [_PROMPT_HEADER, f"---\n{numbered_content}\n---"]
    if text_from_editor:
        sections.append(f"Selected text:\n---\n{text_from_editor}\n---")
    if selection_range is not None:
        sections.append(f"Selection: lines {selection_range.start_line}-{selection_range.end_line}")
    project_section = _project_section(project_files or (), current_file_path)
    if project_section:
        sections.append(project_section)
    return "\n\n".join(sections)


def _project_section(project_files: Sequence[ProjectFile], current_file_path: str | None) -> str:
    if not project_files:
        return ""
    text_files = [item for item in project_files if not is_image_path(item.path)]
    image_files = [item for item in project_files if is_image_path(item.path)]

    heading = f"Project structure ({len(text_files)} text files"
    if image_files:
        heading += f", {len(image_files)} images"
    heading += "):"

    lines = [heading]
    for item in text_files:
        if item.path == current_file_path:
            lines.append(f"--- {item.path} (CURRENT FILE - shown above with line numbers) ---")
        else:
            lines.append(f"  - {item.path} ({item.line_count} lines) - use get_context to read if needed")
    if image_files:
        lines.append("")
        lines.append("Image files (available in compiled PDF):")
        lines.extend(f"  - {item.path}" for item in image_files)
    return "\n".join(lines)
