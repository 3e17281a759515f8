"""Line-addressed document buffer used when suggestions are accepted."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from ..ai.tools.line_edits import LineEdit, split_content_lines

__all__ = ["BufferChange", "DocumentBuffer", "EditApplyError"]

LOGGER = logging.getLogger(__name__)


class EditApplyError(RuntimeError):
    """Raised when an edit cannot be applied to the buffer cleanly."""

    def __init__(
        self,
        message: str,
        *,
        reason: str = "range_overflow",
        line: int | None = None,
        line_count: int | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.line = line
        self.line_count = line_count

    def details(self) -> dict[str, object]:
        return {
            "reason": self.reason,
            "line": self.line,
            "lineCount": self.line_count,
        }


@dataclass(slots=True, frozen=True)
class BufferChange:
    """Record of a single applied edit."""

    start_line: int
    removed: tuple[str, ...]
    inserted: tuple[str, ...]

    @property
    def delta_lines(self) -> int:
        return len(self.inserted) - len(self.removed)


class DocumentBuffer:
    """Mutable text split into 1-indexed lines.

    The buffer always holds at least one (possibly empty) line, matching
    ``text.split("\\n")``. ``version`` increments on every mutation.
    """

    def __init__(self, text: str = "", *, path: str | None = None) -> None:
        self.path = path
        self._lines = text.split("\n")
        self.version = 0

    @property
    def text(self) -> str:
        return "\n".join(self._lines)

    @property
    def lines(self) -> tuple[str, ...]:
        return tuple(self._lines)

    @property
    def line_count(self) -> int:
        return len(self._lines)

    def set_text(self, text: str) -> None:
        self._lines = text.split("\n")
        self.version += 1

    def get_lines(self, start_line: int, count: int) -> str:
        """Return ``count`` lines starting at ``start_line`` joined with newlines."""

        if count <= 0:
            return ""
        start = max(start_line, 1) - 1
        return "\n".join(self._lines[start : start + count])

    def apply_edit(self, edit: LineEdit) -> BufferChange:
        """Replace ``[line, end_line]`` with the edit's content lines."""

        self._check_range(edit, self.line_count)
        change = _splice(self._lines, edit)
        self.version += 1
        LOGGER.debug(
            "Applied %s at line %d (%+d lines, %s)", edit.edit_type, edit.line, change.delta_lines, self.path or "buffer"
        )
        return change

    def apply_batch(self, edits: Sequence[LineEdit]) -> tuple[BufferChange, ...]:
        """Apply ``edits`` in the given order as one transaction.

        Every edit addresses the buffer as it was before the batch, so the
        caller passes them bottom-to-top. Ranges are validated up front;
        when any edit is out of range or two ranges overlap nothing is
        applied.
        """

        if not edits:
            return ()
        line_count = self.line_count
        for edit in edits:
            self._check_range(edit, line_count)
        _ensure_non_overlapping(edits)

        lines = list(self._lines)
        changes = tuple(_splice(lines, edit) for edit in edits)
        self._lines = lines
        self.version += 1
        LOGGER.debug("Applied batch of %d edit(s) to %s", len(changes), self.path or "buffer")
        return changes

    @staticmethod
    def _check_range(edit: LineEdit, line_count: int) -> None:
        if edit.original_line_count == 0:
            if edit.line > line_count + 1:
                raise EditApplyError(
                    f"Insert position {edit.line} is past the end of the document",
                    line=edit.line,
                    line_count=line_count,
                )
            return
        if edit.end_line > line_count:
            raise EditApplyError(
                f"Lines {edit.line}-{edit.end_line} exceed the document length",
                line=edit.line,
                line_count=line_count,
            )


def _splice(lines: list[str], edit: LineEdit) -> BufferChange:
    start = edit.line - 1
    stop = start + edit.original_line_count
    inserted = split_content_lines(edit.content) if edit.edit_type != "delete" else []
    removed = tuple(lines[start:stop])
    lines[start:stop] = inserted
    return BufferChange(start_line=edit.line, removed=removed, inserted=tuple(inserted))


def _ensure_non_overlapping(edits: Sequence[LineEdit]) -> None:
    spans = sorted((edit.line, edit.line + edit.original_line_count) for edit in edits)
    previous_end = -1
    for start, end in spans:
        if start < previous_end:
            raise EditApplyError("Batch edits may not overlap", reason="range_overlap", line=start)
        previous_end = max(previous_end, end)
