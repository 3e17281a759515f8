"""Edit suggestions under review and helpers to build and group them."""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping

from ..ai.tools.errors import InvalidEditError
from ..ai.tools.line_edits import LineEdit
from .buffer import DocumentBuffer

__all__ = [
    "EditSuggestion",
    "FileGroup",
    "SuggestionStatus",
    "capture_original",
    "group_by_file",
    "normalize_suggestions",
    "ranges_overlap",
]

LOGGER = logging.getLogger(__name__)


class SuggestionStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(slots=True, frozen=True)
class EditSuggestion:
    """A :class:`LineEdit` awaiting an accept or reject decision.

    Attributes:
        id: Unique identifier used by the review UI.
        edit: The proposed edit, positioned against the current buffer.
        status: Review lifecycle state.
        original: Exact buffer text the edit replaces, captured when shown.
        arrival: Position in the order suggestions were received.
    """

    id: str
    edit: LineEdit
    status: SuggestionStatus = SuggestionStatus.PENDING
    original: str | None = None
    arrival: int = 0

    @property
    def start_line(self) -> int:
        return self.edit.line

    @property
    def end_line(self) -> int:
        return self.edit.end_line

    @property
    def file_path(self) -> str | None:
        return self.edit.file_path

    @property
    def is_insert(self) -> bool:
        return self.edit.original_line_count == 0

    @property
    def delta_lines(self) -> int:
        return self.edit.delta_lines

    @property
    def is_pending(self) -> bool:
        return self.status is SuggestionStatus.PENDING

    def with_line(self, line: int) -> "EditSuggestion":
        return replace(self, edit=replace(self.edit, line=line))

    def with_status(self, status: SuggestionStatus) -> "EditSuggestion":
        return replace(self, status=status)

    def to_dict(self) -> dict[str, Any]:
        payload = self.edit.to_dict()
        payload["id"] = self.id
        payload["status"] = self.status.value
        if self.original is not None:
            payload["original"] = self.original
        return payload


@dataclass(slots=True)
class FileGroup:
    """Suggestions addressed to one file, in arrival order."""

    file_path: str | None
    suggestions: list[EditSuggestion] = field(default_factory=list)


def normalize_suggestions(
    edits: Iterable[LineEdit | Mapping[str, Any]],
    *,
    start_index: int = 0,
) -> list[EditSuggestion]:
    """Wrap incoming edits as pending suggestions with fresh ids.

    Wire mappings that do not parse as edits are logged and skipped.
    """

    suggestions: list[EditSuggestion] = []
    for offset, item in enumerate(edits):
        if isinstance(item, LineEdit):
            edit = item
        else:
            try:
                edit = LineEdit.from_mapping(item)
            except InvalidEditError as exc:
                LOGGER.warning("Skipping malformed suggestion: %s", exc.message)
                continue
        suggestions.append(
            EditSuggestion(id=f"edit-{uuid.uuid4().hex[:12]}", edit=edit, arrival=start_index + offset)
        )
    return suggestions


def group_by_file(suggestions: Iterable[EditSuggestion], current_path: str | None) -> list[FileGroup]:
    """Group suggestions by target file, keeping first-arrival order of files.

    Suggestions without a path belong to ``current_path``.
    """

    groups: dict[str | None, FileGroup] = {}
    for suggestion in suggestions:
        key = suggestion.file_path or current_path
        group = groups.get(key)
        if group is None:
            group = groups[key] = FileGroup(file_path=key)
        group.suggestions.append(suggestion)
    return list(groups.values())


def ranges_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Return True when the inclusive line ranges share at least one line."""
    return a_start <= b_end and b_start <= a_end


def capture_original(suggestion: EditSuggestion, buffer: DocumentBuffer) -> EditSuggestion:
    """Fill ``original`` from the live buffer if it has not been captured yet."""

    if suggestion.original is not None:
        return suggestion
    original = buffer.get_lines(suggestion.start_line, suggestion.edit.original_line_count)
    return replace(suggestion, original=original)
