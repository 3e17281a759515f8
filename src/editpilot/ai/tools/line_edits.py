"""Line-addressed edit model and the intent-gated edit validator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Sequence

from ..intent import IntentResult
from .errors import InvalidEditError

__all__ = [
    "EDIT_TYPES",
    "LineEdit",
    "ValidationResult",
    "split_content_lines",
    "validate_edits",
]

LOGGER = logging.getLogger(__name__)

EDIT_TYPES: tuple[str, ...] = ("insert", "delete", "replace")


def split_content_lines(text: str | None) -> list[str]:
    """Return the lines an edit's content contributes to a document.

    Empty content contributes no lines; a single trailing newline does not
    add an extra empty line.
    """

    if not text:
        return []
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    if normalized.endswith("\n"):
        normalized = normalized[:-1]
    return normalized.split("\n")


@dataclass(slots=True, frozen=True)
class LineEdit:
    """An insert, delete or replace operation against 1-indexed lines."""

    edit_type: str
    line: int
    content: str | None = None
    original_line_count: int = 0
    explanation: str | None = None
    file_path: str | None = None

    @property
    def end_line(self) -> int:
        if self.original_line_count > 0:
            return self.line + self.original_line_count - 1
        return self.line

    @property
    def delta_lines(self) -> int:
        return len(split_content_lines(self.content)) - self.original_line_count

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, default_file_path: str | None = None) -> "LineEdit":
        """Build an edit from its wire representation.

        Raises:
            InvalidEditError: if the payload is not a well-formed edit.
        """

        if not isinstance(payload, Mapping):
            raise InvalidEditError(message="Edit must be an object")
        edit_type = payload.get("editType")
        if edit_type not in EDIT_TYPES:
            raise InvalidEditError(
                message=f"Unknown editType: {edit_type!r}",
                details={"allowed": list(EDIT_TYPES)},
            )
        position = payload.get("position")
        raw_line = position.get("line") if isinstance(position, Mapping) else None
        line = _coerce_int(raw_line)
        if line is None or line < 1:
            raise InvalidEditError(message="position.line must be an integer >= 1")

        content = payload.get("content")
        if edit_type in ("insert", "replace") and not isinstance(content, str):
            raise InvalidEditError(message=f"content is required for {edit_type} edits")
        if content is not None and not isinstance(content, str):
            raise InvalidEditError(message="content must be a string")

        raw_count = payload.get("originalLineCount")
        if raw_count is None:
            count = 0 if edit_type == "insert" else 1
        else:
            count = _coerce_int(raw_count)
            if count is None or count < 0:
                raise InvalidEditError(message="originalLineCount must be an integer >= 0")

        explanation = payload.get("explanation")
        file_path = payload.get("filePath")
        if not isinstance(file_path, str) or not file_path:
            file_path = default_file_path
        return cls(
            edit_type=edit_type,
            line=line,
            content=content,
            original_line_count=count,
            explanation=explanation if isinstance(explanation, str) else None,
            file_path=file_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the camelCase wire names."""

        payload: dict[str, Any] = {
            "editType": self.edit_type,
            "position": {"line": self.line},
            "originalLineCount": self.original_line_count,
        }
        if self.content is not None:
            payload["content"] = self.content
        if self.explanation:
            payload["explanation"] = self.explanation
        if self.file_path:
            payload["filePath"] = self.file_path
        return payload


@dataclass(slots=True)
class ValidationResult:
    """Partition of a proposed batch into accepted edits and violations."""

    accepted_edits: list[LineEdit] = field(default_factory=list)
    violations: list[Any] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    @property
    def violation_count(self) -> int:
        return len(self.violations)


def validate_edits(
    edits: Sequence[LineEdit | Mapping[str, Any]],
    intent: IntentResult,
    file_content: str,
    *,
    file_path: str | None = None,
) -> ValidationResult:
    """Filter ``edits`` against ``intent`` and the target file's line count.

    Besides the permission flags, an edit must address lines that exist:
    an insert may target at most ``line_count + 1`` and a replace or delete
    must end on or before the last line. A structurally well-formed edit
    outside those bounds is reported as a violation here rather than
    reaching the review queue and failing on accept.

    Args:
        edits: Parsed edits or raw wire mappings addressed to a single file.
        intent: Permission flags derived from the user's message.
        file_content: Current content of the target file.
        file_path: Path stamped on edits that do not carry one.

    Returns:
        A :class:`ValidationResult`. Violations keep the original objects so
        callers can report exactly what was blocked.
    """

    result = ValidationResult()
    if intent.is_read_only:
        result.violations.extend(edits)
        result.reasons.extend("read-only request" for _ in edits)
        return result

    line_count = len(file_content.split("\n"))
    for item in edits:
        try:
            edit = item if isinstance(item, LineEdit) else LineEdit.from_mapping(item, default_file_path=file_path)
        except InvalidEditError as exc:
            result.violations.append(item)
            result.reasons.append(exc.message)
            continue
        if edit.file_path is None and file_path:
            edit = replace(edit, file_path=file_path)
        reason = _check_allowed(edit, intent) or _check_bounds(edit, line_count)
        if reason:
            result.violations.append(item)
            result.reasons.append(reason)
            continue
        result.accepted_edits.append(edit)

    if result.violations:
        LOGGER.debug(
            "Blocked %d edit(s) for %s: %s", len(result.violations), file_path or "current file", result.reasons
        )
    return result


def _check_allowed(edit: LineEdit, intent: IntentResult) -> str | None:
    allowed = {
        "insert": intent.allow_insert,
        "delete": intent.allow_delete,
        "replace": intent.allow_replace,
    }[edit.edit_type]
    if not allowed:
        return f"{edit.edit_type} edits are not permitted for this request"
    return None


def _check_bounds(edit: LineEdit, line_count: int) -> str | None:
    if edit.original_line_count == 0:
        if edit.line > line_count + 1:
            return f"line {edit.line} is past the end of the file ({line_count} lines)"
        return None
    if edit.end_line > line_count:
        return f"lines {edit.line}-{edit.end_line} exceed the file length ({line_count} lines)"
    return None


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
