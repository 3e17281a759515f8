"""Applying accepted suggestions and rebasing the ones still pending.

Accepting a single suggestion changes the buffer's line count by the
suggestion's ``delta_lines``. Every other pending suggestion for the same
buffer is then either kept where it is (it lies above the change), shifted
by the delta (it lies below), or dropped (it overlaps the changed range).
Two pure insertions at the same line compose instead of conflicting: the
later one is shifted below the first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from .buffer import BufferChange, DocumentBuffer
from .suggestions import EditSuggestion, SuggestionStatus, ranges_overlap

__all__ = [
    "ApplyResult",
    "BatchResult",
    "RebaseResult",
    "apply_all",
    "apply_suggestion",
    "batch_order",
    "rebase_suggestions",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RebaseResult:
    kept: tuple[EditSuggestion, ...]
    dropped: tuple[EditSuggestion, ...]


@dataclass(slots=True, frozen=True)
class ApplyResult:
    """Outcome of accepting one suggestion."""

    applied: EditSuggestion
    change: BufferChange
    kept: tuple[EditSuggestion, ...]
    dropped: tuple[EditSuggestion, ...]


@dataclass(slots=True, frozen=True)
class BatchResult:
    """Outcome of accepting every pending suggestion at once."""

    applied: tuple[EditSuggestion, ...]
    dropped: tuple[EditSuggestion, ...]
    changes: tuple[BufferChange, ...]


def rebase_suggestions(
    accepted: EditSuggestion,
    others: Sequence[EditSuggestion],
    delta: int | None = None,
) -> RebaseResult:
    """Reposition ``others`` after ``accepted`` has been applied.

    Args:
        accepted: The suggestion just applied to the buffer.
        others: Pending suggestions addressed to the same buffer, read as a
            snapshot taken before the change.
        delta: Net line change of the applied edit; defaults to
            ``accepted.delta_lines``.

    Returns:
        Suggestions to keep (with updated positions) and suggestions dropped
        because their range overlapped the applied one.
    """

    if delta is None:
        delta = accepted.delta_lines
    start, end = accepted.start_line, accepted.end_line
    kept: list[EditSuggestion] = []
    dropped: list[EditSuggestion] = []

    for other in tuple(others):
        if other.id == accepted.id:
            continue
        if ranges_overlap(other.start_line, other.end_line, start, end):
            if accepted.is_insert and other.is_insert and other.start_line == start and delta != 0:
                kept.append(other.with_line(other.start_line + delta))
            else:
                dropped.append(other)
            continue
        if other.start_line > end and delta != 0:
            kept.append(other.with_line(other.start_line + delta))
        else:
            kept.append(other)

    for suggestion in dropped:
        LOGGER.info(
            "Discarded suggestion %s (lines %d-%d): conflicts with accepted edit at lines %d-%d",
            suggestion.id,
            suggestion.start_line,
            suggestion.end_line,
            start,
            end,
        )
    return RebaseResult(kept=tuple(kept), dropped=tuple(dropped))


def apply_suggestion(
    buffer: DocumentBuffer,
    suggestion: EditSuggestion,
    pending: Sequence[EditSuggestion],
) -> ApplyResult:
    """Apply ``suggestion`` to ``buffer`` and rebase ``pending`` around it.

    Raises:
        EditApplyError: if the edit no longer fits the buffer; nothing is
            mutated in that case.
    """

    snapshot = tuple(item for item in pending if item.id != suggestion.id)
    change = buffer.apply_edit(suggestion.edit)
    rebased = rebase_suggestions(suggestion, snapshot, change.delta_lines)
    return ApplyResult(
        applied=suggestion.with_status(SuggestionStatus.ACCEPTED),
        change=change,
        kept=rebased.kept,
        dropped=rebased.dropped,
    )


def batch_order(suggestions: Sequence[EditSuggestion]) -> list[EditSuggestion]:
    """Order suggestions bottom-to-top for a single-pass batch apply.

    At the same start line replacements and deletions run before
    insertions, and later arrivals run first, so insertions sharing a
    line end up in arrival order.
    """

    return sorted(
        suggestions,
        key=lambda item: (-item.start_line, item.is_insert, -item.arrival),
    )


def apply_all(buffer: DocumentBuffer, suggestions: Sequence[EditSuggestion]) -> BatchResult:
    """Apply every suggestion in one transaction.

    Suggestions whose range conflicts with one already selected for the
    batch are dropped; the rest are applied bottom-to-top, so no rebase is
    needed.

    Raises:
        EditApplyError: if any selected edit does not fit the buffer; the
            buffer is left untouched.
    """

    selected: list[EditSuggestion] = []
    dropped: list[EditSuggestion] = []
    for candidate in batch_order(suggestions):
        if any(_spans_conflict(candidate, chosen) for chosen in selected):
            LOGGER.info("Discarded suggestion %s from batch: conflicts with another accepted edit", candidate.id)
            dropped.append(candidate)
            continue
        selected.append(candidate)

    changes = buffer.apply_batch([item.edit for item in selected])
    return BatchResult(
        applied=tuple(item.with_status(SuggestionStatus.ACCEPTED) for item in selected),
        dropped=tuple(dropped),
        changes=changes,
    )


def _spans_conflict(a: EditSuggestion, b: EditSuggestion) -> bool:
    a_start, a_stop = a.start_line, a.start_line + a.edit.original_line_count
    b_start, b_stop = b.start_line, b.start_line + b.edit.original_line_count
    if a_start == a_stop:
        return b_start < a_start < b_stop
    if b_start == b_stop:
        return a_start < b_start < a_stop
    return max(a_start, b_start) < min(a_stop, b_stop)
