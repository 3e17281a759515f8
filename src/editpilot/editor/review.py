"""Review session: atomic accept, reject and accept-all transactions.

Each user action runs under one lock, so applying an edit to the buffer and
rebasing the remaining suggestions happen as a single step. Observers never
see a buffer that has changed while the queue still holds stale positions.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterable, Mapping

from ..ai.tools.line_edits import LineEdit
from .buffer import DocumentBuffer, EditApplyError
from .events import EditFailed, EventBus, SuggestionApplied, SuggestionRejected, SuggestionsDropped
from .queue import BATCH_SIZE, SuggestionQueue
from .rebase import ApplyResult, BatchResult, apply_all, apply_suggestion
from .suggestions import EditSuggestion, SuggestionStatus

__all__ = ["ReviewSession"]

LOGGER = logging.getLogger(__name__)


class ReviewSession:
    """Couples the suggestion queue with the document buffers it edits.

    Example:
        >>> session = ReviewSession(active_file="main.tex")
        >>> session.open_buffer("main.tex", text)
        >>> session.receive(edits_event_payload)
        >>> session.finalize()
        >>> session.accept(session.visible[0].id)
    """

    def __init__(
        self,
        *,
        active_file: str | None = None,
        bus: EventBus | None = None,
        batch_size: int = BATCH_SIZE,
    ) -> None:
        self._lock = threading.RLock()
        self._buffers: dict[str | None, DocumentBuffer] = {}
        self.bus = bus or EventBus()
        self.queue = SuggestionQueue(
            bus=self.bus,
            batch_size=batch_size,
            active_file=active_file,
            buffer_for=self.buffer_for,
        )

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------
    def open_buffer(self, path: str | None, text: str) -> DocumentBuffer:
        with self._lock:
            buffer = DocumentBuffer(text, path=path)
            self._buffers[path] = buffer
            return buffer

    def buffer_for(self, path: str | None) -> DocumentBuffer | None:
        return self._buffers.get(path)

    # ------------------------------------------------------------------
    # Queue facade
    # ------------------------------------------------------------------
    @property
    def active_file(self) -> str | None:
        return self.queue.active_file

    @property
    def visible(self) -> tuple[EditSuggestion, ...]:
        return self.queue.visible

    @property
    def total_pending_count(self) -> int:
        with self._lock:
            return self.queue.total_pending_count

    def receive(self, edits: Iterable[LineEdit | Mapping[str, Any]]) -> list[EditSuggestion]:
        with self._lock:
            return self.queue.handle_incoming(edits)

    def finalize(self) -> tuple[EditSuggestion, ...]:
        with self._lock:
            return self.queue.finalize()

    def continue_review(self) -> tuple[EditSuggestion, ...]:
        with self._lock:
            return self.queue.continue_review()

    def switch_file(self, path: str | None) -> tuple[EditSuggestion, ...]:
        with self._lock:
            return self.queue.on_active_file_changed(path)

    def clear(self) -> None:
        with self._lock:
            self.queue.clear()

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------
    def accept(self, suggestion_id: str) -> ApplyResult | None:
        """Apply one visible suggestion and rebase every other pending one.

        Returns ``None`` when the suggestion is unknown or cannot be applied;
        in the latter case an :class:`EditFailed` event is published and the
        queue is left as it was.
        """

        with self._lock:
            suggestion = self.queue.get_visible(suggestion_id)
            if suggestion is None:
                LOGGER.warning("Accept ignored: no visible suggestion %s", suggestion_id)
                return None
            path = self.queue.visible_path
            try:
                buffer = self._require_buffer(path)
                result = apply_suggestion(buffer, suggestion, self.queue.pending_for(path))
            except EditApplyError as exc:
                self._report_failure(path, (suggestion_id,), exc)
                return None

            self.queue.take(suggestion_id)
            self.queue.apply_rebase(path, result.kept, result.dropped)
            self.bus.publish(
                SuggestionApplied(file_path=path, suggestion=result.applied, delta_lines=result.change.delta_lines)
            )
            self.queue.advance_if_done()
            return result

    def reject(self, suggestion_id: str) -> EditSuggestion | None:
        with self._lock:
            suggestion = self.queue.take(suggestion_id)
            if suggestion is None:
                LOGGER.warning("Reject ignored: no visible suggestion %s", suggestion_id)
                return None
            rejected = suggestion.with_status(SuggestionStatus.REJECTED)
            self.bus.publish(SuggestionRejected(file_path=self.queue.visible_path, suggestion=rejected))
            self.queue.advance_if_done()
            return rejected

    def accept_all(self) -> BatchResult | None:
        """Apply every visible and queued suggestion for the active batch's file."""

        with self._lock:
            path = self.queue.visible_path
            pending = self.queue.pending_for(path)
            if not pending:
                return None
            try:
                buffer = self._require_buffer(path)
                result = apply_all(buffer, pending)
            except EditApplyError as exc:
                self._report_failure(path, tuple(item.id for item in pending), exc)
                return None

            self.queue.discard_file(path)
            for applied in result.applied:
                self.bus.publish(SuggestionApplied(file_path=path, suggestion=applied, delta_lines=applied.delta_lines))
            if result.dropped:
                self.bus.publish(SuggestionsDropped(file_path=path, suggestions=result.dropped, reason="conflict"))
            LOGGER.info("Accepted %d suggestion(s) for %s", len(result.applied), path or "current file")
            self.queue.advance_if_done()
            return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_buffer(self, path: str | None) -> DocumentBuffer:
        buffer = self._buffers.get(path)
        if buffer is None:
            raise EditApplyError(f"No open buffer for {path or 'current file'}", reason="missing_buffer")
        return buffer

    def _report_failure(self, path: str | None, suggestion_ids: tuple[str, ...], exc: EditApplyError) -> None:
        LOGGER.warning("Failed to apply suggestion(s) %s: %s", ", ".join(suggestion_ids), exc)
        self.bus.publish(
            EditFailed(file_path=path, suggestion_ids=suggestion_ids, message=str(exc), details=exc.details())
        )
