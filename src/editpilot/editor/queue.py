"""Suggestion queue: batching, per-file grouping and review navigation.

Edits arriving during a turn are only collected; nothing is shown until
:meth:`SuggestionQueue.finalize` runs at the end of the turn. Suggestions
are then grouped by file and revealed a batch at a time. When a batch has
been handled the queue either asks the user to continue (more remain in
the same file) or moves on to the next file on its own.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from ..ai.tools.line_edits import LineEdit
from .buffer import DocumentBuffer
from .events import (
    ContinuePrompted,
    EventBus,
    FileSwitchRequested,
    ReviewCleared,
    SuggestionsDropped,
    SuggestionsShown,
)
from .suggestions import EditSuggestion, capture_original, group_by_file, normalize_suggestions

__all__ = ["BATCH_SIZE", "SuggestionQueue"]

LOGGER = logging.getLogger(__name__)

BATCH_SIZE = 5

BufferLookup = Callable[[str | None], DocumentBuffer | None]


class SuggestionQueue:
    """Holds the visible batch and the queued remainder for every file.

    The queue itself does not touch document buffers except to capture the
    ``original`` text of suggestions as they are shown. Accepting and
    rebasing is coordinated by :class:`~editpilot.editor.review.ReviewSession`.
    """

    def __init__(
        self,
        *,
        bus: EventBus | None = None,
        batch_size: int = BATCH_SIZE,
        active_file: str | None = None,
        buffer_for: BufferLookup | None = None,
    ) -> None:
        self.bus = bus or EventBus()
        self.batch_size = max(1, batch_size)
        self.active_file = active_file
        self._buffer_for = buffer_for
        self._incoming: list[EditSuggestion] = []
        self._arrivals = 0
        self._visible: list[EditSuggestion] = []
        self._visible_path: str | None = None
        self._batch_open = False
        self._queued: dict[str | None, list[EditSuggestion]] = {}
        self._awaiting_switch: str | None = None
        self._switch_pending = False
        self._continue_pending = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def visible(self) -> tuple[EditSuggestion, ...]:
        return tuple(self._visible)

    @property
    def visible_path(self) -> str | None:
        return self._visible_path

    @property
    def incoming_count(self) -> int:
        return len(self._incoming)

    @property
    def continue_pending(self) -> bool:
        return self._continue_pending

    @property
    def awaiting_switch(self) -> bool:
        return self._switch_pending

    @property
    def pending_file(self) -> str | None:
        """File the queue is waiting to switch to, if any."""
        return self._awaiting_switch if self._switch_pending else None

    @property
    def total_pending_count(self) -> int:
        return len(self._visible) + sum(len(items) for items in self._queued.values())

    def queued_count(self, path: str | None = None) -> int:
        return len(self._queued.get(path, ()))

    def queued_files(self) -> tuple[str | None, ...]:
        return tuple(path for path, items in self._queued.items() if items)

    def get_visible(self, suggestion_id: str) -> EditSuggestion | None:
        return next((item for item in self._visible if item.id == suggestion_id), None)

    def pending_for(self, path: str | None) -> list[EditSuggestion]:
        """Visible and queued suggestions for ``path``, visible first."""

        pending = list(self._visible) if self._visible_path == path else []
        pending.extend(self._queued.get(path, ()))
        return pending

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------
    def handle_incoming(self, edits: Iterable[LineEdit | Mapping[str, Any]]) -> list[EditSuggestion]:
        """Collect edits from one ``edits`` event; they are shown on :meth:`finalize`."""

        suggestions = normalize_suggestions(edits, start_index=self._arrivals)
        self._arrivals += len(suggestions)
        self._incoming.extend(suggestions)
        return suggestions

    def finalize(self) -> tuple[EditSuggestion, ...]:
        """Group collected suggestions by file and reveal the first batch.

        Returns the suggestions made visible by this call, which is empty
        when a batch is already under review or a file switch is pending.
        """

        incoming, self._incoming = self._incoming, []
        if not incoming:
            return ()
        for group in group_by_file(incoming, self.active_file):
            self._queued.setdefault(group.file_path, []).extend(group.suggestions)
        LOGGER.debug(
            "Finalized %d suggestion(s) across %d file(s)", len(incoming), len(self.queued_files())
        )
        if self._batch_open or self._switch_pending or self._continue_pending:
            return ()
        return self._advance()

    def continue_review(self) -> tuple[EditSuggestion, ...]:
        """Reveal the next batch in the current file after a continue prompt."""

        if not self._continue_pending:
            return ()
        self._continue_pending = False
        path = self._visible_path
        if self._queued.get(path):
            return self._show_next(path)
        return self._advance()

    def on_active_file_changed(self, path: str | None) -> tuple[EditSuggestion, ...]:
        """Record that the editor switched files; show deferred suggestions for it."""

        self.active_file = path
        if self._switch_pending and path == self._awaiting_switch:
            self._switch_pending = False
            self._awaiting_switch = None
            if self._queued.get(path):
                return self._show_next(path)
            return self._advance()
        return ()

    # ------------------------------------------------------------------
    # Mutations driven by the review session
    # ------------------------------------------------------------------
    def take(self, suggestion_id: str) -> EditSuggestion | None:
        """Remove a visible suggestion; completion is checked by :meth:`advance_if_done`."""

        for index, item in enumerate(self._visible):
            if item.id == suggestion_id:
                return self._visible.pop(index)
        return None

    def apply_rebase(
        self,
        path: str | None,
        kept: Iterable[EditSuggestion],
        dropped: Iterable[EditSuggestion],
    ) -> None:
        """Replace pending suggestions for ``path`` with their rebased versions."""

        updated = {item.id: item for item in kept}
        dropped = tuple(dropped)
        dropped_ids = {item.id for item in dropped}

        if self._visible_path == path:
            self._visible = [updated.get(item.id, item) for item in self._visible if item.id not in dropped_ids]
        queued = self._queued.get(path)
        if queued is not None:
            self._queued[path] = [updated.get(item.id, item) for item in queued if item.id not in dropped_ids]
        if dropped:
            self.bus.publish(SuggestionsDropped(file_path=path, suggestions=dropped, reason="conflict"))

    def discard_file(self, path: str | None) -> tuple[EditSuggestion, ...]:
        """Remove every pending suggestion for ``path`` and return them."""

        removed: list[EditSuggestion] = []
        if self._visible_path == path:
            removed.extend(self._visible)
            self._visible = []
            if self._continue_pending:
                self._continue_pending = False
                self._batch_open = True
        removed.extend(self._queued.pop(path, ()))
        return tuple(removed)

    def advance_if_done(self) -> tuple[EditSuggestion, ...]:
        """Move on once every suggestion of the visible batch has been handled."""

        if not self._batch_open or self._visible:
            return ()
        self._batch_open = False
        path = self._visible_path
        remaining = len(self._queued.get(path, ()))
        if remaining:
            self._continue_pending = True
            LOGGER.debug("Batch done for %s; %d more waiting", path, remaining)
            self.bus.publish(ContinuePrompted(file_path=path, remaining=remaining))
            return ()
        self._queued.pop(path, None)
        return self._advance()

    def clear(self) -> None:
        self._incoming.clear()
        self._visible.clear()
        self._queued.clear()
        self._visible_path = None
        self._batch_open = False
        self._awaiting_switch = None
        self._switch_pending = False
        self._continue_pending = False
        self.bus.publish(ReviewCleared())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _advance(self) -> tuple[EditSuggestion, ...]:
        for path in [key for key, items in self._queued.items() if not items]:
            del self._queued[path]
        if not self._queued:
            return ()
        next_path = next(iter(self._queued))
        if next_path != self.active_file:
            self._awaiting_switch = next_path
            self._switch_pending = True
            LOGGER.debug("Requesting switch to %s before showing suggestions", next_path)
            self.bus.publish(FileSwitchRequested(file_path=next_path))
            return ()
        return self._show_next(next_path)

    def _show_next(self, path: str | None) -> tuple[EditSuggestion, ...]:
        queued = self._queued.get(path, [])
        batch, rest = queued[: self.batch_size], queued[self.batch_size :]
        if rest:
            self._queued[path] = rest
        else:
            self._queued.pop(path, None)

        buffer = self._buffer_for(path) if self._buffer_for else None
        if buffer is not None:
            batch = [capture_original(item, buffer) for item in batch]

        self._visible = list(batch)
        self._visible_path = path
        self._batch_open = bool(batch)
        shown = tuple(batch)
        if shown:
            self.bus.publish(SuggestionsShown(file_path=path, suggestions=shown))
        return shown
