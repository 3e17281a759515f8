"""Review events and the bus that delivers them.

The suggestion queue and review session publish these events; views
subscribe to render suggestions as decorations, prompt the user to
continue, or switch the active file.
"""

from __future__ import annotations

import inspect
import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type

from .suggestions import EditSuggestion

__all__ = [
    "ContinuePrompted",
    "EditFailed",
    "Event",
    "EventBus",
    "EventHandler",
    "FileSwitchRequested",
    "ReviewCleared",
    "SuggestionApplied",
    "SuggestionRejected",
    "SuggestionsDropped",
    "SuggestionsShown",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Event:
    """Base class for review events."""


EventHandler = Callable[[Any], None]


# =============================================================================
# Review Events
# =============================================================================


@dataclass(slots=True)
class SuggestionsShown(Event):
    """Emitted when a batch of suggestions becomes visible.

    Attributes:
        file_path: File the suggestions address.
        suggestions: The visible batch, with ``original`` captured.
    """

    file_path: str | None
    suggestions: tuple[EditSuggestion, ...]


@dataclass(slots=True)
class FileSwitchRequested(Event):
    """Emitted when the next group of suggestions targets another file.

    Suggestions for that file are shown once the switch is reported back
    through ``on_active_file_changed``.
    """

    file_path: str | None


@dataclass(slots=True)
class ContinuePrompted(Event):
    """Emitted when the visible batch is done and more remain in the same file."""

    file_path: str | None
    remaining: int


@dataclass(slots=True)
class SuggestionApplied(Event):
    file_path: str | None
    suggestion: EditSuggestion
    delta_lines: int


@dataclass(slots=True)
class SuggestionRejected(Event):
    file_path: str | None
    suggestion: EditSuggestion


@dataclass(slots=True)
class SuggestionsDropped(Event):
    """Emitted when pending suggestions are discarded after a conflicting accept.

    Attributes:
        file_path: File the suggestions addressed.
        suggestions: The discarded suggestions.
        reason: Short machine-readable reason, e.g. ``"conflict"``.
    """

    file_path: str | None
    suggestions: tuple[EditSuggestion, ...]
    reason: str = "conflict"


@dataclass(slots=True)
class EditFailed(Event):
    file_path: str | None
    suggestion_ids: tuple[str, ...]
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ReviewCleared(Event):
    pass


# =============================================================================
# Bus
# =============================================================================

_HandlerLookup = Callable[[], Optional[EventHandler]]


class EventBus:
    """Synchronous publish/subscribe keyed on the exact event class.

    Handlers run in subscription order. A handler that raises is logged and
    does not stop delivery to the others. Bound methods are held weakly:
    once their object is collected they are pruned on the next publish.

    Example::

        bus = EventBus()
        unsubscribe = bus.subscribe(SuggestionsShown, view.on_suggestions_shown)
        bus.publish(SuggestionsShown(file_path="main.tex", suggestions=()))
        unsubscribe()
    """

    __slots__ = ("_subscriptions",)

    def __init__(self) -> None:
        self._subscriptions: Dict[Type[Event], List[_HandlerLookup]] = {}

    def subscribe(self, event_type: Type[Event], handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` and return a callable that removes it again."""

        self._subscriptions.setdefault(event_type, []).append(_lookup_for(handler))
        LOGGER.debug("%s subscribed to %s", _describe(handler), event_type.__name__)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: Type[Event], handler: EventHandler) -> None:
        lookups = self._subscriptions.get(event_type, [])
        for index, lookup in enumerate(lookups):
            if lookup() == handler:
                del lookups[index]
                return

    def publish(self, event: Event) -> int:
        """Deliver ``event`` and return how many handlers received it."""

        lookups = self._subscriptions.get(type(event))
        if not lookups:
            return 0
        resolved = [(lookup, lookup()) for lookup in lookups]
        lookups[:] = [lookup for lookup, handler in resolved if handler is not None]

        delivered = 0
        for _, handler in resolved:
            if handler is None:
                continue
            delivered += 1
            try:
                handler(event)
            except Exception:
                LOGGER.exception("%s failed while handling %s", _describe(handler), type(event).__name__)
        return delivered

    def clear(self) -> None:
        self._subscriptions.clear()

    def handler_count(self, event_type: Type[Event] | None = None) -> int:
        if event_type is None:
            return sum(len(lookups) for lookups in self._subscriptions.values())
        return len(self._subscriptions.get(event_type, ()))


def _lookup_for(handler: EventHandler) -> _HandlerLookup:
    if inspect.ismethod(handler):
        return weakref.WeakMethod(handler)
    return lambda: handler


def _describe(handler: EventHandler) -> str:
    if inspect.ismethod(handler):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__qualname__", repr(handler))
