"""Client-side review engine: buffers, suggestion queue and rebasing."""

from .buffer import DocumentBuffer, EditApplyError
from .review import ReviewSession
from .suggestions import EditSuggestion, SuggestionStatus

__all__ = ["DocumentBuffer", "EditApplyError", "EditSuggestion", "ReviewSession", "SuggestionStatus"]
