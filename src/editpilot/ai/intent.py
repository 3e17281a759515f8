"""Keyword-based intent inference for a user's edit request.

The classifier is intentionally permissive: every operation is allowed
unless the message matches one of the restriction patterns.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

__all__ = ["IntentResult", "infer_intent"]

_INSERT_VERBS = ("insert", "add", "append", "create", "new", "include", "incorporate")
_REPLACE_VERBS = (
    "replace",
    "substitute",
    "swap",
    "exchange",
    "change",
    "modify",
    "adjust",
    "tweak",
    "revise",
    "correct",
    "fix",
    "improve",
    "enhance",
)
_GRAMMAR_KEYWORDS = ("grammar", "proofread", "typo", "spelling", "punctuation", "capitalize")
_DEDUPE_KEYWORDS = ("dedup", "de-dup", "duplicate", "remove duplicates", "duplicates")
_MULTI_KEYWORDS = ("multi", "multiple", "several", "batch", "all", "every")
_FULL_REVAMP_KEYWORDS = ("complete revamp", "rewrite everything", "from scratch", "restructure entire")

_RESTRICTED_READ_VERBS = ("read", "view", "check", "examine", "review", "look", "see")
_RESTRICTED_EDIT_VERBS = ("edit", "modify", "change", "alter", "update", "delete", "remove", "add", "insert")
_NO_EDIT_NOUNS = ("edit", "modifications", "changes")
_READ_ACTIONS = ("read", "view", "check", "examine", "review", "look", "see", "show", "display", "inspect", "analyze")
_EDIT_ACTIONS = ("edit", "modify", "change", "fix", "correct", "improve", "add", "remove", "delete", "insert", "create")

_NEGATORS = ("no", "not", "don't", "dont", "do not", "without", "reject", "skip", "ignore", "avoid", "never")
_NEGATION_WINDOW = 3


def _alternation(words: Iterable[str]) -> str:
    return "|".join(re.escape(word) for word in sorted(words, key=len, reverse=True))


def _word_pattern(words: Iterable[str]) -> re.Pattern[str]:
    # Prefix-anchored so inflected forms ("adds", "removing") still match.
    return re.compile(rf"\b(?:{_alternation(words)})")


def _stem_pattern(words: Iterable[str]) -> re.Pattern[str]:
    # Unanchored so derived verbs ("reinsert", "autocorrect") count as edits.
    return re.compile(_alternation(words))


_INSERT_RE = _stem_pattern(_INSERT_VERBS)
_REPLACE_RE = _stem_pattern(_REPLACE_VERBS)
_GRAMMAR_RE = _word_pattern(_GRAMMAR_KEYWORDS)
_DEDUPE_RE = _word_pattern(_DEDUPE_KEYWORDS)
_MULTI_RE = _word_pattern(_MULTI_KEYWORDS)
_FULL_REVAMP_RE = _word_pattern(_FULL_REVAMP_KEYWORDS)
_READ_ACTION_RE = _word_pattern(_READ_ACTIONS)
_EDIT_ACTION_RE = _stem_pattern(_EDIT_ACTIONS)

_EXPLICIT_RESTRICTION_RE = re.compile(rf"\b(?:only|just)\s+(?:{_alternation(_RESTRICTED_READ_VERBS)})\b")
_NEGATIVE_RESTRICTION_RE = re.compile(
    rf"\b(?:don't|dont|do not)\s+(?:{_alternation(_RESTRICTED_EDIT_VERBS)})\b"
    rf"|\bno\s+(?:{_alternation(_NO_EDIT_NOUNS)})\b"
)
_NEGATOR_RE = re.compile(rf"(?:^|\s)(?:{_alternation(_NEGATORS)})$")


@dataclass(slots=True, frozen=True)
class IntentResult:
    """Permission flags derived once per user turn."""

    allow_insert: bool = True
    allow_delete: bool = True
    allow_replace: bool = True
    is_read_only: bool = False
    multi_edit: bool = False
    full_revamp: bool = False
    wants_grammar: bool = False
    wants_dedupe: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "allowInsert": self.allow_insert,
            "allowDelete": self.allow_delete,
            "allowReplace": self.allow_replace,
            "isReadOnly": self.is_read_only,
            "multiEdit": self.multi_edit,
            "fullRevamp": self.full_revamp,
            "wantsGrammar": self.wants_grammar,
            "wantsDedupe": self.wants_dedupe,
        }


def infer_intent(text: str | None) -> IntentResult:
    """Classify ``text`` into an :class:`IntentResult`.

    Args:
        text: The raw user message.

    Returns:
        The derived flags. Read-only is the OR of an explicit restriction
        ("only read ..."), a negative one ("don't edit ...") and a request
        that names a read action without any edit action.
    """

    lowered = (text or "").lower()

    explicit_restriction = bool(_EXPLICIT_RESTRICTION_RE.search(lowered))
    negative_restriction = bool(_NEGATIVE_RESTRICTION_RE.search(lowered))
    read_without_edit = bool(_READ_ACTION_RE.search(lowered)) and not _EDIT_ACTION_RE.search(lowered)
    restricted = explicit_restriction or negative_restriction or read_without_edit

    insert = bool(_INSERT_RE.search(lowered))
    replace = bool(_REPLACE_RE.search(lowered))
    multi = bool(_MULTI_RE.search(lowered))
    full = bool(_FULL_REVAMP_RE.search(lowered))

    return IntentResult(
        allow_insert=not restricted,
        allow_delete=not restricted,
        allow_replace=not restricted,
        is_read_only=restricted,
        multi_edit=multi or full or insert or replace,
        full_revamp=full,
        wants_grammar=_mentions_affirmatively(lowered, _GRAMMAR_RE),
        wants_dedupe=_mentions_affirmatively(lowered, _DEDUPE_RE),
    )


def _mentions_affirmatively(text: str, pattern: re.Pattern[str]) -> bool:
    """Return True if ``pattern`` occurs somewhere not governed by a negator."""

    for match in pattern.finditer(text):
        if not _is_negated(text[: match.start()]):
            return True
    return False


def _is_negated(prefix: str) -> bool:
    words = prefix.split()[-_NEGATION_WINDOW:]
    for index in range(len(words)):
        if _NEGATOR_RE.search(" ".join(words[: index + 1])):
            return True
    return False
