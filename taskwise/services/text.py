from __future__ import annotations

import re
from typing import List

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "to", "for", "of", "on", "in", "by", "with", "from",
    "that", "this", "it", "its", "my", "your", "our", "their",
    "task", "tasks", "item", "items",
})

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_SPACES = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    if not text:
        return ""
    lowered = _NON_ALNUM.sub(" ", text.lower())
    return _SPACES.sub(" ", lowered).strip()


def tokenize(text: str) -> List[str]:
    """Lowercase alphanumeric tokens longer than two chars, stop-words removed."""
    return [t for t in normalize_text(text).split(" ") if len(t) > 2 and t not in STOP_WORDS]


def normalize_title_key(title: str | None) -> str:
    return normalize_text(title or "")
