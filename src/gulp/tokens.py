from __future__ import annotations

import re

__all__ = [
    "tokenize",
    "word_count",
    "estimate_reading_time",
    "format_reading_time",
]

_LINE_BREAKS_RE = re.compile(r"[\r\n\t]+")
_WHITESPACE_RE = re.compile(r"\s+")


def tokenize(text: object) -> list[str]:
    """
    Split source text into display tokens.

    Line breaks and tabs become spaces, whitespace runs collapse to a single
    space, and the result is split on spaces. Punctuation stays attached to
    its word ("word," is one token) because pacing depends on it.
    """
    if not text or not isinstance(text, str):
        return []
    normalized = _LINE_BREAKS_RE.sub(" ", text)
    normalized = _WHITESPACE_RE.sub(" ", normalized).strip()
    if not normalized:
        return []
    return [token for token in normalized.split(" ") if token]


def word_count(text: object) -> int:
    return len(tokenize(text))


def estimate_reading_time(text: object, wpm: float) -> float:
    """Return the estimated reading time in minutes."""
    if wpm <= 0:
        return 0.0
    return word_count(text) / wpm


def format_reading_time(minutes: float) -> str:
    total_seconds = int(round(minutes * 60))
    mins, secs = divmod(total_seconds, 60)
    if mins == 0:
        return f"{secs}s"
    if secs == 0:
        return f"{mins}m"
    return f"{mins}m {secs}s"
