from __future__ import annotations

from dataclasses import dataclass

__all__ = ["PivotSplit", "pivot_index", "pivot_offset", "split_at_pivot"]

# (max length, pivot index) pairs; longer words use len // 4.
_PIVOT_STEPS: tuple[tuple[int, int], ...] = (
    (1, 0),
    (3, 1),
    (5, 1),
    (7, 2),
    (9, 2),
    (11, 3),
    (13, 3),
)


@dataclass(frozen=True, slots=True)
class PivotSplit:
    """A word cut around the character aligned to the fixation line."""

    left: str
    pivot: str
    right: str

    @property
    def word(self) -> str:
        return f"{self.left}{self.pivot}{self.right}"

    def to_payload(self) -> dict[str, str]:
        return {"left": self.left, "pivot": self.pivot, "right": self.right}


def pivot_index(word: str) -> int:
    if not word:
        return 0
    length = len(word)
    for limit, index in _PIVOT_STEPS:
        if length <= limit:
            return index
    return length // 4


def pivot_offset(word: str) -> int:
    """Number of characters rendered before the pivot."""
    return pivot_index(word)


def split_at_pivot(word: str) -> PivotSplit:
    if not word:
        return PivotSplit("", "", "")
    index = pivot_index(word)
    return PivotSplit(
        left=word[:index],
        pivot=word[index : index + 1],
        right=word[index + 1 :],
    )
