"""Evaluation result shared by the Lowball and Hold'em evaluators."""

from __future__ import annotations

from typing import Union

from kcpoker.cards import Card


class HandResult:
    """Outcome of evaluating one hand under a specific game's ordering.

    ``key`` is a tuple where larger always means the better hand, whatever
    the game, so comparisons never need to know which game produced it.
    ``score`` is the game's own representation (an int for Hold'em, a
    fixed-width digit string for Lowball where smaller is better).
    """

    __slots__ = ("category", "tiebreak", "score", "description", "key", "cards")

    def __init__(
        self,
        category: int,
        tiebreak: tuple[int, ...],
        score: Union[int, str],
        description: str,
        key: tuple[int, ...],
        cards: list[Card],
    ) -> None:
        self.category = category
        self.tiebreak = tiebreak
        self.score = score
        self.description = description
        self.key = key
        self.cards = cards

    def __lt__(self, other: HandResult) -> bool:
        return self.key < other.key

    def __gt__(self, other: HandResult) -> bool:
        return self.key > other.key

    def __le__(self, other: HandResult) -> bool:
        return self.key <= other.key

    def __ge__(self, other: HandResult) -> bool:
        return self.key >= other.key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HandResult):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return f"HandResult({self.description!r}, {self.score!r})"

    def to_dict(self) -> dict:
        return {
            "category": int(self.category),
            "score": self.score,
            "description": self.description,
        }


def compare(a: HandResult, b: HandResult) -> int:
    """Return 1 if *a* wins, -1 if *b* wins, 0 for a chop."""
    if a.key > b.key:
        return 1
    if a.key < b.key:
        return -1
    return 0
