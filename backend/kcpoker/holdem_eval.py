"""Texas Hold'em hand evaluator.

Evaluates the best 5-card hand from 5-7 cards.  Higher is better.
"""

from __future__ import annotations

from collections import Counter
from enum import IntEnum
from itertools import combinations
from typing import Sequence

from kcpoker.cards import Card, Rank
from kcpoker.hands import HandResult


class HandCategory(IntEnum):
    HIGH_CARD = 0
    ONE_PAIR = 1
    TWO_PAIR = 2
    THREE_OF_A_KIND = 3
    STRAIGHT = 4
    FLUSH = 5
    FULL_HOUSE = 6
    FOUR_OF_A_KIND = 7
    STRAIGHT_FLUSH = 8
    ROYAL_FLUSH = 9


HAND_NAMES = {
    HandCategory.HIGH_CARD: "High Card",
    HandCategory.ONE_PAIR: "One Pair",
    HandCategory.TWO_PAIR: "Two Pair",
    HandCategory.THREE_OF_A_KIND: "Three of a Kind",
    HandCategory.STRAIGHT: "Straight",
    HandCategory.FLUSH: "Flush",
    HandCategory.FULL_HOUSE: "Full House",
    HandCategory.FOUR_OF_A_KIND: "Four of a Kind",
    HandCategory.STRAIGHT_FLUSH: "Straight Flush",
    HandCategory.ROYAL_FLUSH: "Royal Flush",
}

RANK_NAMES = {
    2: "Two", 3: "Three", 4: "Four", 5: "Five", 6: "Six", 7: "Seven",
    8: "Eight", 9: "Nine", 10: "Ten", 11: "Jack", 12: "Queen", 13: "King",
    14: "Ace",
}

_PLURAL = {6: "Sixes"}


def _plural(rank: int) -> str:
    return _PLURAL.get(rank, RANK_NAMES[rank] + "s")


def _describe(category: HandCategory, tiebreak: tuple[int, ...]) -> str:
    top = tiebreak[0]
    if category == HandCategory.HIGH_CARD:
        return f"{RANK_NAMES[top]} High"
    if category == HandCategory.ONE_PAIR:
        return f"Pair of {_plural(top)}"
    if category == HandCategory.TWO_PAIR:
        return f"Two Pair, {_plural(top)} and {_plural(tiebreak[1])}"
    if category == HandCategory.THREE_OF_A_KIND:
        return f"Three of a Kind, {_plural(top)}"
    if category == HandCategory.STRAIGHT:
        return f"Straight, {RANK_NAMES[top]} high"
    if category == HandCategory.FLUSH:
        return f"Flush, {RANK_NAMES[top]} high"
    if category == HandCategory.FULL_HOUSE:
        return f"Full House, {_plural(top)} over {_plural(tiebreak[1])}"
    if category == HandCategory.FOUR_OF_A_KIND:
        return f"Four of a Kind, {_plural(top)}"
    if category == HandCategory.STRAIGHT_FLUSH:
        return f"Straight Flush, {RANK_NAMES[top]} high"
    return HAND_NAMES[category]


def _numeric_score(category: HandCategory, tiebreak: tuple[int, ...]) -> int:
    """Pack category and tiebreakers into one int (base 15, five slots)."""
    score = int(category)
    padded = list(tiebreak) + [0] * (5 - len(tiebreak))
    for v in padded[:5]:
        score = score * 15 + v
    return score


def _make(category: HandCategory, tiebreak: tuple[int, ...], cards: list[Card]) -> HandResult:
    tiebreak = tuple(int(v) for v in tiebreak)
    return HandResult(
        category,
        tiebreak,
        _numeric_score(category, tiebreak),
        _describe(category, tiebreak),
        (int(category),) + tiebreak,
        cards,
    )


def _evaluate_five(cards: list[Card]) -> HandResult:
    """Evaluate exactly 5 cards."""
    ranks = sorted([int(c.rank) for c in cards], reverse=True)
    rank_counts = Counter(ranks)
    is_flush = len({c.suit for c in cards}) == 1

    is_straight = False
    high_card = ranks[0]
    unique_ranks = sorted(set(ranks), reverse=True)
    if len(unique_ranks) == 5:
        if unique_ranks[0] - unique_ranks[4] == 4:
            is_straight = True
            high_card = unique_ranks[0]
        # Ace-low straight (A-2-3-4-5)
        elif unique_ranks == [14, 5, 4, 3, 2]:
            is_straight = True
            high_card = 5

    if is_straight and is_flush:
        if high_card == Rank.ACE:
            return _make(HandCategory.ROYAL_FLUSH, (14,), cards)
        return _make(HandCategory.STRAIGHT_FLUSH, (high_card,), cards)

    # Sort by (count desc, rank desc)
    groups = sorted(rank_counts.items(), key=lambda x: (x[1], x[0]), reverse=True)

    if groups[0][1] == 4:
        return _make(HandCategory.FOUR_OF_A_KIND, (groups[0][0], groups[1][0]), cards)

    if groups[0][1] == 3 and groups[1][1] == 2:
        return _make(HandCategory.FULL_HOUSE, (groups[0][0], groups[1][0]), cards)

    if is_flush:
        return _make(HandCategory.FLUSH, tuple(ranks), cards)

    if is_straight:
        return _make(HandCategory.STRAIGHT, (high_card,), cards)

    kickers = tuple(sorted([r for r, c in groups if c == 1], reverse=True))

    if groups[0][1] == 3:
        return _make(HandCategory.THREE_OF_A_KIND, (groups[0][0],) + kickers, cards)

    if groups[0][1] == 2 and groups[1][1] == 2:
        pairs = sorted([r for r, c in groups if c == 2], reverse=True)
        return _make(HandCategory.TWO_PAIR, (pairs[0], pairs[1]) + kickers, cards)

    if groups[0][1] == 2:
        return _make(HandCategory.ONE_PAIR, (groups[0][0],) + kickers, cards)

    return _make(HandCategory.HIGH_CARD, tuple(ranks), cards)


def evaluate(cards: Sequence[Card]) -> HandResult:
    """Best 5-card hand from 2 hole cards plus the board (all 21 subsets of 7)."""
    if len(cards) < 5:
        raise ValueError(f"Need at least 5 cards, got {len(cards)}")

    if len(cards) == 5:
        return _evaluate_five(list(cards))

    best: HandResult | None = None
    for combo in combinations(cards, 5):
        result = _evaluate_five(list(combo))
        if best is None or result > best:
            best = result

    assert best is not None
    return best
