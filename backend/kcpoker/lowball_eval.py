"""2-7 Lowball hand evaluator.

Aces are always high, straights and flushes count against the hand and
A-2-3-4-5 is not a straight.  Lower is better: the best possible hand is
7-5-4-3-2 offsuit ("number one").
"""

from __future__ import annotations

from collections import Counter
from enum import IntEnum
from typing import Sequence

from kcpoker.cards import Card, RANK_SYMBOLS, Rank
from kcpoker.hands import HandResult


class LowballCategory(IntEnum):
    HIGH_CARD = 1
    PAIR = 2
    TWO_PAIR = 3
    TRIPS = 4
    STRAIGHT = 5
    FLUSH = 6
    FULL_HOUSE = 7
    QUADS = 8
    STRAIGHT_FLUSH = 9


CATEGORY_NAMES = {
    LowballCategory.HIGH_CARD: "High Card",
    LowballCategory.PAIR: "Pair",
    LowballCategory.TWO_PAIR: "Two Pair",
    LowballCategory.TRIPS: "Trips",
    LowballCategory.STRAIGHT: "Straight",
    LowballCategory.FLUSH: "Flush",
    LowballCategory.FULL_HOUSE: "Full House",
    LowballCategory.QUADS: "Quads",
    LowballCategory.STRAIGHT_FLUSH: "Straight Flush",
}

NUMBER_ONE = (7, 5, 4, 3, 2)


def is_straight(values: Sequence[int]) -> bool:
    """Five distinct consecutive values, ace high only."""
    return len(set(values)) == 5 and max(values) - min(values) == 4


def display(values: Sequence[int]) -> str:
    """Render values high to low, e.g. '9-7-5-3-2'."""
    return "-".join(RANK_SYMBOLS[Rank(v)] for v in sorted(values, reverse=True))


def _tiebreak(category: LowballCategory, counts: Counter) -> tuple[int, ...]:
    # Groups ordered by (count desc, value desc): pair rank before kickers,
    # higher pair before lower pair, trips before pair.
    groups = sorted(counts.items(), key=lambda x: (x[1], x[0]), reverse=True)
    if category in (
        LowballCategory.HIGH_CARD,
        LowballCategory.STRAIGHT,
        LowballCategory.FLUSH,
        LowballCategory.STRAIGHT_FLUSH,
    ):
        return tuple(sorted(counts.elements(), reverse=True))
    return tuple(v for v, _ in groups)


def evaluate(cards: Sequence[Card]) -> HandResult:
    """Evaluate exactly five cards under 2-7 rules."""
    if len(cards) != 5:
        raise ValueError(f"Lowball hands have exactly 5 cards, got {len(cards)}")

    values = [int(c.rank) for c in cards]
    counts = Counter(values)
    shape = sorted(counts.values(), reverse=True)
    flush = len({c.suit for c in cards}) == 1
    straight = is_straight(values)

    if straight and flush:
        category = LowballCategory.STRAIGHT_FLUSH
    elif shape[0] == 4:
        category = LowballCategory.QUADS
    elif shape[0] == 3 and shape[1] == 2:
        category = LowballCategory.FULL_HOUSE
    elif flush:
        category = LowballCategory.FLUSH
    elif straight:
        category = LowballCategory.STRAIGHT
    elif shape[0] == 3:
        category = LowballCategory.TRIPS
    elif shape[0] == 2 and shape[1] == 2:
        category = LowballCategory.TWO_PAIR
    elif shape[0] == 2:
        category = LowballCategory.PAIR
    else:
        category = LowballCategory.HIGH_CARD

    tiebreak = _tiebreak(category, counts)
    score = f"{int(category)}" + "".join(f"{v:02d}" for v in tiebreak)
    key = (-int(category),) + tuple(-v for v in tiebreak)

    shown = display(values)
    if category == LowballCategory.HIGH_CARD:
        description = shown
        if tiebreak == NUMBER_ONE:
            description = f"{shown} (Number One)"
    else:
        description = f"{CATEGORY_NAMES[category]}, {shown}"

    return HandResult(category, tiebreak, score, description, key, list(cards))


def is_clean_low(cards: Sequence[Card]) -> bool:
    """True for a made low: no pair, straight or flush."""
    return evaluate(cards).category == LowballCategory.HIGH_CARD


def is_number_one(cards: Sequence[Card]) -> bool:
    result = evaluate(cards)
    return result.category == LowballCategory.HIGH_CARD and result.tiebreak == NUMBER_ONE


def high_card(cards: Sequence[Card]) -> int:
    return max(int(c.rank) for c in cards)
