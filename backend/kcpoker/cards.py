"""Card, Deck and muck representation."""

from __future__ import annotations

import random
import secrets
from enum import IntEnum, Enum
from typing import Any, Iterable, Optional

from kcpoker.errors import DeckExhausted


class Suit(str, Enum):
    CLUBS = "c"
    DIAMONDS = "d"
    HEARTS = "h"
    SPADES = "s"


class Rank(IntEnum):
    TWO = 2
    THREE = 3
    FOUR = 4
    FIVE = 5
    SIX = 6
    SEVEN = 7
    EIGHT = 8
    NINE = 9
    TEN = 10
    JACK = 11
    QUEEN = 12
    KING = 13
    ACE = 14


RANK_SYMBOLS = {
    Rank.TWO: "2",
    Rank.THREE: "3",
    Rank.FOUR: "4",
    Rank.FIVE: "5",
    Rank.SIX: "6",
    Rank.SEVEN: "7",
    Rank.EIGHT: "8",
    Rank.NINE: "9",
    Rank.TEN: "T",
    Rank.JACK: "J",
    Rank.QUEEN: "Q",
    Rank.KING: "K",
    Rank.ACE: "A",
}

_RANK_BY_SYMBOL = {v: k for k, v in RANK_SYMBOLS.items()}

SUIT_SYMBOLS = {
    Suit.HEARTS: "♥",
    Suit.DIAMONDS: "♦",
    Suit.CLUBS: "♣",
    Suit.SPADES: "♠",
}

# Cut-for-dealer tie break: s > h > d > c
SUIT_CUT_ORDER = {
    Suit.SPADES: 4,
    Suit.HEARTS: 3,
    Suit.DIAMONDS: 2,
    Suit.CLUBS: 1,
}

# Process-wide entropy source for live shuffles.
_system_rng = secrets.SystemRandom()


class Card:
    __slots__ = ("rank", "suit")

    def __init__(self, rank: Rank, suit: Suit) -> None:
        self.rank = rank
        self.suit = suit

    def __repr__(self) -> str:
        return f"{RANK_SYMBOLS[self.rank]}{self.suit.value}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Card):
            return NotImplemented
        return self.rank == other.rank and self.suit == other.suit

    def __hash__(self) -> int:
        return hash((self.rank, self.suit))

    @property
    def cut_value(self) -> tuple[int, int]:
        """Ordering used when cutting for the dealer button."""
        return (int(self.rank), SUIT_CUT_ORDER[self.suit])

    def to_dict(self) -> dict:
        return {"rank": RANK_SYMBOLS[self.rank], "suit": self.suit.value}

    @classmethod
    def from_dict(cls, data: dict) -> Card:
        return cls(_RANK_BY_SYMBOL[str(data["rank"]).upper()], Suit(data["suit"]))

    @classmethod
    def from_str(cls, s: str) -> Card:
        """Parse 'Ah', 'Ts', '2c' etc."""
        rank_char = s[0].upper()
        suit_char = s[1].lower()
        return cls(_RANK_BY_SYMBOL[rank_char], Suit(suit_char))


def full_deck() -> list[Card]:
    return [Card(rank, suit) for suit in Suit for rank in Rank]


def cards_from_str(text: str) -> list[Card]:
    """Parse a space separated list such as '7c 5d 4h 3s 2c'."""
    return [Card.from_str(tok) for tok in text.split()]


class Deck:
    """52-card deck plus the muck that discards and folded hands land in.

    The deck is dealt from the head.  When a draw needs more cards than
    remain, the muck is shuffled and appended to the deck.
    """

    def __init__(
        self,
        cards: Optional[list[Card]] = None,
        muck: Optional[list[Card]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._rng = rng or _system_rng
        if cards is None:
            self._cards = full_deck()
            self.shuffle()
        else:
            self._cards = list(cards)
        self._muck: list[Card] = list(muck) if muck else []

    def _fisher_yates(self, cards: list[Card]) -> None:
        for i in range(len(cards) - 1, 0, -1):
            j = self._rng.randrange(i + 1)
            cards[i], cards[j] = cards[j], cards[i]

    def shuffle(self) -> None:
        self._fisher_yates(self._cards)

    def deal(self, n: int = 1) -> list[Card]:
        if n > len(self._cards):
            raise DeckExhausted(f"Cannot deal {n} cards from {len(self._cards)}")
        dealt = self._cards[:n]
        self._cards = self._cards[n:]
        return dealt

    def deal_one(self) -> Card:
        return self.deal(1)[0]

    def muck(self, cards: Iterable[Card]) -> None:
        self._muck.extend(cards)

    def reshuffle_muck_if_needed(self, n: int) -> bool:
        """Make sure *n* cards can be dealt.  Returns True if the muck was used."""
        if len(self._cards) >= n:
            return False
        if len(self._cards) + len(self._muck) < n:
            raise DeckExhausted(
                f"Need {n} cards, only {len(self._cards) + len(self._muck)} left"
            )
        recycled = self._muck
        self._muck = []
        self._fisher_yates(recycled)
        self._cards.extend(recycled)
        return True

    @property
    def remaining(self) -> int:
        return len(self._cards)

    @property
    def muck_size(self) -> int:
        return len(self._muck)

    @property
    def cards(self) -> list[Card]:
        return list(self._cards)

    @property
    def mucked(self) -> list[Card]:
        return list(self._muck)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cards": [c.to_dict() for c in self._cards],
            "muck": [c.to_dict() for c in self._muck],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], rng: Optional[random.Random] = None) -> Deck:
        return cls(
            cards=[Card.from_dict(c) for c in data.get("cards", [])],
            muck=[Card.from_dict(c) for c in data.get("muck", [])],
            rng=rng,
        )
