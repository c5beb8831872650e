"""Equity-driven play for the hard Single Draw bot.

With only one draw, the bot can count its outs exactly: for a one-card
draw it walks every unseen card, for a two-card draw it enumerates small
decks and samples large ones.  Betting strength blends that equity with
a read on how many cards the opponents drew.
"""

from __future__ import annotations

import random
from collections import Counter
from itertools import combinations
from typing import Any, Optional, Sequence

from kcpoker.cards import Card, full_deck
from kcpoker.engine import Phase
from kcpoker.lowball_eval import LowballCategory, evaluate

# Two-card draws enumerate when the unseen deck is this small, otherwise sample
ENUMERATE_LIMIT = 20
SAMPLE_COUNT = 200


def _values(cards: Sequence[Card]) -> list[int]:
    return sorted(int(c.rank) for c in cards)


def _is_made_low(values: Sequence[int], suits: Sequence[str]) -> bool:
    """Unpaired, no straight, no flush."""
    unique = sorted(set(values))
    if len(unique) != len(values):
        return False
    if len(values) == 5 and unique[-1] - unique[0] == 4:
        return False
    return not (len(suits) == 5 and len(set(suits)) == 1)


def smoothness(kept: Sequence[Card]) -> int:
    """Roughness of a draw: highest card plus penalties for connected or suited cards.

    Lower is smoother.  Each adjacent pair of ranks adds 2, and four or
    more kept cards with three of a suit add 3.
    """
    if not kept:
        return 0
    values = _values(kept)
    score = values[-1]
    for a, b in zip(values, values[1:]):
        if b - a == 1:
            score += 2
    suited = max(Counter(c.suit for c in kept).values())
    if suited >= 3 and len(kept) >= 4:
        score += 3
    return score


def _unseen(known: Sequence[Card]) -> list[Card]:
    seen = set(known)
    return [c for c in full_deck() if c not in seen]


def draw_one_equity(
    kept: Sequence[Card], known: Sequence[Card], beat: int = 14
) -> dict[str, Any]:
    """Chance that one card completes *kept* into a made low below *beat*."""
    deck = _unseen(known)
    outs = 0
    made = 0
    made_high_total = 0
    best_high: Optional[int] = None
    kept_values = [int(c.rank) for c in kept]
    kept_suits = [c.suit.value for c in kept]

    for card in deck:
        values = kept_values + [int(card.rank)]
        if not _is_made_low(values, kept_suits + [card.suit.value]):
            continue
        high = max(values)
        made += 1
        made_high_total += high
        if best_high is None or high < best_high:
            best_high = high
        if high < beat:
            outs += 1

    return {
        "equity": outs / len(deck) if deck else 0.0,
        "outs": outs,
        "total_cards": len(deck),
        "best_possible_high": best_high,
        "made_count": made,
        "avg_made_high": made_high_total / made if made else None,
    }


def draw_two_equity(
    kept: Sequence[Card],
    known: Sequence[Card],
    beat: int = 14,
    rng: Optional[random.Random] = None,
) -> dict[str, Any]:
    """Chance that two cards complete *kept* into a made low below *beat*."""
    rng = rng or random.Random()
    deck = _unseen(known)
    kept_values = [int(c.rank) for c in kept]
    kept_suits = [c.suit.value for c in kept]

    if len(deck) <= ENUMERATE_LIMIT:
        draws = list(combinations(deck, 2))
    else:
        draws = [tuple(rng.sample(deck, 2)) for _ in range(SAMPLE_COUNT)]

    hits = 0
    for pair in draws:
        values = kept_values + [int(c.rank) for c in pair]
        suits = kept_suits + [c.suit.value for c in pair]
        if _is_made_low(values, suits) and max(values) < beat:
            hits += 1
    return {"equity": hits / len(draws) if draws else 0.0, "samples": len(draws)}


def estimate_opponent_range(view: dict[str, Any]) -> dict[str, Any]:
    """Guess how strong the live opponents are from their draws and betting."""
    opponents = [o for o in view["opponents"] if o["status"] in ("active", "all-in")]
    if not opponents:
        return {"avg_cards_drawn": -1, "likely_pat_strength": 10, "aggressive": False}

    avg_drawn: float = -1
    if Phase(view["phase"]) in (Phase.BETTING_2, Phase.SHOWDOWN):
        drawn = [o["cards_drawn"] for o in opponents if o.get("cards_drawn") is not None]
        if drawn:
            avg_drawn = sum(drawn) / len(drawn)

    aggressive = view["current_bet"] > view["min_bet"] * 2
    if avg_drawn < 0:
        strength = 10
    elif avg_drawn == 0:
        strength = 8 if aggressive else 10
    elif avg_drawn <= 1:
        strength = 9
    else:
        strength = 11
    return {"avg_cards_drawn": avg_drawn, "likely_pat_strength": strength, "aggressive": aggressive}


def _late_position(view: dict[str, Any]) -> bool:
    live_seats = sorted([view["seat"]] + [o["seat"] for o in view["opponents"]])
    return live_seats.index(view["seat"]) >= len(live_seats) // 2


def decide_discard(view: dict[str, Any], rng: random.Random) -> list[int]:
    """Indices to throw away in the single draw."""
    hand: list[Card] = view["hand"]
    made = evaluate(hand).category == LowballCategory.HIGH_CARD
    high = max(int(c.rank) for c in hand)
    late = _late_position(view)

    # Snow: stand pat on rags and represent a made hand
    if not made or high >= 12:
        if rng.random() < (0.15 if late else 0.08):
            return []

    if made:
        if high <= 9:
            return []
        top = max(range(5), key=lambda i: int(hand[i].rank))
        kept = [c for i, c in enumerate(hand) if i != top]
        if high == 10:
            smooth = smoothness(kept)
            eq = draw_one_equity(kept, hand, beat=9)["equity"]
            if (smooth <= 7 and eq > 0.45) or (smooth <= 8 and eq > 0.35 and late):
                return [top]
            return []
        if high == 11:
            if all(int(c.rank) <= 8 for c in kept):
                return [top]
            if draw_one_equity(kept, hand, beat=10)["equity"] > 0.25:
                return [top]
            return []
        return [top]

    best: Optional[int] = None
    best_score = 0.0
    for i in range(5):
        kept = [c for j, c in enumerate(hand) if j != i]
        if len({int(c.rank) for c in kept}) < 4:
            continue
        score = draw_one_equity(kept, hand, beat=10)["equity"] * 100 - smoothness(kept)
        if score > best_score:
            best, best_score = i, score
    if best is not None:
        return [best]

    counts = Counter(int(c.rank) for c in hand)
    rank, count = max(counts.items(), key=lambda item: (item[1], item[0]))
    if count >= 3:
        return [i for i, c in enumerate(hand) if int(c.rank) == rank][:2]
    if count == 2:
        return [next(i for i, c in enumerate(hand) if int(c.rank) == rank)]
    return [max(range(5), key=lambda i: int(hand[i].rank))]


def _pat_strength(values: list[int]) -> int:
    high, second = values[-1], values[-2]
    strength = {7: 95, 8: 85, 9: 72, 10: 58, 11: 45}.get(high, 35)
    if second <= 5:
        strength += 3
    elif second >= 8:
        strength -= 3
    return strength


def equity_strength(
    view: dict[str, Any], discards: Sequence[int], rng: random.Random
) -> dict[str, Any]:
    """Hand strength on a 0-100 scale for the hard bot's betting decisions."""
    hand: list[Card] = view["hand"]
    result = evaluate(hand)
    made = result.category == LowballCategory.HIGH_CARD
    values = _values(hand)
    high = values[-1]
    opponent = estimate_opponent_range(view)
    draw_count = len(discards)
    snowing = draw_count == 0 and not made

    if Phase(view["phase"]) == Phase.BETTING_1:
        if made and draw_count == 0:
            strength = _pat_strength(values)
        elif snowing:
            strength = 65
        elif draw_count == 1:
            kept = [c for i, c in enumerate(hand) if i not in discards]
            kept_high = max(int(c.rank) for c in kept)
            if kept_high <= 7:
                strength = 60 + int(draw_one_equity(kept, hand, beat=9)["equity"] * 30)
                if smoothness(kept) <= 7:
                    strength += 5
            elif kept_high <= 8:
                strength = 50 + int(draw_one_equity(kept, hand, beat=10)["equity"] * 25)
            elif kept_high <= 9:
                strength = 40 + rng.randrange(10)
            else:
                strength = 25
        else:
            kept = [c for i, c in enumerate(hand) if i not in discards]
            strength = 15 + int(draw_two_equity(kept, hand, beat=9, rng=rng)["equity"] * 10)
    else:
        opp_drawn = opponent["avg_cards_drawn"]
        if made:
            if high <= 7:
                strength = 97
            elif high == 8:
                strength = 88
            elif high == 9:
                strength = 60 if opp_drawn == 0 else 75
            elif high == 10:
                strength = 45 if opp_drawn == 0 else 55 if opp_drawn <= 1 else 65
            elif high == 11:
                strength = 30 if opp_drawn == 0 else 45
            else:
                strength = 25
            if high <= 9 and values[-2] <= 5:
                strength += 3
        elif snowing:
            strength = 55 if opp_drawn >= 1 else 35
        else:
            strength = {
                LowballCategory.PAIR: 20,
                LowballCategory.TWO_PAIR: 12,
                LowballCategory.TRIPS: 8,
                LowballCategory.STRAIGHT: 15,
            }.get(LowballCategory(result.category), 5)

    return {
        "strength": max(0, min(100, strength)),
        "is_drawing": draw_count > 0,
        "is_pat": made and draw_count == 0,
        "is_snowing": snowing,
        "draw_count": draw_count,
        "opponent_range": opponent,
    }


def decide_bet(view: dict[str, Any], rng: random.Random) -> tuple[str, int]:
    """(action, raise-to amount) for the hard Single Draw bot."""
    if Phase(view["phase"]) == Phase.BETTING_1:
        discards = decide_discard(view, rng)
    else:
        # After the draw only the number of cards taken matters
        discards = list(range(view.get("cards_drawn") or 0))
    info = equity_strength(view, discards, rng)
    strength = info["strength"]
    pot = view["pot"]
    to_call = view["to_call"]
    chips = view["chips"]
    min_bet = view["min_bet"]
    current = view["current_bet"]
    needed = to_call / (pot + to_call) * 100 if to_call > 0 else 0

    if strength >= 85:
        target = max(current + min_bet, int(pot * (1.0 if strength >= 95 else 0.7)))
        return ("RAISE", min(target, view["current_round_bet"] + chips))

    if strength >= 65:
        if to_call == 0:
            return ("BET", max(min_bet, int(pot * 0.5)))
        if to_call <= pot * 0.4 or strength >= 75:
            return ("CALL", 0)
        return ("FOLD", 0)

    if info["is_snowing"]:
        if to_call == 0:
            return ("BET", max(min_bet, int(pot * 0.65)))
        if to_call <= pot * 0.3 and rng.random() < 0.25:
            return ("RAISE", max(current + min_bet, int(pot * 0.7)))
        return ("FOLD", 0)

    if strength >= 45:
        if to_call == 0:
            return ("CHECK", 0)
        if strength > needed + 10 or to_call <= chips * 0.15:
            return ("CALL", 0)
        return ("FOLD", 0)

    if to_call == 0:
        if strength < 20 and not _late_position(view) and rng.random() < 0.08:
            return ("BET", max(min_bet, int(pot * 0.6)))
        return ("CHECK", 0)
    return ("FOLD", 0)
