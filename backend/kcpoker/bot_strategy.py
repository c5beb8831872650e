"""Bot decisions for every game and difficulty.

Each decision is a pure function of the bot's view of the table (see
``TableEngine.bot_view``) and a random source.  Whatever a strategy
proposes is forced onto the legal action set before it reaches the
engine, with bet and raise amounts clamped into the allowed range.
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from typing import Any, Optional

from kcpoker import bot_equity, holdem_eval, lowball_eval
from kcpoker.cards import Card
from kcpoker.engine import ActionType
from kcpoker.models import BotDifficulty, GameType

logger = logging.getLogger(__name__)

Decision = tuple[str, int]


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def decide_discard(
    view: dict[str, Any], difficulty: str, rng: Optional[random.Random] = None
) -> list[int]:
    """Card indices the bot throws away in a draw round."""
    rng = rng or random.Random()
    game_type = GameType(view["game_type"])
    difficulty = BotDifficulty(difficulty)
    hand: list[Card] = view["hand"]
    if game_type == GameType.HOLDEM or len(hand) != 5:
        return []
    if difficulty == BotDifficulty.HARD and game_type == GameType.SINGLE_DRAW_27:
        return bot_equity.decide_discard(view, rng)
    if difficulty == BotDifficulty.EASY:
        return _lowball_discard_easy(hand, rng)
    return _lowball_discard(hand)


def decide_action(
    view: dict[str, Any], difficulty: str, rng: Optional[random.Random] = None
) -> Decision:
    """(action, amount) for a betting turn; amount is the raise-to total."""
    rng = rng or random.Random()
    game_type = GameType(view["game_type"])
    difficulty = BotDifficulty(difficulty)

    if game_type == GameType.HOLDEM:
        proposal = _holdem_bet(view, difficulty, rng)
    elif difficulty == BotDifficulty.HARD and game_type == GameType.SINGLE_DRAW_27:
        proposal = bot_equity.decide_bet(view, rng)
    else:
        proposal = _lowball_bet(view, difficulty, rng)

    decision = legalize(proposal, view)
    if decision != proposal:
        logger.debug("Bot proposal %s adjusted to %s", proposal, decision)
    return decision


def legalize(proposal: Decision, view: dict[str, Any]) -> Decision:
    """Map a proposed action onto the legal set.

    A bet or raise that is not available becomes a call (or check), a
    check facing a bet becomes a fold and a fold that costs nothing
    becomes a check.
    """
    action, amount = proposal
    legal = {a["action"]: a for a in view["valid_actions"]}
    free = ActionType.CHECK.value in legal

    if action in (ActionType.BET.value, ActionType.RAISE.value):
        for kind in (ActionType.BET.value, ActionType.RAISE.value):
            if kind in legal:
                bounds = legal[kind]
                return (kind, max(bounds["min_amount"], min(int(amount), bounds["max_amount"])))
        action = ActionType.CALL.value

    if action == ActionType.ALL_IN.value and action in legal:
        return (action, 0)
    if action in (ActionType.CALL.value, ActionType.ALL_IN.value):
        if ActionType.CALL.value in legal:
            return (ActionType.CALL.value, 0)
        if ActionType.ALL_IN.value in legal and not free:
            return (ActionType.ALL_IN.value, 0)
    if free:
        return (ActionType.CHECK.value, 0)
    return (ActionType.FOLD.value, 0)


# ---------------------------------------------------------------------------
# Lowball (triple draw, easy/medium single draw)
# ---------------------------------------------------------------------------


def _ranks(hand: list[Card]) -> list[int]:
    return [int(c.rank) for c in hand]


def _is_made(hand: list[Card]) -> bool:
    return lowball_eval.evaluate(hand).category == lowball_eval.LowballCategory.HIGH_CARD


def _paired_ranks(hand: list[Card]) -> list[int]:
    counts = Counter(_ranks(hand))
    return sorted((r for r, n in counts.items() if n >= 2), reverse=True)


def _indices_of(hand: list[Card], rank: int) -> list[int]:
    return [i for i, c in enumerate(hand) if int(c.rank) == rank]


def _by_rank_desc(hand: list[Card]) -> list[int]:
    return sorted(range(len(hand)), key=lambda i: int(hand[i].rank), reverse=True)


def _lowball_discard_easy(hand: list[Card], rng: random.Random) -> list[int]:
    high = max(_ranks(hand))
    made = _is_made(hand)
    if made and high <= 10:
        return []
    if made and high <= 11 and rng.random() < 0.2:
        return []

    count = rng.randint(1, 3)
    pairs = _paired_ranks(hand)
    if pairs and rng.random() < 0.5:
        return _indices_of(hand, pairs[0])[:count]
    return _by_rank_desc(hand)[:count]


def _lowball_discard(hand: list[Card]) -> list[int]:
    """Medium-strength draw: keep made lows, break rough ones, pitch pairs and paint."""
    ranks = _ranks(hand)
    high = max(ranks)
    if _is_made(hand):
        if high <= 10:
            return []
        return [_by_rank_desc(hand)[0]]

    counts = Counter(ranks)
    exact_pairs = sorted(r for r, n in counts.items() if n == 2)
    if exact_pairs and exact_pairs[0] <= 4:
        pair = exact_pairs[0]
        if all(r < 9 for r in ranks if r != pair):
            return _indices_of(hand, pair)[:1]

    pairs = _paired_ranks(hand)
    if pairs:
        return _indices_of(hand, pairs[0])[:2]
    return [i for i in _by_rank_desc(hand) if int(hand[i].rank) >= 9][:3]


def lowball_strength(hand: list[Card]) -> int:
    """0-100 for a 2-7 hand, discounted by how many cards it still needs."""
    result = lowball_eval.evaluate(hand)
    ranks = sorted(_ranks(hand))
    if result.category == lowball_eval.LowballCategory.HIGH_CARD:
        high = ranks[-1]
        if tuple(ranks) == (2, 3, 4, 5, 7):
            strength = 100
        else:
            strength = {7: 90, 8: 80, 9: 70, 10: 60}.get(high, 50)
    else:
        strength = {
            lowball_eval.LowballCategory.PAIR: 30,
            lowball_eval.LowballCategory.TWO_PAIR: 20,
            lowball_eval.LowballCategory.TRIPS: 15,
            lowball_eval.LowballCategory.STRAIGHT: 10,
            lowball_eval.LowballCategory.FLUSH: 5,
        }.get(lowball_eval.LowballCategory(result.category), 0)

    needed = len(_lowball_discard(hand))
    if needed >= 2:
        strength -= 20
    elif needed == 1:
        strength -= 10
    return max(0, min(100, strength))


def _is_snow(hand: list[Card]) -> bool:
    """Nothing worth drawing to: a paired hand or a made J-high or worse."""
    if _is_made(hand):
        return max(_ranks(hand)) >= 11
    return True


def _lowball_bet(view: dict[str, Any], difficulty: BotDifficulty, rng: random.Random) -> Decision:
    hand: list[Card] = view["hand"]
    to_call = view["to_call"]
    chips = view["chips"]
    min_raise = view["current_bet"] + view["min_bet"]

    if difficulty == BotDifficulty.EASY:
        roll = rng.random()
        if roll < 0.2:
            return ("FOLD", 0)
        if roll < 0.8:
            return ("CALL", 0) if to_call > 0 else ("CHECK", 0)
        return ("RAISE", min_raise)

    strength = lowball_strength(hand)
    if _is_snow(hand) and rng.random() < 0.1:
        return ("RAISE", min_raise * 2)
    if strength > 80:
        return ("RAISE", int(min_raise * 1.5))
    if strength < 40:
        return ("FOLD", 0) if to_call > 0 else ("CHECK", 0)
    if to_call == 0:
        return ("CHECK", 0)
    if to_call <= chips * 0.2:
        return ("CALL", 0)
    return ("FOLD", 0)


# ---------------------------------------------------------------------------
# Hold'em
# ---------------------------------------------------------------------------

_MADE_HAND_STRENGTH = {
    holdem_eval.HandCategory.ROYAL_FLUSH: 100,
    holdem_eval.HandCategory.STRAIGHT_FLUSH: 98,
    holdem_eval.HandCategory.FOUR_OF_A_KIND: 95,
    holdem_eval.HandCategory.FULL_HOUSE: 90,
    holdem_eval.HandCategory.FLUSH: 82,
    holdem_eval.HandCategory.STRAIGHT: 75,
    holdem_eval.HandCategory.THREE_OF_A_KIND: 65,
    holdem_eval.HandCategory.TWO_PAIR: 55,
    holdem_eval.HandCategory.ONE_PAIR: 40,
    holdem_eval.HandCategory.HIGH_CARD: 20,
}


def preflop_strength(hole: list[Card]) -> float:
    """Starting-hand strength for two hole cards."""
    a, b = int(hole[0].rank), int(hole[1].rank)
    high, low = max(a, b), min(a, b)
    suited = hole[0].suit == hole[1].suit

    if a == b:
        if high >= 13:
            return 95
        if high >= 11:
            return 85
        if high >= 9:
            return 75
        return 60 + high * 2

    if high == 14:
        if low == 13:
            return 90 if suited else 85
        if low == 12:
            return 80 if suited else 75
        if low == 11:
            return 75 if suited else 65
        if low == 10:
            return 70 if suited else 60
        return 55 if suited else 40

    if high == 13 and low >= 11:
        return 75 if suited else 65
    if high == 12 and low == 11:
        return 65 if suited else 55
    if suited and high - low == 1:
        return 60 if high >= 10 else 45
    if suited:
        return 35 + high
    if high - low <= 2:
        return 30 + high
    return 20 + (high + low) / 2


def holdem_strength(hole: list[Card], board: list[Card]) -> float:
    if not board:
        return preflop_strength(hole)
    if len(hole) + len(board) < 5:
        return 50
    result = holdem_eval.evaluate(hole + board)
    strength = _MADE_HAND_STRENGTH[holdem_eval.HandCategory(result.category)]
    strength += (result.tiebreak[0] - 7) / 2
    return max(0, min(100, strength))


def _position(view: dict[str, Any]) -> float:
    """0..1, larger is closer to acting last."""
    seats = view.get("seat_count") or 0
    if not view["opponents"] or seats == 0:
        return 0.5
    dealer = view["dealer_seat"] or 0
    return ((view["seat"] - dealer) % seats) / seats


def _holdem_bet(view: dict[str, Any], difficulty: BotDifficulty, rng: random.Random) -> Decision:
    strength = holdem_strength(view["hand"], view["community_cards"])
    to_call = view["to_call"]
    chips = view["chips"]
    pot = view["pot"]
    min_raise = view["current_bet"] + view["min_bet"]
    pot_odds = to_call / (pot + to_call) * 100 if to_call > 0 else 0
    position = _position(view)
    facing = to_call > 0

    if difficulty == BotDifficulty.EASY:
        roll = rng.random()
        if roll < 0.15:
            return ("FOLD", 0)
        if roll < 0.75:
            return ("CALL", 0) if facing else ("CHECK", 0)
        if roll < 0.9:
            return ("RAISE", min_raise)
        return ("CALL", 0) if facing else ("CHECK", 0)

    if difficulty == BotDifficulty.MEDIUM:
        if strength > 75:
            return ("RAISE", int(min_raise * 1.5))
        if strength > 55:
            if not facing:
                if position > 0.6 and rng.random() < 0.3:
                    return ("RAISE", min_raise)
                return ("CHECK", 0)
            return ("CALL", 0) if to_call <= chips * 0.2 else ("FOLD", 0)
        if strength > 40:
            if not facing:
                return ("CHECK", 0)
            return ("CALL", 0) if to_call <= chips * 0.1 else ("FOLD", 0)
        return ("FOLD", 0) if facing else ("CHECK", 0)

    if strength > 80:
        return ("RAISE", max(min_raise, int(min(pot * 0.75, chips))))
    if strength > 65:
        if not facing and position > 0.5 and rng.random() < 0.5:
            return ("CHECK", 0)
        if position > 0.4:
            return ("RAISE", int(min_raise * 1.5))
        return ("CALL", 0) if facing else ("CHECK", 0)
    if strength > 45:
        if not facing:
            return ("CHECK", 0)
        return ("CALL", 0) if pot_odds < strength * 0.8 else ("FOLD", 0)
    if position > 0.7 and rng.random() < 0.15:
        return ("RAISE", int(min(pot * 0.5, chips, min_raise)))
    return ("FOLD", 0) if facing else ("CHECK", 0)
