"""Hand evaluation dispatch by game type."""

from __future__ import annotations

from typing import Callable, Sequence

from kcpoker import holdem_eval, lowball_eval
from kcpoker.cards import Card
from kcpoker.hands import HandResult, compare
from kcpoker.models import GameType

_EVALUATORS: dict[GameType, Callable[[Sequence[Card]], HandResult]] = {
    GameType.LOWBALL_27: lowball_eval.evaluate,
    GameType.SINGLE_DRAW_27: lowball_eval.evaluate,
    GameType.HOLDEM: holdem_eval.evaluate,
}


def evaluate(cards: Sequence[Card], game_type: GameType | str) -> HandResult:
    """Evaluate a hand under the ordering of *game_type*.

    Lowball takes exactly five cards; Hold'em takes hole cards plus board.
    """
    return _EVALUATORS[GameType(game_type)](cards)


def determine_winners(hands: dict[str, HandResult]) -> list[str]:
    """Given {uid: HandResult}, return the uids holding the best hand."""
    if not hands:
        return []
    best = max(hands.values())
    return [uid for uid, result in hands.items() if compare(result, best) == 0]
