"""Consistency checks run on every table write.

A violation means the engine has a bug; ``game_manager`` aborts the
transaction rather than persist a broken table.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING

from kcpoker.errors import InternalStateError
from kcpoker.pots import total as pots_total

if TYPE_CHECKING:
    from kcpoker.engine import TableEngine

logger = logging.getLogger(__name__)

DECK_SIZE = 52


def find_violations(engine: TableEngine) -> list[str]:
    """Return a description of every invariant the table breaks."""
    from kcpoker.engine import BETTING_PHASES, TERMINAL_PHASES, Phase

    problems: list[str] = []
    live_hand = engine.is_hand_live

    # Chips never go negative
    for p in engine.seats:
        if p.chips < 0:
            problems.append(f"{p.uid} has negative chips ({p.chips})")

    # Chips are conserved within a hand
    if live_hand or engine.phase == Phase.SHOWDOWN:
        dealt = [p for p in engine.seats if p.in_hand]
        on_table = sum(p.chips for p in dealt) + engine.pot
        if on_table != engine.hand_start_total:
            problems.append(
                f"chip total {on_table} differs from hand start {engine.hand_start_total}"
            )
    if live_hand:
        committed = sum(p.total_contribution for p in engine.seats)
        if engine.pot != committed:
            problems.append(f"pot {engine.pot} differs from contributions {committed}")
        frozen = pots_total(engine.pots) + sum(p.current_round_bet for p in engine.seats)
        if frozen != committed:
            problems.append(
                f"frozen pots plus street bets {frozen} differ from contributions {committed}"
            )

    # Every card is in exactly one place
    cards = (
        engine.deck.cards
        + engine.deck.mucked
        + list(engine.community_cards)
        + [c for p in engine.seats for c in p.hand]
    )
    if len(cards) != DECK_SIZE:
        problems.append(f"{len(cards)} cards accounted for, expected {DECK_SIZE}")
    duplicates = [str(c) for c, n in Counter(cards).items() if n > 1]
    if duplicates:
        problems.append(f"duplicate cards: {', '.join(sorted(duplicates))}")

    # Exactly one actor while a hand is live, none otherwise
    if engine.phase in TERMINAL_PHASES:
        if engine.active_seat is not None:
            problems.append(f"active seat {engine.active_seat} set during {engine.phase.value}")
    else:
        if engine.active_seat is None or not 0 <= engine.active_seat < len(engine.seats):
            problems.append(f"no valid active seat during {engine.phase.value}")
        elif not engine.seats[engine.active_seat].is_live:
            problems.append(f"active seat {engine.active_seat} is not in the hand")
        if engine.turn_deadline is None:
            problems.append("live turn without a deadline")

    # Betting amounts line up
    if engine.phase in BETTING_PHASES:
        highest = max((p.current_round_bet for p in engine.seats), default=0)
        if engine.current_bet < highest:
            problems.append(f"current bet {engine.current_bet} below highest street bet {highest}")
        for p in engine.seats:
            if p.can_act and p.has_acted_this_round and p.current_round_bet != engine.current_bet:
                problems.append(f"{p.uid} acted but has not matched the current bet")

    # Only players who reached a pot level can win it
    if live_hand:
        by_uid = {p.uid: p for p in engine.seats if p.in_hand}
        for pot in engine.pots:
            for uid in pot["eligible"]:
                p = by_uid.get(uid)
                if p is None or p.total_contribution < pot["level"]:
                    problems.append(f"{uid} eligible for a pot at level {pot['level']} without covering it")

    return problems


def check_invariants(engine: TableEngine) -> None:
    """Raise InternalStateError if the table is inconsistent."""
    problems = find_violations(engine)
    if problems:
        logger.error("Table %s failed invariants: %s", engine.table_id, "; ".join(problems))
        raise InternalStateError(f"Table {engine.table_id} is inconsistent: {problems[0]}")
