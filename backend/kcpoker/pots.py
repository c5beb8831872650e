"""Side-pot construction and distribution.

Pots are plain dicts so they serialise straight into the table document:
``{"amount", "level", "eligible", "contributors"}``.  ``contributors`` is
everyone whose chips rest in the pot (folded players included);
``eligible`` is the subset still holding a live hand.
"""

from __future__ import annotations

from typing import Any, Sequence

from kcpoker.evaluator import determine_winners
from kcpoker.hands import HandResult


class Contribution:
    __slots__ = ("uid", "amount", "folded")

    def __init__(self, uid: str, amount: int, folded: bool) -> None:
        self.uid = uid
        self.amount = amount
        self.folded = folded


def build_pots(contributions: Sequence[Contribution]) -> list[dict[str, Any]]:
    """Slice contributions into a main pot and side pots, main first."""
    levels = sorted({c.amount for c in contributions if c.amount > 0})
    pots: list[dict[str, Any]] = []
    prev_level = 0

    for level in levels:
        slice_amount = level - prev_level
        contributors = [c for c in contributions if c.amount >= level]
        amount = slice_amount * len(contributors)
        pots.append(
            {
                "amount": amount,
                "level": level,
                "eligible": [c.uid for c in contributors if not c.folded],
                "contributors": [c.uid for c in contributors],
            }
        )
        prev_level = level

    return pots


def total(pots: Sequence[dict[str, Any]]) -> int:
    return sum(p["amount"] for p in pots)


def _first_in_order(uids: Sequence[str], order: Sequence[str]) -> str:
    ranked = sorted(uids, key=lambda u: order.index(u) if u in order else len(order))
    return ranked[0]


def distribute(
    pots: Sequence[dict[str, Any]],
    hands: dict[str, HandResult],
    order_from_dealer: Sequence[str],
    contributions: dict[str, int],
) -> list[dict[str, Any]]:
    """Award every pot.

    *hands* holds the evaluated hands of players who reached showdown.
    *order_from_dealer* lists uids clockwise starting left of the dealer and
    decides who receives odd chips.  Returns one result per pot:
    ``{"amount", "winners": {uid: chips}, "hand": description, "refund": bool}``.
    """
    results: list[dict[str, Any]] = []

    for pot in pots:
        amount = pot["amount"]
        contenders = {u: hands[u] for u in pot["eligible"] if u in hands}

        if not contenders:
            # Everyone eligible folded: the deepest folded contributor gets it back
            deepest = max(contributions.get(u, 0) for u in pot["contributors"])
            candidates = [
                u for u in pot["contributors"] if contributions.get(u, 0) == deepest
            ]
            uid = _first_in_order(candidates, order_from_dealer)
            results.append(
                {"amount": amount, "winners": {uid: amount}, "hand": None, "refund": True}
            )
            continue

        if len(contenders) == 1:
            uid = next(iter(contenders))
            results.append(
                {
                    "amount": amount,
                    "winners": {uid: amount},
                    "hand": contenders[uid].description,
                    "refund": len(pot["contributors"]) == 1,
                }
            )
            continue

        winner_ids = determine_winners(contenders)
        share, remainder = divmod(amount, len(winner_ids))
        awards = {uid: share for uid in winner_ids}
        if remainder:
            awards[_first_in_order(winner_ids, order_from_dealer)] += remainder

        results.append(
            {
                "amount": amount,
                "winners": awards,
                "hand": contenders[winner_ids[0]].description,
                "refund": False,
            }
        )

    return results
