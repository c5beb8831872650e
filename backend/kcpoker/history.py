"""Hand history capture.

``HandHistory`` records actions while a hand is live.  When the hand
terminates, ``build_record`` snapshots it into the durable record written to
``hand_histories/{hand_id}`` and ``build_user_logs`` projects that record onto
each human participant's ``users/{uid}/hand_logs`` index.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from kcpoker.engine import TableEngine

POSITION_LABELS: dict[int, list[str]] = {
    2: ["BTN", "BB"],
    3: ["BTN", "SB", "BB"],
    4: ["BTN", "SB", "BB", "UTG"],
    5: ["BTN", "SB", "BB", "UTG", "CO"],
    6: ["BTN", "SB", "BB", "UTG", "HJ", "CO"],
}


def position_label(relative: int, player_count: int) -> str:
    """Label for the seat *relative* places clockwise from the button."""
    labels = POSITION_LABELS.get(player_count)
    if labels is None or relative >= len(labels):
        return "UTG"
    return labels[relative]


def hand_id(table_id: str, hand_number: int) -> str:
    return f"{table_id}_{hand_number}"


class HandHistory:
    """Records actions for a single hand."""

    def __init__(self, hand_number: int, started_at: Optional[float] = None) -> None:
        self.hand_number = hand_number
        self.started_at = started_at if started_at is not None else time.time()
        self.actions: list[dict[str, Any]] = []
        self.community_cards: list[list[dict]] = []

    def record_action(
        self, uid: str, action: str, amount: int, phase: str
    ) -> None:
        self.actions.append(
            {
                "uid": uid,
                "action": action,
                "amount": amount,
                "phase": phase,
                "timestamp": time.time(),
            }
        )

    def record_draw(self, uid: str, count: int, phase: str, timed_out: bool = False) -> None:
        self.actions.append(
            {
                "uid": uid,
                "action": "DRAW",
                "amount": count,
                "phase": phase,
                "timed_out": timed_out,
                "timestamp": time.time(),
            }
        )

    def record_community(self, cards: list[dict]) -> None:
        self.community_cards.append(cards)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hand_number": self.hand_number,
            "started_at": self.started_at,
            "actions": self.actions,
            "community_cards": self.community_cards,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HandHistory:
        hh = cls(data["hand_number"], data.get("started_at"))
        hh.actions = data.get("actions", [])
        hh.community_cards = data.get("community_cards", [])
        return hh


def build_record(engine: TableEngine, result: dict[str, Any]) -> dict[str, Any]:
    """Snapshot a finished hand.

    Hole cards are only included for players who reached a contested
    showdown or chose to reveal.
    """
    dealt = [i for i, p in enumerate(engine.seats) if p.in_hand]
    n = len(dealt)
    dealer_pos = dealt.index(engine.dealer_seat) if engine.dealer_seat in dealt else 0
    revealed = set(result.get("showdown_uids", [])) | set(engine.shown_cards)
    winnings: dict[str, int] = result.get("winnings", {})
    refunds: dict[str, int] = result.get("refunds", {})
    descriptions: dict[str, str] = result.get("hand_descriptions", {})

    players = []
    for order, seat_idx in enumerate(dealt):
        p = engine.seats[seat_idx]
        relative = (order - dealer_pos + n) % n
        players.append(
            {
                "uid": p.uid,
                "display_name": p.display_name,
                "is_bot": p.is_bot,
                "bot_difficulty": p.bot_difficulty,
                "position": position_label(relative, n),
                "seat_index": seat_idx,
                "hole_cards": [c.to_dict() for c in p.hand] if p.uid in revealed else None,
                "status": p.status.value,
                "total_contribution": p.total_contribution,
                "refunded": refunds.get(p.uid, 0),
                "chips_before": p.starting_chips,
                "chips_after": p.chips,
            }
        )

    winners = [
        {
            "uid": uid,
            "display_name": engine.seats[engine.find_seat(uid)].display_name,
            "amount": amount,
            "hand_description": descriptions.get(uid, ""),
        }
        for uid, amount in winnings.items()
        if engine.find_seat(uid) is not None
    ]

    history = engine.current_history
    return {
        "hand_id": hand_id(engine.table_id, engine.hand_number),
        "table_id": engine.table_id,
        "hand_number": engine.hand_number,
        "timestamp": time.time(),
        "started_at": history.started_at if history else None,
        "game_type": engine.config.game_type.value,
        "betting_type": engine.config.betting_type.value,
        "stake_level": engine.min_bet,
        "table_mode": engine.config.table_mode.value,
        "player_count": n,
        "dealer_seat": engine.dealer_seat,
        "community_cards": [c.to_dict() for c in engine.community_cards],
        "pots": [
            {"amount": pot["amount"], "eligible": pot["eligible"]}
            for pot in result.get("pots", [])
        ],
        "total_pot": result.get("total_pot", 0),
        "uncontested": result.get("uncontested", False),
        "winners": winners,
        "players": players,
        "actions": history.actions if history else [],
    }


def build_user_logs(record: dict[str, Any], engine: TableEngine) -> dict[str, dict[str, Any]]:
    """Project a hand record onto each human participant. Returns {uid: entry}."""
    win_by_uid: dict[str, int] = {}
    for w in record["winners"]:
        win_by_uid[w["uid"]] = win_by_uid.get(w["uid"], 0) + w["amount"]

    logs: dict[str, dict[str, Any]] = {}
    for player in record["players"]:
        if player["is_bot"]:
            continue
        uid = player["uid"]
        opponents = [p for p in record["players"] if p["uid"] != uid]
        seat = engine.seats[player["seat_index"]]
        win_amount = win_by_uid.get(uid, 0)
        logs[uid] = {
            "hand_id": record["hand_id"],
            "table_id": record["table_id"],
            "hand_number": record["hand_number"],
            "timestamp": record["timestamp"],
            "game_type": record["game_type"],
            "betting_type": record["betting_type"],
            "stake_level": record["stake_level"],
            "table_mode": record["table_mode"],
            "position": player["position"],
            "hole_cards": [c.to_dict() for c in seat.hand],
            "total_contribution": player["total_contribution"],
            "win_amount": win_amount,
            "refunded": player["refunded"],
            "net_result": win_amount + player["refunded"] - player["total_contribution"],
            "is_winner": win_amount > 0,
            "opponent_uids": [p["uid"] for p in opponents],
            "opponents": [
                {"uid": p["uid"], "display_name": p["display_name"], "is_bot": p["is_bot"]}
                for p in opponents
            ],
            "vs_bot": any(p["is_bot"] for p in opponents),
        }
    return logs
