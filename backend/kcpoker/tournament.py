"""Sit-and-Go tournament controller.

Wraps cash-game table semantics with registration, a timed blind schedule,
elimination ordering and prize payouts.
"""

from __future__ import annotations

import bisect
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from kcpoker.errors import PhaseMismatch, TableFull

if TYPE_CHECKING:
    from kcpoker.engine import TableEngine
    from kcpoker.models import TournamentSettings

logger = logging.getLogger(__name__)


class TournamentState(str, Enum):
    REGISTERING = "REGISTERING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"


# Percent of the prize pool per finishing place, keyed by field size.
PAYOUT_CURVES: dict[int, list[int]] = {
    2: [100],
    3: [65, 35],
    4: [65, 35],
    5: [50, 30, 20],
    6: [50, 30, 20],
}


# Standard tournament blind values: factors [1,1.5,2,2.5,3,4,5,6,8] × decade
_STANDARD_BLINDS: list[int] = sorted({
    round(f * d)
    for d in (1, 10, 100, 1_000, 10_000, 100_000)
    for f in (1, 1.5, 2, 2.5, 3, 4, 5, 6, 8)
})


def _nice_blind(value: float) -> int:
    """Snap a value to the nearest standard tournament blind amount."""
    if value <= 1:
        return 1
    v = round(value)
    idx = bisect.bisect_left(_STANDARD_BLINDS, v)
    if idx == 0:
        return _STANDARD_BLINDS[0]
    if idx >= len(_STANDARD_BLINDS):
        return _STANDARD_BLINDS[-1]
    lo = _STANDARD_BLINDS[idx - 1]
    hi = _STANDARD_BLINDS[idx]
    return lo if (value - lo) <= (hi - value) else hi


def build_schedule(big_blind: int, levels: int = 12, growth: float = 1.5) -> list[tuple[int, int]]:
    """Blind schedule starting at *big_blind*, growing ~50% per level.

    Values are snapped to standard blind amounts; SB is always BB // 2.
    """
    schedule_bb = [big_blind]
    for _ in range(levels - 1):
        nxt = _nice_blind(schedule_bb[-1] * growth)
        if nxt <= schedule_bb[-1]:
            nxt = schedule_bb[-1] + 1
        schedule_bb.append(nxt)
    return [(max(1, bb // 2), bb) for bb in schedule_bb]


def payout_amounts(prize_pool: int, field_size: int) -> list[int]:
    """Chips paid to 1st, 2nd, ... place.  Rounding remainder goes to 1st."""
    curve = PAYOUT_CURVES.get(field_size) or PAYOUT_CURVES[min(PAYOUT_CURVES, key=lambda k: abs(k - field_size))]
    amounts = [prize_pool * pct // 100 for pct in curve]
    amounts[0] += prize_pool - sum(amounts)
    return amounts


class Tournament:
    """Tournament state stored inside the table document."""

    def __init__(
        self,
        total_seats: int,
        buy_in: int,
        starting_stack: int,
        level_duration_minutes: int,
        blind_schedule: list[tuple[int, int]],
    ) -> None:
        self.state = TournamentState.REGISTERING
        self.total_seats = total_seats
        self.buy_in = buy_in
        self.starting_stack = starting_stack
        self.level_duration_minutes = level_duration_minutes
        self.blind_schedule = blind_schedule
        self.level: int = 0
        self.prize_pool: int = 0
        self.registered: list[str] = []
        self.started_at: Optional[float] = None
        self.elimination_order: list[dict[str, Any]] = []
        self.payouts: list[dict[str, Any]] = []

    @classmethod
    def from_settings(cls, settings: TournamentSettings, min_bet: int) -> Tournament:
        schedule = (
            [tuple(level) for level in settings.blind_schedule]
            if settings.blind_schedule
            else build_schedule(min_bet)
        )
        return cls(
            total_seats=settings.total_seats,
            buy_in=settings.buy_in,
            starting_stack=settings.starting_stack,
            level_duration_minutes=settings.level_duration_minutes,
            blind_schedule=schedule,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, uid: str, now: Optional[float] = None) -> bool:
        """Take a registration.  Returns True when this filled the field."""
        if self.state != TournamentState.REGISTERING:
            raise PhaseMismatch("Registration is closed")
        if uid in self.registered:
            return False
        if len(self.registered) >= self.total_seats:
            raise TableFull("Tournament is full")
        self.registered.append(uid)
        self.prize_pool += self.buy_in
        if len(self.registered) == self.total_seats:
            self.start(now)
            return True
        return False

    def unregister(self, uid: str) -> int:
        """Withdraw before the start.  Returns the buy-in to refund."""
        if self.state != TournamentState.REGISTERING:
            raise PhaseMismatch("Cannot unregister once the tournament has started")
        if uid not in self.registered:
            return 0
        self.registered.remove(uid)
        self.prize_pool -= self.buy_in
        return self.buy_in

    def start(self, now: Optional[float] = None) -> None:
        self.state = TournamentState.RUNNING
        self.started_at = now if now is not None else time.time()
        self.level = 0
        logger.info("Tournament started: %d players, prize pool %d", self.total_seats, self.prize_pool)

    # ------------------------------------------------------------------
    # Blind levels
    # ------------------------------------------------------------------

    def current_blinds(self) -> tuple[int, int]:
        return self.blind_schedule[self.level]

    def next_level_at(self) -> Optional[float]:
        if self.state != TournamentState.RUNNING or self.started_at is None:
            return None
        return self.started_at + (self.level + 1) * self.level_duration_minutes * 60

    def advance_level(self, now: Optional[float] = None) -> bool:
        """Move to the level the clock says we are on.  Returns True if it changed.

        The schedule is extended at ~1.5x per level if the clock runs past it.
        """
        if self.state != TournamentState.RUNNING or self.started_at is None:
            return False
        now = now if now is not None else time.time()
        elapsed_minutes = (now - self.started_at) / 60.0
        target = int(elapsed_minutes // self.level_duration_minutes)

        while target >= len(self.blind_schedule):
            _, last_bb = self.blind_schedule[-1]
            new_bb = _nice_blind(last_bb * 1.5)
            if new_bb <= last_bb:
                new_bb = last_bb + 1
            self.blind_schedule.append((max(1, new_bb // 2), new_bb))

        if target > self.level:
            self.level = target
            return True
        return False

    # ------------------------------------------------------------------
    # Eliminations and payouts
    # ------------------------------------------------------------------

    def record_eliminations(self, engine: TableEngine) -> list[tuple[str, int]]:
        """Eliminate busted seats after a hand.  Returns wallet credits on completion.

        Players busted in the same hand are ordered by their stack at the
        start of that hand: the shorter stack finishes lower.
        """
        from kcpoker.engine import PlayerStatus

        if self.state != TournamentState.RUNNING:
            return []

        busted = [
            p for p in engine.seats
            if p.chips == 0 and p.status != PlayerStatus.ELIMINATED
        ]
        busted.sort(key=lambda p: p.starting_chips)
        for p in busted:
            p.status = PlayerStatus.ELIMINATED
            self.elimination_order.append(
                {
                    "uid": p.uid,
                    "display_name": p.display_name,
                    "hand_number": engine.hand_number,
                }
            )
            self.elimination_order[-1]["position"] = (
                self.total_seats - len(self.elimination_order) + 1
            )

        remaining = [p for p in engine.seats if p.status != PlayerStatus.ELIMINATED]
        if len(remaining) > 1:
            return []

        if remaining:
            winner = remaining[0]
            self.elimination_order.append(
                {
                    "uid": winner.uid,
                    "display_name": winner.display_name,
                    "hand_number": engine.hand_number,
                    "position": 1,
                }
            )
        return self.complete()

    def complete(self) -> list[tuple[str, int]]:
        self.state = TournamentState.COMPLETED
        amounts = payout_amounts(self.prize_pool, self.total_seats)
        by_position = {e["position"]: e for e in self.elimination_order}
        credits: list[tuple[str, int]] = []
        for place, amount in enumerate(amounts, start=1):
            entry = by_position.get(place)
            if entry is None or amount <= 0:
                continue
            self.payouts.append(
                {"uid": entry["uid"], "position": place, "amount": amount}
            )
            credits.append((entry["uid"], amount))
        self.prize_pool -= sum(amount for _, amount in credits)
        logger.info("Tournament completed: payouts %s", self.payouts)
        return credits

    def settle_by_chips(self, stacks: dict[str, int]) -> list[tuple[str, int]]:
        """Close a running tournament early, splitting the prize pool by chip count.

        Rounding chips go to the chip leader.
        """
        self.state = TournamentState.COMPLETED
        total = sum(stacks.values())
        if total <= 0 or self.prize_pool <= 0:
            return []
        shares = {uid: self.prize_pool * chips // total for uid, chips in stacks.items()}
        leader = max(stacks, key=lambda uid: stacks[uid])
        shares[leader] += self.prize_pool - sum(shares.values())
        credits = [(uid, amount) for uid, amount in shares.items() if amount > 0]
        for uid, amount in credits:
            self.payouts.append({"uid": uid, "position": None, "amount": amount})
        self.prize_pool = 0
        logger.info("Tournament settled by chip count: payouts %s", self.payouts)
        return credits

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "total_seats": self.total_seats,
            "buy_in": self.buy_in,
            "starting_stack": self.starting_stack,
            "level_duration_minutes": self.level_duration_minutes,
            "blind_schedule": [[sb, bb] for sb, bb in self.blind_schedule],
            "level": self.level,
            "prize_pool": self.prize_pool,
            "registered": self.registered,
            "started_at": self.started_at,
            "next_level_at": self.next_level_at(),
            "elimination_order": self.elimination_order,
            "payouts": self.payouts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tournament:
        t = cls(
            total_seats=data["total_seats"],
            buy_in=data["buy_in"],
            starting_stack=data["starting_stack"],
            level_duration_minutes=data["level_duration_minutes"],
            blind_schedule=[(s[0], s[1]) for s in data["blind_schedule"]],
        )
        t.state = TournamentState(data["state"])
        t.level = data.get("level", 0)
        t.prize_pool = data.get("prize_pool", 0)
        t.registered = data.get("registered", [])
        t.started_at = data.get("started_at")
        t.elimination_order = data.get("elimination_order", [])
        t.payouts = data.get("payouts", [])
        return t
