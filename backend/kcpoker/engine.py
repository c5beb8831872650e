"""Core table engine for 2-7 Lowball (triple and single draw) and Hold'em.

Manages the authoritative table state: cutting for the button, blinds,
dealing, betting rounds, draws, side pots, showdown and hand lifecycle.
Every mutation happens through ``game_manager`` inside a store
transaction; this module never touches storage.
"""

from __future__ import annotations

import random
import time
from enum import Enum
from typing import Any, Optional

from kcpoker import activity
from kcpoker.activity import EntryKind
from kcpoker.cards import RANK_SYMBOLS, SUIT_SYMBOLS, Card, Deck
from kcpoker.errors import (
    IllegalAction,
    InsufficientChips,
    NotYourTurn,
    PhaseMismatch,
    PlayerNotFound,
)
from kcpoker.evaluator import evaluate
from kcpoker.history import HandHistory, build_record
from kcpoker.models import BettingType, GameType, TableConfig, TableMode, TournamentSettings
from kcpoker.pots import Contribution, build_pots, distribute
from kcpoker.tournament import Tournament, TournamentState


class Phase(str, Enum):
    IDLE = "IDLE"
    CUT_FOR_DEALER = "CUT_FOR_DEALER"
    BETTING_1 = "BETTING_1"
    DRAW_1 = "DRAW_1"
    BETTING_2 = "BETTING_2"
    DRAW_2 = "DRAW_2"
    BETTING_3 = "BETTING_3"
    DRAW_3 = "DRAW_3"
    BETTING_4 = "BETTING_4"
    PREFLOP = "PREFLOP"
    FLOP = "FLOP"
    TURN = "TURN"
    RIVER = "RIVER"
    SHOWDOWN = "SHOWDOWN"


class ActionType(str, Enum):
    FOLD = "FOLD"
    CHECK = "CHECK"
    CALL = "CALL"
    BET = "BET"
    RAISE = "RAISE"
    ALL_IN = "ALL_IN"


class PlayerStatus(str, Enum):
    ACTIVE = "active"
    FOLDED = "folded"
    ALL_IN = "all-in"
    SITTING_OUT = "sitting_out"
    ELIMINATED = "eliminated"


PHASE_SEQUENCES: dict[GameType, list[Phase]] = {
    GameType.LOWBALL_27: [
        Phase.BETTING_1,
        Phase.DRAW_1,
        Phase.BETTING_2,
        Phase.DRAW_2,
        Phase.BETTING_3,
        Phase.DRAW_3,
        Phase.BETTING_4,
    ],
    GameType.SINGLE_DRAW_27: [Phase.BETTING_1, Phase.DRAW_1, Phase.BETTING_2],
    GameType.HOLDEM: [Phase.PREFLOP, Phase.FLOP, Phase.TURN, Phase.RIVER],
}

BETTING_PHASES = frozenset(
    {
        Phase.BETTING_1,
        Phase.BETTING_2,
        Phase.BETTING_3,
        Phase.BETTING_4,
        Phase.PREFLOP,
        Phase.FLOP,
        Phase.TURN,
        Phase.RIVER,
    }
)
DRAW_PHASES = frozenset({Phase.DRAW_1, Phase.DRAW_2, Phase.DRAW_3})
TERMINAL_PHASES = frozenset({Phase.IDLE, Phase.CUT_FOR_DEALER, Phase.SHOWDOWN})

HOLE_CARDS: dict[GameType, int] = {
    GameType.LOWBALL_27: 5,
    GameType.SINGLE_DRAW_27: 5,
    GameType.HOLDEM: 2,
}

COMMUNITY_DEALS: dict[Phase, int] = {Phase.FLOP: 3, Phase.TURN: 1, Phase.RIVER: 1}


def _card_label(card: Card) -> str:
    return f"{RANK_SYMBOLS[card.rank]}{SUIT_SYMBOLS[card.suit]}"


class PlayerState:
    """A seated player and their per-hand state."""

    def __init__(
        self,
        uid: str,
        display_name: str,
        chips: int = 0,
        is_bot: bool = False,
        bot_difficulty: Optional[str] = None,
    ) -> None:
        self.uid = uid
        self.display_name = display_name
        self.chips = chips
        self.is_bot = is_bot
        self.bot_difficulty = bot_difficulty
        self.hand: list[Card] = []
        self.status: PlayerStatus = PlayerStatus.ACTIVE
        self.current_round_bet: int = 0
        self.total_contribution: int = 0
        self.has_acted_this_round: bool = False
        self.pending_sit_out: bool = False
        self.last_action: str = ""
        self.cards_drawn: Optional[int] = None
        self.in_hand: bool = False
        self.starting_chips: int = chips

    @property
    def can_act(self) -> bool:
        """Dealt in, not folded, not all-in."""
        return self.in_hand and self.status == PlayerStatus.ACTIVE and self.chips > 0

    @property
    def is_live(self) -> bool:
        """Still contesting the pot."""
        return self.in_hand and self.status in (PlayerStatus.ACTIVE, PlayerStatus.ALL_IN)

    def reset_for_new_hand(self, dealt_in: bool) -> None:
        self.hand = []
        self.current_round_bet = 0
        self.total_contribution = 0
        self.has_acted_this_round = False
        self.last_action = ""
        self.cards_drawn = None
        self.in_hand = dealt_in
        self.starting_chips = self.chips
        if self.status != PlayerStatus.ELIMINATED:
            self.status = PlayerStatus.ACTIVE if dealt_in else PlayerStatus.SITTING_OUT

    def reset_for_new_round(self) -> None:
        self.current_round_bet = 0
        self.has_acted_this_round = False
        # Keep last_action for folded/all-in players; clear for active ones
        if self.status == PlayerStatus.ACTIVE:
            self.last_action = ""

    def to_dict(self, reveal_cards: bool = False) -> dict[str, Any]:
        d: dict[str, Any] = {
            "uid": self.uid,
            "display_name": self.display_name,
            "chips": self.chips,
            "status": self.status.value,
            "current_round_bet": self.current_round_bet,
            "total_contribution": self.total_contribution,
            "has_acted_this_round": self.has_acted_this_round,
            "pending_sit_out": self.pending_sit_out,
            "is_bot": self.is_bot,
            "bot_difficulty": self.bot_difficulty,
            "last_action": self.last_action,
            "cards_drawn": self.cards_drawn,
            "in_hand": self.in_hand,
            "card_count": len(self.hand),
        }
        if reveal_cards and self.hand:
            d["hand"] = [c.to_dict() for c in self.hand]
        return d


class TableEngine:
    """Manages a single poker table."""

    def __init__(
        self,
        table_id: str,
        config: TableConfig,
        created_by: str = "",
        rng: Optional[random.Random] = None,
    ) -> None:
        self.table_id = table_id
        self.config = config
        self.created_by = created_by
        self._rng = rng

        self.phase: Phase = Phase.IDLE
        self.deck: Deck = Deck(rng=rng)
        self.community_cards: list[Card] = []
        self.pot: int = 0
        self.pots: list[dict[str, Any]] = []
        self.current_bet: int = 0
        self.min_bet: int = config.min_bet
        self.small_blind: int = config.small_blind
        self.last_raise_amount: int = config.min_bet
        self.raises_this_street: int = 0
        self.active_seat: Optional[int] = None
        self.dealer_seat: Optional[int] = None
        self.small_blind_seat: Optional[int] = None
        self.big_blind_seat: Optional[int] = None
        self.turn_deadline: Optional[float] = None

        self.seats: list[PlayerState] = []
        self.railbirds: list[dict[str, Any]] = []
        self.chat_log: list[dict[str, Any]] = []

        self.tournament: Optional[Tournament] = None
        if config.table_mode == TableMode.SIT_AND_GO:
            self.tournament = Tournament.from_settings(
                config.tournament or TournamentSettings(), config.min_bet
            )
            self.small_blind, self.min_bet = self.tournament.current_blinds()

        self.hand_number: int = 0
        self.has_cut_for_dealer: bool = False
        self.cut_result: Optional[list[dict[str, Any]]] = None
        self.last_hand_result: Optional[dict[str, Any]] = None
        self.shown_cards: set[str] = set()
        self.current_history: Optional[HandHistory] = None
        self.hand_start_total: int = 0

        now = time.time()
        self.created_at: float = now
        self.last_activity: float = now

        # Produced during one operation, consumed by game_manager in the
        # same transaction.  Never persisted.
        self.completed_records: list[dict[str, Any]] = []
        self.wallet_credits: list[tuple[str, int]] = []

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def sequence(self) -> list[Phase]:
        return PHASE_SEQUENCES[self.config.game_type]

    @property
    def is_hand_live(self) -> bool:
        return self.phase in BETTING_PHASES or self.phase in DRAW_PHASES

    def find_seat(self, uid: str) -> Optional[int]:
        for i, p in enumerate(self.seats):
            if p.uid == uid:
                return i
        return None

    def get_player(self, uid: str) -> PlayerState:
        idx = self.find_seat(uid)
        if idx is None:
            raise PlayerNotFound(f"{uid} is not seated at this table")
        return self.seats[idx]

    def find_railbird(self, uid: str) -> Optional[int]:
        for i, r in enumerate(self.railbirds):
            if r["uid"] == uid:
                return i
        return None

    def pot_total(self) -> int:
        """Everything committed this hand, current street included."""
        return sum(p.total_contribution for p in self.seats)

    def _seats_after(self, idx: Optional[int], candidates: list[int]) -> list[int]:
        """*candidates* in clockwise order starting strictly after *idx*."""
        if not candidates:
            return []
        if idx is None:
            return sorted(candidates)
        ordered = sorted(candidates)
        after = [i for i in ordered if i > idx]
        before = [i for i in ordered if i <= idx]
        return after + before

    def _next_of(self, idx: Optional[int], candidates: list[int]) -> Optional[int]:
        ordered = self._seats_after(idx, candidates)
        return ordered[0] if ordered else None

    def _dealt_seats(self) -> list[int]:
        return [i for i, p in enumerate(self.seats) if p.in_hand]

    def _live_seats(self) -> list[int]:
        return [i for i, p in enumerate(self.seats) if p.is_live]

    def _actor_seats(self) -> list[int]:
        return [i for i, p in enumerate(self.seats) if p.can_act]

    def _eligible_for_deal(self) -> list[int]:
        return [
            i
            for i, p in enumerate(self.seats)
            if p.chips > 0
            and p.status != PlayerStatus.ELIMINATED
            and not p.pending_sit_out
        ]

    def _set_active(self, idx: int) -> None:
        self.active_seat = idx
        self.turn_deadline = time.time() + self.config.turn_time_limit

    def log(self, kind: EntryKind, event_type: str, text: str, player: Optional[PlayerState] = None) -> None:
        activity.append(
            self.chat_log,
            kind,
            event_type,
            text,
            player_uid=player.uid if player else None,
            player_name=player.display_name if player else None,
        )

    def touch(self) -> None:
        self.last_activity = time.time()

    # ------------------------------------------------------------------
    # Seat management
    # ------------------------------------------------------------------

    def add_seat(self, player: PlayerState) -> int:
        self.seats.append(player)
        return len(self.seats) - 1

    def remove_seat(self, idx: int) -> PlayerState:
        """Remove a seat between hands, keeping the button on the same player order."""
        if self.is_hand_live:
            raise PhaseMismatch("Seats cannot change while a hand is live")
        player = self.seats.pop(idx)
        if player.hand:
            self.deck.muck(player.hand)
            player.hand = []
        if player.in_hand:
            self.hand_start_total -= player.chips
            player.in_hand = False
        if not self.seats:
            self.dealer_seat = None
        elif self.dealer_seat is not None:
            if self.dealer_seat > idx:
                self.dealer_seat -= 1
            elif self.dealer_seat == idx:
                # Next rotation lands on whoever now occupies this index
                self.dealer_seat = (idx - 1) % len(self.seats)
        self.small_blind_seat = None
        self.big_blind_seat = None
        return player

    # ------------------------------------------------------------------
    # Hand lifecycle
    # ------------------------------------------------------------------

    def deal(self) -> None:
        """Start a hand from IDLE: cut for the button if needed, post blinds, deal."""
        if self.phase != Phase.IDLE:
            raise PhaseMismatch(f"Cannot deal during {self.phase.value}")
        if self.tournament and self.tournament.state != TournamentState.RUNNING:
            raise PhaseMismatch("Tournament is not running")

        eligible = self._eligible_for_deal()
        if len(eligible) < 2:
            raise IllegalAction("At least two players with chips are needed to deal")

        now = time.time()
        if self.tournament:
            self._apply_blind_level(now)

        self.hand_number += 1
        self.last_hand_result = None
        self.shown_cards = set()
        self.community_cards = []
        self.pots = []
        self.pot = 0
        self.current_bet = 0
        self.raises_this_street = 0
        self.deck = Deck(rng=self._rng)

        for i, p in enumerate(self.seats):
            p.reset_for_new_hand(dealt_in=i in eligible)
        self.hand_start_total = sum(self.seats[i].chips for i in eligible)
        self.current_history = HandHistory(self.hand_number, now)

        if not self.has_cut_for_dealer:
            self._cut_for_dealer(eligible)
        else:
            self.dealer_seat = self._next_of(self.dealer_seat, eligible)

        self.phase = self.sequence[0]
        self._post_blinds(eligible)
        self._deal_hole_cards(eligible)

        self.log(
            EntryKind.EVENT,
            "hand_start",
            f"Hand #{self.hand_number}: {self.seats[self.dealer_seat].display_name} has the button",
        )
        self._continue_betting(self.big_blind_seat)
        self.touch()

    def _apply_blind_level(self, now: float) -> None:
        assert self.tournament is not None
        if self.tournament.advance_level(now):
            self.small_blind, self.min_bet = self.tournament.current_blinds()
            self.log(
                EntryKind.EVENT,
                "blinds_up",
                f"Blinds are now {self.small_blind}/{self.min_bet}",
            )

    def _cut_for_dealer(self, eligible: list[int]) -> None:
        """Each eligible seat takes one card; the highest (rank, then suit) takes the button."""
        self.phase = Phase.CUT_FOR_DEALER
        cut: list[tuple[int, Card]] = [(i, self.deck.deal_one()) for i in eligible]
        winner_idx, winner_card = max(cut, key=lambda entry: entry[1].cut_value)
        self.deck.muck(card for _, card in cut)

        self.cut_result = [
            {
                "seat": i,
                "uid": self.seats[i].uid,
                "display_name": self.seats[i].display_name,
                "card": card.to_dict(),
                "winner": i == winner_idx,
            }
            for i, card in cut
        ]
        self.dealer_seat = winner_idx
        self.has_cut_for_dealer = True
        self.log(
            EntryKind.EVENT,
            "cut_for_dealer",
            f"{self.seats[winner_idx].display_name} wins the cut with {_card_label(winner_card)}",
            self.seats[winner_idx],
        )

    def _post_blinds(self, eligible: list[int]) -> None:
        if len(eligible) == 2:
            # Heads-up: dealer posts small blind
            sb_idx = self.dealer_seat
            bb_idx = self._next_of(sb_idx, eligible)
        else:
            sb_idx = self._next_of(self.dealer_seat, eligible)
            bb_idx = self._next_of(sb_idx, eligible)

        self._force_bet(sb_idx, self.small_blind, "SB")
        self._force_bet(bb_idx, self.min_bet, "BB")
        self.small_blind_seat = sb_idx
        self.big_blind_seat = bb_idx

        self.current_bet = self.min_bet
        self.last_raise_amount = self.min_bet

    def _force_bet(self, idx: int, amount: int, label: str) -> int:
        """Post a blind, capped at the player's stack.  Returns the amount posted."""
        p = self.seats[idx]
        actual = min(amount, p.chips)
        p.chips -= actual
        p.current_round_bet += actual
        p.total_contribution += actual
        self.pot += actual
        p.last_action = f"{label} {actual}"
        if p.chips == 0:
            p.status = PlayerStatus.ALL_IN
        if self.current_history:
            self.current_history.record_action(p.uid, label, actual, self.phase.value)
        return actual

    def _deal_hole_cards(self, eligible: list[int]) -> None:
        """One card at a time, starting left of the button."""
        order = self._seats_after(self.dealer_seat, eligible)
        for _ in range(HOLE_CARDS[self.config.game_type]):
            for i in order:
                self.seats[i].hand.append(self.deck.deal_one())

    # ------------------------------------------------------------------
    # Betting
    # ------------------------------------------------------------------

    def _raise_bounds(self, p: PlayerState) -> Optional[tuple[int, int]]:
        """(min, max) raise-to totals before stack capping, or None if capped."""
        bb = self.min_bet
        betting = self.config.betting_type
        stack_to = p.current_round_bet + p.chips

        if self.current_bet == 0:
            if betting == BettingType.FIXED_LIMIT:
                return (bb, bb)
            if betting == BettingType.POT_LIMIT:
                return (bb, max(bb, self.pot_total()))
            return (bb, max(bb, stack_to))

        if betting == BettingType.FIXED_LIMIT:
            cap = self.config.fixed_limit_raise_cap
            if cap is not None and self.raises_this_street >= cap:
                return None
            return (self.current_bet + bb, self.current_bet + bb)

        min_to = self.current_bet + max(bb, self.last_raise_amount)
        if betting == BettingType.POT_LIMIT:
            to_call = self.current_bet - p.current_round_bet
            max_to = self.current_bet + self.pot_total() + to_call
        else:
            max_to = stack_to
        return (min_to, max(min_to, max_to))

    def _all_in_allowed(self, p: PlayerState) -> bool:
        if self.config.betting_type == BettingType.NO_LIMIT:
            return True
        if p.chips <= self.current_bet - p.current_round_bet:
            return True
        bounds = self._raise_bounds(p)
        return bounds is not None and p.current_round_bet + p.chips <= bounds[1]

    def legal_actions(self, uid: str) -> list[dict[str, Any]]:
        """Actions the seat may take right now, with raise-to ranges."""
        idx = self.find_seat(uid)
        if idx is None or idx != self.active_seat or self.phase not in BETTING_PHASES:
            return []
        p = self.seats[idx]
        if not p.can_act:
            return []

        to_call = self.current_bet - p.current_round_bet
        stack_to = p.current_round_bet + p.chips
        actions: list[dict[str, Any]] = [{"action": ActionType.FOLD.value}]

        if to_call <= 0:
            actions.append({"action": ActionType.CHECK.value})
        else:
            actions.append({"action": ActionType.CALL.value, "amount": min(to_call, p.chips)})

        if p.chips > to_call:
            bounds = self._raise_bounds(p)
            if bounds is not None and bounds[0] <= stack_to:
                kind = ActionType.BET if self.current_bet == 0 else ActionType.RAISE
                actions.append(
                    {
                        "action": kind.value,
                        "min_amount": bounds[0],
                        "max_amount": min(bounds[1], stack_to),
                    }
                )

        if p.chips > 0 and self._all_in_allowed(p):
            actions.append({"action": ActionType.ALL_IN.value, "amount": p.chips})

        return actions

    def apply_action(self, uid: str, action: str, amount: int = 0) -> None:
        """Apply a betting action.  For BET/RAISE *amount* is the street total."""
        idx = self.find_seat(uid)
        if idx is None:
            raise PlayerNotFound(f"{uid} is not seated at this table")
        if self.phase not in BETTING_PHASES:
            raise PhaseMismatch(f"No betting during {self.phase.value}")
        if idx != self.active_seat:
            raise NotYourTurn("It is not your turn")

        try:
            kind = ActionType(str(action).upper())
        except ValueError:
            raise IllegalAction(f"Unknown action: {action}")

        legal = {a["action"]: a for a in self.legal_actions(uid)}
        if kind.value not in legal:
            raise IllegalAction(f"{kind.value} is not legal now")

        p = self.seats[idx]
        if kind == ActionType.FOLD:
            self._do_fold(idx)
        elif kind == ActionType.CHECK:
            self._do_check(idx)
        elif kind == ActionType.CALL:
            self._do_call(idx)
        elif kind == ActionType.ALL_IN:
            self._do_all_in(idx)
        else:
            bounds = legal[kind.value]
            stack_to = p.current_round_bet + p.chips
            if amount == stack_to and ActionType.ALL_IN.value in legal:
                self._do_all_in(idx)
            elif amount > stack_to:
                raise InsufficientChips(f"{kind.value} to {amount} exceeds the {stack_to} available")
            elif amount < bounds["min_amount"] or amount > bounds["max_amount"]:
                raise IllegalAction(
                    f"{kind.value} must be between {bounds['min_amount']} and {bounds['max_amount']}"
                )
            else:
                self._do_raise(idx, kind, amount)

        self._after_action(idx)

    def _commit(self, idx: int, to_total: int) -> int:
        """Move a seat's street total to *to_total*.  Returns chips added."""
        p = self.seats[idx]
        delta = to_total - p.current_round_bet
        p.chips -= delta
        p.current_round_bet = to_total
        p.total_contribution += delta
        self.pot += delta
        if p.chips == 0:
            p.status = PlayerStatus.ALL_IN

        if to_total > self.current_bet:
            increase = to_total - self.current_bet
            # Short all-ins do not shrink the minimum raise
            if increase >= self.last_raise_amount:
                self.last_raise_amount = increase
            if self.current_bet > 0:
                self.raises_this_street += 1
            self.current_bet = to_total
            for i, other in enumerate(self.seats):
                if i != idx and other.can_act:
                    other.has_acted_this_round = False

        p.has_acted_this_round = True
        return delta

    def _record(self, p: PlayerState, kind: ActionType, amount: int, text: str) -> None:
        if self.current_history:
            self.current_history.record_action(p.uid, kind.value, amount, self.phase.value)
        self.log(EntryKind.ACTION, kind.value.lower(), f"{p.display_name} {text}", p)

    def _do_fold(self, idx: int) -> None:
        p = self.seats[idx]
        p.status = PlayerStatus.FOLDED
        p.has_acted_this_round = True
        p.last_action = "Fold"
        self._record(p, ActionType.FOLD, 0, "folds")

    def _do_check(self, idx: int) -> None:
        p = self.seats[idx]
        p.has_acted_this_round = True
        p.last_action = "Check"
        self._record(p, ActionType.CHECK, 0, "checks")

    def _do_call(self, idx: int) -> None:
        p = self.seats[idx]
        to_total = min(self.current_bet, p.current_round_bet + p.chips)
        added = self._commit(idx, to_total)
        if p.status == PlayerStatus.ALL_IN:
            p.last_action = f"All-In {p.total_contribution}"
            self._record(p, ActionType.CALL, added, f"calls {added} and is all-in")
        else:
            p.last_action = f"Call {added}"
            self._record(p, ActionType.CALL, added, f"calls {added}")

    def _do_raise(self, idx: int, kind: ActionType, to_total: int) -> None:
        p = self.seats[idx]
        added = self._commit(idx, to_total)
        if kind == ActionType.BET:
            p.last_action = f"Bet {to_total}"
            self._record(p, kind, added, f"bets {to_total}")
        else:
            p.last_action = f"Raise to {to_total}"
            self._record(p, kind, added, f"raises to {to_total}")

    def _do_all_in(self, idx: int) -> None:
        p = self.seats[idx]
        added = self._commit(idx, p.current_round_bet + p.chips)
        p.last_action = f"All-In {p.total_contribution}"
        self._record(p, ActionType.ALL_IN, added, f"is all-in for {p.current_round_bet}")

    def _is_round_complete(self) -> bool:
        actors = [self.seats[i] for i in self._actor_seats()]
        if not actors:
            return True
        if len(actors) == 1 and actors[0].current_round_bet >= self.current_bet:
            # Everyone else is all-in: nobody left to bet against
            return True
        return all(
            p.has_acted_this_round and p.current_round_bet == self.current_bet
            for p in actors
        )

    def _next_to_act(self, after: Optional[int]) -> Optional[int]:
        needing = [
            i
            for i in self._actor_seats()
            if not self.seats[i].has_acted_this_round
            or self.seats[i].current_round_bet < self.current_bet
        ]
        return self._next_of(after, needing)

    def _continue_betting(self, after: Optional[int]) -> None:
        live = self._live_seats()
        if len(live) == 1:
            self._award_uncontested(live[0])
            return
        if self._is_round_complete():
            self._end_street()
            return
        nxt = self._next_to_act(after)
        if nxt is None:
            self._end_street()
            return
        self._set_active(nxt)

    def _after_action(self, idx: int) -> None:
        self._continue_betting(idx)
        self.touch()

    # ------------------------------------------------------------------
    # Draws
    # ------------------------------------------------------------------

    def _drawers(self) -> list[int]:
        return self._live_seats()

    def _next_drawer(self, after: Optional[int]) -> Optional[int]:
        pending = [i for i in self._drawers() if self.seats[i].cards_drawn is None]
        return self._next_of(after, pending)

    def submit_draw(self, uid: str, discard_indices: list[int], timed_out: bool = False) -> None:
        """Replace the cards at *discard_indices* with fresh ones from the deck."""
        idx = self.find_seat(uid)
        if idx is None:
            raise PlayerNotFound(f"{uid} is not seated at this table")
        if self.phase not in DRAW_PHASES:
            raise PhaseMismatch(f"No drawing during {self.phase.value}")
        if idx != self.active_seat:
            raise NotYourTurn("It is not your turn")

        p = self.seats[idx]
        if len(set(discard_indices)) != len(discard_indices):
            raise IllegalAction("Discard indices must be unique")
        if any(not 0 <= i < len(p.hand) for i in discard_indices):
            raise IllegalAction("Discard index out of range")

        count = len(discard_indices)
        if count:
            if self.deck.reshuffle_muck_if_needed(count):
                self.log(EntryKind.EVENT, "reshuffle", "The muck is reshuffled into the deck")
            fresh = self.deck.deal(count)
            discards = [p.hand[i] for i in sorted(discard_indices)]
            for i, card in zip(sorted(discard_indices), fresh):
                p.hand[i] = card
            self.deck.muck(discards)

        p.cards_drawn = count
        p.has_acted_this_round = True
        if count:
            p.last_action = f"Drew {count}"
            text = f"draws {count}"
        elif timed_out:
            p.last_action = "Stood Pat (timeout)"
            text = "stands pat (timeout)"
        else:
            p.last_action = "Stood Pat"
            text = "stands pat"

        if self.current_history:
            self.current_history.record_draw(p.uid, count, self.phase.value, timed_out)
        self.log(EntryKind.ACTION, "draw", f"{p.display_name} {text}", p)

        nxt = self._next_drawer(idx)
        if nxt is None:
            self._end_street()
        else:
            self._set_active(nxt)
        self.touch()

    # ------------------------------------------------------------------
    # Street management
    # ------------------------------------------------------------------

    def _contributions(self) -> list[Contribution]:
        return [
            Contribution(p.uid, p.total_contribution, p.status == PlayerStatus.FOLDED)
            for p in self.seats
            if p.in_hand and p.total_contribution > 0
        ]

    def _end_street(self) -> None:
        """Freeze pots and advance to the next phase (or showdown)."""
        self.pots = build_pots(self._contributions())
        for p in self.seats:
            p.reset_for_new_round()
        self.current_bet = 0
        self.last_raise_amount = self.min_bet
        self.raises_this_street = 0
        self.active_seat = None
        self.turn_deadline = None

        seq = self.sequence
        pos = seq.index(self.phase)
        if pos + 1 >= len(seq):
            self._showdown()
            return
        self._enter_phase(seq[pos + 1])

    def _enter_phase(self, phase: Phase) -> None:
        self.phase = phase

        if phase in COMMUNITY_DEALS:
            self.deck.muck([self.deck.deal_one()])  # burn
            cards = self.deck.deal(COMMUNITY_DEALS[phase])
            self.community_cards.extend(cards)
            if self.current_history:
                self.current_history.record_community([c.to_dict() for c in cards])
            self.log(
                EntryKind.EVENT,
                phase.value.lower(),
                f"{phase.value.title()}: {' '.join(_card_label(c) for c in cards)}",
            )

        if phase in DRAW_PHASES:
            for p in self.seats:
                p.cards_drawn = None
            first = self._next_drawer(self.dealer_seat)
            if first is None:
                self._end_street()
            else:
                self._set_active(first)
            return

        # Nothing to bet on when fewer than two players can act
        if len(self._actor_seats()) < 2:
            self._end_street()
            return
        self._set_active(self._next_to_act(self.dealer_seat))

    def _order_from_dealer(self) -> list[str]:
        return [self.seats[i].uid for i in self._seats_after(self.dealer_seat, self._dealt_seats())]

    # ------------------------------------------------------------------
    # Showdown & pot award
    # ------------------------------------------------------------------

    def _showdown(self) -> None:
        """Evaluate live hands and award every pot."""
        live = self._live_seats()
        hands = {
            self.seats[i].uid: evaluate(
                self.seats[i].hand + self.community_cards, self.config.game_type
            )
            for i in live
        }
        contributions = self._contributions()
        pots = build_pots(contributions)
        results = distribute(
            pots,
            hands,
            self._order_from_dealer(),
            {c.uid: c.amount for c in contributions},
        )

        winnings: dict[str, int] = {}
        refunds: dict[str, int] = {}
        for pot_result in results:
            target = refunds if pot_result["refund"] else winnings
            for uid, chips in pot_result["winners"].items():
                target[uid] = target.get(uid, 0) + chips
                self.get_player(uid).chips += chips

        showdown_uids = [self.seats[i].uid for i in live]
        self.shown_cards.update(showdown_uids)

        self._finish_hand(
            {
                "uncontested": False,
                "pots": [
                    {**pot, "winners": r["winners"], "hand": r["hand"], "refund": r["refund"]}
                    for pot, r in zip(pots, results)
                ],
                "total_pot": sum(pot["amount"] for pot in pots),
                "winnings": winnings,
                "refunds": refunds,
                "hand_descriptions": {uid: h.description for uid, h in hands.items()},
                "showdown_uids": showdown_uids,
            }
        )

    def _award_uncontested(self, winner_idx: int) -> None:
        """Everyone else folded: the survivor takes every contribution."""
        winner = self.seats[winner_idx]
        pots = build_pots(self._contributions())
        total = self.pot_total()
        winner.chips += total
        self._finish_hand(
            {
                "uncontested": True,
                "pots": [
                    {**pot, "winners": {winner.uid: pot["amount"]}, "hand": None, "refund": False}
                    for pot in pots
                ],
                "total_pot": total,
                "winnings": {winner.uid: total},
                "refunds": {},
                "hand_descriptions": {},
                "showdown_uids": [],
            }
        )

    def _finish_hand(self, result: dict[str, Any]) -> None:
        self.phase = Phase.SHOWDOWN
        self.active_seat = None
        self.turn_deadline = None
        self.current_bet = 0
        self.pot = 0
        self.pots = []

        self.last_hand_result = {
            "hand_number": self.hand_number,
            "uncontested": result["uncontested"],
            "total_pot": result["total_pot"],
            "pots": result["pots"],
            "winners": [
                {
                    "uid": uid,
                    "display_name": self.get_player(uid).display_name,
                    "amount": amount,
                    "hand": result["hand_descriptions"].get(uid),
                }
                for uid, amount in result["winnings"].items()
            ],
            "refunds": [
                {"uid": uid, "display_name": self.get_player(uid).display_name, "amount": amount}
                for uid, amount in result["refunds"].items()
            ],
            "community_cards": [c.to_dict() for c in self.community_cards],
            "player_hands": {
                uid: {
                    "cards": [c.to_dict() for c in self.get_player(uid).hand],
                    "hand_name": result["hand_descriptions"].get(uid),
                }
                for uid in result["showdown_uids"]
            },
        }

        for w in self.last_hand_result["winners"]:
            suffix = f" with {w['hand']}" if w["hand"] else ""
            self.log(
                EntryKind.EVENT,
                "hand_won",
                f"{w['display_name']} wins {w['amount']}{suffix}",
                self.get_player(w["uid"]),
            )

        self.completed_records.append(build_record(self, result))
        self.current_history = None

        if self.tournament and self.tournament.state == TournamentState.RUNNING:
            credits = self.tournament.record_eliminations(self)
            for entry in self.tournament.elimination_order:
                if entry.get("hand_number") == self.hand_number and entry["position"] > 1:
                    self.log(
                        EntryKind.EVENT,
                        "eliminated",
                        f"{entry['display_name']} finishes in position {entry['position']}",
                    )
            if credits:
                self.wallet_credits.extend(credits)
                self.log(EntryKind.EVENT, "tournament_complete", "The tournament is over")

    def start_next_hand(self) -> None:
        """Clear a finished hand back to IDLE, applying queued sit-outs."""
        if self.phase != Phase.SHOWDOWN:
            raise PhaseMismatch(f"Cannot start the next hand during {self.phase.value}")

        for p in self.seats:
            p.hand = []
            p.in_hand = False
            p.current_round_bet = 0
            p.total_contribution = 0
            p.has_acted_this_round = False
            p.cards_drawn = None
            if p.status != PlayerStatus.ELIMINATED:
                p.status = PlayerStatus.ACTIVE

        self.community_cards = []
        self.deck = Deck(rng=self._rng)
        self.pots = []
        self.pot = 0
        self.current_bet = 0
        self.hand_start_total = 0
        self.phase = Phase.IDLE

        self.demote_pending_sit_outs()
        self.touch()

    def demote_pending_sit_outs(self) -> None:
        """Move every seat with a pending sit-out to the rail.

        Their stacks are queued on ``wallet_credits`` for the caller's
        transaction.
        """
        for idx in reversed(range(len(self.seats))):
            p = self.seats[idx]
            if not p.pending_sit_out:
                continue
            self.remove_seat(idx)
            if p.chips > 0 and self.tournament is None:
                self.wallet_credits.append((p.uid, p.chips))
            self.railbirds.append({"uid": p.uid, "display_name": p.display_name})
            self.log(EntryKind.EVENT, "sit_out", f"{p.display_name} is now watching", p)

    # ------------------------------------------------------------------
    # Timeouts & reveal
    # ------------------------------------------------------------------

    def timeout_action(self) -> str:
        """Act for the seat whose turn expired.  Returns the action taken."""
        if self.active_seat is None or not self.is_hand_live:
            raise PhaseMismatch("No turn is running")
        p = self.seats[self.active_seat]
        self.log(EntryKind.EVENT, "timeout", f"{p.display_name} ran out of time", p)

        if self.phase in DRAW_PHASES:
            self.submit_draw(p.uid, [], timed_out=True)
            return "STAND_PAT"
        if p.current_round_bet >= self.current_bet:
            self.apply_action(p.uid, ActionType.CHECK.value)
            return ActionType.CHECK.value
        self.apply_action(p.uid, ActionType.FOLD.value)
        return ActionType.FOLD.value

    def reveal_hand(self, uid: str) -> None:
        """Let a player show their cards after the hand."""
        if self.phase != Phase.SHOWDOWN:
            raise PhaseMismatch("Cards can only be shown after the hand")
        p = self.get_player(uid)
        if not p.hand:
            raise IllegalAction("No cards to show")
        self.shown_cards.add(uid)
        self.log(EntryKind.EVENT, "reveal", f"{p.display_name} shows their hand", p)
        self.touch()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _build_state(self) -> dict[str, Any]:
        """Public table state: no hole cards except those shown."""
        active_uid = None
        if self.active_seat is not None and self.active_seat < len(self.seats):
            active_uid = self.seats[self.active_seat].uid

        return {
            "table_id": self.table_id,
            "created_by": self.created_by,
            "config": {k: v for k, v in self.config.model_dump(mode="json").items() if k != "password_hash"},
            "has_password": self.config.password_hash is not None,
            "phase": self.phase.value,
            "hand_number": self.hand_number,
            "pot": self.pot_total() if self.is_hand_live else 0,
            "pots": self.pots,
            "community_cards": [c.to_dict() for c in self.community_cards],
            "current_bet": self.current_bet,
            "min_bet": self.min_bet,
            "small_blind": self.small_blind,
            "last_raise_amount": self.last_raise_amount,
            "active_seat": self.active_seat,
            "active_uid": active_uid,
            "dealer_seat": self.dealer_seat,
            "small_blind_seat": self.small_blind_seat,
            "big_blind_seat": self.big_blind_seat,
            "turn_deadline": self.turn_deadline,
            "deck_remaining": self.deck.remaining,
            "muck_size": self.deck.muck_size,
            "cut_result": self.cut_result,
            "last_hand_result": self.last_hand_result,
            "shown_cards": sorted(self.shown_cards),
            "players": [p.to_dict(reveal_cards=p.uid in self.shown_cards) for p in self.seats],
            "railbirds": list(self.railbirds),
            "chat_log": list(self.chat_log),
            "tournament": self.tournament.to_dict() if self.tournament else None,
            "last_activity": self.last_activity,
        }

    def get_player_view(self, uid: Optional[str]) -> dict[str, Any]:
        """State as seen by *uid*: own cards, legal actions, nothing else hidden leaks."""
        state = self._build_state()
        idx = self.find_seat(uid) if uid else None
        state["is_railbird"] = idx is None
        if idx is not None:
            p = self.seats[idx]
            state["my_seat"] = idx
            state["my_cards"] = [c.to_dict() for c in p.hand]
            state["valid_actions"] = self.legal_actions(p.uid)
            state["can_draw"] = self.phase in DRAW_PHASES and idx == self.active_seat
        else:
            state["my_seat"] = None
            state["my_cards"] = []
            state["valid_actions"] = []
            state["can_draw"] = False

        result = state.get("last_hand_result")
        if result:
            filtered = {
                hand_uid: data if (hand_uid == uid or hand_uid in self.shown_cards)
                else {"cards": [], "hand_name": data.get("hand_name")}
                for hand_uid, data in result["player_hands"].items()
            }
            state["last_hand_result"] = {**result, "player_hands": filtered}
        return state

    def bot_view(self, idx: int) -> dict[str, Any]:
        """What a bot at *idx* may see when deciding."""
        p = self.seats[idx]
        return {
            "game_type": self.config.game_type,
            "betting_type": self.config.betting_type,
            "phase": self.phase,
            "seat": idx,
            "seat_count": len(self.seats),
            "dealer_seat": self.dealer_seat,
            "hand": list(p.hand),
            "community_cards": list(self.community_cards),
            "chips": p.chips,
            "current_round_bet": p.current_round_bet,
            "cards_drawn": p.cards_drawn,
            "current_bet": self.current_bet,
            "to_call": max(0, self.current_bet - p.current_round_bet),
            "pot": self.pot_total(),
            "min_bet": self.min_bet,
            "valid_actions": self.legal_actions(p.uid),
            "opponents": [
                {
                    "seat": i,
                    "status": o.status.value,
                    "chips": o.chips,
                    "current_round_bet": o.current_round_bet,
                    "cards_drawn": o.cards_drawn,
                    "last_action": o.last_action,
                }
                for i, o in enumerate(self.seats)
                if i != idx and o.is_live
            ],
            "draws_remaining": sum(
                1 for ph in self.sequence[self.sequence.index(self.phase):] if ph in DRAW_PHASES
            )
            if self.phase in self.sequence
            else 0,
        }

    # ------------------------------------------------------------------
    # Serialization (table document)
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize full table state for the document store."""
        return {
            "table_id": self.table_id,
            "config": self.config.model_dump(mode="json"),
            "created_by": self.created_by,
            "phase": self.phase.value,
            "deck": self.deck.to_dict(),
            "community_cards": [c.to_dict() for c in self.community_cards],
            "pot": self.pot,
            "pots": self.pots,
            "current_bet": self.current_bet,
            "min_bet": self.min_bet,
            "small_blind": self.small_blind,
            "last_raise_amount": self.last_raise_amount,
            "raises_this_street": self.raises_this_street,
            "active_seat": self.active_seat,
            "dealer_seat": self.dealer_seat,
            "small_blind_seat": self.small_blind_seat,
            "big_blind_seat": self.big_blind_seat,
            "turn_deadline": self.turn_deadline,
            "seats": [
                {
                    "uid": p.uid,
                    "display_name": p.display_name,
                    "chips": p.chips,
                    "hand": [c.to_dict() for c in p.hand],
                    "status": p.status.value,
                    "current_round_bet": p.current_round_bet,
                    "total_contribution": p.total_contribution,
                    "has_acted_this_round": p.has_acted_this_round,
                    "pending_sit_out": p.pending_sit_out,
                    "is_bot": p.is_bot,
                    "bot_difficulty": p.bot_difficulty,
                    "last_action": p.last_action,
                    "cards_drawn": p.cards_drawn,
                    "in_hand": p.in_hand,
                    "starting_chips": p.starting_chips,
                }
                for p in self.seats
            ],
            "railbirds": self.railbirds,
            "chat_log": self.chat_log,
            "tournament": self.tournament.to_dict() if self.tournament else None,
            "hand_number": self.hand_number,
            "has_cut_for_dealer": self.has_cut_for_dealer,
            "cut_result": self.cut_result,
            "last_hand_result": self.last_hand_result,
            "shown_cards": sorted(self.shown_cards),
            "current_history": self.current_history.to_dict() if self.current_history else None,
            "hand_start_total": self.hand_start_total,
            "created_at": self.created_at,
            "last_activity": self.last_activity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], rng: Optional[random.Random] = None) -> TableEngine:
        """Restore a table from its stored document."""
        engine = cls.__new__(cls)
        engine.table_id = data["table_id"]
        engine.config = TableConfig.model_validate(data["config"])
        engine.created_by = data.get("created_by", "")
        engine._rng = rng
        engine.phase = Phase(data["phase"])
        engine.deck = Deck.from_dict(data["deck"], rng=rng)
        engine.community_cards = [Card.from_dict(c) for c in data.get("community_cards", [])]
        engine.pot = data.get("pot", 0)
        engine.pots = data.get("pots", [])
        engine.current_bet = data.get("current_bet", 0)
        engine.min_bet = data.get("min_bet", engine.config.min_bet)
        engine.small_blind = data.get("small_blind", engine.config.small_blind)
        engine.last_raise_amount = data.get("last_raise_amount", engine.min_bet)
        engine.raises_this_street = data.get("raises_this_street", 0)
        engine.active_seat = data.get("active_seat")
        engine.dealer_seat = data.get("dealer_seat")
        engine.small_blind_seat = data.get("small_blind_seat")
        engine.big_blind_seat = data.get("big_blind_seat")
        engine.turn_deadline = data.get("turn_deadline")

        engine.seats = []
        for s in data.get("seats", []):
            ps = PlayerState(
                s["uid"],
                s["display_name"],
                s["chips"],
                is_bot=s.get("is_bot", False),
                bot_difficulty=s.get("bot_difficulty"),
            )
            ps.hand = [Card.from_dict(c) for c in s.get("hand", [])]
            ps.status = PlayerStatus(s.get("status", PlayerStatus.ACTIVE.value))
            ps.current_round_bet = s.get("current_round_bet", 0)
            ps.total_contribution = s.get("total_contribution", 0)
            ps.has_acted_this_round = s.get("has_acted_this_round", False)
            ps.pending_sit_out = s.get("pending_sit_out", False)
            ps.last_action = s.get("last_action", "")
            ps.cards_drawn = s.get("cards_drawn")
            ps.in_hand = s.get("in_hand", False)
            ps.starting_chips = s.get("starting_chips", ps.chips)
            engine.seats.append(ps)

        engine.railbirds = data.get("railbirds", [])
        engine.chat_log = data.get("chat_log", [])
        t = data.get("tournament")
        engine.tournament = Tournament.from_dict(t) if t else None
        engine.hand_number = data.get("hand_number", 0)
        engine.has_cut_for_dealer = data.get("has_cut_for_dealer", False)
        engine.cut_result = data.get("cut_result")
        engine.last_hand_result = data.get("last_hand_result")
        engine.shown_cards = set(data.get("shown_cards", []))
        h = data.get("current_history")
        engine.current_history = HandHistory.from_dict(h) if h else None
        engine.hand_start_total = data.get("hand_start_total", 0)
        engine.created_at = data.get("created_at", time.time())
        engine.last_activity = data.get("last_activity", engine.created_at)
        engine.completed_records = []
        engine.wallet_credits = []
        return engine
