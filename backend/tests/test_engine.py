"""Tests for the TableEngine: cut, blinds, betting order, draws, showdown."""

import random

import pytest

from kcpoker.cards import Card, Deck, cards_from_str, full_deck
from kcpoker.engine import (
    DRAW_PHASES,
    ActionType,
    Phase,
    PlayerState,
    PlayerStatus,
    TableEngine,
)
from kcpoker.errors import (
    IllegalAction,
    InsufficientChips,
    NotYourTurn,
    PhaseMismatch,
    PlayerNotFound,
)
from kcpoker.invariants import find_violations
from kcpoker.models import BettingType, GameType, TableConfig


# ── Helpers ──────────────────────────────────────────────────────────

def _make_engine(
    n_players: int = 2,
    chips: int = 1000,
    game_type: GameType = GameType.LOWBALL_27,
    betting_type: BettingType = BettingType.NO_LIMIT,
    min_bet: int = 20,
    dealer: int | None = 0,
    seed: int = 1,
    **config,
) -> TableEngine:
    """Engine with n seated players.  *dealer* fixes the first button (None: cut for it)."""
    cfg = TableConfig(game_type=game_type, betting_type=betting_type, min_bet=min_bet, **config)
    engine = TableEngine("TEST01", cfg, created_by="p0", rng=random.Random(seed))
    for i in range(n_players):
        engine.add_seat(PlayerState(f"p{i}", f"Player{i}", chips))
    if dealer is not None:
        engine.has_cut_for_dealer = True
        engine.dealer_seat = (dealer - 1) % n_players
    return engine


def _rig(engine: TableEngine, hands: dict[int, str], deck_top: str = "") -> None:
    """Replace hole cards and restack the deck so every card is still accounted for."""
    for idx, text in hands.items():
        engine.seats[idx].hand = cards_from_str(text)
    used = {c for p in engine.seats for c in p.hand} | set(engine.community_cards)
    top = cards_from_str(deck_top)
    rest = [c for c in full_deck() if c not in used and c not in top]
    engine.deck = Deck(cards=top + rest, rng=random.Random(0))


def _uid(engine: TableEngine) -> str:
    return engine.seats[engine.active_seat].uid


def _stand_pat_through_draws(engine: TableEngine) -> None:
    while engine.phase in DRAW_PHASES:
        engine.submit_draw(_uid(engine), [])


def _total_chips(engine: TableEngine) -> int:
    return sum(p.chips for p in engine.seats) + engine.pot


# ── PlayerState ──────────────────────────────────────────────────────

class TestPlayerState:
    def test_initial_state(self):
        ps = PlayerState("id1", "Alice", 500)
        assert ps.chips == 500
        assert ps.status == PlayerStatus.ACTIVE
        assert not ps.in_hand
        assert not ps.can_act

    def test_reset_for_new_round_keeps_folded_action(self):
        ps = PlayerState("id1", "Alice", 500)
        ps.status = PlayerStatus.FOLDED
        ps.last_action = "Fold"
        ps.current_round_bet = 40
        ps.reset_for_new_round()
        assert ps.last_action == "Fold"
        assert ps.current_round_bet == 0

    def test_reset_for_new_round_clears_active_action(self):
        ps = PlayerState("id1", "Alice", 500)
        ps.last_action = "Check"
        ps.has_acted_this_round = True
        ps.reset_for_new_round()
        assert ps.last_action == ""
        assert not ps.has_acted_this_round

    def test_reset_for_new_hand_sits_out_undealt(self):
        ps = PlayerState("id1", "Alice", 500)
        ps.reset_for_new_hand(dealt_in=False)
        assert ps.status == PlayerStatus.SITTING_OUT
        assert not ps.in_hand

    def test_to_dict_hides_cards_by_default(self):
        ps = PlayerState("id1", "Alice", 500)
        ps.hand = cards_from_str("7c 5d 4h 3s 2c")
        assert "hand" not in ps.to_dict()
        assert ps.to_dict()["card_count"] == 5
        assert len(ps.to_dict(reveal_cards=True)["hand"]) == 5


# ── Cut for dealer ───────────────────────────────────────────────────

class TestCutForDealer:
    def test_first_deal_cuts_for_the_button(self):
        e = _make_engine(3, dealer=None)
        e.deal()
        assert e.has_cut_for_dealer
        assert len(e.cut_result) == 3
        winners = [entry for entry in e.cut_result if entry["winner"]]
        assert len(winners) == 1
        assert e.dealer_seat == winners[0]["seat"]

    def test_highest_card_wins_the_cut(self):
        e = _make_engine(4, dealer=None, seed=11)
        e.deal()
        cut = {entry["seat"]: Card.from_dict(entry["card"]) for entry in e.cut_result}
        best = max(cut, key=lambda seat: cut[seat].cut_value)
        assert e.dealer_seat == best

    def test_cut_cards_go_to_the_muck(self):
        e = _make_engine(3, dealer=None)
        e.deal()
        assert e.deck.muck_size == 3
        assert find_violations(e) == []

    def test_no_second_cut(self):
        e = _make_engine(2, dealer=None)
        e.deal()
        first_dealer = e.dealer_seat
        e.apply_action(_uid(e), "FOLD")
        e.start_next_hand()
        e.deal()
        assert e.dealer_seat != first_dealer
        assert e.deck.muck_size == 0


# ── Dealing and blinds ───────────────────────────────────────────────

class TestDeal:
    def test_heads_up_dealer_posts_small_blind(self):
        e = _make_engine(2)
        e.deal()
        assert e.dealer_seat == 0
        assert e.small_blind_seat == 0
        assert e.big_blind_seat == 1
        assert e.seats[0].current_round_bet == 10
        assert e.seats[1].current_round_bet == 20
        assert e.seats[0].last_action == "SB 10"
        assert e.seats[1].last_action == "BB 20"
        # Small blind acts first before the draw
        assert e.active_seat == 0

    def test_three_handed_blinds_and_first_actor(self):
        e = _make_engine(3)
        e.deal()
        assert e.small_blind_seat == 1
        assert e.big_blind_seat == 2
        assert e.active_seat == 0
        assert e.pot == 30

    def test_lowball_deals_five_holdem_two(self):
        lowball = _make_engine(3)
        lowball.deal()
        assert all(len(p.hand) == 5 for p in lowball.seats)
        assert lowball.deck.remaining == 52 - 15

        holdem = _make_engine(3, game_type=GameType.HOLDEM)
        holdem.deal()
        assert all(len(p.hand) == 2 for p in holdem.seats)
        assert holdem.phase == Phase.PREFLOP

    def test_button_moves_each_hand(self):
        e = _make_engine(3)
        e.deal()
        while e.phase != Phase.SHOWDOWN:
            e.apply_action(_uid(e), "FOLD")
        e.start_next_hand()
        e.deal()
        assert e.dealer_seat == 1
        assert e.small_blind_seat == 2
        assert e.big_blind_seat == 0

    def test_short_blind_goes_all_in(self):
        e = _make_engine(2)
        e.seats[1].chips = 15
        e.deal()
        assert e.seats[1].current_round_bet == 15
        assert e.seats[1].status == PlayerStatus.ALL_IN

    def test_needs_two_players_with_chips(self):
        e = _make_engine(2)
        e.seats[1].chips = 0
        with pytest.raises(IllegalAction):
            e.deal()

    def test_cannot_deal_mid_hand(self):
        e = _make_engine(2)
        e.deal()
        with pytest.raises(PhaseMismatch):
            e.deal()

    def test_pending_sit_out_is_not_dealt_in(self):
        e = _make_engine(3)
        e.seats[2].pending_sit_out = True
        e.deal()
        assert not e.seats[2].in_hand
        assert e.seats[2].hand == []

    def test_deal_passes_invariants(self):
        e = _make_engine(4)
        e.deal()
        assert find_violations(e) == []


# ── Betting ──────────────────────────────────────────────────────────

class TestLegalActions:
    def test_no_limit_preflop_options(self):
        e = _make_engine(2)
        e.deal()
        legal = {a["action"]: a for a in e.legal_actions("p0")}
        assert set(legal) == {"FOLD", "CALL", "RAISE", "ALL_IN"}
        assert legal["CALL"]["amount"] == 10
        assert legal["RAISE"]["min_amount"] == 40
        assert legal["RAISE"]["max_amount"] == 1000
        assert legal["ALL_IN"]["amount"] == 990

    def test_not_your_turn_has_no_actions(self):
        e = _make_engine(2)
        e.deal()
        assert e.legal_actions("p1") == []

    def test_big_blind_gets_the_option(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "CALL")
        assert e.active_seat == 1
        legal = {a["action"] for a in e.legal_actions("p1")}
        assert "CHECK" in legal
        assert "RAISE" in legal

    def test_pot_limit_max_raise(self):
        e = _make_engine(2, betting_type=BettingType.POT_LIMIT)
        e.deal()
        legal = {a["action"]: a for a in e.legal_actions("p0")}
        # call 10 makes the pot 40; raise by the pot to 60
        assert legal["RAISE"]["min_amount"] == 40
        assert legal["RAISE"]["max_amount"] == 60
        assert "ALL_IN" not in legal

    def test_fixed_limit_single_raise_size(self):
        e = _make_engine(2, betting_type=BettingType.FIXED_LIMIT)
        e.deal()
        legal = {a["action"]: a for a in e.legal_actions("p0")}
        assert legal["RAISE"]["min_amount"] == legal["RAISE"]["max_amount"] == 40

    def test_fixed_limit_raise_cap(self):
        e = _make_engine(2, betting_type=BettingType.FIXED_LIMIT, fixed_limit_raise_cap=1)
        e.deal()
        e.apply_action("p0", "RAISE", 40)
        legal = {a["action"] for a in e.legal_actions("p1")}
        assert legal == {"FOLD", "CALL"}

    def test_min_reraise_tracks_last_raise(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "RAISE", 100)
        legal = {a["action"]: a for a in e.legal_actions("p1")}
        assert legal["RAISE"]["min_amount"] == 180


class TestApplyAction:
    def test_out_of_turn(self):
        e = _make_engine(2)
        e.deal()
        with pytest.raises(NotYourTurn):
            e.apply_action("p1", "CHECK")

    def test_unknown_player(self):
        e = _make_engine(2)
        e.deal()
        with pytest.raises(PlayerNotFound):
            e.apply_action("ghost", "FOLD")

    def test_unknown_action(self):
        e = _make_engine(2)
        e.deal()
        with pytest.raises(IllegalAction):
            e.apply_action("p0", "DANCE")

    def test_check_facing_bet_is_illegal(self):
        e = _make_engine(2)
        e.deal()
        with pytest.raises(IllegalAction):
            e.apply_action("p0", "CHECK")

    def test_raise_below_minimum(self):
        e = _make_engine(2)
        e.deal()
        with pytest.raises(IllegalAction):
            e.apply_action("p0", "RAISE", 30)

    def test_raise_beyond_stack(self):
        e = _make_engine(2)
        e.deal()
        with pytest.raises(InsufficientChips):
            e.apply_action("p0", "RAISE", 1500)
        assert e.seats[0].chips == 990

    def test_raise_to_whole_stack_is_all_in(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "RAISE", 1000)
        assert e.seats[0].status == PlayerStatus.ALL_IN
        assert e.seats[0].last_action == "All-In 1000"

    def test_action_labels(self):
        e = _make_engine(3)
        e.deal()
        e.apply_action("p0", "RAISE", 60)
        assert e.seats[0].last_action == "Raise to 60"
        e.apply_action("p1", "CALL")
        assert e.seats[1].last_action == "Call 50"
        e.apply_action("p2", "FOLD")
        assert e.seats[2].last_action == "Fold"

    def test_no_betting_during_draw(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "CALL")
        e.apply_action("p1", "CHECK")
        assert e.phase == Phase.DRAW_1
        with pytest.raises(PhaseMismatch):
            e.apply_action(_uid(e), "CHECK")

    def test_fold_to_one_player_ends_hand(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "FOLD")
        assert e.phase == Phase.SHOWDOWN
        assert e.seats[1].chips == 1010
        assert e.seats[0].chips == 990
        assert e.last_hand_result["uncontested"] is True
        assert e.last_hand_result["winners"][0]["uid"] == "p1"
        assert e.active_seat is None
        assert find_violations(e) == []

    def test_every_action_logged(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "CALL")
        kinds = [(entry["kind"], entry["event_type"]) for entry in e.chat_log]
        assert ("action", "call") in kinds


# ── Draws ────────────────────────────────────────────────────────────

class TestDraws:
    def _to_first_draw(self, e: TableEngine) -> None:
        e.deal()
        e.apply_action("p0", "CALL")
        e.apply_action("p1", "CHECK")

    def test_first_drawer_is_left_of_button(self):
        e = _make_engine(2)
        self._to_first_draw(e)
        assert e.phase == Phase.DRAW_1
        assert e.active_seat == 1

    def test_draw_replaces_cards_in_place(self):
        e = _make_engine(2)
        e.deal()
        _rig(e, {0: "Kc Qd 7h 5s 2c", 1: "7c 5d 4h 3s 2d"}, deck_top="8s 6h")
        e.apply_action("p0", "CALL")
        e.apply_action("p1", "CHECK")
        e.submit_draw("p1", [])
        e.submit_draw("p0", [0, 1])
        assert e.seats[0].hand == cards_from_str("8s 6h 7h 5s 2c")
        assert e.seats[0].last_action == ""  # cleared for the new street
        assert set(cards_from_str("Kc Qd")) <= set(e.deck.mucked)
        assert find_violations(e) == []

    def test_draw_labels(self):
        e = _make_engine(2)
        self._to_first_draw(e)
        e.submit_draw("p1", [4])
        assert e.seats[1].last_action == "Drew 1"
        assert e.seats[1].cards_drawn == 1
        e.submit_draw("p0", [])
        # betting round opened: labels of active players cleared, counts kept
        assert e.phase == Phase.BETTING_2
        assert e.seats[0].cards_drawn == 0

    def test_bet_after_draw_starts_left_of_button(self):
        e = _make_engine(2)
        self._to_first_draw(e)
        e.submit_draw("p1", [])
        e.submit_draw("p0", [])
        assert e.active_seat == 1
        assert e.current_bet == 0

    def test_bad_discards(self):
        e = _make_engine(2)
        self._to_first_draw(e)
        with pytest.raises(IllegalAction):
            e.submit_draw("p1", [0, 0])
        with pytest.raises(IllegalAction):
            e.submit_draw("p1", [5])
        with pytest.raises(NotYourTurn):
            e.submit_draw("p0", [])

    def test_no_drawing_during_betting(self):
        e = _make_engine(2)
        e.deal()
        with pytest.raises(PhaseMismatch):
            e.submit_draw("p0", [])

    def test_muck_reshuffled_when_deck_runs_short(self):
        e = _make_engine(2)
        self._to_first_draw(e)
        remaining = e.deck.cards
        e.deck = Deck(cards=remaining[:1], muck=remaining[1:], rng=random.Random(2))
        e.submit_draw("p1", [0, 1, 2])
        assert any(entry["event_type"] == "reshuffle" for entry in e.chat_log)
        assert find_violations(e) == []

    def test_all_in_players_still_draw(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "ALL_IN")
        e.apply_action("p1", "CALL")
        assert e.phase == Phase.DRAW_1
        assert e.active_seat == 1
        e.submit_draw("p1", [0])
        assert e.seats[1].cards_drawn == 1
        e.submit_draw("p0", [])
        # no betting possible: straight on to the next draw
        assert e.phase == Phase.DRAW_2

    def test_single_draw_has_one_draw(self):
        e = _make_engine(2, game_type=GameType.SINGLE_DRAW_27)
        self._to_first_draw(e)
        e.submit_draw("p1", [])
        e.submit_draw("p0", [])
        assert e.phase == Phase.BETTING_2
        e.apply_action("p1", "CHECK")
        e.apply_action("p0", "CHECK")
        assert e.phase == Phase.SHOWDOWN


# ── Hold'em streets ──────────────────────────────────────────────────

class TestHoldemStreets:
    def test_flop_burns_and_deals_three(self):
        e = _make_engine(2, game_type=GameType.HOLDEM)
        e.deal()
        e.apply_action("p0", "CALL")
        e.apply_action("p1", "CHECK")
        assert e.phase == Phase.FLOP
        assert len(e.community_cards) == 3
        assert e.deck.muck_size == 1
        assert e.deck.remaining == 52 - 4 - 4
        assert e.active_seat == 1

    def test_checked_down_to_showdown(self):
        e = _make_engine(2, game_type=GameType.HOLDEM)
        e.deal()
        e.apply_action("p0", "CALL")
        e.apply_action("p1", "CHECK")
        while e.phase != Phase.SHOWDOWN:
            e.apply_action(_uid(e), "CHECK")
        assert len(e.community_cards) == 5
        assert _total_chips(e) == 2000
        assert find_violations(e) == []


# ── Showdown ─────────────────────────────────────────────────────────

class TestShowdown:
    def test_number_one_wins_all_in(self):
        e = _make_engine(2)
        e.deal()
        _rig(e, {0: "7c 5d 4h 3s 2c", 1: "8c 6d 4d 3h 2h"})
        e.apply_action("p0", "ALL_IN")
        e.apply_action("p1", "CALL")
        _stand_pat_through_draws(e)

        assert e.phase == Phase.SHOWDOWN
        assert e.seats[0].chips == 2000
        assert e.seats[1].chips == 0
        winner = e.last_hand_result["winners"][0]
        assert winner["uid"] == "p0"
        assert winner["hand"] == "7-5-4-3-2 (Number One)"
        assert e.shown_cards == {"p0", "p1"}

    def test_identical_lows_chop(self):
        e = _make_engine(2)
        e.deal()
        _rig(e, {0: "7c 5d 4h 3s 2c", 1: "7d 5c 4s 3h 2d"})
        e.apply_action("p0", "ALL_IN")
        e.apply_action("p1", "CALL")
        _stand_pat_through_draws(e)
        assert e.seats[0].chips == 1000
        assert e.seats[1].chips == 1000

    def test_short_stack_wins_only_main_pot(self):
        e = _make_engine(3)
        e.seats[0].chips = 200
        e.deal()
        _rig(e, {0: "7c 5d 4h 3s 2c", 1: "8c 6d 4d 3h 2h", 2: "9s 6h 5c 4c 2s"})
        e.apply_action("p0", "ALL_IN")
        e.apply_action("p1", "RAISE", 500)
        e.apply_action("p2", "CALL")
        while e.phase != Phase.SHOWDOWN:
            if e.phase in DRAW_PHASES:
                e.submit_draw(_uid(e), [])
            else:
                e.apply_action(_uid(e), "CHECK")

        assert e.seats[0].chips == 600
        assert e.seats[1].chips == 500 + 600
        assert e.seats[2].chips == 500
        assert len(e.last_hand_result["pots"]) == 2

    def test_completed_record_queued(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "FOLD")
        assert len(e.completed_records) == 1
        assert e.completed_records[0]["hand_id"] == "TEST01_1"

    def test_reveal_after_hand(self):
        e = _make_engine(2)
        e.deal()
        with pytest.raises(PhaseMismatch):
            e.reveal_hand("p0")
        e.apply_action("p0", "FOLD")
        e.reveal_hand("p1")
        assert "p1" in e.shown_cards

    def test_start_next_hand_returns_to_idle(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "FOLD")
        e.start_next_hand()
        assert e.phase == Phase.IDLE
        assert all(p.hand == [] for p in e.seats)
        assert e.deck.remaining == 52
        assert find_violations(e) == []

    def test_start_next_hand_only_after_showdown(self):
        e = _make_engine(2)
        with pytest.raises(PhaseMismatch):
            e.start_next_hand()


# ── Timeouts ─────────────────────────────────────────────────────────

class TestTimeoutAction:
    def test_folds_when_facing_a_bet(self):
        e = _make_engine(2)
        e.deal()
        assert e.timeout_action() == ActionType.FOLD.value
        assert e.phase == Phase.SHOWDOWN

    def test_checks_when_free(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "CALL")
        assert e.timeout_action() == ActionType.CHECK.value
        assert e.phase == Phase.DRAW_1

    def test_stands_pat_in_draw(self):
        e = _make_engine(2)
        e.deal()
        e.apply_action("p0", "CALL")
        e.apply_action("p1", "CHECK")
        assert e.timeout_action() == "STAND_PAT"
        assert e.seats[1].last_action == "Stood Pat (timeout)"
        assert any(entry["event_type"] == "timeout" for entry in e.chat_log)

    def test_nothing_to_time_out(self):
        e = _make_engine(2)
        with pytest.raises(PhaseMismatch):
            e.timeout_action()

    def test_deadline_set_for_every_turn(self):
        e = _make_engine(2, turn_time_limit=30)
        e.deal()
        first = e.turn_deadline
        assert first is not None
        e.apply_action("p0", "CALL")
        assert e.turn_deadline >= first


# ── Views ────────────────────────────────────────────────────────────

class TestViews:
    def test_player_sees_only_own_cards(self):
        e = _make_engine(2)
        e.deal()
        view = e.get_player_view("p0")
        assert view["my_seat"] == 0
        assert len(view["my_cards"]) == 5
        assert view["valid_actions"]
        assert all("hand" not in p for p in view["players"])

    def test_railbird_view(self):
        e = _make_engine(2)
        e.deal()
        view = e.get_player_view(None)
        assert view["is_railbird"] is True
        assert view["my_cards"] == []
        assert view["valid_actions"] == []

    def test_password_hash_never_exposed(self):
        e = _make_engine(2, password_hash="abc")
        view = e.get_player_view("p0")
        assert view["has_password"] is True
        assert "password_hash" not in view["config"]

    def test_bot_view_counts_remaining_draws(self):
        e = _make_engine(2)
        e.deal()
        view = e.bot_view(0)
        assert view["draws_remaining"] == 3
        assert view["to_call"] == 10
        assert [o["seat"] for o in view["opponents"]] == [1]


# ── Seats ────────────────────────────────────────────────────────────

class TestRemoveSeat:
    def test_button_follows_player_order(self):
        e = _make_engine(3, dealer=None)
        e.dealer_seat = 2
        e.remove_seat(0)
        assert e.dealer_seat == 1

    def test_not_during_a_live_hand(self):
        e = _make_engine(2)
        e.deal()
        with pytest.raises(PhaseMismatch):
            e.remove_seat(0)

    def test_demote_pending_sit_outs_queues_credit(self):
        e = _make_engine(3)
        e.seats[1].pending_sit_out = True
        e.demote_pending_sit_outs()
        assert e.find_seat("p1") is None
        assert e.find_railbird("p1") is not None
        assert e.wallet_credits == [("p1", 1000)]


# ── Serialization ────────────────────────────────────────────────────

class TestSerialization:
    def test_mid_hand_state_survives_storage(self):
        e = _make_engine(3)
        e.deal()
        e.apply_action("p0", "CALL")
        data = e.to_dict()
        restored = TableEngine.from_dict(data)
        assert restored.to_dict() == data
        assert restored.active_seat == e.active_seat
        assert restored.seats[0].hand == e.seats[0].hand
        restored.apply_action(_uid(restored), "CALL")
        assert find_violations(restored) == []
