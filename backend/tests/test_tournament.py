"""Tests for the Sit-and-Go controller: registration, blind clock, payouts."""

import random

import pytest

from kcpoker.cards import Deck, cards_from_str, full_deck
from kcpoker.engine import DRAW_PHASES, Phase, PlayerState, PlayerStatus, TableEngine
from kcpoker.errors import PhaseMismatch, TableFull
from kcpoker.models import TableConfig, TableMode, TournamentSettings
from kcpoker.tournament import (
    Tournament,
    TournamentState,
    build_schedule,
    payout_amounts,
)


# ── Helpers ──────────────────────────────────────────────────────────

def _make_tournament(seats: int = 3, buy_in: int = 100) -> Tournament:
    return Tournament(
        total_seats=seats,
        buy_in=buy_in,
        starting_stack=1500,
        level_duration_minutes=10,
        blind_schedule=build_schedule(20),
    )


def _make_sng_engine(stacks: list[int]) -> TableEngine:
    settings = TournamentSettings(total_seats=len(stacks), buy_in=100, starting_stack=max(stacks))
    cfg = TableConfig(min_bet=20, table_mode=TableMode.SIT_AND_GO, tournament=settings)
    engine = TableEngine("SNG001", cfg, rng=random.Random(3))
    for i, chips in enumerate(stacks):
        engine.add_seat(PlayerState(f"p{i}", f"Player{i}", chips))
        engine.tournament.register(f"p{i}")
    engine.has_cut_for_dealer = True
    engine.dealer_seat = len(stacks) - 1
    return engine


def _rig(engine: TableEngine, hands: dict[int, str]) -> None:
    for idx, text in hands.items():
        engine.seats[idx].hand = cards_from_str(text)
    used = {c for p in engine.seats for c in p.hand}
    engine.deck = Deck(cards=[c for c in full_deck() if c not in used])


def _play_out(engine: TableEngine) -> None:
    while engine.phase != Phase.SHOWDOWN:
        uid = engine.seats[engine.active_seat].uid
        if engine.phase in DRAW_PHASES:
            engine.submit_draw(uid, [])
        else:
            legal = {a["action"] for a in engine.legal_actions(uid)}
            engine.apply_action(uid, "CHECK" if "CHECK" in legal else "CALL")


# ── Schedule and payouts ─────────────────────────────────────────────

class TestSchedule:
    def test_starts_at_the_table_blinds(self):
        schedule = build_schedule(20)
        assert schedule[0] == (10, 20)
        assert len(schedule) == 12

    def test_strictly_increasing(self):
        bbs = [bb for _, bb in build_schedule(50)]
        assert all(b > a for a, b in zip(bbs, bbs[1:]))

    def test_small_blind_is_half(self):
        assert all(sb == max(1, bb // 2) for sb, bb in build_schedule(100))


class TestPayouts:
    def test_six_handed_curve(self):
        assert payout_amounts(6000, 6) == [3000, 1800, 1200]

    def test_winner_takes_all_heads_up(self):
        assert payout_amounts(200, 2) == [200]

    def test_remainder_goes_to_first(self):
        amounts = payout_amounts(1001, 3)
        assert amounts == [651, 350]
        assert sum(amounts) == 1001


# ── Registration ─────────────────────────────────────────────────────

class TestRegistration:
    def test_filling_the_field_starts(self):
        t = _make_tournament(seats=2)
        assert t.register("a") is False
        assert t.register("b", now=500.0) is True
        assert t.state == TournamentState.RUNNING
        assert t.started_at == 500.0
        assert t.prize_pool == 200

    def test_duplicate_registration_ignored(self):
        t = _make_tournament()
        t.register("a")
        assert t.register("a") is False
        assert t.registered == ["a"]

    def test_full_field_rejected(self):
        t = _make_tournament(seats=2)
        t.registered = ["a", "b"]
        with pytest.raises(TableFull):
            t.register("c")

    def test_unregister_refunds_buy_in(self):
        t = _make_tournament()
        t.register("a")
        assert t.unregister("a") == 100
        assert t.prize_pool == 0
        assert t.unregister("ghost") == 0

    def test_no_unregister_after_start(self):
        t = _make_tournament(seats=2)
        t.register("a")
        t.register("b")
        with pytest.raises(PhaseMismatch):
            t.unregister("a")
        with pytest.raises(PhaseMismatch):
            t.register("c")


# ── Blind clock ──────────────────────────────────────────────────────

class TestBlindLevels:
    def test_advances_with_the_clock(self):
        t = _make_tournament(seats=2)
        t.register("a")
        t.register("b", now=0.0)
        assert t.advance_level(now=300.0) is False
        assert t.advance_level(now=1250.0) is True
        assert t.level == 2
        assert t.current_blinds() == t.blind_schedule[2]
        assert t.next_level_at() == 1800.0

    def test_schedule_extends_past_the_end(self):
        t = _make_tournament(seats=2)
        t.register("a")
        t.register("b", now=0.0)
        t.advance_level(now=20 * 600.0)
        assert t.level == 20
        assert len(t.blind_schedule) == 21
        assert t.blind_schedule[20][1] > t.blind_schedule[19][1]

    def test_no_clock_before_start(self):
        t = _make_tournament()
        assert t.advance_level(now=10_000.0) is False
        assert t.next_level_at() is None


# ── Settlement ───────────────────────────────────────────────────────

class TestSettlement:
    def test_settle_by_chips(self):
        t = _make_tournament(seats=2, buy_in=500)
        t.register("a")
        t.register("b")
        credits = dict(t.settle_by_chips({"a": 1000, "b": 2000}))
        assert credits == {"a": 333, "b": 667}
        assert t.state == TournamentState.COMPLETED
        assert t.prize_pool == 0

    def test_round_trip(self):
        t = _make_tournament(seats=2)
        t.register("a")
        restored = Tournament.from_dict(t.to_dict())
        assert restored.to_dict() == t.to_dict()


# ── Through the engine ───────────────────────────────────────────────

class TestTournamentHands:
    def test_blinds_come_from_the_schedule(self):
        e = _make_sng_engine([1500, 1500])
        assert e.tournament.state == TournamentState.RUNNING
        e.deal()
        assert (e.small_blind, e.min_bet) == e.tournament.blind_schedule[e.tournament.level]

    def test_deal_refused_while_registering(self):
        settings = TournamentSettings(total_seats=3, buy_in=100, starting_stack=1500)
        cfg = TableConfig(table_mode=TableMode.SIT_AND_GO, tournament=settings)
        e = TableEngine("SNG002", cfg)
        for i in range(2):
            e.add_seat(PlayerState(f"p{i}", f"Player{i}", 1500))
            e.tournament.register(f"p{i}")
        with pytest.raises(PhaseMismatch):
            e.deal()

    def test_bust_out_completes_and_pays(self):
        e = _make_sng_engine([1500, 1500])
        e.deal()
        _rig(e, {0: "7c 5d 4h 3s 2c", 1: "8c 6d 4d 3h 2h"})
        e.apply_action(e.seats[e.active_seat].uid, "ALL_IN")
        _play_out(e)

        assert e.seats[1].status == PlayerStatus.ELIMINATED
        assert e.tournament.state == TournamentState.COMPLETED
        assert e.wallet_credits == [("p0", 200)]
        positions = {entry["uid"]: entry["position"] for entry in e.tournament.elimination_order}
        assert positions == {"p1": 2, "p0": 1}

    def test_shorter_stack_finishes_lower_when_busted_together(self):
        e = _make_sng_engine([300, 500, 2000])
        e.deal()
        _rig(e, {0: "Kc Kd Kh 3s 2c", 1: "Qc Qd Qh 3h 2h", 2: "7c 5d 4h 3c 2d"})
        e.apply_action("p0", "ALL_IN")
        e.apply_action("p1", "ALL_IN")
        _play_out(e)

        order = [entry["uid"] for entry in e.tournament.elimination_order]
        assert order[:2] == ["p0", "p1"]
        positions = {entry["uid"]: entry["position"] for entry in e.tournament.elimination_order}
        assert positions["p0"] == 3
        assert positions["p1"] == 2
        assert positions["p2"] == 1
        assert e.tournament.state == TournamentState.COMPLETED
