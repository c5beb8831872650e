"""Tests for side-pot construction and pot distribution."""

from kcpoker.cards import cards_from_str as _cards
from kcpoker.lowball_eval import evaluate
from kcpoker.pots import Contribution, build_pots, distribute, total


NUMBER_ONE = evaluate(_cards("7c 5d 4h 3s 2c"))
NUMBER_ONE_OTHER_SUITS = evaluate(_cards("7d 5c 4s 3h 2d"))
EIGHT_LOW = evaluate(_cards("8c 6d 4d 3h 2h"))
NINE_LOW = evaluate(_cards("9s 6h 5c 4c 2s"))


# ── build_pots ───────────────────────────────────────────────────────

class TestBuildPots:
    def test_single_pot_when_everyone_matches(self):
        pots = build_pots([Contribution(u, 100, False) for u in ("a", "b", "c")])
        assert pots == [
            {"amount": 300, "level": 100, "eligible": ["a", "b", "c"], "contributors": ["a", "b", "c"]}
        ]

    def test_three_way_all_in_makes_side_pots(self):
        pots = build_pots(
            [
                Contribution("a", 100, False),
                Contribution("b", 300, False),
                Contribution("c", 500, False),
            ]
        )
        assert [p["amount"] for p in pots] == [300, 400, 200]
        assert [p["level"] for p in pots] == [100, 300, 500]
        assert pots[0]["eligible"] == ["a", "b", "c"]
        assert pots[1]["eligible"] == ["b", "c"]
        assert pots[2]["eligible"] == ["c"]
        assert total(pots) == 900

    def test_folded_chips_stay_in_pot_but_not_eligible(self):
        pots = build_pots(
            [
                Contribution("a", 50, True),
                Contribution("b", 200, False),
                Contribution("c", 200, False),
            ]
        )
        assert [p["amount"] for p in pots] == [150, 300]
        assert pots[0]["eligible"] == ["b", "c"]
        assert pots[0]["contributors"] == ["a", "b", "c"]

    def test_zero_contributions_ignored(self):
        assert build_pots([Contribution("a", 0, False)]) == []


# ── distribute ───────────────────────────────────────────────────────

class TestDistribute:
    def test_side_pots_go_to_best_eligible_hand(self):
        contributions = {"a": 100, "b": 300, "c": 500}
        pots = build_pots([Contribution(u, amt, False) for u, amt in contributions.items()])
        hands = {"a": NUMBER_ONE, "b": EIGHT_LOW, "c": NINE_LOW}

        results = distribute(pots, hands, ["a", "b", "c"], contributions)

        assert results[0]["winners"] == {"a": 300}
        assert results[1]["winners"] == {"b": 400}
        assert results[2]["winners"] == {"c": 200}
        assert results[2]["refund"] is True
        assert results[0]["hand"] == "7-5-4-3-2 (Number One)"

    def test_chop_gives_odd_chip_left_of_button(self):
        pots = [{"amount": 301, "level": 100, "eligible": ["a", "b", "c"], "contributors": ["a", "b", "c"]}]
        hands = {"a": NUMBER_ONE, "b": NUMBER_ONE_OTHER_SUITS, "c": NINE_LOW}

        results = distribute(pots, hands, ["b", "c", "a"], {"a": 100, "b": 100, "c": 101})

        assert results[0]["winners"] == {"a": 150, "b": 151}
        assert sum(results[0]["winners"].values()) == 301

    def test_pot_with_only_folded_contributors_is_refunded(self):
        pots = [{"amount": 100, "level": 100, "eligible": [], "contributors": ["a", "b"]}]
        results = distribute(pots, {}, ["a", "b"], {"a": 100, "b": 50})
        assert results[0]["winners"] == {"a": 100}
        assert results[0]["refund"] is True

    def test_single_contender_takes_pot(self):
        pots = [{"amount": 200, "level": 100, "eligible": ["b"], "contributors": ["a", "b"]}]
        results = distribute(pots, {"b": EIGHT_LOW}, ["a", "b"], {"a": 100, "b": 100})
        assert results[0]["winners"] == {"b": 200}
        assert results[0]["refund"] is False
