"""
Tests for winner selection.

The winner must not depend on evaluation order.
"""
import itertools
from decimal import Decimal

from commitment_guard.core import Comparator, TriggerEvaluation, rank_candidates, select_winner


def _evaluation(trigger_id, priority, emitted=True):
    return TriggerEvaluation(
        trigger_id=trigger_id,
        observed_price=Decimal("1"),
        matched=emitted,
        emitted=emitted,
        priority=priority,
        pool="0x0000000000000000000000000000000000000001",
        pool_fee=3000,
        base_token="0x0000000000000000000000000000000000000002",
        quote_token="0x0000000000000000000000000000000000000003",
        comparator=Comparator.GTE,
        threshold=Decimal("1"),
        evaluated_at_ms=0,
    )


class TestSelectWinner:
    def test_no_evaluations_means_no_winner(self):
        assert select_winner([]) is None

    def test_only_emitted_evaluations_compete(self):
        evaluations = [_evaluation("a", 0, emitted=False), _evaluation("b", 5)]

        assert select_winner(evaluations).trigger_id == "b"

    def test_nothing_emitted_means_no_winner(self):
        assert select_winner([_evaluation("a", 0, emitted=False)]) is None

    def test_lowest_priority_wins(self):
        evaluations = [_evaluation("t2", 2), _evaluation("t1", 1)]

        assert select_winner(evaluations).trigger_id == "t1"

    def test_ties_broken_by_id(self):
        evaluations = [_evaluation("beta", 1), _evaluation("alpha", 1)]

        assert select_winner(evaluations).trigger_id == "alpha"

    def test_winner_independent_of_order(self):
        evaluations = [
            _evaluation("c", 1),
            _evaluation("b", 1),
            _evaluation("a", 3),
            _evaluation("d", 0, emitted=False),
        ]

        winners = {
            select_winner(list(order)).trigger_id
            for order in itertools.permutations(evaluations)
        }

        assert winners == {"b"}


class TestRankCandidates:
    def test_full_deterministic_order(self):
        evaluations = [_evaluation("z", 0), _evaluation("b", 2), _evaluation("a", 2)]

        assert [e.trigger_id for e in rank_candidates(evaluations)] == ["z", "a", "b"]
