"""
Tests for debt allocation policies.
"""
import pytest

from buffalo.services import allocation_service
from buffalo.services.allocation_service import (
    AdjacentRankPolicy,
    RankGapPolicy,
    DebtGrant,
    DebtPolicy,
)
from buffalo.services.errors import ValidationError
from buffalo.services.scoring_service import RankedScore


def _ranked(*player_ids):
    """RankedScores for player_ids in finishing order."""
    return [
        RankedScore(
            player_id=player_id,
            period=2025,
            correct_artists=0,
            correct_songs=0,
            total_correct=0,
            exact_match_score=0,
            ranking_accuracy_score=0,
            final_rank=rank,
        )
        for rank, player_id in enumerate(player_ids, start=1)
    ]


def test_adjacent_policy_default():
    grants = allocation_service.allocate_debts(_ranked(10, 20, 30), AdjacentRankPolicy())
    assert grants == [DebtGrant(10, 20, 1), DebtGrant(20, 30, 1)]


def test_adjacent_policy_units():
    grants = allocation_service.allocate_debts(_ranked(1, 2), AdjacentRankPolicy(units=3))
    assert grants == [DebtGrant(1, 2, 3)]


def test_rank_gap_policy_is_cumulative():
    grants = allocation_service.allocate_debts(_ranked(1, 2, 3), RankGapPolicy())
    assert grants == [DebtGrant(1, 2, 1), DebtGrant(1, 3, 2), DebtGrant(2, 3, 1)]


def test_input_order_does_not_matter():
    ranked = _ranked(4, 5, 6)
    assert allocation_service.allocate_debts(list(reversed(ranked)), AdjacentRankPolicy()) == (
        allocation_service.allocate_debts(ranked, AdjacentRankPolicy())
    )


def test_single_player_and_empty_get_nothing():
    assert allocation_service.allocate_debts(_ranked(1), AdjacentRankPolicy()) == []
    assert allocation_service.allocate_debts([], AdjacentRankPolicy()) == []


def test_zero_units_drops_grants():
    assert allocation_service.allocate_debts(_ranked(1, 2, 3), AdjacentRankPolicy(units=0)) == []


def test_gap_in_ranks_rejected():
    ranked = _ranked(1, 2, 3)
    with pytest.raises(ValidationError, match="contiguous"):
        allocation_service.allocate_debts([ranked[0], ranked[2]], AdjacentRankPolicy())


def test_negative_delta_rejected():
    class Backwards(DebtPolicy):
        name = "backwards"

        def grants(self, ranked_player_ids):
            yield DebtGrant(ranked_player_ids[0], ranked_player_ids[1], -1)

    with pytest.raises(ValidationError, match="negative"):
        allocation_service.allocate_debts(_ranked(1, 2), Backwards())


def test_get_policy():
    policy = allocation_service.get_policy("rank_gap", 2)
    assert isinstance(policy, RankGapPolicy)
    assert policy.units_per_rank == 2

    assert isinstance(allocation_service.get_policy("ADJACENT"), AdjacentRankPolicy)


def test_get_policy_rejects_unknown_and_negative():
    with pytest.raises(ValidationError, match="Unknown debt policy"):
        allocation_service.get_policy("winner_takes_all")
    with pytest.raises(ValidationError):
        allocation_service.get_policy("adjacent", -1)
