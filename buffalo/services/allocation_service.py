"""
Ledger allocation: turns a period's final standings into buffalo debts.

The debt shape is a game rule, so it is expressed as a policy object.
Allocation only computes grants; applying them is the ledger's job.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from buffalo.utils.constants import DEBT_POLICY, DEBT_UNITS
from buffalo.services.errors import ValidationError


@dataclass(frozen=True)
class DebtGrant:
    """caller_id may call `delta` more buffalos on recipient_id."""

    caller_id: int
    recipient_id: int
    delta: int


class DebtPolicy:
    """Maps an ordered list of player ids (best first) to debt grants."""

    name = "base"

    def grants(self, ranked_player_ids: Sequence[int]) -> Iterable[DebtGrant]:
        raise NotImplementedError


class AdjacentRankPolicy(DebtPolicy):
    """Each player may call `units` buffalos on the player ranked directly below."""

    name = "adjacent"

    def __init__(self, units: int = 1):
        self.units = units

    def grants(self, ranked_player_ids: Sequence[int]) -> Iterable[DebtGrant]:
        for better, worse in zip(ranked_player_ids, ranked_player_ids[1:]):
            yield DebtGrant(caller_id=better, recipient_id=worse, delta=self.units)


class RankGapPolicy(DebtPolicy):
    """Each player may call `units_per_rank` x rank distance on every player below."""

    name = "rank_gap"

    def __init__(self, units_per_rank: int = 1):
        self.units_per_rank = units_per_rank

    def grants(self, ranked_player_ids: Sequence[int]) -> Iterable[DebtGrant]:
        for i, better in enumerate(ranked_player_ids):
            for j in range(i + 1, len(ranked_player_ids)):
                yield DebtGrant(
                    caller_id=better,
                    recipient_id=ranked_player_ids[j],
                    delta=self.units_per_rank * (j - i),
                )


POLICIES = {
    AdjacentRankPolicy.name: AdjacentRankPolicy,
    RankGapPolicy.name: RankGapPolicy,
}


def get_policy(name: Optional[str] = None, units: Optional[int] = None) -> DebtPolicy:
    """
    Build a debt policy by name.

    Args:
        name: Policy name (defaults to BUFFALO_DEBT_POLICY)
        units: Units per step (defaults to BUFFALO_DEBT_UNITS)

    Raises:
        ValidationError: If the name is unknown or units is negative
    """
    name = (name or DEBT_POLICY).lower()
    units = DEBT_UNITS if units is None else units
    if name not in POLICIES:
        raise ValidationError(f"Unknown debt policy '{name}'. Choose one of: {', '.join(sorted(POLICIES))}")
    if units < 0:
        raise ValidationError("Debt units must be non-negative")
    return POLICIES[name](units)


def allocate_debts(ranked_scores, policy: Optional[DebtPolicy] = None) -> List[DebtGrant]:
    """
    Compute the debts to grant for a period.

    Args:
        ranked_scores: RankedScore collection for one period (any order)
        policy: Debt policy (defaults to the configured policy)

    Returns:
        DebtGrant list with strictly positive deltas

    Raises:
        ValidationError: If ranks are not 1..N or the policy yields a negative delta
    """
    policy = policy or get_policy()
    ordered = sorted(ranked_scores, key=lambda s: s.final_rank)
    if [s.final_rank for s in ordered] != list(range(1, len(ordered) + 1)):
        raise ValidationError("Ranked scores must have contiguous ranks starting at 1")

    grants = []
    for grant in policy.grants([s.player_id for s in ordered]):
        if grant.delta < 0:
            raise ValidationError(f"Debt policy '{policy.name}' produced a negative delta")
        if grant.delta > 0:
            grants.append(grant)
    return grants
