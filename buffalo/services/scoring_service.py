"""
Scoring service.
Compares predictions to actual results and ranks the players of a period.

Everything here is pure: no database access, no clock, no shared state.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from buffalo.utils.constants import TOP_N, EXACT_MATCH_WEIGHT, ACCURACY_MAX
from buffalo.services.errors import ValidationError


# ============================================================================
# Data Structures
# ============================================================================

@dataclass(frozen=True)
class ScoringWeights:
    """Tunable weights for the exact-match and ranking-accuracy components."""

    exact_match_weight: int = EXACT_MATCH_WEIGHT
    accuracy_max: int = ACCURACY_MAX


@dataclass(frozen=True)
class ScoreRecord:
    """Comparator output for one player in one period."""

    player_id: int
    period: int
    correct_artists: int
    correct_songs: int
    total_correct: int
    exact_match_score: int
    ranking_accuracy_score: int

    def sort_key(self) -> Tuple[int, int, int, int]:
        """Ascending sort key: best score first, then lowest player id."""
        return (
            -self.total_correct,
            -self.exact_match_score,
            -self.ranking_accuracy_score,
            self.player_id,
        )


@dataclass(frozen=True)
class RankedScore(ScoreRecord):
    """A ScoreRecord with its final standing (1 = best)."""

    final_rank: int


# ============================================================================
# Helper Functions
# ============================================================================

def normalize_name(name: str) -> str:
    """Normalize an artist/song name for comparison (trim, collapse spaces, casefold)."""
    return " ".join(name.split()).casefold()


def validate_top_list(values: Sequence[str], label: str) -> List[str]:
    """
    Validate a top-N list and return its normalized names.

    Args:
        values: Ordered names, rank 1 first
        label: Field name used in error messages

    Returns:
        List of normalized names in the same order

    Raises:
        ValidationError: If the list is not exactly TOP_N distinct, non-blank names
    """
    if isinstance(values, str) or not isinstance(values, (list, tuple)):
        raise ValidationError(f"{label} must be a list of {TOP_N} names")
    if len(values) != TOP_N:
        raise ValidationError(f"{label} must contain exactly {TOP_N} entries, got {len(values)}")

    normalized = []
    for position, value in enumerate(values, start=1):
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{label} slot {position} is empty")
        normalized.append(normalize_name(value))

    if len(set(normalized)) != len(normalized):
        raise ValidationError(f"{label} contains duplicate entries")
    return normalized


def count_correct(predicted: List[str], actual: List[str]) -> int:
    """Number of predicted names present anywhere in the actual list."""
    return len(set(predicted) & set(actual))


def exact_matches(predicted: List[str], actual: List[str]) -> int:
    """Number of positions where the prediction names the actual entry."""
    return sum(1 for p, a in zip(predicted, actual) if p == a)


def ranking_accuracy(predicted: List[str], actual: List[str], accuracy_max: int) -> int:
    """
    Reward closeness of predicted rank to actual rank.

    Each predicted name found in the actual list earns
    max(0, accuracy_max - |predicted_rank - actual_rank|); misses earn 0.
    """
    actual_rank: Dict[str, int] = {name: rank for rank, name in enumerate(actual)}
    total = 0
    for predicted_rank, name in enumerate(predicted):
        if name in actual_rank:
            total += max(0, accuracy_max - abs(predicted_rank - actual_rank[name]))
    return total


# ============================================================================
# Comparator
# ============================================================================

def compare_predictions(
    player_id: int,
    period: int,
    predicted_artists: Sequence[str],
    predicted_songs: Sequence[str],
    actual_artists: Sequence[str],
    actual_songs: Sequence[str],
    weights: Optional[ScoringWeights] = None,
) -> ScoreRecord:
    """
    Compare one player's predictions to their actual results.

    Args:
        player_id: Player being scored
        period: Competition period (year)
        predicted_artists / predicted_songs: Player's top-N guesses, rank 1 first
        actual_artists / actual_songs: Actual top-N, rank 1 first
        weights: Scoring weights (defaults from configuration)

    Returns:
        ScoreRecord with all score components

    Raises:
        ValidationError: If any list is malformed
    """
    weights = weights or ScoringWeights()

    pred_artists = validate_top_list(predicted_artists, "predicted artists")
    pred_songs = validate_top_list(predicted_songs, "predicted songs")
    real_artists = validate_top_list(actual_artists, "actual artists")
    real_songs = validate_top_list(actual_songs, "actual songs")

    correct_artists = count_correct(pred_artists, real_artists)
    correct_songs = count_correct(pred_songs, real_songs)

    exact = exact_matches(pred_artists, real_artists) + exact_matches(pred_songs, real_songs)
    accuracy = ranking_accuracy(pred_artists, real_artists, weights.accuracy_max) + ranking_accuracy(
        pred_songs, real_songs, weights.accuracy_max
    )

    return ScoreRecord(
        player_id=player_id,
        period=period,
        correct_artists=correct_artists,
        correct_songs=correct_songs,
        total_correct=correct_artists + correct_songs,
        exact_match_score=exact * weights.exact_match_weight,
        ranking_accuracy_score=accuracy,
    )


def score_submission(submission, result, weights: Optional[ScoringWeights] = None) -> ScoreRecord:
    """
    Score a Submission row against the Result row for the same player and period.

    Raises:
        ValidationError: If the rows belong to different players or periods
    """
    if submission.player_id != result.player_id or submission.period != result.period:
        raise ValidationError("Submission and result must belong to the same player and period")
    return compare_predictions(
        submission.player_id,
        submission.period,
        submission.artists,
        submission.songs,
        result.actual_artists,
        result.actual_songs,
        weights,
    )


# ============================================================================
# Ranker
# ============================================================================

def rank_scores(records: Iterable[ScoreRecord]) -> List[RankedScore]:
    """
    Totally order a period's score records and assign final ranks 1..N.

    Order: total_correct, exact_match_score, ranking_accuracy_score (all
    descending), then player_id ascending so re-ranking unchanged input
    always reproduces the same standings.

    Raises:
        ValidationError: If a player appears twice or records span periods
    """
    records = list(records)
    seen = set()
    periods = set()
    for record in records:
        if record.player_id in seen:
            raise ValidationError(f"Player {record.player_id} has more than one score record")
        seen.add(record.player_id)
        periods.add(record.period)
    if len(periods) > 1:
        raise ValidationError("Cannot rank score records from different periods together")

    ordered = sorted(records, key=lambda r: r.sort_key())
    return [
        RankedScore(
            player_id=record.player_id,
            period=record.period,
            correct_artists=record.correct_artists,
            correct_songs=record.correct_songs,
            total_correct=record.total_correct,
            exact_match_score=record.exact_match_score,
            ranking_accuracy_score=record.ranking_accuracy_score,
            final_rank=rank,
        )
        for rank, record in enumerate(ordered, start=1)
    ]
