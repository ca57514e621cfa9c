"""
Submission service.

Handles prediction submissions, administrator result entry and the period
re-score that turns them into final ranks and buffalo balances.
"""

from typing import Dict, List, Optional, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from buffalo.database.models import (
    Submission,
    Result,
    Score,
    DebtAllocation,
    Player,
    FeedEventType,
)
from buffalo.services import (
    scoring_service,
    allocation_service,
    ledger_service,
    notification_service,
    player_service,
)
from buffalo.services.allocation_service import DebtPolicy
from buffalo.services.errors import ConflictError
from buffalo.services.scoring_service import ScoringWeights
from buffalo.utils.clock import PeriodClock, get_clock
from buffalo.utils.datetime_utils import isoformat_or_none
import logging

logger = logging.getLogger(__name__)


def _clean_list(values: Sequence[str], label: str) -> List[str]:
    """Validate a top-5 list and return it with whitespace tidied, original casing kept."""
    scoring_service.validate_top_list(values, label)
    return [" ".join(value.split()) for value in values]


def _format_submission(submission: Submission) -> Dict:
    return {
        "id": submission.id,
        "player_id": submission.player_id,
        "period": submission.period,
        "artists": list(submission.artists),
        "songs": list(submission.songs),
        "submitted_at": isoformat_or_none(submission.submitted_at),
        "updated_at": isoformat_or_none(submission.updated_at),
    }


def _format_result(result: Result) -> Dict:
    return {
        "id": result.id,
        "player_id": result.player_id,
        "period": result.period,
        "actual_artists": list(result.actual_artists),
        "actual_songs": list(result.actual_songs),
        "entered_by": result.entered_by,
        "entered_at": isoformat_or_none(result.entered_at),
    }


def _format_score(score: Score, display_name: Optional[str] = None) -> Dict:
    return {
        "player_id": score.player_id,
        "display_name": display_name,
        "period": score.period,
        "correct_artists": score.correct_artists,
        "correct_songs": score.correct_songs,
        "total_correct": score.total_correct,
        "exact_match_score": score.exact_match_score,
        "ranking_accuracy_score": score.ranking_accuracy_score,
        "final_rank": score.final_rank,
        "calculated_at": isoformat_or_none(score.calculated_at),
    }


# ============================================================================
# Submissions
# ============================================================================

async def get_submission(session: AsyncSession, player_id: int, period: int) -> Optional[Dict]:
    result = await session.execute(
        select(Submission).where(Submission.player_id == player_id, Submission.period == period)
    )
    submission = result.scalar_one_or_none()
    return _format_submission(submission) if submission else None


async def submit_predictions(
    session: AsyncSession,
    player_id: int,
    artists: Sequence[str],
    songs: Sequence[str],
    period: Optional[int] = None,
    clock: Optional[PeriodClock] = None,
) -> Dict:
    """
    Create or replace a player's predictions for a period.

    Args:
        session: Database session
        player_id: Player submitting
        artists: Predicted top 5 artists, rank 1 first
        songs: Predicted top 5 songs, rank 1 first
        period: Period (defaults to the current period)
        clock: Period clock

    Returns:
        Dict with the stored submission and whether it was newly created

    Raises:
        ValidationError: If either list is not 5 distinct non-blank names
        NotFoundError: If the player doesn't exist
        ConflictError: If a concurrent first submission won the insert
    """
    clock = clock or get_clock()
    artists = _clean_list(artists, "Artists")
    songs = _clean_list(songs, "Songs")
    period = period if period is not None else clock.current_period()

    try:
        players = await player_service.get_players_by_id(session, [player_id])
        result = await session.execute(
            select(Submission).where(Submission.player_id == player_id, Submission.period == period)
        )
        submission = result.scalar_one_or_none()
        created = submission is None
        now = clock.now()

        if created:
            submission = Submission(
                player_id=player_id,
                period=period,
                artists=artists,
                songs=songs,
                submitted_at=now,
            )
            try:
                async with session.begin_nested():
                    session.add(submission)
            except IntegrityError:
                raise ConflictError("Predictions for this period were submitted concurrently, try again")
        else:
            submission.artists = artists
            submission.songs = songs
            submission.updated_at = now
            await session.flush()

        display_name = players[player_id].display_name
        await notification_service.record_event(
            session,
            event_type=FeedEventType.SUBMISSION.value,
            period=period,
            title=f"{display_name} {'locked in' if created else 'updated'} their predictions",
            actor_id=player_id,
            related_id=submission.id,
            clock=clock,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Player {player_id} {'created' if created else 'updated'} predictions for {period}")
    response = _format_submission(submission)
    response["created"] = created
    return response


# ============================================================================
# Results (admin)
# ============================================================================

async def enter_results(
    session: AsyncSession,
    player_id: int,
    actual_artists: Sequence[str],
    actual_songs: Sequence[str],
    entered_by: Optional[int] = None,
    period: Optional[int] = None,
    policy: Optional[DebtPolicy] = None,
    clock: Optional[PeriodClock] = None,
) -> Dict:
    """
    Record a player's actual top artists and songs and re-score the period.

    The result upsert and the re-score commit together.

    Args:
        session: Database session
        player_id: Player the results belong to
        actual_artists: Actual top 5 artists, rank 1 first
        actual_songs: Actual top 5 songs, rank 1 first
        entered_by: Admin player who entered them
        period: Period (defaults to the current period)
        policy: Debt policy for the re-score
        clock: Period clock

    Returns:
        Dict with the stored result and the recalculated standings
    """
    clock = clock or get_clock()
    actual_artists = _clean_list(actual_artists, "Actual artists")
    actual_songs = _clean_list(actual_songs, "Actual songs")
    period = period if period is not None else clock.current_period()

    try:
        players = await player_service.get_players_by_id(session, [player_id])
        existing = await session.execute(
            select(Result).where(Result.player_id == player_id, Result.period == period)
        )
        result = existing.scalar_one_or_none()
        now = clock.now()
        if result is None:
            result = Result(
                player_id=player_id,
                period=period,
                actual_artists=actual_artists,
                actual_songs=actual_songs,
                entered_by=entered_by,
                entered_at=now,
            )
            try:
                async with session.begin_nested():
                    session.add(result)
            except IntegrityError:
                raise ConflictError("Results for this player were entered concurrently, try again")
        else:
            result.actual_artists = actual_artists
            result.actual_songs = actual_songs
            result.entered_by = entered_by
            result.entered_at = now
            await session.flush()

        await notification_service.record_event(
            session,
            event_type=FeedEventType.RESULT.value,
            period=period,
            title=f"Results are in for {players[player_id].display_name}",
            actor_id=entered_by,
            related_player_id=player_id,
            related_id=result.id,
            notify_player_id=player_id,
            notification_message="Your actual top artists and songs have been entered. Check your score!",
            link_url=f"/scores/{period}",
            clock=clock,
        )

        standings = await _recalculate(session, period, policy, None, clock)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Results entered for player {player_id} ({period}) by {entered_by}")
    response = _format_result(result)
    response["standings"] = standings
    return response


# ============================================================================
# Period re-score
# ============================================================================

async def _reconcile_allocations(
    session: AsyncSession, period: int, grants: List[allocation_service.DebtGrant]
) -> List[Dict]:
    """
    Bring the ledger from the previously applied allocation to the new one.

    Only differences are applied. A pair whose allocation shrinks loses at
    most its current balance; buffalos already called are not taken back.
    The stored allocation is what actually reached the ledger, so a clamped
    cut stays counted and restoring the old standings grants nothing twice.
    """
    existing = await session.execute(select(DebtAllocation).where(DebtAllocation.period == period))
    previous: Dict[Tuple[int, int], int] = {
        (row.caller_id, row.recipient_id): row.units for row in existing.scalars().all()
    }
    target: Dict[Tuple[int, int], int] = {}
    for grant in grants:
        key = (grant.caller_id, grant.recipient_id)
        target[key] = target.get(key, 0) + grant.delta

    changes = []
    applied: Dict[Tuple[int, int], int] = {}
    for caller_id, recipient_id in sorted(set(previous) | set(target)):
        held = previous.get((caller_id, recipient_id), 0)
        diff = target.get((caller_id, recipient_id), 0) - held
        if diff < 0:
            available = await ledger_service.get_balance(session, caller_id, recipient_id, period)
            diff = -min(-diff, available)
        applied[(caller_id, recipient_id)] = held + diff
        if diff == 0:
            continue
        balance = await ledger_service.apply_delta(session, caller_id, recipient_id, period, diff)
        changes.append(
            {"caller_id": caller_id, "recipient_id": recipient_id, "delta": diff, "balance": balance}
        )

    await session.execute(delete(DebtAllocation).where(DebtAllocation.period == period))
    session.add_all(
        [
            DebtAllocation(period=period, caller_id=caller_id, recipient_id=recipient_id, units=units)
            for (caller_id, recipient_id), units in applied.items()
            if units > 0
        ]
    )
    await session.flush()
    return changes


async def _recalculate(
    session: AsyncSession,
    period: int,
    policy: Optional[DebtPolicy],
    weights: Optional[ScoringWeights],
    clock: PeriodClock,
) -> Dict:
    submissions_result = await session.execute(select(Submission).where(Submission.period == period))
    submissions = {s.player_id: s for s in submissions_result.scalars().all()}
    results_result = await session.execute(select(Result).where(Result.period == period))
    results = {r.player_id: r for r in results_result.scalars().all()}

    # Only players with both a submission and a result are ranked
    records = [
        scoring_service.score_submission(submissions[player_id], results[player_id], weights)
        for player_id in sorted(set(submissions) & set(results))
    ]
    ranked = scoring_service.rank_scores(records)

    now = clock.now()
    await session.execute(delete(Score).where(Score.period == period))
    await session.flush()
    session.add_all(
        [
            Score(
                player_id=r.player_id,
                period=r.period,
                correct_artists=r.correct_artists,
                correct_songs=r.correct_songs,
                total_correct=r.total_correct,
                exact_match_score=r.exact_match_score,
                ranking_accuracy_score=r.ranking_accuracy_score,
                final_rank=r.final_rank,
                calculated_at=now,
            )
            for r in ranked
        ]
    )
    await session.flush()

    grants = allocation_service.allocate_debts(ranked, policy)
    changes = await _reconcile_allocations(session, period, grants)

    if ranked:
        leader = await player_service.get_player(session, ranked[0].player_id)
        await notification_service.record_event(
            session,
            event_type=FeedEventType.RANKING.value,
            period=period,
            title=f"Standings updated: {leader.display_name} leads {period}",
            description=f"{len(ranked)} players ranked",
            related_player_id=leader.id,
            data={"ranking": [{"player_id": r.player_id, "final_rank": r.final_rank} for r in ranked]},
            clock=clock,
        )

    logger.info(f"Calculated scores for {period}: {len(ranked)} players ranked, {len(changes)} balance changes")
    return {
        "period": period,
        "player_count": len(ranked),
        "rankings": [
            {
                "player_id": r.player_id,
                "final_rank": r.final_rank,
                "total_correct": r.total_correct,
                "exact_match_score": r.exact_match_score,
                "ranking_accuracy_score": r.ranking_accuracy_score,
            }
            for r in ranked
        ],
        "balance_changes": changes,
    }


async def calculate_period_scores(
    session: AsyncSession,
    period: int,
    policy: Optional[DebtPolicy] = None,
    weights: Optional[ScoringWeights] = None,
    clock: Optional[PeriodClock] = None,
) -> Dict:
    """
    Re-score a whole period and update buffalo balances.

    Scores, ranks and debt grants are replaced in a single transaction, so
    readers see either the previous standings or the new ones. Running it
    again on unchanged data changes nothing.

    Args:
        session: Database session
        period: Period to score
        policy: Debt policy (defaults to the configured policy)
        weights: Scoring weights (defaults to the configured weights)
        clock: Period clock

    Returns:
        Dict with period, player_count, rankings and balance_changes
    """
    clock = clock or get_clock()
    try:
        standings = await _recalculate(session, period, policy, weights, clock)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return standings


# ============================================================================
# Score reads
# ============================================================================

async def get_period_scores(session: AsyncSession, period: int) -> List[Dict]:
    """Leaderboard for a period, best rank first."""
    result = await session.execute(
        select(Score, Player.display_name)
        .join(Player, Player.id == Score.player_id)
        .where(Score.period == period)
        .order_by(Score.final_rank)
    )
    return [_format_score(score, display_name) for score, display_name in result.all()]


async def get_player_scores(session: AsyncSession, player_id: int) -> List[Dict]:
    """
    Score history for a player across periods, newest period first.

    Raises:
        NotFoundError: If the player doesn't exist
    """
    players = await player_service.get_players_by_id(session, [player_id])
    result = await session.execute(
        select(Score).where(Score.player_id == player_id).order_by(Score.period.desc())
    )
    return [_format_score(score, players[player_id].display_name) for score in result.scalars().all()]
