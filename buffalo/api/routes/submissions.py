"""Prediction, result and score route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from buffalo.database.db import get_db_session
from buffalo.services import submission_service
from buffalo.api.auth_dependencies import require_player, require_admin
from buffalo.api.routes import domain_error
from buffalo.models.schemas import (
    SubmissionCreate,
    SubmissionResponse,
    ResultCreate,
    ResultResponse,
    StandingsResponse,
    ScoreResponse,
)
from buffalo.utils.clock import get_clock

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/submissions", response_model=SubmissionResponse)
async def submit_predictions(
    payload: SubmissionCreate,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Create or replace the current player's predictions."""
    try:
        return await submission_service.submit_predictions(
            session, player["id"], payload.artists, payload.songs, period=payload.period
        )
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error submitting predictions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error submitting predictions")


@router.get("/api/submissions/me", response_model=Optional[SubmissionResponse])
async def get_my_submission(
    period: Optional[int] = Query(None),
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the current player's predictions for a period (null if none)."""
    try:
        period = period if period is not None else get_clock().current_period()
        return await submission_service.get_submission(session, player["id"], period)
    except Exception as e:
        logger.error(f"Error fetching submission: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching submission")


@router.post("/api/admin/results", response_model=ResultResponse)
async def enter_results(
    payload: ResultCreate,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Enter a player's actual results and re-score the period (admin only)."""
    try:
        return await submission_service.enter_results(
            session,
            payload.player_id,
            payload.actual_artists,
            payload.actual_songs,
            entered_by=admin["id"],
            period=payload.period,
        )
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error entering results: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error entering results")


@router.post("/api/admin/periods/{period}/calculate", response_model=StandingsResponse)
async def calculate_period(
    period: int,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Re-score a whole period (admin only)."""
    try:
        return await submission_service.calculate_period_scores(session, period)
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error calculating scores for {period}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error calculating scores")


@router.get("/api/scores/{period}", response_model=List[ScoreResponse])
async def get_period_scores(
    period: int,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Leaderboard for a period."""
    try:
        return await submission_service.get_period_scores(session, period)
    except Exception as e:
        logger.error(f"Error fetching scores for {period}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching scores")


@router.get("/api/players/{player_id}/scores", response_model=List[ScoreResponse])
async def get_player_scores(
    player_id: int,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Score history for a player."""
    try:
        return await submission_service.get_player_scores(session, player_id)
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error fetching scores for player {player_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching player scores")
