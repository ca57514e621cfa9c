"""Buffalo board and balance route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from buffalo.database.db import get_db_session
from buffalo.services import ledger_service
from buffalo.api.auth_dependencies import require_player
from buffalo.models.schemas import BoardResponse, PairBalanceResponse
from buffalo.utils.clock import get_clock

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/balances/{period}/board", response_model=BoardResponse)
async def get_board(
    period: int,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """All outstanding buffalos for a period plus per-player totals."""
    try:
        return await ledger_service.get_board(session, period)
    except Exception as e:
        logger.error(f"Error fetching buffalo board for {period}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching buffalo board")


@router.get("/api/balances/with/{other_player_id}", response_model=PairBalanceResponse)
async def get_pair_balances(
    other_player_id: int,
    period: Optional[int] = Query(None),
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Buffalos between the current player and another, in both directions."""
    try:
        period = period if period is not None else get_clock().current_period()
        return await ledger_service.get_pair_balances(session, player["id"], other_player_id, period)
    except Exception as e:
        logger.error(f"Error fetching balances with player {other_player_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching balances")
