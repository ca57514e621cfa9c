"""
Authentication dependencies for FastAPI routes.

Authentication happens upstream: the gateway verifies the session and
forwards the player id in the X-Player-Id header. These dependencies only
resolve that id to a player and enforce the admin flag.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from buffalo.database.db import get_db_session
from buffalo.services import player_service


async def get_current_player(
    x_player_id: Optional[int] = Header(None),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """
    Dependency to get the current player from the gateway header.

    Returns:
        Player dictionary

    Raises:
        HTTPException: 401 if the header is missing or names no player
    """
    if x_player_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Player-Id header",
        )

    player = await player_service.get_player(session, x_player_id)
    if player is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Player not found",
        )

    return player_service.format_player(player)


async def require_player(player: dict = Depends(get_current_player)) -> dict:
    """Require any authenticated player."""
    return player


async def require_admin(player: dict = Depends(get_current_player)) -> dict:
    """
    Require an admin player.

    Raises:
        HTTPException: 403 if the player is not an admin
    """
    if not player.get("is_admin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return player
