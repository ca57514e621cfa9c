"""Feed and notification route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from buffalo.api.routes import domain_error
from buffalo.database.db import get_db_session
from buffalo.services import notification_service
from buffalo.api.auth_dependencies import require_player
from buffalo.models.schemas import FeedEventResponse, NotificationResponse, NotificationListResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/feed", response_model=List[FeedEventResponse])
async def get_feed(
    period: Optional[int] = Query(None),
    event_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Activity feed, newest first."""
    try:
        return await notification_service.get_feed(
            session, period=period, event_type=event_type, limit=limit, offset=offset
        )
    except Exception as e:
        logger.error(f"Error fetching feed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching feed")


@router.get("/api/notifications", response_model=NotificationListResponse)
async def get_notifications(
    limit: int = 50,
    offset: int = 0,
    unread_only: bool = False,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the current player's notifications with pagination."""
    try:
        return await notification_service.get_player_notifications(
            session, player["id"], limit=limit, offset=offset, unread_only=unread_only
        )
    except Exception as e:
        logger.error(f"Error fetching notifications: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching notifications")


@router.put("/api/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_as_read(
    notification_id: int,
    player: dict = Depends(require_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Mark a single notification as read."""
    try:
        return await notification_service.mark_as_read(session, notification_id, player["id"])
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error marking notification as read: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error marking notification as read")
