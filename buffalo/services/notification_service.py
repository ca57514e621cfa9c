"""
Notification service for feed events and in-app notifications.

Every domain event (submission, results, ranking, call, proof, request)
is recorded as a FeedEvent and, when it concerns another player, as a
Notification for that player. Delivery (push, websocket, email) is done by
whatever consumes these rows.
"""

from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from buffalo.database.models import FeedEvent, Notification
from buffalo.services.errors import NotFoundError
from buffalo.utils.clock import PeriodClock, get_clock
from buffalo.utils.datetime_utils import isoformat_or_none
import logging

logger = logging.getLogger(__name__)


def _format_event(event: FeedEvent) -> Dict:
    return {
        "id": event.id,
        "event_type": event.event_type,
        "actor_id": event.actor_id,
        "related_player_id": event.related_player_id,
        "related_id": event.related_id,
        "period": event.period,
        "title": event.title,
        "description": event.description,
        "media_url": event.media_url,
        "data": event.data,
        "created_at": isoformat_or_none(event.created_at),
    }


def _format_notification(notification: Notification) -> Dict:
    return {
        "id": notification.id,
        "player_id": notification.player_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "is_read": notification.is_read,
        "read_at": isoformat_or_none(notification.read_at),
        "link_url": notification.link_url,
        "created_at": isoformat_or_none(notification.created_at),
    }


async def create_notification(
    session: AsyncSession,
    player_id: int,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict] = None,
    link_url: Optional[str] = None,
    clock: Optional[PeriodClock] = None,
) -> Dict:
    """
    Create a single notification for a player.

    Args:
        session: Database session
        player_id: ID of the player to notify
        type: Notification type (FeedEventType value)
        title: Notification title
        message: Notification message text
        data: Optional JSON metadata
        link_url: Optional URL for navigation when notification is clicked

    Returns:
        Dict containing the created notification data

    Raises:
        ValueError: If required fields are missing
    """
    if not player_id:
        raise ValueError("player_id is required")
    if not type:
        raise ValueError("type is required")
    if not title:
        raise ValueError("title is required")
    if not message:
        raise ValueError("message is required")

    clock = clock or get_clock()
    notification = Notification(
        player_id=player_id,
        type=type,
        title=title,
        message=message,
        data=data,
        link_url=link_url,
        is_read=False,
        created_at=clock.now(),
    )
    session.add(notification)
    await session.flush()
    return _format_notification(notification)


async def record_event(
    session: AsyncSession,
    event_type: str,
    period: int,
    title: str,
    actor_id: Optional[int] = None,
    related_player_id: Optional[int] = None,
    related_id: Optional[int] = None,
    description: Optional[str] = None,
    media_url: Optional[str] = None,
    data: Optional[Dict] = None,
    notify_player_id: Optional[int] = None,
    notification_message: Optional[str] = None,
    link_url: Optional[str] = None,
    clock: Optional[PeriodClock] = None,
) -> Optional[Dict]:
    """
    Record a feed event (and optionally a notification) for a domain event.

    Runs inside a SAVEPOINT: a failure here is logged and rolled back on its
    own, never failing the domain operation that emitted it.

    Returns:
        The feed event dict, or None if recording failed
    """
    clock = clock or get_clock()
    try:
        async with session.begin_nested():
            event = FeedEvent(
                event_type=event_type,
                actor_id=actor_id,
                related_player_id=related_player_id,
                related_id=related_id,
                period=period,
                title=title,
                description=description,
                media_url=media_url,
                data=data,
                created_at=clock.now(),
            )
            session.add(event)
            await session.flush()

            if notify_player_id and notify_player_id != actor_id:
                await create_notification(
                    session,
                    player_id=notify_player_id,
                    type=event_type,
                    title=title,
                    message=notification_message or description or title,
                    data={"related_id": related_id, "actor_id": actor_id, **(data or {})},
                    link_url=link_url,
                    clock=clock,
                )
        return _format_event(event)
    except Exception as e:
        logger.warning(f"Failed to record {event_type} event: {e}", exc_info=True)
        return None


async def get_feed(
    session: AsyncSession,
    period: Optional[int] = None,
    event_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict]:
    """
    Get feed events, newest first.

    Args:
        session: Database session
        period: Only events from this period
        event_type: Only events of this type
        limit: Page size
        offset: Page offset
    """
    query = select(FeedEvent)
    if period is not None:
        query = query.where(FeedEvent.period == period)
    if event_type:
        query = query.where(FeedEvent.event_type == event_type)
    query = query.order_by(FeedEvent.created_at.desc(), FeedEvent.id.desc()).limit(limit).offset(offset)

    result = await session.execute(query)
    return [_format_event(event) for event in result.scalars().all()]


async def get_player_notifications(
    session: AsyncSession,
    player_id: int,
    limit: int = 50,
    offset: int = 0,
    unread_only: bool = False,
) -> Dict:
    """
    Get notifications for a player with pagination.

    Returns:
        Dict with notifications list, total_count, unread_count and has_more
    """
    conditions = [Notification.player_id == player_id]
    if unread_only:
        conditions.append(Notification.is_read == False)  # noqa: E712

    total_result = await session.execute(select(func.count(Notification.id)).where(and_(*conditions)))
    total_count = total_result.scalar() or 0

    unread_result = await session.execute(
        select(func.count(Notification.id)).where(
            Notification.player_id == player_id,
            Notification.is_read == False,  # noqa: E712
        )
    )
    unread_count = unread_result.scalar() or 0

    result = await session.execute(
        select(Notification)
        .where(and_(*conditions))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .offset(offset)
    )
    notifications = [_format_notification(n) for n in result.scalars().all()]

    return {
        "notifications": notifications,
        "total_count": total_count,
        "unread_count": unread_count,
        "has_more": offset + len(notifications) < total_count,
    }


async def mark_as_read(
    session: AsyncSession,
    notification_id: int,
    player_id: int,
    clock: Optional[PeriodClock] = None,
) -> Dict:
    """
    Mark a notification as read.

    Raises:
        NotFoundError: If the notification doesn't exist or belongs to another player
    """
    result = await session.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.player_id == player_id,
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise NotFoundError("Notification not found")

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = (clock or get_clock()).now()
        await session.flush()
    return _format_notification(notification)
