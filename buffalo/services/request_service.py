"""
Buffalo request service.

A player can ask another player to grant them a buffalo. Accepting a
request adds one unit to the requester's balance on the recipient; declining
only closes the request. A request is resolved exactly once.
"""

from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased
from buffalo.database.models import BuffaloRequest, RequestStatus, FeedEventType, Player
from buffalo.services import ledger_service, notification_service, player_service
from buffalo.services.errors import ValidationError, NotFoundError, ConflictError
from buffalo.utils.clock import PeriodClock, get_clock
from buffalo.utils.constants import RESOLVED_REQUESTS_LIMIT
from buffalo.utils.datetime_utils import isoformat_or_none
import logging

logger = logging.getLogger(__name__)


def _format_request(
    request: BuffaloRequest,
    requester_name: Optional[str] = None,
    recipient_name: Optional[str] = None,
) -> Dict:
    return {
        "id": request.id,
        "requester_id": request.requester_id,
        "requester_name": requester_name,
        "recipient_id": request.recipient_id,
        "recipient_name": recipient_name,
        "period": request.period,
        "status": request.status,
        "note": request.note,
        "created_at": isoformat_or_none(request.created_at),
        "responded_at": isoformat_or_none(request.responded_at),
    }


async def get_pending_request(
    session: AsyncSession, requester_id: int, recipient_id: int, period: int
) -> Optional[BuffaloRequest]:
    """
    Get the pending request for an ordered pair in a period, if any.
    """
    result = await session.execute(
        select(BuffaloRequest).where(
            BuffaloRequest.requester_id == requester_id,
            BuffaloRequest.recipient_id == recipient_id,
            BuffaloRequest.period == period,
            BuffaloRequest.status == RequestStatus.PENDING.value,
        )
    )
    return result.scalar_one_or_none()


async def send_request(
    session: AsyncSession,
    requester_id: int,
    recipient_id: int,
    note: Optional[str] = None,
    period: Optional[int] = None,
    clock: Optional[PeriodClock] = None,
) -> Dict:
    """
    Ask another player for a buffalo.

    Args:
        session: Database session
        requester_id: Player asking
        recipient_id: Player asked
        note: Optional note shown to the recipient
        period: Period of the request (defaults to the current period)
        clock: Period clock

    Returns:
        Dict with the created request

    Raises:
        ValidationError: If the player asks themselves
        NotFoundError: If either player doesn't exist
        ConflictError: If a pending request already exists for this pair and period
    """
    clock = clock or get_clock()
    if requester_id == recipient_id:
        raise ValidationError("Cannot request a buffalo from yourself")
    period = period if period is not None else clock.current_period()
    note = note.strip() if note and note.strip() else None

    try:
        players = await player_service.get_players_by_id(session, [requester_id, recipient_id])

        if await get_pending_request(session, requester_id, recipient_id, period):
            raise ConflictError("You already have a pending buffalo request with this player")

        buffalo_request = BuffaloRequest(
            requester_id=requester_id,
            recipient_id=recipient_id,
            period=period,
            status=RequestStatus.PENDING.value,
            note=note,
            created_at=clock.now(),
        )
        try:
            async with session.begin_nested():
                session.add(buffalo_request)
        except IntegrityError:
            raise ConflictError("You already have a pending buffalo request with this player")

        requester_name = players[requester_id].display_name
        recipient_name = players[recipient_id].display_name
        await notification_service.record_event(
            session,
            event_type=FeedEventType.BUFFALO_REQUEST.value,
            period=period,
            title=f"{requester_name} asked {recipient_name} for a buffalo",
            description=note,
            actor_id=requester_id,
            related_player_id=recipient_id,
            related_id=buffalo_request.id,
            data={
                "actions": [
                    {"label": "Accept", "action": "accept_buffalo", "style": "primary"},
                    {"label": "Decline", "action": "decline_buffalo", "style": "secondary"},
                ],
            },
            notify_player_id=recipient_id,
            notification_message=f"{requester_name} wants to call a buffalo on you",
            link_url="/buffalo?tab=requests",
            clock=clock,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Buffalo request {buffalo_request.id} sent: {requester_id} -> {recipient_id} ({period})")
    return _format_request(buffalo_request, requester_name, recipient_name)


async def respond_to_request(
    session: AsyncSession,
    request_id: int,
    responder_id: int,
    accept: bool,
    clock: Optional[PeriodClock] = None,
) -> Dict:
    """
    Accept or decline a pending buffalo request.

    The status change and, on accept, the +1 balance grant commit together.
    The pending -> resolved transition is a conditional UPDATE, so two
    concurrent responses can never both succeed.

    Args:
        session: Database session
        request_id: Request to resolve
        responder_id: Must be the request's recipient
        accept: True to accept, False to decline
        clock: Period clock

    Returns:
        Dict with the resolved request and, on accept, the new balance

    Raises:
        NotFoundError: If the request doesn't exist
        ValidationError: If the responder is not the recipient
        ConflictError: If the request was already resolved
    """
    clock = clock or get_clock()
    try:
        result = await session.execute(select(BuffaloRequest).where(BuffaloRequest.id == request_id))
        buffalo_request = result.scalar_one_or_none()
        if not buffalo_request:
            raise NotFoundError("Buffalo request not found")
        if buffalo_request.recipient_id != responder_id:
            raise ValidationError("Only the recipient can respond to this request")

        new_status = RequestStatus.ACCEPTED.value if accept else RequestStatus.DECLINED.value
        now = clock.now()
        update_result = await session.execute(
            update(BuffaloRequest)
            .where(
                BuffaloRequest.id == request_id,
                BuffaloRequest.status == RequestStatus.PENDING.value,
            )
            .values(status=new_status, responded_at=now)
            .execution_options(synchronize_session=False)
        )
        if update_result.rowcount != 1:
            await session.refresh(buffalo_request)
            raise ConflictError(f"This buffalo request was already {buffalo_request.status}")

        balance = None
        if accept:
            balance = await ledger_service.apply_delta(
                session,
                buffalo_request.requester_id,
                buffalo_request.recipient_id,
                buffalo_request.period,
                1,
            )

        await session.refresh(buffalo_request)
        players = await player_service.get_players_by_id(
            session, [buffalo_request.requester_id, buffalo_request.recipient_id]
        )
        requester_name = players[buffalo_request.requester_id].display_name
        recipient_name = players[buffalo_request.recipient_id].display_name

        if accept:
            event_type = FeedEventType.BUFFALO_ACCEPTED.value
            title = f"{recipient_name} granted {requester_name} a buffalo"
            message = f"{recipient_name} accepted your buffalo request"
        else:
            event_type = FeedEventType.BUFFALO_DECLINED.value
            title = f"{recipient_name} declined {requester_name}'s buffalo request"
            message = f"{recipient_name} declined your buffalo request"

        await notification_service.record_event(
            session,
            event_type=event_type,
            period=buffalo_request.period,
            title=title,
            actor_id=responder_id,
            related_player_id=buffalo_request.requester_id,
            related_id=buffalo_request.id,
            data={"balance": balance} if accept else None,
            notify_player_id=buffalo_request.requester_id,
            notification_message=message,
            link_url="/buffalo?tab=board",
            clock=clock,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Buffalo request {request_id} {new_status} by player {responder_id}")
    response = _format_request(buffalo_request, requester_name, recipient_name)
    response["balance"] = balance
    return response


async def list_requests(
    session: AsyncSession,
    player_id: int,
    direction: str = "incoming",
    status: Optional[str] = None,
    period: Optional[int] = None,
    limit: int = RESOLVED_REQUESTS_LIMIT,
) -> List[Dict]:
    """
    List a player's incoming or outgoing buffalo requests.

    Pending requests are all returned; resolved ones are capped at `limit`,
    most recently answered first.

    Args:
        session: Database session
        player_id: Player whose requests to list
        direction: "incoming" (player is recipient) or "outgoing" (player is requester)
        status: Optional status filter
        period: Optional period filter
        limit: Max resolved requests returned

    Raises:
        ValidationError: On an unknown direction or status
    """
    if direction not in ("incoming", "outgoing"):
        raise ValidationError("Direction must be 'incoming' or 'outgoing'")
    valid_statuses = {s.value for s in RequestStatus}
    if status and status not in valid_statuses:
        raise ValidationError(f"Unknown request status '{status}'")

    requester = aliased(Player)
    recipient = aliased(Player)
    query = (
        select(
            BuffaloRequest,
            requester.display_name.label("requester_name"),
            recipient.display_name.label("recipient_name"),
        )
        .join(requester, requester.id == BuffaloRequest.requester_id)
        .join(recipient, recipient.id == BuffaloRequest.recipient_id)
    )
    if direction == "incoming":
        query = query.where(BuffaloRequest.recipient_id == player_id)
    else:
        query = query.where(BuffaloRequest.requester_id == player_id)
    if status:
        query = query.where(BuffaloRequest.status == status)
    if period is not None:
        query = query.where(BuffaloRequest.period == period)
    query = query.order_by(BuffaloRequest.created_at.desc(), BuffaloRequest.id.desc())

    result = await session.execute(query)
    pending = []
    resolved = []
    for row in result.all():
        item = _format_request(row.BuffaloRequest, row.requester_name, row.recipient_name)
        if row.BuffaloRequest.status == RequestStatus.PENDING.value:
            pending.append(item)
        else:
            resolved.append(item)

    resolved.sort(key=lambda r: r["responded_at"] or "", reverse=True)
    return pending + resolved[:limit]
