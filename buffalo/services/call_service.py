"""
Buffalo call service.

A call spends one buffalo and starts a timer. The recipient must upload proof
before the deadline (pending -> completed) or the call expires
(pending -> expired). Terminal states never change again and spent buffalos
are never refunded.

Expiry is derived from the stored deadline whenever a call is read; there is
no background timer. Writers that notice an overdue call persist `expired`.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from buffalo.database.models import BuffaloCall, CallStatus, FeedEventType, Player, ProofKind
from buffalo.services import ledger_service, notification_service, player_service, s3_service
from buffalo.services.errors import (
    ValidationError,
    NotFoundError,
    InvalidTransitionError,
    InsufficientBalanceError,
)
from buffalo.utils.clock import PeriodClock, get_clock
from buffalo.utils.constants import CALL_MIN_MINUTES, CALL_MAX_MINUTES, CALL_DEFAULT_MINUTES, FEED_PAGE_SIZE
from buffalo.utils.datetime_utils import ensure_utc, isoformat_or_none
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# Status helpers
# ============================================================================

def derive_status(status: str, deadline: datetime, now: datetime) -> str:
    """
    Effective status of a call at `now`.

    A stored `pending` call whose deadline has passed reads as `expired`.
    """
    if status == CallStatus.PENDING.value and ensure_utc(now) >= ensure_utc(deadline):
        return CallStatus.EXPIRED.value
    return status


def validate_duration(duration_minutes: int) -> int:
    """
    Check a requested call timer length.

    Raises:
        ValidationError: If outside [CALL_MIN_MINUTES, CALL_MAX_MINUTES]
    """
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise ValidationError("Timer duration must be a whole number of minutes")
    if duration_minutes < CALL_MIN_MINUTES or duration_minutes > CALL_MAX_MINUTES:
        raise ValidationError(
            f"Timer duration must be between {CALL_MIN_MINUTES} and {CALL_MAX_MINUTES} minutes"
        )
    return duration_minutes


def _format_call(
    call: BuffaloCall,
    now: datetime,
    caller_name: Optional[str] = None,
    recipient_name: Optional[str] = None,
) -> Dict:
    status = derive_status(call.status, call.deadline, now)
    seconds_remaining = 0
    if status == CallStatus.PENDING.value:
        seconds_remaining = int((ensure_utc(call.deadline) - ensure_utc(now)).total_seconds())
    return {
        "id": call.id,
        "caller_id": call.caller_id,
        "caller_name": caller_name,
        "recipient_id": call.recipient_id,
        "recipient_name": recipient_name,
        "period": call.period,
        "called_at": isoformat_or_none(call.called_at),
        "deadline": isoformat_or_none(call.deadline),
        "status": status,
        "seconds_remaining": seconds_remaining,
        "message": call.message,
        "proof_url": call.proof_url,
        "proof_kind": call.proof_kind,
        "proof_uploaded_at": isoformat_or_none(call.proof_uploaded_at),
    }


async def _load_call(session: AsyncSession, call_id: int) -> BuffaloCall:
    result = await session.execute(
        select(BuffaloCall).where(BuffaloCall.id == call_id).execution_options(populate_existing=True)
    )
    call = result.scalar_one_or_none()
    if not call:
        raise NotFoundError("Buffalo call not found")
    return call


async def _persist_expired(session: AsyncSession, call_id: int, now: datetime) -> bool:
    """Persist `expired` for a pending call whose deadline has passed."""
    result = await session.execute(
        update(BuffaloCall)
        .where(
            BuffaloCall.id == call_id,
            BuffaloCall.status == CallStatus.PENDING.value,
            BuffaloCall.deadline <= now,
        )
        .values(status=CallStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ============================================================================
# Open
# ============================================================================

async def open_call(
    session: AsyncSession,
    caller_id: int,
    recipient_id: int,
    duration_minutes: int = CALL_DEFAULT_MINUTES,
    message: Optional[str] = None,
    period: Optional[int] = None,
    clock: Optional[PeriodClock] = None,
) -> Dict:
    """
    Spend one buffalo and open a call on the recipient.

    The balance decrement and the call row commit together; if either fails
    nothing is written. Returns only after the commit.

    Args:
        session: Database session
        caller_id: Player calling the buffalo
        recipient_id: Player who must drink and prove it
        duration_minutes: Timer length
        message: Optional message shown with the call
        period: Period whose balance is spent (defaults to the current period)
        clock: Period clock

    Returns:
        Dict with the created call

    Raises:
        ValidationError: Same player on both sides or bad duration
        NotFoundError: Unknown caller or recipient
        InsufficientBalanceError: Caller has no buffalos on recipient
    """
    clock = clock or get_clock()
    if caller_id == recipient_id:
        raise ValidationError("Cannot call a buffalo on yourself")
    validate_duration(duration_minutes)
    period = period if period is not None else clock.current_period()
    message = message.strip() if message and message.strip() else None

    try:
        players = await player_service.get_players_by_id(session, [caller_id, recipient_id])

        if not await ledger_service.try_spend(session, caller_id, recipient_id, period):
            raise InsufficientBalanceError(
                f"No buffalos available to call on {players[recipient_id].display_name}"
            )

        now = clock.now()
        call = BuffaloCall(
            caller_id=caller_id,
            recipient_id=recipient_id,
            period=period,
            called_at=now,
            deadline=now + timedelta(minutes=duration_minutes),
            status=CallStatus.PENDING.value,
            message=message,
        )
        session.add(call)
        await session.flush()

        caller_name = players[caller_id].display_name
        recipient_name = players[recipient_id].display_name
        await notification_service.record_event(
            session,
            event_type=FeedEventType.BUFFALO_CALL.value,
            period=period,
            title=f"{caller_name} called buffalo on {recipient_name}",
            description=message or "Time to take a shot!",
            actor_id=caller_id,
            related_player_id=recipient_id,
            related_id=call.id,
            data={"deadline": isoformat_or_none(call.deadline)},
            notify_player_id=recipient_id,
            notification_message=f"{caller_name} called a buffalo on you. Upload proof within {duration_minutes} minutes.",
            link_url=f"/feed?call={call.id}",
            clock=clock,
        )

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Buffalo call {call.id} opened: {caller_id} -> {recipient_id} ({period}), {duration_minutes} min")
    return _format_call(call, clock.now(), caller_name, recipient_name)


# ============================================================================
# Submit proof
# ============================================================================

async def submit_proof(
    session: AsyncSession,
    call_id: int,
    proof_url: str,
    proof_kind: str = ProofKind.PHOTO.value,
    recipient_id: Optional[int] = None,
    clock: Optional[PeriodClock] = None,
) -> Dict:
    """
    Complete a pending call with a proof reference.

    The pending -> completed transition is a single conditional UPDATE, so a
    late submission can never overwrite an expiry observed by another writer.

    Args:
        session: Database session
        call_id: Call being answered
        proof_url: Reference returned by proof storage
        proof_kind: "photo" or "video"
        recipient_id: If given, must be the call's recipient
        clock: Period clock

    Returns:
        Dict with the completed call

    Raises:
        ValidationError: Missing proof, bad kind, or wrong player
        NotFoundError: Unknown call
        InvalidTransitionError: Call is not pending or its deadline has passed
    """
    clock = clock or get_clock()
    if not proof_url or not proof_url.strip():
        raise ValidationError("Proof reference is required")
    if proof_kind not in (ProofKind.PHOTO.value, ProofKind.VIDEO.value):
        raise ValidationError("Proof must be a photo or a video")

    call = await _load_call(session, call_id)
    if recipient_id is not None and call.recipient_id != recipient_id:
        raise ValidationError("Only the called player can submit proof")

    now = clock.now()
    try:
        result = await session.execute(
            update(BuffaloCall)
            .where(
                BuffaloCall.id == call_id,
                BuffaloCall.status == CallStatus.PENDING.value,
                BuffaloCall.deadline > now,
            )
            .values(
                status=CallStatus.COMPLETED.value,
                proof_url=proof_url.strip(),
                proof_kind=proof_kind,
                proof_uploaded_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            if await _persist_expired(session, call_id, now):
                await session.commit()
                logger.info(f"Buffalo call {call_id} expired before proof arrived")
                raise InvalidTransitionError("The deadline for this buffalo has passed")
            call = await _load_call(session, call_id)
            current = derive_status(call.status, call.deadline, now)
            if current == CallStatus.EXPIRED.value:
                raise InvalidTransitionError("The deadline for this buffalo has passed")
            raise InvalidTransitionError(f"This buffalo is already {current}")

        call = await _load_call(session, call_id)
        players = await player_service.get_players_by_id(session, [call.caller_id, call.recipient_id])
        recipient_name = players[call.recipient_id].display_name
        await notification_service.record_event(
            session,
            event_type=FeedEventType.PROOF_SUBMITTED.value,
            period=call.period,
            title=f"{recipient_name} took the buffalo",
            description=f"{proof_kind.capitalize()} proof uploaded",
            actor_id=call.recipient_id,
            related_player_id=call.caller_id,
            related_id=call.id,
            media_url=call.proof_url,
            notify_player_id=call.caller_id,
            notification_message=f"{recipient_name} uploaded proof for your buffalo",
            link_url=f"/feed?call={call.id}",
            clock=clock,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Buffalo call {call_id} completed with {proof_kind} proof")
    return _format_call(
        call,
        clock.now(),
        players[call.caller_id].display_name,
        recipient_name,
    )


async def upload_and_submit_proof(
    session: AsyncSession,
    call_id: int,
    recipient_id: int,
    payload: bytes,
    content_type: str,
    clock: Optional[PeriodClock] = None,
) -> Dict:
    """
    Store proof media and complete the call with its URL.

    The call is checked before uploading so obviously late proof is never
    stored; if the final transition still fails the upload is deleted.

    Raises:
        ValidationError: Empty payload or unsupported media type
        NotFoundError / InvalidTransitionError: As in submit_proof
    """
    clock = clock or get_clock()
    if not payload:
        raise ValidationError("Proof file is empty")
    if not s3_service.is_supported_content_type(content_type):
        raise ValidationError(f"Unsupported proof type: {content_type}")

    call = await _load_call(session, call_id)
    if call.recipient_id != recipient_id:
        raise ValidationError("Only the called player can submit proof")
    current = derive_status(call.status, call.deadline, clock.now())
    if current != CallStatus.PENDING.value:
        raise InvalidTransitionError(f"This buffalo is already {current}")

    loop = asyncio.get_event_loop()
    url = await loop.run_in_executor(None, s3_service.upload_proof, call_id, payload, content_type)
    try:
        return await submit_proof(
            session,
            call_id,
            url,
            proof_kind=s3_service.proof_kind_for(content_type),
            recipient_id=recipient_id,
            clock=clock,
        )
    except Exception:
        await loop.run_in_executor(None, s3_service.delete_proof, url)
        raise


# ============================================================================
# Reads and expiry
# ============================================================================

async def get_call(session: AsyncSession, call_id: int, clock: Optional[PeriodClock] = None) -> Dict:
    """
    Get a call with its effective status.

    Raises:
        NotFoundError: Unknown call
    """
    clock = clock or get_clock()
    call = await _load_call(session, call_id)
    players = await player_service.get_players_by_id(session, [call.caller_id, call.recipient_id])
    return _format_call(
        call,
        clock.now(),
        players[call.caller_id].display_name,
        players[call.recipient_id].display_name,
    )


async def list_calls(
    session: AsyncSession,
    period: Optional[int] = None,
    player_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = FEED_PAGE_SIZE,
    offset: int = 0,
    clock: Optional[PeriodClock] = None,
) -> List[Dict]:
    """
    List calls newest first, filtering on the effective status.

    Args:
        session: Database session
        period: Only calls from this period
        player_id: Only calls where the player is caller or recipient
        status: Effective status to filter on (pending/completed/expired)
        limit: Page size
        offset: Page offset
        clock: Period clock
    """
    clock = clock or get_clock()
    now = clock.now()
    caller = aliased(Player)
    recipient = aliased(Player)

    query = (
        select(
            BuffaloCall,
            caller.display_name.label("caller_name"),
            recipient.display_name.label("recipient_name"),
        )
        .join(caller, caller.id == BuffaloCall.caller_id)
        .join(recipient, recipient.id == BuffaloCall.recipient_id)
    )
    if period is not None:
        query = query.where(BuffaloCall.period == period)
    if player_id is not None:
        query = query.where(or_(BuffaloCall.caller_id == player_id, BuffaloCall.recipient_id == player_id))
    if status == CallStatus.PENDING.value:
        query = query.where(BuffaloCall.status == CallStatus.PENDING.value, BuffaloCall.deadline > now)
    elif status == CallStatus.EXPIRED.value:
        query = query.where(
            or_(
                BuffaloCall.status == CallStatus.EXPIRED.value,
                and_(BuffaloCall.status == CallStatus.PENDING.value, BuffaloCall.deadline <= now),
            )
        )
    elif status == CallStatus.COMPLETED.value:
        query = query.where(BuffaloCall.status == CallStatus.COMPLETED.value)
    elif status:
        raise ValidationError(f"Unknown call status '{status}'")

    query = query.order_by(BuffaloCall.called_at.desc(), BuffaloCall.id.desc()).limit(limit).offset(offset)
    result = await session.execute(query)
    return [
        _format_call(row.BuffaloCall, now, row.caller_name, row.recipient_name)
        for row in result.all()
    ]


async def expire_overdue_calls(
    session: AsyncSession, period: Optional[int] = None, clock: Optional[PeriodClock] = None
) -> int:
    """
    Persist `expired` for every overdue pending call.

    Optional housekeeping; reads already report these calls as expired.

    Returns:
        Number of calls marked expired
    """
    clock = clock or get_clock()
    conditions = [
        BuffaloCall.status == CallStatus.PENDING.value,
        BuffaloCall.deadline <= clock.now(),
    ]
    if period is not None:
        conditions.append(BuffaloCall.period == period)

    result = await session.execute(
        update(BuffaloCall)
        .where(*conditions)
        .values(status=CallStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if result.rowcount:
        logger.info(f"Marked {result.rowcount} overdue buffalo calls as expired")
    return result.rowcount
