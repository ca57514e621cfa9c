"""
Balance ledger for buffalo debts.

Owns every mutation of buffalo_balances. Each mutation is one conditional
UPDATE executed by the database, so concurrent spends or grants on the same
(caller, recipient, period) row can never double-spend or lose an update.

The functions here flush but do not commit; they run inside the caller's
unit of work.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update, and_, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from buffalo.database.models import BuffaloBalance, Player
from buffalo.services.errors import ValidationError, OutOfRangeError
import logging

logger = logging.getLogger(__name__)


def _key(caller_id: int, recipient_id: int, period: int):
    return and_(
        BuffaloBalance.caller_id == caller_id,
        BuffaloBalance.recipient_id == recipient_id,
        BuffaloBalance.period == period,
    )


async def _conditional_add(
    session: AsyncSession, caller_id: int, recipient_id: int, period: int, delta: int
) -> bool:
    """Add delta to an existing row only if the result stays non-negative."""
    result = await session.execute(
        update(BuffaloBalance)
        .where(
            _key(caller_id, recipient_id, period),
            BuffaloBalance.balance + delta >= 0,
        )
        .values(balance=BuffaloBalance.balance + delta)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _row_exists(session: AsyncSession, caller_id: int, recipient_id: int, period: int) -> bool:
    result = await session.execute(
        select(BuffaloBalance.id).where(_key(caller_id, recipient_id, period))
    )
    return result.scalar_one_or_none() is not None


async def get_balance(session: AsyncSession, caller_id: int, recipient_id: int, period: int) -> int:
    """
    Get how many buffalos caller may call on recipient in a period.

    Returns:
        Current balance, or 0 if the pair has no ledger row
    """
    result = await session.execute(
        select(BuffaloBalance.balance).where(_key(caller_id, recipient_id, period))
    )
    return result.scalar_one_or_none() or 0


async def apply_delta(
    session: AsyncSession, caller_id: int, recipient_id: int, period: int, delta: int
) -> int:
    """
    Add delta to a pair's balance, creating the row if needed.

    Args:
        session: Database session
        caller_id: Player who may call the buffalos
        recipient_id: Player who owes them
        period: Competition period
        delta: Signed change in units

    Returns:
        The new balance

    Raises:
        ValidationError: If delta is not an int or the pair is a player with themselves
        OutOfRangeError: If the balance would become negative (nothing is changed)
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("Balance delta must be a whole number")
    if caller_id == recipient_id:
        raise ValidationError("A player cannot hold buffalos on themselves")

    if await _conditional_add(session, caller_id, recipient_id, period, delta):
        return await get_balance(session, caller_id, recipient_id, period)

    # Nothing updated: either the row is missing or the delta is too negative
    if delta < 0 or await _row_exists(session, caller_id, recipient_id, period):
        raise OutOfRangeError(
            f"Cannot apply {delta} to balance of player {caller_id} on player {recipient_id}: "
            "balance would become negative"
        )

    try:
        async with session.begin_nested():
            session.add(
                BuffaloBalance(
                    caller_id=caller_id,
                    recipient_id=recipient_id,
                    period=period,
                    balance=delta,
                )
            )
        return delta
    except IntegrityError:
        # Another writer created the row first; fold our delta into theirs
        logger.info(f"Balance row {caller_id}->{recipient_id} ({period}) created concurrently, retrying")
        if not await _conditional_add(session, caller_id, recipient_id, period, delta):
            raise OutOfRangeError("Balance would become negative")
        return await get_balance(session, caller_id, recipient_id, period)


async def try_spend(session: AsyncSession, caller_id: int, recipient_id: int, period: int) -> bool:
    """
    Atomically spend one buffalo if the caller has one.

    Returns:
        True if exactly one unit was deducted, False (and no change) if the balance is 0
    """
    result = await session.execute(
        update(BuffaloBalance)
        .where(
            _key(caller_id, recipient_id, period),
            BuffaloBalance.balance >= 1,
        )
        .values(balance=BuffaloBalance.balance - 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def grant_debts(session: AsyncSession, grants: Iterable, period: int) -> List[Dict]:
    """
    Apply allocator output to the ledger.

    Args:
        session: Database session
        grants: DebtGrant objects (caller_id, recipient_id, delta)
        period: Competition period

    Returns:
        List of dicts with the pair and its new balance
    """
    applied = []
    for grant in grants:
        new_balance = await apply_delta(
            session, grant.caller_id, grant.recipient_id, period, grant.delta
        )
        applied.append(
            {
                "caller_id": grant.caller_id,
                "recipient_id": grant.recipient_id,
                "delta": grant.delta,
                "balance": new_balance,
            }
        )
    return applied


async def list_balances(
    session: AsyncSession,
    period: int,
    player_id: Optional[int] = None,
    positive_only: bool = True,
) -> List[Dict]:
    """
    List ledger rows for a period, optionally only those involving one player.

    Args:
        session: Database session
        period: Competition period
        player_id: If given, only rows where the player is caller or recipient
        positive_only: Hide rows whose balance is 0

    Returns:
        List of balance dicts including caller/recipient display names
    """
    caller = aliased(Player)
    recipient = aliased(Player)
    query = (
        select(
            BuffaloBalance,
            caller.display_name.label("caller_name"),
            recipient.display_name.label("recipient_name"),
        )
        .join(caller, caller.id == BuffaloBalance.caller_id)
        .join(recipient, recipient.id == BuffaloBalance.recipient_id)
        .where(BuffaloBalance.period == period)
    )
    if player_id is not None:
        query = query.where(
            or_(BuffaloBalance.caller_id == player_id, BuffaloBalance.recipient_id == player_id)
        )
    if positive_only:
        query = query.where(BuffaloBalance.balance > 0)
    query = query.order_by(BuffaloBalance.balance.desc(), BuffaloBalance.id)

    result = await session.execute(query)
    return [
        {
            "caller_id": row.BuffaloBalance.caller_id,
            "caller_name": row.caller_name,
            "recipient_id": row.BuffaloBalance.recipient_id,
            "recipient_name": row.recipient_name,
            "period": row.BuffaloBalance.period,
            "balance": row.BuffaloBalance.balance,
        }
        for row in result.all()
    ]


async def get_pair_balances(session: AsyncSession, player_id: int, other_player_id: int, period: int) -> Dict:
    """
    Get balances in both directions between two players.

    Returns:
        Dict with "can_call" (player on other) and "owes" (other on player)
    """
    return {
        "player_id": player_id,
        "other_player_id": other_player_id,
        "period": period,
        "can_call": await get_balance(session, player_id, other_player_id, period),
        "owes": await get_balance(session, other_player_id, player_id, period),
    }


async def get_board(session: AsyncSession, period: int) -> Dict:
    """
    Buffalo board for a period: every positive balance plus per-player totals.

    Totals include every player, sorted by how many buffalos they can call.
    """
    balances = await list_balances(session, period)

    can_call_result = await session.execute(
        select(BuffaloBalance.caller_id, func.sum(BuffaloBalance.balance))
        .where(BuffaloBalance.period == period)
        .group_by(BuffaloBalance.caller_id)
    )
    can_call = {player_id: int(total or 0) for player_id, total in can_call_result.all()}

    owes_result = await session.execute(
        select(BuffaloBalance.recipient_id, func.sum(BuffaloBalance.balance))
        .where(BuffaloBalance.period == period)
        .group_by(BuffaloBalance.recipient_id)
    )
    owes = {player_id: int(total or 0) for player_id, total in owes_result.all()}

    players_result = await session.execute(select(Player.id, Player.display_name).order_by(Player.display_name))
    totals = [
        {
            "player_id": row.id,
            "display_name": row.display_name,
            "can_call": can_call.get(row.id, 0),
            "owes": owes.get(row.id, 0),
        }
        for row in players_result.all()
    ]
    totals.sort(key=lambda t: -t["can_call"])

    return {"period": period, "balances": balances, "totals": totals}
