"""
Unit tests for the buffalo request service.

Tests the request lifecycle, duplicate prevention, responder checks and
the both-or-neither grant on accept.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from buffalo.database.models import BuffaloRequest, Notification
from buffalo.services import ledger_service, request_service
from buffalo.services.errors import ConflictError, NotFoundError, OutOfRangeError, ValidationError

PERIOD = 2025


# ──────────────────────────────────────────────────────────────
# Send request
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_send_request(db_session, players, frozen_clock):
    result = await request_service.send_request(db_session, players["alice"], players["bob"], note="  you owe me ")

    assert result["status"] == "pending"
    assert result["requester_name"] == "Alice"
    assert result["recipient_name"] == "Bob"
    assert result["note"] == "you owe me"
    assert result["period"] == PERIOD

    notification = (
        await db_session.execute(select(Notification).where(Notification.player_id == players["bob"]))
    ).scalar_one()
    assert notification.type == "buffalo_request"
    assert notification.data["related_id"] == result["id"]


@pytest.mark.asyncio
async def test_send_request_to_self_fails(db_session, players, frozen_clock):
    with pytest.raises(ValidationError, match="yourself"):
        await request_service.send_request(db_session, players["alice"], players["alice"])


@pytest.mark.asyncio
async def test_send_request_unknown_player(db_session, players, frozen_clock):
    with pytest.raises(NotFoundError):
        await request_service.send_request(db_session, players["alice"], 9999)


@pytest.mark.asyncio
async def test_duplicate_pending_request_conflicts(db_session, players, frozen_clock):
    await request_service.send_request(db_session, players["alice"], players["bob"])
    with pytest.raises(ConflictError, match="already have a pending"):
        await request_service.send_request(db_session, players["alice"], players["bob"])

    # The reverse direction is a different pair
    reverse = await request_service.send_request(db_session, players["bob"], players["alice"])
    assert reverse["status"] == "pending"


@pytest.mark.asyncio
async def test_new_request_allowed_after_resolution(db_session, players, frozen_clock):
    first = await request_service.send_request(db_session, players["alice"], players["bob"])
    await request_service.respond_to_request(db_session, first["id"], players["bob"], accept=False)

    second = await request_service.send_request(db_session, players["alice"], players["bob"])
    assert second["id"] != first["id"]


# ──────────────────────────────────────────────────────────────
# Respond
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_request_lifecycle(db_session, players, frozen_clock):
    """Request, duplicate rejected, accept grants +1, second response rejected."""
    alice, bob = players["alice"], players["bob"]
    request = await request_service.send_request(db_session, alice, bob)

    with pytest.raises(ConflictError):
        await request_service.send_request(db_session, alice, bob)

    accepted = await request_service.respond_to_request(db_session, request["id"], bob, accept=True)
    assert accepted["status"] == "accepted"
    assert accepted["balance"] == 1
    assert accepted["responded_at"] is not None
    assert await ledger_service.get_balance(db_session, alice, bob, PERIOD) == 1

    with pytest.raises(ConflictError, match="already accepted"):
        await request_service.respond_to_request(db_session, request["id"], bob, accept=True)
    assert await ledger_service.get_balance(db_session, alice, bob, PERIOD) == 1


@pytest.mark.asyncio
async def test_accept_adds_to_existing_balance(db_session, players, frozen_clock):
    alice, bob = players["alice"], players["bob"]
    await ledger_service.apply_delta(db_session, alice, bob, PERIOD, 2)
    await db_session.commit()

    request = await request_service.send_request(db_session, alice, bob)
    accepted = await request_service.respond_to_request(db_session, request["id"], bob, accept=True)
    assert accepted["balance"] == 3


@pytest.mark.asyncio
async def test_decline_leaves_balance_alone(db_session, players, frozen_clock):
    alice, bob = players["alice"], players["bob"]
    request = await request_service.send_request(db_session, alice, bob)

    declined = await request_service.respond_to_request(db_session, request["id"], bob, accept=False)
    assert declined["status"] == "declined"
    assert declined["balance"] is None
    assert await ledger_service.get_balance(db_session, alice, bob, PERIOD) == 0

    with pytest.raises(ConflictError, match="already declined"):
        await request_service.respond_to_request(db_session, request["id"], bob, accept=True)


@pytest.mark.asyncio
async def test_only_recipient_can_respond(db_session, players, frozen_clock):
    request = await request_service.send_request(db_session, players["alice"], players["bob"])

    with pytest.raises(ValidationError, match="Only the recipient"):
        await request_service.respond_to_request(db_session, request["id"], players["alice"], accept=True)
    with pytest.raises(ValidationError):
        await request_service.respond_to_request(db_session, request["id"], players["cara"], accept=True)


@pytest.mark.asyncio
async def test_respond_unknown_request(db_session, players, frozen_clock):
    with pytest.raises(NotFoundError):
        await request_service.respond_to_request(db_session, 9999, players["bob"], accept=True)


@pytest.mark.asyncio
async def test_failed_grant_leaves_request_pending(db_session, players, frozen_clock):
    alice, bob = players["alice"], players["bob"]
    request = await request_service.send_request(db_session, alice, bob)

    with patch(
        "buffalo.services.ledger_service.apply_delta",
        AsyncMock(side_effect=OutOfRangeError("Balance would become negative")),
    ):
        with pytest.raises(OutOfRangeError):
            await request_service.respond_to_request(db_session, request["id"], bob, accept=True)

    stored = (
        await db_session.execute(select(BuffaloRequest.status).where(BuffaloRequest.id == request["id"]))
    ).scalar_one()
    assert stored == "pending"

    # The request can still be accepted afterwards
    accepted = await request_service.respond_to_request(db_session, request["id"], bob, accept=True)
    assert accepted["balance"] == 1


@pytest.mark.asyncio
async def test_concurrent_accepts_grant_once(session_maker, players, frozen_clock):
    alice, bob = players["alice"], players["bob"]
    async with session_maker() as session:
        request = await request_service.send_request(session, alice, bob)

    async def accept():
        async with session_maker() as session:
            try:
                return await request_service.respond_to_request(session, request["id"], bob, accept=True)
            except ConflictError as e:
                return e

    outcomes = await asyncio.gather(accept(), accept())
    assert len([o for o in outcomes if isinstance(o, dict)]) == 1
    assert len([o for o in outcomes if isinstance(o, ConflictError)]) == 1

    async with session_maker() as session:
        assert await ledger_service.get_balance(session, alice, bob, PERIOD) == 1


# ──────────────────────────────────────────────────────────────
# Listing
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_requests(db_session, players, frozen_clock):
    alice, bob, cara = players["alice"], players["bob"], players["cara"]
    from_alice = await request_service.send_request(db_session, alice, bob)
    from_cara = await request_service.send_request(db_session, cara, bob)
    frozen_clock.advance(minutes=1)
    await request_service.respond_to_request(db_session, from_cara["id"], bob, accept=False)

    incoming = await request_service.list_requests(db_session, bob, direction="incoming")
    # Pending first, then resolved
    assert [r["id"] for r in incoming] == [from_alice["id"], from_cara["id"]]

    pending = await request_service.list_requests(db_session, bob, direction="incoming", status="pending")
    assert [r["id"] for r in pending] == [from_alice["id"]]

    outgoing = await request_service.list_requests(db_session, alice, direction="outgoing")
    assert [r["recipient_name"] for r in outgoing] == ["Bob"]

    assert await request_service.list_requests(db_session, alice, direction="incoming") == []


@pytest.mark.asyncio
async def test_list_requests_validation(db_session, players):
    with pytest.raises(ValidationError):
        await request_service.list_requests(db_session, players["alice"], direction="sideways")
    with pytest.raises(ValidationError):
        await request_service.list_requests(db_session, players["alice"], status="maybe")
