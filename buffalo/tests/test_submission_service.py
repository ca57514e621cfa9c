"""
Tests for submissions, result entry and the period re-score.

The re-score tests walk a small season: predictions come in, results are
entered one player at a time, and balances follow the standings.
"""

import pytest
from sqlalchemy import select

from buffalo.database.models import DebtAllocation, FeedEvent, Notification
from buffalo.services import call_service, ledger_service, submission_service
from buffalo.services.allocation_service import RankGapPolicy
from buffalo.services.errors import NotFoundError, ValidationError

PERIOD = 2025

ARTISTS = ["Taylor Swift", "SZA", "Drake", "Olivia Rodrigo", "Bad Bunny"]
SONGS = ["Cruel Summer", "Kill Bill", "Vampire", "Flowers", "Anti-Hero"]
OTHER_ARTISTS = ["Adele", "Beyonce", "Coldplay", "Dua Lipa", "Eminem"]
OTHER_SONGS = ["Hello", "Halo", "Yellow", "Levitating", "Lose Yourself"]


async def _season(db_session, players):
    """Alice nails everything, Bob gets the artists only."""
    await submission_service.submit_predictions(db_session, players["alice"], ARTISTS, SONGS)
    await submission_service.submit_predictions(db_session, players["bob"], ARTISTS, SONGS)
    await submission_service.enter_results(
        db_session, players["alice"], ARTISTS, SONGS, entered_by=players["alice"]
    )
    return await submission_service.enter_results(
        db_session, players["bob"], ARTISTS, OTHER_SONGS, entered_by=players["alice"]
    )


# ──────────────────────────────────────────────────────────────
# Submissions
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_submit_then_resubmit(db_session, players, frozen_clock):
    assert await submission_service.get_submission(db_session, players["bob"], PERIOD) is None

    first = await submission_service.submit_predictions(
        db_session, players["bob"], ["  Taylor   Swift", "SZA", "Drake", "Olivia Rodrigo", "Bad Bunny"], SONGS
    )
    assert first["created"] is True
    assert first["period"] == PERIOD
    assert first["artists"][0] == "Taylor Swift"

    frozen_clock.advance(hours=1)
    second = await submission_service.submit_predictions(
        db_session, players["bob"], OTHER_ARTISTS, SONGS
    )
    assert second["created"] is False
    assert second["id"] == first["id"]
    assert second["updated_at"] is not None

    stored = await submission_service.get_submission(db_session, players["bob"], PERIOD)
    assert stored["artists"] == OTHER_ARTISTS


@pytest.mark.asyncio
async def test_submit_validation(db_session, players, frozen_clock):
    with pytest.raises(ValidationError):
        await submission_service.submit_predictions(db_session, players["bob"], ARTISTS[:4], SONGS)
    with pytest.raises(ValidationError):
        await submission_service.submit_predictions(
            db_session, players["bob"], ARTISTS, ["A", "B", "C", "D", "a"]
        )
    with pytest.raises(NotFoundError):
        await submission_service.submit_predictions(db_session, 9999, ARTISTS, SONGS)
    assert await submission_service.get_submission(db_session, players["bob"], PERIOD) is None


@pytest.mark.asyncio
async def test_submission_is_recorded_in_feed(db_session, players, frozen_clock):
    submission = await submission_service.submit_predictions(db_session, players["cara"], ARTISTS, SONGS)

    event = (await db_session.execute(select(FeedEvent))).scalar_one()
    assert event.event_type == "submission"
    assert event.related_id == submission["id"]
    assert "Cara" in event.title


# ──────────────────────────────────────────────────────────────
# Results and re-score
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_results_rank_players_and_grant_buffalos(db_session, players, frozen_clock):
    alice, bob = players["alice"], players["bob"]
    await submission_service.submit_predictions(db_session, alice, ARTISTS, SONGS)
    await submission_service.submit_predictions(db_session, bob, ARTISTS, SONGS)

    first = await submission_service.enter_results(db_session, alice, ARTISTS, SONGS, entered_by=alice)
    # Alone in the standings: ranked, but nobody to call on
    assert first["standings"]["player_count"] == 1
    assert first["standings"]["balance_changes"] == []

    second = await submission_service.enter_results(db_session, bob, ARTISTS, OTHER_SONGS, entered_by=alice)
    standings = second["standings"]
    assert [r["player_id"] for r in standings["rankings"]] == [alice, bob]
    assert [r["final_rank"] for r in standings["rankings"]] == [1, 2]
    assert standings["rankings"][0]["total_correct"] == 10
    assert standings["rankings"][1]["total_correct"] == 5
    assert standings["balance_changes"] == [
        {"caller_id": alice, "recipient_id": bob, "delta": 1, "balance": 1}
    ]
    assert await ledger_service.get_balance(db_session, alice, bob, PERIOD) == 1
    assert await ledger_service.get_balance(db_session, bob, alice, PERIOD) == 0


@pytest.mark.asyncio
async def test_only_players_with_both_rows_are_ranked(db_session, players, frozen_clock):
    await _season(db_session, players)
    # Cara predicts but has no results; Dev has results but never predicted
    await submission_service.submit_predictions(db_session, players["cara"], ARTISTS, SONGS)
    standings = (
        await submission_service.enter_results(
            db_session, players["dev"], ARTISTS, SONGS, entered_by=players["alice"]
        )
    )["standings"]

    assert standings["player_count"] == 2
    assert {r["player_id"] for r in standings["rankings"]} == {players["alice"], players["bob"]}


@pytest.mark.asyncio
async def test_recalculation_is_idempotent(db_session, players, frozen_clock):
    alice, bob = players["alice"], players["bob"]
    await _season(db_session, players)

    again = await submission_service.calculate_period_scores(db_session, PERIOD)
    assert again["balance_changes"] == []
    assert await ledger_service.get_balance(db_session, alice, bob, PERIOD) == 1

    scores = await submission_service.get_period_scores(db_session, PERIOD)
    assert len(scores) == 2

    allocations = (
        await db_session.execute(select(DebtAllocation).where(DebtAllocation.period == PERIOD))
    ).scalars().all()
    assert [(a.caller_id, a.recipient_id, a.units) for a in allocations] == [(alice, bob, 1)]


@pytest.mark.asyncio
async def test_reranking_moves_grants_without_clawing_back_spent(db_session, players, frozen_clock):
    alice, bob = players["alice"], players["bob"]
    await _season(db_session, players)

    # Alice spends her buffalo on Bob before the results are corrected
    await call_service.open_call(db_session, alice, bob)
    assert await ledger_service.get_balance(db_session, alice, bob, PERIOD) == 0

    corrected = await submission_service.enter_results(
        db_session, alice, OTHER_ARTISTS, OTHER_SONGS, entered_by=alice
    )
    standings = corrected["standings"]
    assert [r["player_id"] for r in standings["rankings"]] == [bob, alice]
    assert standings["balance_changes"] == [
        {"caller_id": bob, "recipient_id": alice, "delta": 1, "balance": 1}
    ]
    assert await ledger_service.get_balance(db_session, alice, bob, PERIOD) == 0
    assert await ledger_service.get_balance(db_session, bob, alice, PERIOD) == 1


@pytest.mark.asyncio
async def test_reranking_takes_back_unspent_grant(db_session, players, frozen_clock):
    alice, bob = players["alice"], players["bob"]
    await _season(db_session, players)

    await submission_service.enter_results(db_session, alice, OTHER_ARTISTS, OTHER_SONGS, entered_by=alice)
    assert await ledger_service.get_balance(db_session, alice, bob, PERIOD) == 0
    assert await ledger_service.get_balance(db_session, bob, alice, PERIOD) == 1


@pytest.mark.asyncio
async def test_restoring_standings_after_spend_grants_nothing_twice(db_session, players, frozen_clock):
    """Spend, flip the ranking, flip it back: the spent buffalo stays the only one granted."""
    alice, bob = players["alice"], players["bob"]
    await _season(db_session, players)
    await call_service.open_call(db_session, alice, bob)

    await submission_service.enter_results(db_session, alice, OTHER_ARTISTS, OTHER_SONGS, entered_by=alice)
    # The cut on alice -> bob was clamped, so the spent unit stays recorded
    allocations = (
        await db_session.execute(select(DebtAllocation).where(DebtAllocation.period == PERIOD))
    ).scalars().all()
    assert sorted((a.caller_id, a.recipient_id, a.units) for a in allocations) == sorted(
        [(alice, bob, 1), (bob, alice, 1)]
    )

    restored = await submission_service.enter_results(db_session, alice, ARTISTS, SONGS, entered_by=alice)
    assert [r["player_id"] for r in restored["standings"]["rankings"]] == [alice, bob]
    assert restored["standings"]["balance_changes"] == [
        {"caller_id": bob, "recipient_id": alice, "delta": -1, "balance": 0}
    ]

    calls = await call_service.list_calls(db_session, period=PERIOD, player_id=alice)
    spent = len([c for c in calls if c["caller_id"] == alice])
    assert spent + await ledger_service.get_balance(db_session, alice, bob, PERIOD) == 1
    assert await ledger_service.get_balance(db_session, bob, alice, PERIOD) == 0

    # Re-running the restored standings changes nothing
    again = await submission_service.calculate_period_scores(db_session, PERIOD)
    assert again["balance_changes"] == []


@pytest.mark.asyncio
async def test_recalculate_with_other_policy(db_session, players, frozen_clock):
    alice, bob, cara = players["alice"], players["bob"], players["cara"]
    await _season(db_session, players)
    await submission_service.submit_predictions(db_session, cara, ARTISTS, SONGS)
    await submission_service.enter_results(db_session, cara, OTHER_ARTISTS, OTHER_SONGS, entered_by=alice)

    await submission_service.calculate_period_scores(db_session, PERIOD, policy=RankGapPolicy())
    assert await ledger_service.get_balance(db_session, alice, bob, PERIOD) == 1
    assert await ledger_service.get_balance(db_session, alice, cara, PERIOD) == 2
    assert await ledger_service.get_balance(db_session, bob, cara, PERIOD) == 1


@pytest.mark.asyncio
async def test_empty_period_scores_nothing(db_session, players, frozen_clock):
    standings = await submission_service.calculate_period_scores(db_session, 2019)
    assert standings == {"period": 2019, "player_count": 0, "rankings": [], "balance_changes": []}


@pytest.mark.asyncio
async def test_result_notifies_player(db_session, players, frozen_clock):
    await submission_service.enter_results(
        db_session, players["bob"], ARTISTS, SONGS, entered_by=players["alice"]
    )
    notification = (
        await db_session.execute(select(Notification).where(Notification.player_id == players["bob"]))
    ).scalar_one()
    assert notification.type == "result"
    assert notification.link_url == f"/scores/{PERIOD}"


# ──────────────────────────────────────────────────────────────
# Score reads
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_period_scores(db_session, players, frozen_clock):
    await _season(db_session, players)

    scores = await submission_service.get_period_scores(db_session, PERIOD)
    assert [s["display_name"] for s in scores] == ["Alice", "Bob"]
    assert scores[0]["final_rank"] == 1
    assert scores[0]["exact_match_score"] == 30
    assert await submission_service.get_period_scores(db_session, PERIOD - 1) == []


@pytest.mark.asyncio
async def test_get_player_scores(db_session, players, frozen_clock):
    await _season(db_session, players)

    history = await submission_service.get_player_scores(db_session, players["bob"])
    assert len(history) == 1
    assert history[0]["final_rank"] == 2
    assert history[0]["display_name"] == "Bob"

    assert await submission_service.get_player_scores(db_session, players["cara"]) == []
    with pytest.raises(NotFoundError):
        await submission_service.get_player_scores(db_session, 9999)
