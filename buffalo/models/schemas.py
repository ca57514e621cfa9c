"""
Pydantic models for API request/response validation.
"""

from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict

from buffalo.utils.constants import TOP_N, CALL_MIN_MINUTES, CALL_MAX_MINUTES, CALL_DEFAULT_MINUTES


# ============================================================================
# Submissions and results
# ============================================================================

class SubmissionCreate(BaseModel):
    """Predicted top artists and songs, rank 1 first."""

    artists: List[str] = Field(min_length=TOP_N, max_length=TOP_N)
    songs: List[str] = Field(min_length=TOP_N, max_length=TOP_N)
    period: Optional[int] = None


class SubmissionResponse(BaseModel):
    """Stored submission."""

    id: int
    player_id: int
    period: int
    artists: List[str]
    songs: List[str]
    submitted_at: Optional[str] = None
    updated_at: Optional[str] = None
    created: Optional[bool] = None


class ResultCreate(BaseModel):
    """Actual top artists and songs for a player, entered by an admin."""

    player_id: int
    actual_artists: List[str] = Field(min_length=TOP_N, max_length=TOP_N)
    actual_songs: List[str] = Field(min_length=TOP_N, max_length=TOP_N)
    period: Optional[int] = None


class RankingEntry(BaseModel):
    player_id: int
    final_rank: int
    total_correct: int
    exact_match_score: int
    ranking_accuracy_score: int


class BalanceChange(BaseModel):
    caller_id: int
    recipient_id: int
    delta: int
    balance: int


class StandingsResponse(BaseModel):
    """Outcome of a period re-score."""

    period: int
    player_count: int
    rankings: List[RankingEntry]
    balance_changes: List[BalanceChange]


class ResultResponse(BaseModel):
    """Stored result plus the re-scored standings."""

    id: int
    player_id: int
    period: int
    actual_artists: List[str]
    actual_songs: List[str]
    entered_by: Optional[int] = None
    entered_at: Optional[str] = None
    standings: StandingsResponse


class ScoreResponse(BaseModel):
    """Ranked score for a player in a period."""

    player_id: int
    display_name: Optional[str] = None
    period: int
    correct_artists: int
    correct_songs: int
    total_correct: int
    exact_match_score: int
    ranking_accuracy_score: int
    final_rank: int
    calculated_at: Optional[str] = None


# ============================================================================
# Balances
# ============================================================================

class BalanceResponse(BaseModel):
    caller_id: int
    caller_name: Optional[str] = None
    recipient_id: int
    recipient_name: Optional[str] = None
    period: int
    balance: int


class PlayerTotals(BaseModel):
    player_id: int
    display_name: str
    can_call: int
    owes: int


class BoardResponse(BaseModel):
    """Buffalo board for a period."""

    period: int
    balances: List[BalanceResponse]
    totals: List[PlayerTotals]


class PairBalanceResponse(BaseModel):
    """Balances in both directions between the current player and another."""

    player_id: int
    other_player_id: int
    period: int
    can_call: int
    owes: int


# ============================================================================
# Calls
# ============================================================================

class CallCreate(BaseModel):
    """Call a buffalo on another player."""

    recipient_id: int
    duration_minutes: int = Field(CALL_DEFAULT_MINUTES, ge=CALL_MIN_MINUTES, le=CALL_MAX_MINUTES)
    message: Optional[str] = Field(None, max_length=500)
    period: Optional[int] = None


class ProofUrlSubmit(BaseModel):
    """Proof already stored elsewhere, referenced by URL."""

    proof_url: str = Field(min_length=1)
    proof_kind: str = Field("photo", pattern="^(photo|video)$")


class CallResponse(BaseModel):
    """Buffalo call with its effective status."""

    model_config = ConfigDict(from_attributes=True)
    id: int
    caller_id: int
    caller_name: Optional[str] = None
    recipient_id: int
    recipient_name: Optional[str] = None
    period: int
    called_at: Optional[str] = None
    deadline: Optional[str] = None
    status: str
    seconds_remaining: int
    message: Optional[str] = None
    proof_url: Optional[str] = None
    proof_kind: Optional[str] = None
    proof_uploaded_at: Optional[str] = None


# ============================================================================
# Requests
# ============================================================================

class BuffaloRequestCreate(BaseModel):
    """Ask another player for a buffalo."""

    recipient_id: int
    note: Optional[str] = Field(None, max_length=500)
    period: Optional[int] = None


class BuffaloRequestResponse(BaseModel):
    """Buffalo request."""

    id: int
    requester_id: int
    requester_name: Optional[str] = None
    recipient_id: int
    recipient_name: Optional[str] = None
    period: int
    status: str
    note: Optional[str] = None
    created_at: Optional[str] = None
    responded_at: Optional[str] = None
    balance: Optional[int] = None


# ============================================================================
# Feed and notifications
# ============================================================================

class FeedEventResponse(BaseModel):
    """Activity feed entry."""

    id: int
    event_type: str
    actor_id: Optional[int] = None
    related_player_id: Optional[int] = None
    related_id: Optional[int] = None
    period: int
    title: str
    description: Optional[str] = None
    media_url: Optional[str] = None
    data: Optional[dict] = None
    created_at: Optional[str] = None


class NotificationResponse(BaseModel):
    """Notification response."""

    model_config = ConfigDict(from_attributes=True)
    id: int
    player_id: int
    type: str
    title: str
    message: str
    data: Optional[dict] = None
    is_read: bool
    read_at: Optional[str] = None
    link_url: Optional[str] = None
    created_at: Optional[str] = None


class NotificationListResponse(BaseModel):
    """Paginated notification list response."""

    notifications: List[NotificationResponse]
    total_count: int
    unread_count: int
    has_more: bool
