"""
SQLAlchemy ORM models for the Buffalo Wrapped prediction game.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    JSON,
    false,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from buffalo.database.db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class CallStatus(str, enum.Enum):
    """Buffalo call lifecycle status enum."""

    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ProofKind(str, enum.Enum):
    """Kind of proof media attached to a completed call."""

    PHOTO = "photo"
    VIDEO = "video"


class RequestStatus(str, enum.Enum):
    """Buffalo request status enum."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class FeedEventType(str, enum.Enum):
    """Feed event type enum."""

    SUBMISSION = "submission"
    RESULT = "result"
    RANKING = "ranking"
    BUFFALO_CALL = "buffalo_call"
    PROOF_SUBMITTED = "proof_submitted"
    BUFFALO_REQUEST = "buffalo_request"
    BUFFALO_ACCEPTED = "buffalo_accepted"
    BUFFALO_DECLINED = "buffalo_declined"


class Player(Base):
    """Player profiles."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    display_name = Column(String, nullable=False)
    email = Column(String, nullable=True, unique=True)
    is_admin = Column(Boolean, default=False, nullable=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    submissions = relationship("Submission", back_populates="player")
    scores = relationship("Score", back_populates="player")

    __table_args__ = (Index("idx_players_display_name", "display_name"),)


class Submission(Base):
    """A player's predicted top artists and songs for one period."""

    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    period = Column(Integer, nullable=False)
    artists = Column(JSONType, nullable=False)  # ordered list of names, rank 1 first
    songs = Column(JSONType, nullable=False)
    submitted_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    player = relationship("Player", back_populates="submissions")

    __table_args__ = (
        UniqueConstraint("player_id", "period", name="uq_submissions_player_period"),
        Index("idx_submissions_period", "period"),
    )


class Result(Base):
    """Actual top artists and songs for a player, entered by an admin."""

    __tablename__ = "results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    period = Column(Integer, nullable=False)
    actual_artists = Column(JSONType, nullable=False)
    actual_songs = Column(JSONType, nullable=False)
    entered_by = Column(Integer, ForeignKey("players.id"), nullable=True)
    entered_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("player_id", "period", name="uq_results_player_period"),
        Index("idx_results_period", "period"),
    )


class Score(Base):
    """Ranked score for a player in a period. Replaced as a whole set per period."""

    __tablename__ = "scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    period = Column(Integer, nullable=False)
    correct_artists = Column(Integer, default=0, nullable=False)
    correct_songs = Column(Integer, default=0, nullable=False)
    total_correct = Column(Integer, default=0, nullable=False)
    exact_match_score = Column(Integer, default=0, nullable=False)
    ranking_accuracy_score = Column(Integer, default=0, nullable=False)
    final_rank = Column(Integer, nullable=False)
    calculated_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    player = relationship("Player", back_populates="scores")

    __table_args__ = (
        UniqueConstraint("player_id", "period", name="uq_scores_player_period"),
        UniqueConstraint("period", "final_rank", name="uq_scores_period_rank"),
        Index("idx_scores_period", "period"),
    )


class BuffaloBalance(Base):
    """Number of buffalos caller may currently call on recipient in a period."""

    __tablename__ = "buffalo_balances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    caller_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    recipient_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    period = Column(Integer, nullable=False)
    balance = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    caller = relationship("Player", foreign_keys=[caller_id])
    recipient = relationship("Player", foreign_keys=[recipient_id])

    __table_args__ = (
        UniqueConstraint("caller_id", "recipient_id", "period", name="uq_buffalo_balances_pair_period"),
        CheckConstraint("balance >= 0", name="ck_buffalo_balances_non_negative"),
        Index("idx_buffalo_balances_period", "period"),
        Index("idx_buffalo_balances_recipient", "recipient_id", "period"),
    )


class BuffaloCall(Base):
    """A spent buffalo: the recipient owes proof before the deadline."""

    __tablename__ = "buffalo_calls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    caller_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    recipient_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    period = Column(Integer, nullable=False)
    called_at = Column(DateTime(timezone=True), nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), default=CallStatus.PENDING.value, nullable=False)
    message = Column(Text, nullable=True)
    proof_url = Column(String, nullable=True)
    proof_kind = Column(String(10), nullable=True)
    proof_uploaded_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    caller = relationship("Player", foreign_keys=[caller_id])
    recipient = relationship("Player", foreign_keys=[recipient_id])

    __table_args__ = (
        Index("idx_buffalo_calls_period_called_at", "period", "called_at"),
        Index("idx_buffalo_calls_recipient_status", "recipient_id", "status"),
        Index("idx_buffalo_calls_caller", "caller_id"),
    )


class BuffaloRequest(Base):
    """Peer request to be granted a buffalo on another player."""

    __tablename__ = "buffalo_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    requester_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    recipient_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    period = Column(Integer, nullable=False)
    status = Column(String(20), default=RequestStatus.PENDING.value, nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    responded_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    requester = relationship("Player", foreign_keys=[requester_id])
    recipient = relationship("Player", foreign_keys=[recipient_id])

    __table_args__ = (
        # At most one pending request per ordered pair and period
        Index(
            "uq_buffalo_requests_pending_pair",
            "requester_id",
            "recipient_id",
            "period",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_buffalo_requests_recipient_status", "recipient_id", "status"),
    )


class FeedEvent(Base):
    """Activity feed entry emitted for every domain event."""

    __tablename__ = "feed_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(30), nullable=False)
    actor_id = Column(Integer, ForeignKey("players.id"), nullable=True)
    related_player_id = Column(Integer, ForeignKey("players.id"), nullable=True)
    related_id = Column(Integer, nullable=True)  # id of the call/request/etc. the event is about
    period = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    media_url = Column(String, nullable=True)
    data = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_feed_events_period_created_at", "period", "created_at"),
        Index("idx_feed_events_actor", "actor_id"),
    )


class Notification(Base):
    """In-app notification for a single player."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    type = Column(String(30), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSONType, nullable=True)
    link_url = Column(String, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False, server_default=false())
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_notifications_player_read", "player_id", "is_read"),
        Index("idx_notifications_created_at", "created_at"),
    )


class DebtAllocation(Base):
    """Ranking-derived buffalos currently granted for a pair in a period."""

    __tablename__ = "debt_allocations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    period = Column(Integer, nullable=False)
    caller_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    recipient_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    units = Column(Integer, nullable=False)
    allocated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("period", "caller_id", "recipient_id", name="uq_debt_allocations_period_pair"),
        CheckConstraint("units > 0", name="ck_debt_allocations_positive"),
    )
