# movieswipe/models.py
from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, JSON,
    String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base

SESSION_PENDING = "pending"
SESSION_ACTIVE = "active"
SESSION_COMPLETED = "completed"
SESSION_CANCELLED = "cancelled"
OPEN_SESSION_STATUSES = (SESSION_PENDING, SESSION_ACTIVE)

VOTE_YES = "yes"
VOTE_NO = "no"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(255), unique=True, nullable=False)  # id issued by the auth provider
    email = Column(String(255), unique=True, nullable=False)
    display_name = Column(String(100), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    memberships = relationship("GroupMember", back_populates="user")


class Group(Base):
    __tablename__ = "groups"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    invitation_code = Column(String(8), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)  # soft delete flag
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner = relationship("User")
    members = relationship(
        "GroupMember",
        back_populates="group",
        order_by="GroupMember.id",
        cascade="all, delete-orphan",
    )
    sessions = relationship("VotingSession", back_populates="group")


class GroupMember(Base):
    __tablename__ = "group_members"
    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    group = relationship("Group", back_populates="members")
    user = relationship("User", back_populates="memberships")
    preferences = relationship(
        "GenrePreference",
        back_populates="member",
        order_by="GenrePreference.genre_id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uix_group_member"),)


class GenrePreference(Base):
    __tablename__ = "genre_preferences"
    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("group_members.id", ondelete="CASCADE"), nullable=False, index=True)
    genre_id = Column(Integer, nullable=False)
    genre_name = Column(String(100), nullable=False)
    weight = Column(Integer, nullable=False)

    member = relationship("GroupMember", back_populates="preferences")

    __table_args__ = (
        UniqueConstraint("member_id", "genre_id", name="uix_member_genre"),
        CheckConstraint("weight >= 1 AND weight <= 10", name="ck_preference_weight"),
    )


class VotingSession(Base):
    __tablename__ = "voting_sessions"
    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String(16), nullable=False, default=SESSION_PENDING, index=True)
    # Equals group_id while the session is pending/active and NULL afterwards.
    # The unique constraint allows at most one open session per group.
    open_group_id = Column(Integer, unique=True, nullable=True)
    max_recommendations = Column(Integer, nullable=False, default=10)
    voting_duration = Column(Integer, nullable=False, default=60)  # minutes
    require_all_members = Column(Boolean, nullable=False, default=True)
    winner_movie_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    group = relationship("Group", back_populates="sessions")
    candidates = relationship(
        "SessionCandidate",
        back_populates="session",
        order_by="SessionCandidate.position",
        cascade="all, delete-orphan",
    )
    votes = relationship("Vote", back_populates="session", order_by="Vote.id")
    results = relationship(
        "SessionResult",
        back_populates="session",
        order_by="SessionResult.rank",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'cancelled')", name="ck_session_status"
        ),
    )


class SessionCandidate(Base):
    """Point-in-time copy of a recommended movie, taken at session creation."""
    __tablename__ = "session_candidates"
    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("voting_sessions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    movie_id = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False)
    year = Column(Integer, nullable=True)
    genres = Column(JSON, nullable=False, default=list)  # list of genre names
    poster_url = Column(String(500), nullable=True)
    rating = Column(Float, nullable=False, default=0.0)  # catalog vote average
    score = Column(Float, nullable=False, default=0.0)
    reason = Column(Text, nullable=False, default="")

    session = relationship("VotingSession", back_populates="candidates")

    __table_args__ = (UniqueConstraint("session_id", "movie_id", name="uix_session_candidate"),)


class Vote(Base):
    __tablename__ = "votes"
    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("voting_sessions.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    movie_id = Column(Integer, nullable=False)
    value = Column(String(8), nullable=False)
    cast_at = Column(DateTime(timezone=True), nullable=False)

    session = relationship("VotingSession", back_populates="votes")

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", "movie_id", name="uix_session_user_movie"),
        CheckConstraint("value IN ('yes', 'no')", name="ck_vote_value"),
    )


class SessionResult(Base):
    __tablename__ = "session_results"
    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("voting_sessions.id"), nullable=False, index=True)
    movie_id = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False)
    year = Column(Integer, nullable=True)
    genres = Column(JSON, nullable=False, default=list)
    poster_url = Column(String(500), nullable=True)
    rating = Column(Float, nullable=False, default=0.0)
    yes_votes = Column(Integer, nullable=False, default=0)
    no_votes = Column(Integer, nullable=False, default=0)
    total_votes = Column(Integer, nullable=False, default=0)
    score = Column(Float, nullable=False, default=0.0)
    rank = Column(Integer, nullable=False)
    is_winner = Column(Boolean, nullable=False, default=False)

    session = relationship("VotingSession", back_populates="results")

    __table_args__ = (UniqueConstraint("session_id", "movie_id", name="uix_session_result"),)
