# movieswipe/voting_logic.py
"""Voting sessions: candidate snapshot, votes, state machine and winner selection.

States move pending -> active -> completed | cancelled. Every transition is a
compare-and-set on the status column, so of two concurrent callers exactly one
succeeds and the other sees the new status. Votes are written under a lock on
the session row, so none lands once a session has left the active state.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud, group_logic, models, preference_logic, recommendation_logic, schemas
from .catalog import MovieCatalog
from .errors import (
    InvalidMovieError, NoRecommendationsError, NotAMemberError, NotOwnerError,
    PreferencesIncompleteError, SessionAlreadyActiveError, SessionNotActiveError,
    SessionNotCompletedError, SessionNotFoundError, SessionNotPendingError, ValidationError,
)
from .notifications import (
    SESSION_CANCELLED, SESSION_COMPLETED, SESSION_CREATED, SESSION_STARTED, VOTE_UPDATED,
    Notifier, dispatch_group_event,
)

RATING_TIE_BREAK_WEIGHT = 0.1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- Tally and winner selection ---

def select_winner(tallies: List[schemas.MovieResult]) -> Optional[int]:
    """Index of the winning entry in candidate order, or None for no candidates.

    With no votes at all the best rated movie wins. Otherwise the best score
    among movies with at least one yes wins, falling back to the best score
    overall when nobody voted yes. Exact ties go to the earlier candidate.
    """
    if not tallies:
        return None
    if all(t.total_votes == 0 for t in tallies):
        pool = list(range(len(tallies)))
        key = lambda i: tallies[i].rating
    else:
        pool = [i for i, t in enumerate(tallies) if t.yes_votes > 0] or list(range(len(tallies)))
        key = lambda i: tallies[i].score

    best = pool[0]
    for i in pool[1:]:
        if key(i) > key(best):
            best = i
    return best


def tally_votes(candidates, votes) -> List[schemas.MovieResult]:
    """Per-candidate yes/no counts and scores, winner first then by score.

    `candidates` are in snapshot order; anything with movie_id, title, year,
    genres, poster_url and rating works. Votes for unknown movies are ignored.
    """
    yes_votes, no_votes = {}, {}
    for vote in votes:
        counter = yes_votes if vote.value == models.VOTE_YES else no_votes
        counter[vote.movie_id] = counter.get(vote.movie_id, 0) + 1

    tallies = []
    for candidate in candidates:
        yes = yes_votes.get(candidate.movie_id, 0)
        no = no_votes.get(candidate.movie_id, 0)
        rating = candidate.rating or 0.0
        tallies.append(schemas.MovieResult(
            movie_id=candidate.movie_id,
            title=candidate.title,
            year=candidate.year,
            genres=list(candidate.genres or []),
            poster_url=candidate.poster_url,
            rating=rating,
            yes_votes=yes,
            no_votes=no,
            total_votes=yes + no,
            score=round(yes - no + RATING_TIE_BREAK_WEIGHT * rating, 4),
            rank=0,
        ))

    winner_index = select_winner(tallies)
    order = sorted(
        range(len(tallies)),
        key=lambda i: (i != winner_index, -tallies[i].score, i),
    )
    return [
        tallies[i].model_copy(update={"rank": rank, "is_winner": i == winner_index})
        for rank, i in enumerate(order, start=1)
    ]


# --- Helpers ---

def _load_session(db: Session, session_id: int) -> models.VotingSession:
    db_session = crud.get_session(db, session_id)
    if db_session is None:
        raise SessionNotFoundError(session_id)
    return db_session


def _require_session_owner(db: Session, db_session: models.VotingSession, user_id: int, action: str) -> None:
    db_group = group_logic.load_group(db, db_session.group_id, require_active=False)
    if db_group.owner_id != user_id:
        raise NotOwnerError(action)


def _require_session_member(db: Session, db_session: models.VotingSession, user_id: int) -> None:
    group_logic.require_member(db, db_session.group_id, user_id, require_active=False)


def to_session_schema(db_session: models.VotingSession) -> schemas.VotingSession:
    return schemas.VotingSession.model_validate(db_session)


# --- Session lifecycle ---

def create_session(
    db: Session,
    group_id: int,
    user_id: int,
    settings: schemas.SessionSettings,
    catalog: MovieCatalog,
    notifier: Notifier,
    today: Optional[date] = None,
) -> models.VotingSession:
    """Open a pending session holding a snapshot of the group's recommendations."""
    db_group = group_logic.load_group(db, group_id)
    if db_group.owner_id != user_id:
        raise NotOwnerError("create a voting session")
    if crud.get_open_session(db, group_id) is not None:
        raise SessionAlreadyActiveError(group_id)

    member_preferences = preference_logic.load_member_preferences(db, group_id)
    if settings.require_all_members:
        missing = sum(1 for prefs in member_preferences.values() if not prefs)
        if missing:
            raise PreferencesIncompleteError(missing)

    preferences = preference_logic.aggregate_preferences(group_id, member_preferences)
    response = recommendation_logic.recommend_for_preferences(
        preferences, settings.max_recommendations, catalog, today=today
    )
    if not response.recommendations:
        raise NoRecommendationsError()

    try:
        db_session = crud.create_session(db, group_id, user_id, settings, response.recommendations)
    except IntegrityError:
        logging.warning(f"Concurrent session creation for group {group_id} rejected")
        raise SessionAlreadyActiveError(group_id)

    logging.info(
        f"Created voting session {db_session.id} for group {group_id} "
        f"with {len(db_session.candidates)} candidates"
    )
    dispatch_group_event(notifier, group_id, SESSION_CREATED, {
        "session_id": db_session.id,
        "created_by": user_id,
        "candidates": len(db_session.candidates),
    })
    return db_session


def start_session(db: Session, session_id: int, user_id: int, notifier: Notifier) -> models.VotingSession:
    db_session = _load_session(db, session_id)
    _require_session_owner(db, db_session, user_id, "start the session")

    started_at = _utcnow()
    if not crud.transition_session(
        db, session_id, models.SESSION_PENDING, models.SESSION_ACTIVE, started_at=started_at
    ):
        db.rollback()
        raise SessionNotPendingError(crud.get_session_status(db, session_id))
    db.commit()

    logging.info(f"Session {session_id} started by {user_id}")
    dispatch_group_event(notifier, db_session.group_id, SESSION_STARTED, {
        "session_id": session_id,
        "started_at": started_at.isoformat(),
    })
    return _load_session(db, session_id)


def cast_vote(
    db: Session,
    session_id: int,
    user_id: int,
    movie_id: int,
    value: str,
    notifier: Notifier,
    now: Optional[datetime] = None,
) -> models.Vote:
    """Record the user's vote on one candidate, replacing an earlier vote on it."""
    db_session = _load_session(db, session_id)
    if db_session.status != models.SESSION_ACTIVE:
        raise SessionNotActiveError(db_session.status)
    if not crud.is_member(db, db_session.group_id, user_id):
        raise NotAMemberError()
    if movie_id not in {c.movie_id for c in db_session.candidates}:
        raise InvalidMovieError(movie_id)
    if value not in (models.VOTE_YES, models.VOTE_NO):
        raise ValidationError(f"Invalid vote value '{value}': must be 'yes' or 'no'")

    db_vote = crud.upsert_vote(db, session_id, user_id, movie_id, value, now or _utcnow())
    if db_vote is None:
        # Ended or cancelled after the status check above
        raise SessionNotActiveError(crud.get_session_status(db, session_id))
    logging.debug(f"User {user_id} voted {value} on movie {movie_id} in session {session_id}")

    live_tally = tally_votes(db_session.candidates, crud.get_votes(db, session_id))
    dispatch_group_event(notifier, db_session.group_id, VOTE_UPDATED, {
        "session_id": session_id,
        "user_id": user_id,
        "movie_id": movie_id,
        "vote": value,
        "tally": [
            {"movie_id": r.movie_id, "yes_votes": r.yes_votes, "no_votes": r.no_votes}
            for r in live_tally
        ],
    })
    return db_vote


def _complete_session(
    db: Session, db_session: models.VotingSession, ended_at: datetime, notifier: Notifier
) -> schemas.SessionResults:
    # Vote writes wait on the row lock this takes, so the tally is final
    if not crud.transition_session(
        db, db_session.id, models.SESSION_ACTIVE, models.SESSION_COMPLETED, ended_at=ended_at
    ):
        db.rollback()
        raise SessionNotActiveError(crud.get_session_status(db, db_session.id))

    results = tally_votes(db_session.candidates, crud.get_votes(db, db_session.id))
    winner = next((r for r in results if r.is_winner), None)
    crud.set_session_winner(db, db_session.id, winner.movie_id if winner else None)
    crud.add_results(db, db_session.id, results)
    db.commit()

    logging.info(
        f"Session {db_session.id} completed: winner {winner.movie_id if winner else None}, "
        f"{sum(r.total_votes for r in results)} votes"
    )
    dispatch_group_event(notifier, db_session.group_id, SESSION_COMPLETED, {
        "session_id": db_session.id,
        "winner": winner.model_dump() if winner else None,
    })
    return schemas.SessionResults(
        session_id=db_session.id,
        status=models.SESSION_COMPLETED,
        winner=winner,
        results=results,
        total_votes=sum(r.total_votes for r in results),
        ended_at=ended_at,
    )


def end_session(
    db: Session, session_id: int, user_id: int, notifier: Notifier, now: Optional[datetime] = None
) -> schemas.SessionResults:
    """Close voting, pick the winner and store the results.

    Raises SessionNotActiveError when the session is not active, including
    for the second of two end calls; the first call's results are kept.
    """
    db_session = _load_session(db, session_id)
    _require_session_owner(db, db_session, user_id, "end the session")
    return _complete_session(db, db_session, now or _utcnow(), notifier)


def cancel_session(db: Session, session_id: int, user_id: int, notifier: Notifier) -> models.VotingSession:
    db_session = _load_session(db, session_id)
    _require_session_owner(db, db_session, user_id, "cancel the session")

    if not crud.transition_session(
        db, session_id, models.SESSION_ACTIVE, models.SESSION_CANCELLED, ended_at=_utcnow()
    ):
        db.rollback()
        raise SessionNotActiveError(crud.get_session_status(db, session_id))
    db.commit()

    logging.info(f"Session {session_id} cancelled by {user_id}")
    dispatch_group_event(notifier, db_session.group_id, SESSION_CANCELLED, {"session_id": session_id})
    return _load_session(db, session_id)


def expire_overdue_sessions(db: Session, notifier: Notifier, now: Optional[datetime] = None) -> List[int]:
    """Complete every active session whose voting duration has run out."""
    now = now or _utcnow()
    expired = []
    for db_session in crud.get_overdue_sessions(db):
        deadline = _as_utc(db_session.started_at) + timedelta(minutes=db_session.voting_duration)
        if deadline > now:
            continue
        try:
            _complete_session(db, db_session, now, notifier)
        except SessionNotActiveError:
            logging.info(f"Session {db_session.id} was closed before it could expire")
            continue
        expired.append(db_session.id)
    if expired:
        logging.info(f"Expired {len(expired)} overdue sessions: {expired}")
    return expired


# --- Reads ---

def get_session(db: Session, session_id: int, user_id: int) -> models.VotingSession:
    db_session = _load_session(db, session_id)
    _require_session_member(db, db_session, user_id)
    return db_session


def get_open_session(db: Session, group_id: int, user_id: int) -> Optional[models.VotingSession]:
    group_logic.require_member(db, group_id, user_id)
    return crud.get_open_session(db, group_id)


def get_history(db: Session, group_id: int, user_id: int) -> List[models.VotingSession]:
    # Deactivated groups keep their history readable
    group_logic.require_member(db, group_id, user_id, require_active=False)
    return crud.get_sessions_for_group(db, group_id)


def get_votes(db: Session, session_id: int, user_id: int, mine: bool = False) -> List[models.Vote]:
    db_session = _load_session(db, session_id)
    _require_session_member(db, db_session, user_id)
    return crud.get_votes(db, session_id, user_id=user_id if mine else None)


def get_results(db: Session, session_id: int, user_id: int) -> schemas.SessionResults:
    db_session = _load_session(db, session_id)
    _require_session_member(db, db_session, user_id)
    if db_session.status != models.SESSION_COMPLETED:
        raise SessionNotCompletedError(db_session.status)

    results = [schemas.MovieResult.model_validate(r) for r in crud.get_results(db, session_id)]
    return schemas.SessionResults(
        session_id=session_id,
        status=db_session.status,
        winner=next((r for r in results if r.is_winner), None),
        results=results,
        total_votes=sum(r.total_votes for r in results),
        ended_at=db_session.ended_at,
    )


def get_voting_stats(db: Session, session_id: int, user_id: int) -> schemas.VotingStats:
    """Live participation numbers. Only stored results are authoritative."""
    db_session = _load_session(db, session_id)
    _require_session_member(db, db_session, user_id)

    member_ids = {m.user_id for m in crud.get_members_with_preferences(db, db_session.group_id)}
    votes = crud.get_votes(db, session_id)
    voted = {v.user_id for v in votes} & member_ids
    total_members = len(member_ids)

    if db_session.status == models.SESSION_COMPLETED:
        live_tally = [schemas.MovieResult.model_validate(r) for r in crud.get_results(db, session_id)]
    else:
        live_tally = tally_votes(db_session.candidates, votes)

    return schemas.VotingStats(
        session_id=session_id,
        session_status=db_session.status,
        total_members=total_members,
        voted_members=len(voted),
        pending_members=total_members - len(voted),
        participation_rate=preference_logic.round_half_up(len(voted) * 100, total_members) if total_members else 0,
        total_votes=len(votes),
        yes_votes=sum(1 for v in votes if v.value == models.VOTE_YES),
        no_votes=sum(1 for v in votes if v.value == models.VOTE_NO),
        started_at=db_session.started_at,
        ended_at=db_session.ended_at,
        live_tally=live_tally,
    )
