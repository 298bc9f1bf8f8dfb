# movieswipe/crud.py
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from . import models, schemas

# --- User CRUD ---
def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()

def get_user_by_external_id(db: Session, external_id: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.external_id == external_id).first()

def create_user(db: Session, user: schemas.UserCreate) -> models.User:
    db_user = models.User(**user.model_dump(), is_active=True)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user

def update_user(db: Session, db_user: models.User, **fields) -> models.User:
    for key, value in fields.items():
        setattr(db_user, key, value)
    db.commit()
    db.refresh(db_user)
    return db_user

# --- Group CRUD ---
def get_group(db: Session, group_id: int) -> Optional[models.Group]:
    return db.query(models.Group)\
             .options(selectinload(models.Group.members).selectinload(models.GroupMember.preferences))\
             .filter(models.Group.id == group_id)\
             .first()

def get_active_group_by_code(db: Session, invitation_code: str) -> Optional[models.Group]:
    return db.query(models.Group)\
             .filter(models.Group.invitation_code == invitation_code)\
             .filter(models.Group.is_active.is_(True))\
             .first()

def count_active_groups_for_user(db: Session, user_id: int) -> int:
    return db.query(func.count(models.GroupMember.id))\
             .join(models.Group, models.Group.id == models.GroupMember.group_id)\
             .filter(models.GroupMember.user_id == user_id)\
             .filter(models.Group.is_active.is_(True))\
             .scalar()

def get_active_groups_for_user(db: Session, user_id: int) -> List[models.Group]:
    return db.query(models.Group)\
             .join(models.GroupMember, models.Group.id == models.GroupMember.group_id)\
             .options(selectinload(models.Group.members).selectinload(models.GroupMember.preferences))\
             .filter(models.GroupMember.user_id == user_id)\
             .filter(models.Group.is_active.is_(True))\
             .order_by(desc(models.Group.updated_at), desc(models.Group.id))\
             .all()

def create_group(db: Session, owner_id: int, name: str, description: Optional[str], invitation_code: str) -> models.Group:
    """Insert a group with its owner as first member. Raises IntegrityError on a code collision."""
    db_group = models.Group(
        name=name,
        description=description,
        owner_id=owner_id,
        invitation_code=invitation_code,
        is_active=True,
    )
    db_group.members.append(models.GroupMember(user_id=owner_id))
    db.add(db_group)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(db_group)
    return db_group

def deactivate_group(db: Session, group_id: int) -> bool:
    updated = db.query(models.Group)\
                .filter(models.Group.id == group_id, models.Group.is_active.is_(True))\
                .update({models.Group.is_active: False}, synchronize_session=False)
    db.commit()
    return updated == 1

def set_invitation_code(db: Session, group_id: int, invitation_code: str) -> None:
    """Raises IntegrityError when the code is already taken."""
    db.query(models.Group)\
      .filter(models.Group.id == group_id)\
      .update({models.Group.invitation_code: invitation_code}, synchronize_session=False)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise

# --- Membership CRUD ---
def get_member(db: Session, group_id: int, user_id: int) -> Optional[models.GroupMember]:
    return db.query(models.GroupMember)\
             .options(selectinload(models.GroupMember.preferences))\
             .filter(models.GroupMember.group_id == group_id, models.GroupMember.user_id == user_id)\
             .first()

def is_member(db: Session, group_id: int, user_id: int) -> bool:
    return db.query(models.GroupMember.id)\
             .filter(models.GroupMember.group_id == group_id, models.GroupMember.user_id == user_id)\
             .first() is not None

def add_member(db: Session, group_id: int, user_id: int) -> models.GroupMember:
    """Raises IntegrityError when the user already belongs to the group."""
    db_member = models.GroupMember(group_id=group_id, user_id=user_id)
    db.add(db_member)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(db_member)
    return db_member

def remove_member(db: Session, db_member: models.GroupMember) -> None:
    db.delete(db_member) # preferences go with it (delete-orphan)
    db.commit()

def get_members_with_preferences(db: Session, group_id: int) -> List[models.GroupMember]:
    return db.query(models.GroupMember)\
             .options(selectinload(models.GroupMember.preferences), selectinload(models.GroupMember.user))\
             .filter(models.GroupMember.group_id == group_id)\
             .order_by(models.GroupMember.joined_at, models.GroupMember.id)\
             .all()

# --- Preference CRUD ---
def replace_member_preferences(
    db: Session, member_id: int, preferences: Iterable[schemas.GenrePreference]
) -> List[models.GenrePreference]:
    """Swap a member's preference list in a single transaction."""
    preferences = list(preferences)
    for attempt in range(2):
        db.query(models.GenrePreference)\
          .filter(models.GenrePreference.member_id == member_id)\
          .delete(synchronize_session=False)
        for pref in preferences:
            db.add(models.GenrePreference(
                member_id=member_id,
                genre_id=pref.genre_id,
                genre_name=pref.genre_name,
                weight=pref.weight,
            ))
        try:
            db.commit()
            break
        except IntegrityError:
            # A concurrent replace for the same member got in first
            db.rollback()
            if attempt == 1:
                raise
    db.expire_all()
    return get_member_preferences(db, member_id)

def get_member_preferences(db: Session, member_id: int) -> List[models.GenrePreference]:
    return db.query(models.GenrePreference)\
             .filter(models.GenrePreference.member_id == member_id)\
             .order_by(models.GenrePreference.genre_id)\
             .all()

def delete_member_preferences(db: Session, member_id: int) -> int:
    deleted = db.query(models.GenrePreference)\
                .filter(models.GenrePreference.member_id == member_id)\
                .delete(synchronize_session=False)
    db.commit()
    return deleted

# --- Voting session CRUD ---
def get_session(db: Session, session_id: int) -> Optional[models.VotingSession]:
    return db.query(models.VotingSession)\
             .options(selectinload(models.VotingSession.candidates))\
             .filter(models.VotingSession.id == session_id)\
             .first()

def get_open_session(db: Session, group_id: int) -> Optional[models.VotingSession]:
    return db.query(models.VotingSession)\
             .options(selectinload(models.VotingSession.candidates))\
             .filter(models.VotingSession.group_id == group_id)\
             .filter(models.VotingSession.status.in_(models.OPEN_SESSION_STATUSES))\
             .first()

def get_sessions_for_group(db: Session, group_id: int) -> List[models.VotingSession]:
    return db.query(models.VotingSession)\
             .options(selectinload(models.VotingSession.candidates))\
             .filter(models.VotingSession.group_id == group_id)\
             .order_by(desc(models.VotingSession.created_at), desc(models.VotingSession.id))\
             .all()

def get_overdue_sessions(db: Session) -> List[models.VotingSession]:
    """Active sessions; the caller decides which ones ran past their voting duration."""
    return db.query(models.VotingSession)\
             .filter(models.VotingSession.status == models.SESSION_ACTIVE)\
             .filter(models.VotingSession.started_at.isnot(None))\
             .all()

def create_session(
    db: Session,
    group_id: int,
    created_by: int,
    settings: schemas.SessionSettings,
    candidates: List[schemas.MovieCandidate],
) -> models.VotingSession:
    """Insert a pending session and its candidate snapshot.

    The unique open_group_id column rejects a second open session for the
    group with an IntegrityError, even when the pre-check raced.
    """
    db_session = models.VotingSession(
        group_id=group_id,
        created_by=created_by,
        status=models.SESSION_PENDING,
        open_group_id=group_id,
        max_recommendations=settings.max_recommendations,
        voting_duration=settings.voting_duration,
        require_all_members=settings.require_all_members,
    )
    for position, candidate in enumerate(candidates):
        db_session.candidates.append(models.SessionCandidate(
            position=position,
            movie_id=candidate.movie_id,
            title=candidate.title,
            year=candidate.year,
            genres=list(candidate.genres),
            poster_url=candidate.poster_url,
            rating=candidate.rating,
            score=candidate.score,
            reason=candidate.reason,
        ))
    db.add(db_session)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(db_session)
    return db_session

def transition_session(db: Session, session_id: int, expected_status: str, new_status: str, **values) -> bool:
    """Compare-and-set the session status. Does not commit.

    Returns False when the session is no longer in expected_status, in which
    case nothing was written.
    """
    changes = {models.VotingSession.status: new_status}
    if new_status not in models.OPEN_SESSION_STATUSES:
        changes[models.VotingSession.open_group_id] = None
    for key, value in values.items():
        changes[getattr(models.VotingSession, key)] = value
    updated = db.query(models.VotingSession)\
                .filter(models.VotingSession.id == session_id)\
                .filter(models.VotingSession.status == expected_status)\
                .update(changes, synchronize_session=False)
    return updated == 1

def lock_active_session(db: Session, session_id: int) -> bool:
    """Take the session row's write lock if the session is still active. Does not commit.

    A no-op UPDATE rather than SELECT ... FOR UPDATE, so SQLite also takes its
    write lock here. Status transitions wait on the lock until commit.
    """
    locked = db.query(models.VotingSession)\
               .filter(models.VotingSession.id == session_id)\
               .filter(models.VotingSession.status == models.SESSION_ACTIVE)\
               .update({models.VotingSession.status: models.VotingSession.status}, synchronize_session=False)
    return locked == 1

def set_session_winner(db: Session, session_id: int, winner_movie_id: Optional[int]) -> None:
    """Does not commit."""
    db.query(models.VotingSession)\
      .filter(models.VotingSession.id == session_id)\
      .update({models.VotingSession.winner_movie_id: winner_movie_id}, synchronize_session=False)

def add_results(db: Session, session_id: int, results: List[schemas.MovieResult]) -> None:
    """Stage result rows in the current transaction. Does not commit."""
    for result in results:
        db.add(models.SessionResult(session_id=session_id, **result.model_dump()))

def get_results(db: Session, session_id: int) -> List[models.SessionResult]:
    return db.query(models.SessionResult)\
             .filter(models.SessionResult.session_id == session_id)\
             .order_by(models.SessionResult.rank)\
             .all()

# --- Vote CRUD ---
def upsert_vote(
    db: Session, session_id: int, user_id: int, movie_id: int, value: str, cast_at: datetime
) -> Optional[models.Vote]:
    """Store the vote for (session, user, movie), replacing any earlier one.

    The write happens under the session row lock and only while the session is
    active; returns None, having written nothing, otherwise. Update-then-insert,
    with the unique constraint settling the race where two writers both miss
    the update.
    """
    for attempt in range(3):
        if not lock_active_session(db, session_id):
            db.rollback()
            return None
        updated = db.query(models.Vote)\
                    .filter(models.Vote.session_id == session_id)\
                    .filter(models.Vote.user_id == user_id)\
                    .filter(models.Vote.movie_id == movie_id)\
                    .update({models.Vote.value: value, models.Vote.cast_at: cast_at}, synchronize_session=False)
        if updated == 0:
            db.add(models.Vote(
                session_id=session_id,
                user_id=user_id,
                movie_id=movie_id,
                value=value,
                cast_at=cast_at,
            ))
        try:
            db.commit()
            break
        except IntegrityError:
            db.rollback()
            if attempt == 2:
                raise
    return db.query(models.Vote)\
             .filter(models.Vote.session_id == session_id)\
             .filter(models.Vote.user_id == user_id)\
             .filter(models.Vote.movie_id == movie_id)\
             .one()

def get_votes(db: Session, session_id: int, user_id: Optional[int] = None) -> List[models.Vote]:
    query = db.query(models.Vote).filter(models.Vote.session_id == session_id)
    if user_id is not None:
        query = query.filter(models.Vote.user_id == user_id)
    return query.order_by(models.Vote.id).all()

def get_session_status(db: Session, session_id: int) -> Optional[str]:
    return db.query(models.VotingSession.status)\
             .filter(models.VotingSession.id == session_id)\
             .scalar()
