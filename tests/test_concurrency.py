"""Races against a file-backed SQLite database with real threads.

Each worker uses its own SQLAlchemy session, as concurrent requests would.
"""

import threading
from unittest.mock import patch
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import sessionmaker

from movieswipe import crud, group_logic, models, schemas, voting_logic
from movieswipe.database import Base, create_db_engine
from movieswipe.errors import DomainError, SessionAlreadyActiveError, SessionNotActiveError

from fakes import COMEDY, TODAY, FakeCatalog, RecordingNotifier, prefs

WORKERS = 6


@pytest.fixture
def file_sessions(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def race_group(file_sessions):
    db = file_sessions()
    notifier = RecordingNotifier()
    try:
        users = [
            group_logic.register_user(db, schemas.UserCreate(
                external_id=f"auth0|{name}", email=f"{name}@example.com", display_name=name,
            ))
            for name in ("owner", "alice")
        ]
        owner, alice = users
        group = group_logic.create_group(db, owner.id, schemas.GroupCreate(name="Race Night"))
        group_logic.join_group(db, group.invitation_code, alice.id, notifier)
        for user in users:
            group_logic.set_member_preferences(db, group.id, user.id, prefs((COMEDY.id, "Comedy", 7)))
        return SimpleNamespace(owner_id=owner.id, alice_id=alice.id, group_id=group.id)
    finally:
        db.close()


def run_concurrently(file_sessions, work):
    """Run work(db) in WORKERS threads released together; return results and errors."""
    barrier = threading.Barrier(WORKERS)
    results, errors = [], []
    lock = threading.Lock()

    def worker(index):
        db = file_sessions()
        try:
            barrier.wait()
            outcome = work(db, index)
            with lock:
                results.append(outcome)
        except DomainError as e:
            with lock:
                errors.append(e)
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(WORKERS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results, errors


def open_and_start(file_sessions, race_group):
    db = file_sessions()
    try:
        db_session = voting_logic.create_session(
            db, race_group.group_id, race_group.owner_id, schemas.SessionSettings(),
            FakeCatalog(), RecordingNotifier(), today=TODAY,
        )
        voting_logic.start_session(db, db_session.id, race_group.owner_id, RecordingNotifier())
        return db_session.id
    finally:
        db.close()


class TestRaces:

    def test_concurrent_session_creation_opens_one_session(self, file_sessions, race_group):
        def work(db, index):
            return voting_logic.create_session(
                db, race_group.group_id, race_group.owner_id, schemas.SessionSettings(),
                FakeCatalog(), RecordingNotifier(), today=TODAY,
            ).id

        results, errors = run_concurrently(file_sessions, work)

        assert len(results) == 1
        assert len(errors) == WORKERS - 1
        assert all(isinstance(e, SessionAlreadyActiveError) for e in errors)

        db = file_sessions()
        open_sessions = db.query(models.VotingSession)\
                          .filter(models.VotingSession.group_id == race_group.group_id)\
                          .filter(models.VotingSession.status.in_(models.OPEN_SESSION_STATUSES))\
                          .count()
        db.close()
        assert open_sessions == 1

    def test_concurrent_revotes_leave_one_vote(self, file_sessions, race_group):
        session_id = open_and_start(file_sessions, race_group)

        def work(db, index):
            value = "yes" if index % 2 else "no"
            voting_logic.cast_vote(db, session_id, race_group.alice_id, 1, value, RecordingNotifier())
            return value

        results, errors = run_concurrently(file_sessions, work)

        assert errors == []
        assert len(results) == WORKERS
        db = file_sessions()
        votes = db.query(models.Vote).filter(models.Vote.session_id == session_id).all()
        db.close()
        assert len(votes) == 1
        assert votes[0].value in ("yes", "no")

    def test_concurrent_end_completes_once(self, file_sessions, race_group):
        session_id = open_and_start(file_sessions, race_group)

        def work(db, index):
            return voting_logic.end_session(db, session_id, race_group.owner_id, RecordingNotifier())

        results, errors = run_concurrently(file_sessions, work)

        assert len(results) == 1
        assert len(errors) == WORKERS - 1
        assert all(isinstance(e, SessionNotActiveError) for e in errors)

        db = file_sessions()
        stored = db.query(models.SessionResult).filter(models.SessionResult.session_id == session_id).count()
        db.close()
        assert stored == len(results[0].results)

    def test_vote_after_end_committed_is_rejected(self, file_sessions, race_group):
        """End commits between the vote's status check and its write."""
        session_id = open_and_start(file_sessions, race_group)
        real_is_member = crud.is_member

        def end_then_check_membership(db, group_id, user_id):
            other = file_sessions()
            try:
                voting_logic.end_session(other, session_id, race_group.owner_id, RecordingNotifier())
            finally:
                other.close()
            return real_is_member(db, group_id, user_id)

        db = file_sessions()
        try:
            with patch.object(crud, "is_member", side_effect=end_then_check_membership):
                with pytest.raises(SessionNotActiveError):
                    voting_logic.cast_vote(db, session_id, race_group.alice_id, 1, "yes", RecordingNotifier())
        finally:
            db.close()

        db = file_sessions()
        votes = crud.get_votes(db, session_id)
        results = crud.get_results(db, session_id)
        db.close()
        assert votes == []
        assert sum(r.total_votes for r in results) == 0

    def test_votes_racing_end_are_all_counted_or_rejected(self, file_sessions, race_group):
        session_id = open_and_start(file_sessions, race_group)
        voters = (race_group.owner_id, race_group.alice_id)

        def work(db, index):
            if index == 0:
                return voting_logic.end_session(db, session_id, race_group.owner_id, RecordingNotifier())
            movie_id = (1, 3)[(index // 2) % 2]
            return voting_logic.cast_vote(db, session_id, voters[index % 2], movie_id, "yes", RecordingNotifier())

        results, errors = run_concurrently(file_sessions, work)

        assert len(results) + len(errors) == WORKERS
        assert all(isinstance(e, SessionNotActiveError) for e in errors)
        db = file_sessions()
        stored_votes = len(crud.get_votes(db, session_id))
        counted_votes = sum(r.total_votes for r in crud.get_results(db, session_id))
        status = crud.get_session_status(db, session_id)
        db.close()
        assert status == models.SESSION_COMPLETED
        assert stored_votes == counted_votes
