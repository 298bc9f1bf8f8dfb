"""Pytest configuration and shared fixtures."""

import os

# Must be set before any movieswipe module reads its configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("TMDB_API_KEY", "test-key")

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from movieswipe import group_logic, models, schemas  # noqa: F401 models registers the tables
from movieswipe.database import Base, create_db_engine, get_db
from movieswipe.main import app, get_catalog, get_notifier

from fakes import COMEDY, DRAMA, FakeCatalog, RecordingNotifier, prefs


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_user(db):
    def _make_user(name):
        return group_logic.register_user(db, schemas.UserCreate(
            external_id=f"auth0|{name}",
            email=f"{name}@example.com",
            display_name=name.title(),
        ))
    return _make_user


@pytest.fixture
def voting_group(db, make_user, notifier):
    """Owner plus two members who joined by code; everyone has preferences."""
    owner = make_user("owner")
    alice = make_user("alice")
    bob = make_user("bob")
    group = group_logic.create_group(db, owner.id, schemas.GroupCreate(name="Friday Films"))
    group_logic.join_group(db, group.invitation_code, alice.id, notifier)
    group_logic.join_group(db, group.invitation_code, bob.id, notifier)

    group_logic.set_member_preferences(db, group.id, owner.id, prefs((COMEDY.id, "Comedy", 6)))
    group_logic.set_member_preferences(db, group.id, alice.id, prefs((COMEDY.id, "Comedy", 8), (DRAMA.id, "Drama", 4)))
    group_logic.set_member_preferences(db, group.id, bob.id, prefs((DRAMA.id, "Drama", 9)))
    return SimpleNamespace(owner=owner, alice=alice, bob=bob, group=group)


@pytest.fixture
def client(session_factory, catalog, notifier):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()
