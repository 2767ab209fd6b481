"""Pytest fixtures and configuration for identitystore tests."""

import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from identitystore.auth import passwords
from identitystore.database.schema import SchemaManager
from identitystore.database.user_repository import UserRepository


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite://"


class StepClock:
    """Deterministic clock: every call returns a time `step` later than the last."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Minimum bcrypt cost so hashing doesn't dominate test time."""
    monkeypatch.setattr(passwords, "BCRYPT_ROUNDS", 4)


@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory SQLite engine with no schema."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    """Session on an in-memory database with the users schema applied."""
    SchemaManager(engine).apply()

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        SchemaManager(engine).revert()


@pytest.fixture
def clock():
    return StepClock(datetime(2025, 11, 1, 8, 7, 38, tzinfo=timezone.utc))


@pytest.fixture
def user_repository(db_session: Session, clock):
    """Create a UserRepository instance with a deterministic clock."""
    return UserRepository(db_session, clock=clock)


@pytest.fixture
def password_hash():
    return passwords.hash_password("correct horse battery staple")


@pytest.fixture
def sample_user(user_repository, password_hash):
    return user_repository.create("alice@example.com", "Alice", password_hash)
