import os

os.environ["OVERDUE_CHECKS_ENABLED"] = "false"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from library_service.auth import create_access_token, hash_password
from library_service.database import Base, build_engine, get_db
from library_service.dependencies import get_clock, get_session_factory
from library_service.endpoints import app
from library_service.models import Book, Member, User


class FakeClock:
    """Clock that only moves when a test tells it to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine(tmp_path):
    """
    Fresh SQLite database file per test.

    A file (not :memory:) so separate sessions, and separate threads in
    the concurrency tests, see the same data.
    """
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
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
def clock():
    return FakeClock(datetime(2024, 3, 1, 10, 0, 0))


@pytest.fixture
def client(session_factory, clock):
    """
    TestClient wired to the per-test database and the fake clock.

    The lifespan is not entered, so no background sweep runs.
    """

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def _make_user(session_factory, username: str, role: str) -> dict:
    session = session_factory()
    try:
        user = User(username=username, password_hash=hash_password("secret123"), role=role)
        session.add(user)
        session.commit()
        session.refresh(user)
        return {"Authorization": f"Bearer {create_access_token(user)}"}
    finally:
        session.close()


@pytest.fixture
def admin_headers(session_factory):
    return _make_user(session_factory, "admin", "admin")


@pytest.fixture
def member_headers(session_factory):
    return _make_user(session_factory, "reader", "member")


@pytest.fixture
def make_book(db):
    counter = {"n": 0}

    def _make(title=None, author="Test Author", isbn=None):
        counter["n"] += 1
        book = Book(
            title=title or f"Book {counter['n']}",
            author=author,
            isbn=isbn,
            available=True,
        )
        db.add(book)
        db.commit()
        db.refresh(book)
        return book

    return _make


@pytest.fixture
def make_member(db):
    counter = {"n": 0}

    def _make(name=None, email=None):
        counter["n"] += 1
        member = Member(
            name=name or f"Member {counter['n']}",
            email=email or f"member{counter['n']}@example.com",
        )
        db.add(member)
        db.commit()
        db.refresh(member)
        return member

    return _make
