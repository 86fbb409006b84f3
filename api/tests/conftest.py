from __future__ import annotations

import itertools
import os
import tempfile
import uuid
from datetime import datetime, timedelta
from typing import Callable, Generator

# Configure the app for tests before it is imported
_DB_PATH = os.path.join(tempfile.gettempdir(), f"trackid-test-{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["RUN_MIGRATIONS"] = "false"
os.environ["CACHE_ENABLED"] = "false"
os.environ["MQTT_ENABLED"] = "false"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-at-least-32-characters-long")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app import models
from app.auth import create_access_token
from app.db import Base, SessionLocal, engine as db_engine
from app.deps import get_verification_engine
from app.main import app, run_startup_tasks
from app.verification.engine import VerificationEngine


class TickingClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture(scope="session", autouse=True)
def bootstrap() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)
    run_startup_tasks()
    yield
    Base.metadata.drop_all(bind=db_engine)
    db_engine.dispose()
    if os.path.exists(_DB_PATH):
        os.remove(_DB_PATH)


@pytest.fixture(autouse=True)
def clean_tables() -> Generator[None, None, None]:
    yield
    with db_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture()
def db() -> Generator[Session, None, None]:
    """Create a database session for testing."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture()
def engine(clock: TickingClock) -> VerificationEngine:
    return VerificationEngine(clock=clock)


@pytest.fixture()
def client(engine: VerificationEngine) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_verification_engine] = lambda: engine
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_verification_engine, None)


def auth_headers(user: models.User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


# ============================================================================
# FACTORIES
# ============================================================================


@pytest.fixture()
def make_user(db: Session) -> Callable[..., models.User]:
    def _make_user(
        username: str | None = None,
        account_type: str = "user",
        verified_artist: bool = False,
    ) -> models.User:
        user = models.User(
            id=uuid.uuid4(),
            username=username or f"user_{uuid.uuid4().hex[:8]}",
            account_type=account_type,
            verified_artist=verified_artist,
            karma=0,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def make_post(db: Session) -> Callable[..., models.Post]:
    def _make_post(owner: models.User, description: str = "What track is this?") -> models.Post:
        post = models.Post(
            id=uuid.uuid4(),
            user_id=owner.id,
            description=description,
            genre="house",
            verification_status="unverified",
        )
        db.add(post)
        db.commit()
        db.refresh(post)
        return post

    return _make_post


@pytest.fixture()
def make_comment(db: Session) -> Callable[..., models.Comment]:
    created = itertools.count()
    base = datetime(2026, 1, 1, 10, 0, 0)

    def _make_comment(
        post: models.Post,
        author: models.User,
        content: str = "Sounds like an unreleased ID",
        parent: models.Comment | None = None,
        tagged_artist: models.User | None = None,
    ) -> models.Comment:
        comment = models.Comment(
            id=uuid.uuid4(),
            post_id=post.id,
            user_id=author.id,
            parent_id=parent.id if parent else None,
            content=content,
            tagged_artist_id=tagged_artist.id if tagged_artist else None,
            tag_status="pending" if tagged_artist else "none",
            created_at=base + timedelta(minutes=next(created)),
        )
        db.add(comment)
        db.commit()
        db.refresh(comment)
        return comment

    return _make_comment


# ============================================================================
# CAST
# ============================================================================


@pytest.fixture()
def owner(make_user) -> models.User:
    return make_user("clip_owner")


@pytest.fixture()
def commenter(make_user) -> models.User:
    return make_user("digger")


@pytest.fixture()
def moderator(make_user) -> models.User:
    return make_user("mod_one", account_type="moderator")


@pytest.fixture()
def artist(make_user) -> models.User:
    return make_user("DJ_Shadow", account_type="artist", verified_artist=True)


@pytest.fixture()
def post(make_post, owner) -> models.Post:
    return make_post(owner)


@pytest.fixture()
def comment(make_comment, post, commenter) -> models.Comment:
    return make_comment(post, commenter, "This is Endtroducing - Midnight in a Perfect World")
