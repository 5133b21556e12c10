# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime, timedelta
from itertools import count
from typing import Any

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SWEEP_ENABLED"] = "false"
os.environ["REGISTRATION_SECRET"] = "bot-secret"
os.environ["SECRET_KEY"] = "test-secret-key"

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from whitelist_vote.api.v1.dependencies import create_access_token, get_engine_dep
from whitelist_vote.core.capabilities import ActorCapability, Role, resolve_capability
from whitelist_vote.core.errors import ExternalServiceError
from whitelist_vote.core.retry import RetryPolicy
from whitelist_vote.db.session import Base, build_engine
from whitelist_vote.db.session import get_db as app_get_session
from whitelist_vote.main import app as fastapi_app
from whitelist_vote.models import User
from whitelist_vote.services.engine import VotingEngine
from whitelist_vote.services.settings_service import SettingsService

TEST_DB_URL = "sqlite://"
START = datetime(2026, 9, 1, 12, 0, tzinfo=UTC)

_EXTERNAL_IDS = count(1000)


class FrozenClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class RecordingWhitelist:
    """Whitelist Sync fake remembering every call; optionally failing."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str | None]] = []
        self.fail = False
        self.error: Exception | None = None

    def add(self, nickname: str, identity_key: str | None) -> bool:
        self.calls.append(("add", nickname, identity_key))
        if self.error is not None:
            raise self.error
        if self.fail:
            raise ExternalServiceError("roster unreachable")
        return True

    def remove(self, nickname: str, identity_key: str | None) -> bool:
        self.calls.append(("remove", nickname, identity_key))
        if self.error is not None:
            raise self.error
        if self.fail:
            raise ExternalServiceError("roster unreachable")
        return True


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[int, str, dict[str, Any]]] = []
        self.fail = False
        self.error: Exception | None = None

    def notify(self, user_id: int, kind: Any, payload: Any) -> None:
        self.events.append((user_id, kind.value, dict(payload)))
        if self.error is not None:
            raise self.error
        if self.fail:
            raise ExternalServiceError("webhook down")

    def kinds_for(self, user_id: int) -> list[str]:
        return [kind for target, kind, _ in self.events if target == user_id]


def make_sqlite_engine(url: str = TEST_DB_URL) -> Engine:
    if url == TEST_DB_URL:
        engine = build_engine(url, poolclass=StaticPool)
    else:
        engine = build_engine(url)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = make_sqlite_engine()
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def whitelist() -> RecordingWhitelist:
    return RecordingWhitelist()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay_ms=1, max_delay_ms=1, sleep=lambda _: None)


@pytest.fixture()
def settings_service() -> SettingsService:
    return SettingsService(ttl_seconds=0)


@pytest.fixture()
def voting_engine(
    whitelist: RecordingWhitelist,
    notifier: RecordingNotifier,
    settings_service: SettingsService,
    retry_policy: RetryPolicy,
    clock: FrozenClock,
) -> VotingEngine:
    return VotingEngine(
        whitelist=whitelist,
        notifier=notifier,
        settings_service=settings_service,
        retry_policy=retry_policy,
        clock=clock,
    )


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory persisting users with the given role."""

    def _make(
        role: Role = Role.MEMBER,
        *,
        can_vote: bool | None = None,
        nickname: str | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            external_id=next(_EXTERNAL_IDS),
            handle=f"user{next(_EXTERNAL_IDS)}",
            nickname=nickname,
            role=role,
            can_vote=role in (Role.MEMBER, Role.ADMIN) if can_vote is None else can_vote,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def members(make_user: Callable[..., User]) -> list[User]:
    """Five voting members."""
    return [make_user(Role.MEMBER) for _ in range(5)]


@pytest.fixture()
def admin(make_user: Callable[..., User]) -> User:
    return make_user(Role.ADMIN)


@pytest.fixture()
def candidate(make_user: Callable[..., User]) -> User:
    return make_user(Role.APPLICANT)


@pytest.fixture()
def actor_of() -> Callable[[User], ActorCapability]:
    """Resolve capabilities the way each request does."""
    return resolve_capability


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI,
    session_factory: sessionmaker[Session],
    voting_engine: VotingEngine,
) -> Iterator[TestClient]:
    def _get_session_override() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_engine_dep] = lambda: voting_engine
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers


@pytest.fixture()
def file_session_factory(tmp_path: Any) -> Iterator[sessionmaker[Session]]:
    """Sessions on a file-backed database, for tests driving several threads."""
    engine = make_sqlite_engine(f"sqlite:///{tmp_path / 'race.db'}")
    try:
        yield sessionmaker(bind=engine, autoflush=False)
    finally:
        engine.dispose()


@pytest.fixture()
def threaded_engine(whitelist: RecordingWhitelist, notifier: RecordingNotifier) -> VotingEngine:
    """Engine with real backoff sleeps so lock contention gets retried."""
    return VotingEngine(
        whitelist=whitelist,
        notifier=notifier,
        settings_service=SettingsService(ttl_seconds=0),
        retry_policy=RetryPolicy(max_attempts=20, base_delay_ms=5, max_delay_ms=50),
        clock=lambda: START,
    )
