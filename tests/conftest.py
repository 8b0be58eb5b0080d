from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from calcutta.auth import hash_password, issue_session
from calcutta.db import Base, build_engine, get_db
from calcutta.engine import AuctionEngine
from calcutta.main import app
from calcutta.models import Team, User


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 19, 12, 0, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def epoch_seconds(self) -> float:
        return self.now.replace(tzinfo=timezone.utc).timestamp()


def add_teams(db, count: int = 4) -> list[Team]:
    regions = ("South", "West", "East", "Midwest")
    teams = [
        Team(name=f"Team {index}", region=regions[index % 4], seed=index // 4 + 1, cost=0.0)
        for index in range(count)
    ]
    db.add_all(teams)
    db.commit()
    return teams


def make_user(db, username: str, role: str = "user", password: str = "secret123") -> str:
    user = User(username=username, password_hash=hash_password(password), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return issue_session(db, user)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'calcutta-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def teams(db):
    return add_teams(db, 4)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auction(db, clock):
    return AuctionEngine(db, clock=clock, rng=random.Random(7), countdown_interval=5)


@pytest.fixture
def server_clock(monkeypatch, clock):
    monkeypatch.setattr("calcutta.engine.utcnow", clock)
    return clock


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(db):
    return bearer(make_user(db, "admin", role="admin"))


@pytest.fixture
def alice_headers(db):
    return bearer(make_user(db, "alice"))


@pytest.fixture
def bob_headers(db):
    return bearer(make_user(db, "bob"))
