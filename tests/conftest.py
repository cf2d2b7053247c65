from __future__ import annotations

import sys
from pathlib import Path

import arq.worker
import fakeredis
import pytest
from arq.connections import ArqRedis
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import cadence.db.session as db_session
import cadence.main as main_module
from cadence.core.rate_limit import auth_limiter
from cadence.jobs import JobOptions, JobQueue, JobQueues
from cadence.models import User


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def skip_redis_info(monkeypatch):
    """fakeredis does not answer INFO, which arq logs when a worker starts."""

    async def _skip(redis, log_func):
        return None

    monkeypatch.setattr(arq.worker, "log_redis_info", _skip)


@pytest.fixture()
def fake_redis():
    fake = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
    return ArqRedis(connection_pool=fake.connection_pool)


@pytest.fixture()
def make_queue(fake_redis):
    def _make_queue(name: str = "email", **options) -> JobQueue:
        return JobQueue(name, fake_redis, prefix="test", default_options=JobOptions(**options))

    return _make_queue


@pytest.fixture()
def queues(fake_redis):
    return JobQueues(fake_redis, prefix="test")


@pytest.fixture()
def database(tmp_path):
    database_path = tmp_path / "test.db"
    db_session.configure_engine(f"sqlite:///{database_path}")
    db_session.init_db()
    return db_session.open_session


@pytest.fixture()
def client(database, fake_redis, monkeypatch):
    auth_limiter.reset()
    monkeypatch.setattr(main_module, "create_redis_client", lambda settings: fake_redis)

    with TestClient(main_module.app) as test_client:
        yield test_client


@pytest.fixture()
def make_user(database):
    def _make_user(email: str, *, name: str | None = None, role: str | None = None) -> str:
        with database() as db:
            user = User(email=email, name=name, password_hash="not-a-real-hash")
            if role is not None:
                user.role = role
            db.add(user)
            db.commit()
            return user.id

    return _make_user
