from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.config import get_settings
from src.core.metrics import reset_metrics_for_tests
from src.core.runtime import reset_runtime_config_cache
from src.storage.db import Base, load_models
from src.storage.security import reset_token_key_cache
from src.video.providers.factory import reset_provider_router_cache


class FakeRedis:
    def __init__(self) -> None:
        self._store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        if nx and key in self._store:
            return False
        self._store[key] = str(value)
        if ex is not None:
            self.ttls[key] = int(ex)
        return True

    def expire_now(self, key: str) -> None:
        self._store.pop(key, None)
        self.ttls.pop(key, None)

    def get(self, key: str):
        return self._store.get(key)

    def delete(self, key: str):
        self.ttls.pop(key, None)
        return 1 if self._store.pop(key, None) is not None else 0

    def eval(self, script: str, numkeys: int, key: str, token: str, *args):
        del numkeys
        if self._store.get(key) != token:
            return 0
        if "expire" in script:
            self.ttls[key] = int(args[0])
            return 1
        self.delete(key)
        return 1

    def ping(self) -> bool:
        return True


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def build_sqlite_session_factory() -> sessionmaker:
    load_models()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def _clear_caches() -> None:
    get_settings.cache_clear()
    reset_runtime_config_cache()
    reset_token_key_cache()
    reset_provider_router_cache()
    reset_metrics_for_tests()


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite://")
    monkeypatch.setenv("RUNTIME_FILE_PATH", str(tmp_path / "runtime-missing.yaml"))
    monkeypatch.setenv("VIDEO_STORAGE_PATH", str(tmp_path / "videos"))
    monkeypatch.setenv("VIDEO_POLL_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("PLATFORM_PUBLISH_POLL_INTERVAL_SECONDS", "0")
    _clear_caches()
    yield
    _clear_caches()


@pytest.fixture
def session_factory() -> sessionmaker:
    return build_sqlite_session_factory()


@pytest.fixture
def session(session_factory):
    with session_factory() as db_session:
        yield db_session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
