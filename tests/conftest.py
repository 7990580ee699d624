# tests/conftest.py

from __future__ import annotations

import asyncio
import os

# Must be set before tasktracker is imported: settings and the default engine
# are built at import time.
os.environ.setdefault("JWT_SECRET", "tasktracker-test-secret-" * 3)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.pool import NullPool
from sqlmodel import select

from tasktracker.cache.layer import CacheLayer
from tasktracker.core.config import Settings, get_settings
from tasktracker.database import (
    build_engine,
    build_sessionmaker,
    create_db_and_tables,
    get_db,
)
from tasktracker.main import create_app
from tasktracker.models import User, UserRole

PASSWORD = "Secret123!"


class FakeRedis:
    """
    In-memory stand-in for redis.asyncio.Redis.

    - Records the TTL passed to SET for assertions
    - `fail = True` makes every command raise a Redis connection error
    """

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("fake redis is down")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str):
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        jwt_secret="tasktracker-test-secret-" * 3,
        bcrypt_rounds=4,
        l1_maxsize=0,
        cache_namespace="test:",
    )


@pytest.fixture()
def engine(tmp_path):
    """File-backed SQLite; NullPool so no connection outlives its event loop."""
    db_engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'tasks.sqlite3'}", poolclass=NullPool
    )
    asyncio.run(create_db_and_tables(db_engine))
    yield db_engine
    asyncio.run(db_engine.dispose())


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def cache(settings: Settings, fake_redis: FakeRedis) -> CacheLayer:
    return CacheLayer(settings, redis=fake_redis)


@pytest.fixture()
def app(settings: Settings, engine, cache: CacheLayer):
    application = create_app(settings, cache=cache)
    session_factory = build_sessionmaker(engine)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_settings] = lambda: settings
    return application


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def api(settings: Settings) -> str:
    return settings.api_prefix


@pytest.fixture()
def register(client: TestClient, api: str):
    """Register a user; returns (token, user dict)."""

    def _register(email: str, password: str = PASSWORD, name: str = "Test User"):
        response = client.post(
            f"{api}/users/register",
            json={"name": name, "email": email, "password": password},
        )
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        return data["token"], data["user"]

    return _register


@pytest.fixture()
def run_db(engine):
    """Run an async callable against a fresh session, from sync test code."""
    session_factory = build_sessionmaker(engine)

    def _run(fn):
        async def _inner():
            async with session_factory() as session:
                return await fn(session)

        return asyncio.run(_inner())

    return _run


@pytest.fixture()
def admin_token(register, run_db, client: TestClient, api: str) -> str:
    """Register a user, promote it in the database, and log in again."""
    register("admin@example.com", name="Admin")

    async def promote(session):
        result = await session.exec(select(User).where(User.email == "admin@example.com"))
        user = result.one()
        user.role = UserRole.ADMIN
        session.add(user)
        await session.commit()

    run_db(promote)

    # Log in again so the token also carries the admin role.
    response = client.post(
        f"{api}/users/login",
        json={"email": "admin@example.com", "password": PASSWORD},
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]["token"]


@pytest.fixture()
def bearer():
    def _bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    return _bearer
