"""Pytest configuration and fixtures."""

import fnmatch
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import LockError, LockNotOwnedError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cart_recovery_service.api.deps import get_cache, get_email_sender
from cart_recovery_service.config import Settings, get_settings
from cart_recovery_service.infrastructure.database.connection import (
    ensure_schema,
    get_async_session_factory,
    get_session,
)
from cart_recovery_service.infrastructure.database.models import AbandonedCart
from cart_recovery_service.infrastructure.redis import CacheService
from cart_recovery_service.main import create_app
from cart_recovery_service.repositories.cart_repository import CartRepository
from cart_recovery_service.services.cart_tracker import CartTracker
from cart_recovery_service.services.settings_store import SettingsStore
from email_worker.services import MockEmailSender

T0 = datetime(2026, 3, 1, 12, 0, 0)


class FakeLock:
    """Owner-token lock over FakeRedis, mirroring redis.asyncio.lock.Lock."""

    def __init__(self, redis: "FakeRedis", name: str, timeout: float | None = None) -> None:
        self.redis = redis
        self.name = name
        self.timeout = timeout
        self.local_token: bytes | None = None

    async def acquire(self) -> bool:
        token = uuid.uuid4().hex.encode()
        if await self.redis.set(self.name, token, nx=True):
            self.local_token = token
            return True
        return False

    async def release(self) -> None:
        if self.local_token is None:
            raise LockError("Cannot release an unlocked lock")
        if self.redis.store.get(self.name) != self.local_token:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        self.redis.store.pop(self.name, None)
        self.local_token = None


class FakeRedis:
    """In-memory stand-in for the async Redis client (TTLs are ignored)."""

    def __init__(self) -> None:
        self.store: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self.store.get(key)

    async def set(self, key: str, value: bytes, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match: str | None = None):
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def lock(self, name: str, timeout: float | None = None, blocking: bool = True) -> FakeLock:
        return FakeLock(self, name, timeout)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.store.clear()


class Clock:
    """Controllable clock for time-dependent services."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSender:
    """Recovery sender that records calls and returns a configurable result."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls: list[tuple[str, int]] = []

    async def send(self, cart: AbandonedCart, step: int) -> bool:
        self.calls.append((cart.cart_token, step))
        return self.result


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=True,
        database_url_override="sqlite+aiosqlite://",
        secret_key="test-secret",
        store_name="Test Store",
        store_url="https://shop.test",
        restore_base_url="https://shop.test/cart-recovery/restore",
        email_from_address="shop@shop.test",
        email_from_name="Test Store",
        email_service="mock",
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the cart schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await ensure_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_async_session_factory(engine)


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> CacheService:
    return CacheService(fake_redis)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def repository(session: AsyncSession, cache: CacheService) -> CartRepository:
    return CartRepository(session, cache)


@pytest.fixture
def settings_store(session: AsyncSession, cache: CacheService) -> SettingsStore:
    return SettingsStore(session, cache)


@pytest.fixture
def tracker(
    repository: CartRepository,
    settings_store: SettingsStore,
    test_settings: Settings,
    clock: Clock,
) -> CartTracker:
    return CartTracker(repository, settings_store, test_settings.secret_key, clock=clock)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def sample_snapshot() -> dict:
    """Cart snapshot payload with two widgets."""
    return {
        "items": [{"product_id": 101, "name": "Widget", "quantity": 2, "price": 10.0}],
        "currency": "USD",
        "subtotal": 20.0,
        "total": 20.0,
    }


@pytest.fixture
def app(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    cache: CacheService,
) -> FastAPI:
    """Create test application."""

    async def get_test_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app = create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_session] = get_test_session
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_email_sender] = lambda: MockEmailSender()
    return app


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create asynchronous test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
