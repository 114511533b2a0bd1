import os

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:////tmp/skillswap_test_api.db")

from skillswap.lifecycle.config import Settings  # noqa: E402
from skillswap.lifecycle.database import init_database  # noqa: E402
from skillswap.lifecycle.dependencies import get_lifecycle  # noqa: E402
from skillswap.lifecycle.main import app  # noqa: E402
from skillswap.lifecycle.services.lifecycle import TradeLifecycle, build_lifecycle  # noqa: E402
from skillswap.lifecycle.services.store import TradeStore  # noqa: E402
from skillswap.tests.helpers import FakeClock, FakeNotificationPort, FakeRewardPort  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        REDIS_URL="redis://localhost:6379/0",
        DATABASE_URL="sqlite+aiosqlite://",
        REMINDER_AFTER_DAYS=[7],
        AUTO_COMPLETE_AFTER_DAYS=14,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifications() -> FakeNotificationPort:
    return FakeNotificationPort()


@pytest.fixture
def rewards() -> FakeRewardPort:
    return FakeRewardPort()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'trades.db'}", future=True)
    await init_database(engine)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    finally:
        await engine.dispose()


@pytest.fixture
def store(session_factory, settings: Settings) -> TradeStore:
    return TradeStore(session_factory, retry_budget=settings.transaction_retry_budget)


@pytest.fixture
def lifecycle(store, notifications, rewards, settings, clock) -> TradeLifecycle:
    return build_lifecycle(store, notifications, rewards, settings, clock=clock)


@pytest_asyncio.fixture
async def api_client(lifecycle: TradeLifecycle):
    app.dependency_overrides[get_lifecycle] = lambda: lifecycle
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        app.dependency_overrides.pop(get_lifecycle, None)
