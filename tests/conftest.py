"""Shared test fixtures for the marketplace escrow test suite.

Provides:
    - A fresh in-memory SQLite database per test (aiosqlite)
    - A controllable clock, so deadlines elapse on demand
    - Settings with Redis and the background sweeper disabled
    - Helpers for funding wallets and reading balances
    - An httpx client for the FastAPI app with its dependencies overridden
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from marketplace_escrow.api.deps import get_app_settings, get_clock, get_db_session, get_sweeper
from marketplace_escrow.config import Settings
from marketplace_escrow.infrastructure.database.engine import build_engine, build_session_factory
from marketplace_escrow.infrastructure.database.orm_models import Base
from marketplace_escrow.main import create_app
from marketplace_escrow.services.ledger_service import LedgerService
from marketplace_escrow.services.sweeper_service import DeadlineSweeper

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Deterministic clock; call it to read, advance() to move it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        self.now += delta if delta is not None else timedelta(**kwargs)
        return self.now


# ---------------------------------------------------------------------------
# Configuration & time
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Default escrow policy with no external services."""
    return Settings(
        _env_file=None,
        app_env="development",
        database_url=TEST_DATABASE_URL,
        redis_url="",
        sweeper_enabled=False,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A session for a single test; tests commit explicitly when they need to."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Wallet helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def fund(session_factory: async_sessionmaker[AsyncSession]):
    """Return an async helper that deposits into a user's wallet and commits."""

    async def _fund(user_id: str, amount: str) -> None:
        async with session_factory() as s, s.begin():
            await LedgerService(s).deposit(user_id, Decimal(amount))

    return _fund


@pytest.fixture
def balances(session_factory: async_sessionmaker[AsyncSession]):
    """Return an async helper reading (deposit, earnings) for a user."""

    async def _balances(user_id: str) -> tuple[Decimal, Decimal]:
        async with session_factory() as s:
            account = await LedgerService(s).get_account(user_id)
            result = (account.deposit_balance, account.earnings_balance)
            await s.commit()
            return result

    return _balances


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    clock: FakeClock,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """An httpx client bound to the app, wired to the test database and clock.

    The lifespan is not run, so no scheduler or Redis connection is started.
    """
    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_sweeper] = lambda: DeadlineSweeper(
        session_factory, settings=settings, clock=clock
    )

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
