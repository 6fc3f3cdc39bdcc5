"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
services, the clock and configuration. Tests override ``get_clock`` and
``get_app_settings`` to drive deadlines deterministically.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_escrow.config import Settings, get_settings
from marketplace_escrow.domain.clock import Clock, utcnow
from marketplace_escrow.infrastructure.database.engine import (
    _get_session_factory,
    get_async_session,
)
from marketplace_escrow.services.dispute_service import DisputeService
from marketplace_escrow.services.ledger_service import LedgerService
from marketplace_escrow.services.order_service import OrderService
from marketplace_escrow.services.sweeper_service import DeadlineSweeper
from marketplace_escrow.services.work_proof_service import WorkProofService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_clock() -> Clock:
    """Provide the wall clock used for deadlines."""
    return utcnow


def get_order_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    clock: Clock = Depends(get_clock),
) -> OrderService:
    return OrderService(session, settings=settings, clock=clock)


def get_work_proof_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    clock: Clock = Depends(get_clock),
) -> WorkProofService:
    return WorkProofService(session, settings=settings, clock=clock)


def get_dispute_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    clock: Clock = Depends(get_clock),
) -> DisputeService:
    return DisputeService(session, settings=settings, clock=clock)


def get_ledger_service(session: AsyncSession = Depends(get_db_session)) -> LedgerService:
    return LedgerService(session)


def get_sweeper(
    settings: Settings = Depends(get_app_settings),
    clock: Clock = Depends(get_clock),
) -> DeadlineSweeper:
    """Provide a sweeper; it opens its own session per record."""
    return DeadlineSweeper(_get_session_factory(), settings=settings, clock=clock)
