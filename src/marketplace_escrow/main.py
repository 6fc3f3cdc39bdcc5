"""FastAPI application entry point for the marketplace escrow engine.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode),
       start the deadline sweeper schedule.
    2. Running: Serve the REST API at /api/v1/* on a single Uvicorn process.
    3. Shutdown: Stop the scheduler, close database and Redis connections.

Run with:
    uvicorn marketplace_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from marketplace_escrow.config import get_settings
from marketplace_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import redis.asyncio as aioredis

    from marketplace_escrow.config import Settings
    from marketplace_escrow.orchestration.scheduler import SweepScheduler


def _start_sweeper(settings: Settings, redis_client: aioredis.Redis | None) -> SweepScheduler:
    from marketplace_escrow.infrastructure.database.engine import _get_session_factory
    from marketplace_escrow.orchestration.scheduler import SweepScheduler
    from marketplace_escrow.services.sweeper_service import DeadlineSweeper

    sweeper = DeadlineSweeper(_get_session_factory(), settings=settings)
    scheduler = SweepScheduler(sweeper, redis_client, settings=settings)
    scheduler.start()
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Bring up logging, storage, Redis and the sweeper; tear down in reverse."""
    settings = get_settings()

    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    from marketplace_escrow.infrastructure.database.engine import close_db, init_db
    from marketplace_escrow.infrastructure.redis_client import close_redis, init_redis

    await init_db()

    # Redis only backs the sweeper's leader lock; the app runs without it
    redis_client = None
    try:
        redis_client = await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    app.state.scheduler = (
        _start_sweeper(settings, redis_client) if settings.sweeper_enabled else None
    )
    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        sweeper=settings.sweeper_enabled,
    )

    try:
        yield
    finally:
        logger.info("app.shutting_down")
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown()
        await close_db()
        await close_redis()
        logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Marketplace Escrow",
        description=(
            "Order and work-proof escrow for a two-sided marketplace: "
            "holds, releases, refunds and disputes with a deadline sweeper."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from marketplace_escrow.api.middleware import setup_middleware

    setup_middleware(app, settings)

    # --- REST API Routes ---
    from marketplace_escrow.api.routes.disputes import router as disputes_router
    from marketplace_escrow.api.routes.health import router as health_router
    from marketplace_escrow.api.routes.orders import router as orders_router
    from marketplace_escrow.api.routes.wallets import router as wallets_router
    from marketplace_escrow.api.routes.work_proofs import router as work_proofs_router

    app.include_router(health_router)
    app.include_router(orders_router)
    app.include_router(work_proofs_router)
    app.include_router(disputes_router)
    app.include_router(wallets_router)

    return app


# The app instance used by Uvicorn
app = create_app()
