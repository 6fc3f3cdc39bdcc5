"""Background scheduling of the deadline sweeper.

An APScheduler AsyncIOScheduler runs one interval job inside the API
process. When Redis is configured, each run first takes a short-lived
Redis lock so only one instance sweeps per interval; the lock TTL is kept
below the interval so a crashed leader never blocks the next run. Without
Redis every instance sweeps, which the ledger's reference ids make safe.

Usage:
    scheduler = SweepScheduler(sweeper, redis_client)
    scheduler.start()
    ...
    scheduler.shutdown()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from redis.exceptions import LockError

from marketplace_escrow.config import Settings, get_settings
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from marketplace_escrow.services.sweeper_service import DeadlineSweeper, SweepReport

logger = get_logger(__name__)

SWEEP_JOB_ID = "deadline_sweeper"
LEADER_LOCK_NAME = "marketplace_escrow:sweeper:leader"


class SweepScheduler:
    """Runs DeadlineSweeper.sweep on a fixed interval."""

    def __init__(
        self,
        sweeper: DeadlineSweeper,
        redis_client: aioredis.Redis | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._sweeper = sweeper
        self._redis = redis_client
        self._settings = settings or get_settings()
        self.scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": self._settings.sweeper_interval_seconds,
            },
            timezone="UTC",
        )

    def setup_jobs(self) -> None:
        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self._settings.sweeper_interval_seconds),
            id=SWEEP_JOB_ID,
            name="Deadline sweeper",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(
            "scheduler.job_added",
            job_id=SWEEP_JOB_ID,
            interval_seconds=self._settings.sweeper_interval_seconds,
        )

    def start(self) -> None:
        self.setup_jobs()
        self.scheduler.start()
        logger.info("scheduler.started", leader_lock=self._redis is not None)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("scheduler.stopped")

    async def run_once(self) -> SweepReport | None:
        """One scheduled tick: sweep if this instance wins the leader lock.

        Returns None when another instance holds the lock.
        """
        if self._redis is None:
            return await self._sweeper.sweep()

        lock = self._redis.lock(
            LEADER_LOCK_NAME,
            timeout=self._settings.sweeper_lock_ttl_seconds,
        )
        if not await lock.acquire(blocking=False):
            logger.debug("scheduler.not_leader")
            return None
        try:
            return await self._sweeper.sweep()
        finally:
            try:
                await lock.release()
            except LockError:
                # TTL elapsed mid-sweep; another instance may own it now
                logger.warning("scheduler.lock_expired", lock=LEADER_LOCK_NAME)
