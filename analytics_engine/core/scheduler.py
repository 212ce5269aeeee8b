"""In-process scheduler running the rollup and retention jobs on fixed intervals.

Multi-process deployments should leave ``SCHEDULER_ENABLED`` off and call
``POST /system/aggregate`` and ``POST /system/cleanup`` from an external cron.
"""

import asyncio
import logging
from typing import Callable

from sqlalchemy.orm import Session

from ..schemas import AggregationResult, CleanupResult
from .aggregation_service import RollupAggregator
from .context import AnalyticsContext
from .database import SessionLocal
from .retention_service import RetentionSweeper

logger = logging.getLogger(__name__)

ERROR_RETRY_SECONDS = 300


class AnalyticsScheduler:
    """Runs each job in its own loop with a fresh session per run."""

    def __init__(self, context: AnalyticsContext, session_factory: Callable[[], Session] = SessionLocal):
        self.context = context
        self.session_factory = session_factory
        self.is_running = False
        self.aggregation_interval = context.settings.AGGREGATION_INTERVAL_SECONDS
        self.cleanup_interval = context.settings.CLEANUP_INTERVAL_SECONDS

    def run_aggregation_once(self) -> AggregationResult:
        db = self.session_factory()
        try:
            return RollupAggregator(db, self.context).run()
        finally:
            db.close()

    def run_cleanup_once(self) -> CleanupResult:
        db = self.session_factory()
        try:
            return RetentionSweeper(db, self.context).run()
        finally:
            db.close()

    async def _loop(self, name: str, job: Callable, interval: int):
        logger.info(f"🚀 Starting {name} loop, every {interval} seconds")
        while self.is_running:
            try:
                result = await asyncio.to_thread(job)
                logger.info(f"✅ {name} finished with status {result.status}. Next run in {interval} seconds")
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Error in {name} loop: {e}", exc_info=True)
                await asyncio.sleep(min(interval, ERROR_RETRY_SECONDS))

    async def start_aggregation_loop(self):
        await self._loop("aggregation", self.run_aggregation_once, self.aggregation_interval)

    async def start_cleanup_loop(self):
        await self._loop("retention cleanup", self.run_cleanup_once, self.cleanup_interval)

    def start(self) -> list:
        """Create the loop tasks on the running event loop."""
        if self.is_running:
            logger.warning("Analytics scheduler is already running")
            return []
        self.is_running = True
        return [
            asyncio.create_task(self.start_aggregation_loop()),
            asyncio.create_task(self.start_cleanup_loop()),
        ]

    def stop(self):
        self.is_running = False
        logger.info("🛑 Stopping analytics scheduler")
