"""Startup tasks for the application."""

import asyncio
import logging
from contextlib import asynccontextmanager

from .context import AnalyticsContext
from .scheduler import AnalyticsScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def startup_tasks(context: AnalyticsContext):
    """Start the job scheduler when enabled and stop it on shutdown."""
    if not (context.enabled and context.settings.SCHEDULER_ENABLED):
        logger.info("Analytics scheduler disabled; jobs run only when triggered")
        yield None
        return

    logger.info("🚀 Starting background services...")
    scheduler = AnalyticsScheduler(context)
    tasks = scheduler.start()

    try:
        yield scheduler
    finally:
        logger.info("🛑 Shutting down background services...")
        scheduler.stop()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("✅ Background services stopped")
