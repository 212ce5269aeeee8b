"""Retention sweep: removes raw page views older than the retention window.

Summary tables are left untouched, so historical statistics survive the
raw data they were built from.
"""

import logging
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud
from ..crud.settings import LAST_CLEANUP
from ..schemas import CleanupResult
from .context import AnalyticsContext

logger = logging.getLogger(__name__)


class RetentionSweeper:
    def __init__(self, db: Session, context: AnalyticsContext):
        self.db = db
        self.context = context

    def run(self) -> CleanupResult:
        if not self.context.enabled:
            logger.debug("Analytics disabled, skipping retention sweep")
            return CleanupResult(status="disabled")

        now = self.context.clock.now()
        try:
            retention_days = self.context.settings_cache.retention_days(self.db, fresh=True)
            cutoff = now - timedelta(days=retention_days)

            deleted = crud.delete_older_than(self.db, cutoff)
            crud.set_timestamp_setting(self.db, LAST_CLEANUP, now)
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to purge expired page views: {e}", exc_info=True)
            self.db.rollback()
            return CleanupResult(status="failed", error=str(e))

        if deleted > 0:
            logger.info(f"🗑️ Purged {deleted} page views older than {retention_days} days")
        else:
            logger.debug("No page views eligible for purge this cycle")
        return CleanupResult(status="completed", cutoff=cutoff, retention_days=retention_days, deleted=deleted)


def run_cleanup(db: Session, context: AnalyticsContext) -> CleanupResult:
    """Convenience function for manual/one-off sweeps (used by ops scripts)."""
    return RetentionSweeper(db, context).run()
