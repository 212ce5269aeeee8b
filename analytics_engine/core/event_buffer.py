"""Bounded in-memory buffer for bulk page view inserts."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from .. import crud
from .clock import Clock

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 500
DEFAULT_MAX_AGE_SECONDS = 30


class PageViewBuffer:
    """
    Collects page view rows and writes them in one bulk insert.

    ``add()`` flushes once ``max_size`` rows are pending and ``flush_if_due()``
    flushes when the oldest pending row is older than ``max_age_seconds``.
    Nothing is flushed implicitly at process exit; callers must ``flush()``.
    """

    def __init__(
        self,
        db: Session,
        max_size: int = DEFAULT_MAX_SIZE,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Optional[Clock] = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.db = db
        self.max_size = max_size
        self.max_age = timedelta(seconds=max_age_seconds)
        self.clock = clock or Clock()
        self._pending: List[dict] = []
        self._oldest: Optional[datetime] = None
        self.flushed_total = 0

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, row: dict) -> int:
        """Queue one row; returns how many rows were written by an automatic flush."""
        if not self._pending:
            self._oldest = self.clock.now()
        self._pending.append(row)
        if len(self._pending) >= self.max_size:
            return self.flush()
        return 0

    def flush_if_due(self) -> int:
        if self._pending and self.clock.now() - self._oldest >= self.max_age:
            return self.flush()
        return 0

    def flush(self) -> int:
        if not self._pending:
            return 0
        # Rows stay pending when the insert raises
        written = crud.append_page_views(self.db, self._pending)
        self._pending, self._oldest = [], None
        self.flushed_total += written
        logger.debug(f"Flushed {written} buffered page views")
        return written
