#!/usr/bin/env python3
"""Create the analytics tables and insert the default engine settings."""

import logging

from analytics_engine.core.database import init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


if __name__ == "__main__":
    init_db()
    logger.info("✅ Analytics tables ready")
