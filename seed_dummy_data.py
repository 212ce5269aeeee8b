#!/usr/bin/env python3
"""Replace all analytics data with synthetic page views and aggregate them.

Usage: python seed_dummy_data.py [days]
"""

import logging
import sys

from analytics_engine.core.context import build_context
from analytics_engine.core.database import SessionLocal, init_db
from analytics_engine.core.dummy_data import DummyDataGenerator

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main(days: int = 60) -> None:
    init_db()
    db = SessionLocal()
    try:
        result = DummyDataGenerator(db, build_context()).generate(days)
    finally:
        db.close()

    if result["status"] != "completed":
        logger.error(f"❌ Dummy data not generated: {result['status']}")
        sys.exit(1)
    logger.info(
        f"✅ Generated {result['pageviews']} page views over {days} days; "
        f"aggregation {result['aggregation'].status}"
    )


if __name__ == "__main__":
    main(int(sys.argv[1]) if len(sys.argv) > 1 else 60)
