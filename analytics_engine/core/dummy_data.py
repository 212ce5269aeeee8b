"""Synthetic page view generator for demos and local development."""

import hashlib
import logging
import random
from datetime import date, datetime, time, timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy.orm import Session

from .. import crud
from ..crud.settings import LAST_AGGREGATION
from .aggregation_service import RollupAggregator
from .context import AnalyticsContext
from .event_buffer import PageViewBuffer
from .ingestion_service import UNIQUE_VISITOR_WINDOW, extract_domain
from .user_agent import parse_user_agent

logger = logging.getLogger(__name__)

PAGES = {
    "/": "Home - Welcome to Our Website",
    "/about": "About Us - Learn More About Our Company",
    "/contact": "Contact Us - Get in Touch",
    "/products": "Products - Our Amazing Products",
    "/blog": "Blog - Latest News and Updates",
    "/services": "Services - What We Offer",
    "/pricing": "Pricing - Choose Your Plan",
    "/faq": "FAQ - Frequently Asked Questions",
    "/support": "Support - We're Here to Help",
    "/news": "News - Latest Updates",
    "/gallery": "Gallery - Photo Collection",
    "/testimonials": "Testimonials - What Our Customers Say",
}

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36",
    "Mozilla/5.0 (iPad; CPU OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1",
]

LOCATIONS = [
    ("US", "New York"), ("GB", "London"), ("CA", "Toronto"), ("AU", "Sydney"),
    ("DE", "Berlin"), ("FR", "Paris"), ("IT", "Rome"), ("ES", "Madrid"),
    ("NL", "Amsterdam"), ("SE", "Stockholm"), ("US", None),
]

# None means a direct visit
REFERRERS = [
    "https://google.com/search", "https://bing.com/search", "https://duckduckgo.com/",
    "https://facebook.com/", "https://twitter.com/", "https://linkedin.com/feed",
    "https://reddit.com/r/webdev", "https://youtube.com/", None, None,
]

SESSIONS_PER_DAY = 20


class DummyDataGenerator:
    """
    Replaces all analytics data with a realistic synthetic stream, then runs
    the rollup so every dashboard view has something to show.
    """

    def __init__(self, db: Session, context: AnalyticsContext, rng: Optional[random.Random] = None,
                 buffer_size: int = 500):
        self.db = db
        self.context = context
        self.rng = rng or random.Random()
        self.buffer_size = buffer_size

    def clear_existing_data(self) -> None:
        crud.delete_all(self.db)
        crud.delete_all_summaries(self.db)
        self.db.commit()

    def generate(self, days: int = 60) -> dict:
        if days < 1:
            raise ValueError("days must be at least 1")
        if not self.context.enabled:
            logger.warning("Analytics is not enabled, refusing to generate dummy data")
            return {"status": "disabled", "pageviews": 0}

        now = self.context.clock.now()
        first_day = now.date() - timedelta(days=days - 1)

        self.clear_existing_data()

        buffer = PageViewBuffer(self.db, max_size=self.buffer_size, clock=self.context.clock)
        last_seen: Dict[Tuple[str, str], datetime] = {}
        for offset in range(days):
            self._generate_day(first_day + timedelta(days=offset), now, buffer, last_seen)
        buffer.flush()

        # Start the watermark before the first generated view so the rollup sees every day
        crud.set_timestamp_setting(
            self.db, LAST_AGGREGATION, datetime.combine(first_day, time.min) - timedelta(seconds=1), now=now
        )
        self.db.commit()

        aggregation = RollupAggregator(self.db, self.context).run()
        logger.info(f"Generated {buffer.flushed_total} dummy page views over {days} days")
        return {"status": "completed", "pageviews": buffer.flushed_total, "aggregation": aggregation}

    def _generate_day(self, day: date, now: datetime, buffer: PageViewBuffer,
                      last_seen: Dict[Tuple[str, str], datetime]) -> None:
        day_start = datetime.combine(day, time.min)
        seconds_available = 86400
        if day == now.date():
            seconds_available = max(1, int((now - day_start).total_seconds()))

        timestamps = sorted(
            day_start + timedelta(seconds=self.rng.randrange(seconds_available))
            for _ in range(self.rng.randint(10, 100))
        )
        for created_at in timestamps:
            session_id = f"dummy{day:%Y%m%d}.{self.rng.randint(1, SESSIONS_PER_DAY)}"
            page_url = self.rng.choice(list(PAGES))
            user_agent = self.rng.choice(USER_AGENTS)
            client = parse_user_agent(user_agent)
            country_code, city = self.rng.choice(LOCATIONS)
            referrer = self.rng.choice(REFERRERS)

            # Same 24h per-(session, page) rule the tracking endpoint applies
            previous = last_seen.get((session_id, page_url))
            is_unique = previous is None or created_at - previous > UNIQUE_VISITOR_WINDOW
            last_seen[(session_id, page_url)] = created_at

            buffer.add({
                "page_url": page_url,
                "page_title": PAGES[page_url],
                "referrer": referrer,
                "referrer_domain": extract_domain(referrer),
                "user_agent": user_agent,
                "device_type": client.device_type,
                "browser": client.browser,
                "browser_version": client.browser_version,
                "os": client.os,
                "country_code": country_code,
                "city": city,
                "ip_hash": hashlib.sha256(f"{session_id}{self.context.settings.IP_HASH_SALT}".encode()).hexdigest(),
                "session_id": session_id,
                "is_unique_visitor": is_unique,
                "created_at": created_at,
            })
