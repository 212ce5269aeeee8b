"""Rollup aggregation of raw page views into the daily summary tables."""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Sequence, Tuple

from sqlalchemy import func, literal_column, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud
from ..crud.settings import AGGREGATION_LOCK, LAST_AGGREGATION
from ..models import AnalyticsDaily, AnalyticsDevice, AnalyticsGeo, AnalyticsReferrer, PageView
from ..schemas import AggregationResult, SummaryPeriod
from .context import AnalyticsContext

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(days=1)

# Page views are stamped before they commit; the watermark trails the run start
# so one stamped just before a run and committed during it is still picked up
WATERMARK_LAG = timedelta(seconds=60)

SUMMARY_WINDOWS = {
    SummaryPeriod.LAST_7_DAYS: 7,
    SummaryPeriod.LAST_30_DAYS: 30,
    SummaryPeriod.ALL_TIME: None,
}

# Literal rather than a bound parameter so PostgreSQL sees the same
# expression in SELECT and GROUP BY
EMPTY = literal_column("''")


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def bounce_rate(bounced_sessions: int, sessions: int) -> float:
    """
    Share of the page's sessions that viewed no other page that day, as a
    percentage rounded to 2 decimals. 0 when nobody viewed the page.
    """
    if not sessions:
        return 0.0
    return round(100.0 * bounced_sessions / sessions, 2)


class RollupAggregator:
    """
    Folds raw page views into the daily, referrer, device and geo tables.

    Every UTC day touched by events newer than the ``last_aggregation``
    watermark is recomputed in full with grouped SQL queries and written with
    natural-key upserts, so a re-run replaces rows instead of adding to them.
    The watermark moves in the same transaction as the summary rows.
    """

    def __init__(self, db: Session, context: AnalyticsContext):
        self.db = db
        self.context = context

    def run(self) -> AggregationResult:
        if not self.context.enabled:
            logger.debug("Analytics disabled, skipping aggregation")
            return AggregationResult(status="disabled")

        started_at = self.context.clock.now()
        ttl = self.context.settings.AGGREGATION_LOCK_TTL_SECONDS
        try:
            acquired = crud.acquire_lease(self.db, AGGREGATION_LOCK, started_at, ttl)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Could not acquire aggregation lease: {e}", exc_info=True)
            return AggregationResult(status="failed", started_at=started_at, error=str(e))

        if not acquired:
            logger.info("Aggregation already running elsewhere, skipping")
            return AggregationResult(status="locked", started_at=started_at)

        try:
            return self._aggregate(started_at)
        finally:
            try:
                crud.release_lease(self.db, AGGREGATION_LOCK, self.context.clock.now())
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"❌ Could not release aggregation lease, it expires after {ttl}s: {e}")

    def _aggregate(self, started_at: datetime) -> AggregationResult:
        watermark = crud.get_timestamp_setting(self.db, LAST_AGGREGATION) or started_at - DEFAULT_LOOKBACK
        new_watermark = max(watermark, started_at - WATERMARK_LAG)
        logger.info(f"🔄 Starting aggregation of page views since {watermark.isoformat()}")

        try:
            events_processed = crud.count_since(self.db, watermark)
            touched_dates = crud.touched_dates(self.db, watermark)

            rows_written = defaultdict(int)
            for day in touched_dates:
                for table, count in self._aggregate_day(day, started_at).items():
                    rows_written[table] += count

            # Every run, so the 7d and 30d windows roll forward through quiet days
            self._refresh_summary_cache(started_at)

            crud.set_timestamp_setting(self.db, LAST_AGGREGATION, new_watermark, now=started_at)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Aggregation failed, watermark left at {watermark.isoformat()}: {e}", exc_info=True)
            return AggregationResult(
                status="failed",
                started_at=started_at,
                watermark=watermark,
                error=str(e),
            )

        logger.info(
            f"✅ Aggregated {events_processed} new page views across {len(touched_dates)} day(s): {dict(rows_written)}"
        )
        return AggregationResult(
            status="completed",
            started_at=started_at,
            watermark=new_watermark,
            events_processed=events_processed,
            dates_processed=touched_dates,
            rows_written=dict(rows_written),
        )

    def _aggregate_day(self, day: date, now: datetime) -> Dict[str, int]:
        start, end = day_bounds(day)
        in_day = (PageView.created_at >= start, PageView.created_at < end)

        writes = {
            AnalyticsDaily: (self._daily_rows(day, in_day, now), ("date", "page_url")),
            AnalyticsReferrer: (self._referrer_rows(day, in_day, now), ("date", "referrer_domain", "page_url")),
            AnalyticsDevice: (self._device_rows(day, in_day, now), ("date", "device_type", "browser", "os")),
            AnalyticsGeo: (self._geo_rows(day, in_day, now), ("date", "country_code", "city")),
        }

        written = {}
        for model, (rows, conflict_columns) in writes.items():
            update_columns = [
                column for column in rows[0].keys()
                if column not in conflict_columns and column != "created_at"
            ] if rows else []
            written[model.__tablename__] = crud.upsert_rows(
                self.db, model, rows, conflict_columns, update_columns
            )
        return written

    def _latest_values(self, keys: Sequence, value, criteria: Sequence) -> dict:
        """
        Most recently seen non-empty ``value`` per ``keys`` group.

        One row comes back per distinct value, not per event; the newest is
        picked by (last seen, last id).
        """
        rows = self.db.query(
            *keys, value, func.max(PageView.created_at), func.max(PageView.id)
        ).filter(
            *criteria, value.isnot(None), value != ""
        ).group_by(*keys, value).all()

        latest = {}
        for row in rows:
            key = tuple(row[:len(keys)])
            candidate = (row[-2], row[-1], row[len(keys)])
            if key not in latest or candidate[:2] > latest[key][:2]:
                latest[key] = candidate
        return {key: candidate[2] for key, candidate in latest.items()}

    def _daily_rows(self, day: date, in_day: Sequence, now: datetime) -> List[dict]:
        totals = self.db.query(
            PageView.page_url,
            func.count(PageView.id),
            func.count(func.distinct(PageView.session_id)),
        ).filter(*in_day).group_by(PageView.page_url).all()

        single_page_sessions = select(PageView.session_id).where(*in_day).group_by(
            PageView.session_id
        ).having(func.count(func.distinct(PageView.page_url)) == 1)
        bounced = dict(self.db.query(
            PageView.page_url,
            func.count(func.distinct(PageView.session_id)),
        ).filter(
            *in_day, PageView.session_id.in_(single_page_sessions)
        ).group_by(PageView.page_url).all())

        # Latest title wins when a page was renamed during the day
        titles = self._latest_values((PageView.page_url,), PageView.page_title, in_day)

        return [
            {
                "date": day,
                "page_url": page_url,
                "page_title": titles.get((page_url,)),
                "views": views,
                "unique_visitors": sessions,
                "avg_time_on_page": 0,
                "bounce_rate": bounce_rate(bounced.get(page_url, 0), sessions),
                "created_at": now,
                "updated_at": now,
            }
            for page_url, views, sessions in totals
        ]

    def _referrer_rows(self, day: date, in_day: Sequence, now: datetime) -> List[dict]:
        has_referrer = (*in_day, PageView.referrer_domain.isnot(None), PageView.referrer_domain != "")
        groups = self.db.query(
            PageView.referrer_domain,
            PageView.page_url,
            func.count(PageView.id),
            func.count(func.distinct(PageView.session_id)),
        ).filter(*has_referrer).group_by(PageView.referrer_domain, PageView.page_url).all()

        referrer_urls = self._latest_values(
            (PageView.referrer_domain, PageView.page_url), PageView.referrer, has_referrer
        )

        return [
            {
                "date": day,
                "referrer_domain": referrer_domain,
                "referrer_url": referrer_urls.get((referrer_domain, page_url)),
                "page_url": page_url,
                "visits": visits,
                "unique_visitors": sessions,
                "created_at": now,
                "updated_at": now,
            }
            for referrer_domain, page_url, visits, sessions in groups
        ]

    def _device_rows(self, day: date, in_day: Sequence, now: datetime) -> List[dict]:
        browser = func.coalesce(PageView.browser, EMPTY)
        os_name = func.coalesce(PageView.os, EMPTY)
        groups = self.db.query(
            PageView.device_type,
            browser,
            os_name,
            func.count(PageView.id),
            func.count(func.distinct(PageView.session_id)),
        ).filter(*in_day).group_by(PageView.device_type, browser, os_name).all()

        return [
            {
                "date": day,
                "device_type": device_type,
                "browser": browser_name,
                "os": os_value,
                "views": views,
                "unique_visitors": sessions,
                "created_at": now,
                "updated_at": now,
            }
            for device_type, browser_name, os_value, views, sessions in groups
        ]

    def _geo_rows(self, day: date, in_day: Sequence, now: datetime) -> List[dict]:
        city = func.coalesce(PageView.city, EMPTY)
        groups = self.db.query(
            PageView.country_code,
            city,
            func.count(PageView.id),
            func.count(func.distinct(PageView.session_id)),
        ).filter(
            *in_day, PageView.country_code.isnot(None), PageView.country_code != ""
        ).group_by(PageView.country_code, city).all()

        return [
            {
                "date": day,
                "country_code": country_code,
                "city": city_name,
                "views": views,
                "unique_visitors": sessions,
                "created_at": now,
                "updated_at": now,
            }
            for country_code, city_name, views, sessions in groups
        ]

    def _refresh_summary_cache(self, now: datetime) -> None:
        """Recompute the overview_7d / overview_30d / overview_all_time cache rows."""
        today = now.date()
        for period, days in SUMMARY_WINDOWS.items():
            query = self.db.query(
                func.coalesce(func.sum(AnalyticsDaily.views), 0),
                func.coalesce(func.sum(AnalyticsDaily.unique_visitors), 0),
                func.count(func.distinct(AnalyticsDaily.page_url)),
            )
            if days is not None:
                query = query.filter(AnalyticsDaily.date >= today - timedelta(days=days))
            total_views, total_unique_visitors, unique_pages = query.one()

            crud.upsert_summary(
                self.db,
                f"overview_{period.value}",
                period.value,
                {
                    "total_views": int(total_views),
                    "total_unique_visitors": int(total_unique_visitors),
                    "unique_pages": int(unique_pages),
                },
                now,
            )


def run_aggregation(db: Session, context: AnalyticsContext) -> AggregationResult:
    """Convenience function for a one-off rollup."""
    return RollupAggregator(db, context).run()
