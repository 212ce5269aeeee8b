"""
Read side of the engine: statistics over the summary tables and the live
active-users count over raw page views.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud
from ..models import AnalyticsDaily, AnalyticsDevice, AnalyticsGeo, AnalyticsReferrer
from ..schemas import ActiveUsersResponse, ChartDataset, ChartResponse, ChartType, StatType, SummaryPeriod, SummaryResponse
from .clock import to_naive_utc
from .context import AnalyticsContext
from .errors import InvalidQuery, NotFound, QueryFailed

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30
PAGES_LIMIT = 50
DIMENSION_LIMIT = 20


def parse_query_date(value: str, field: str) -> date:
    """Accept an ISO-8601 date or datetime and keep only the date part."""
    try:
        return parser.isoparse(value.strip()).date()
    except (ValueError, OverflowError):
        raise InvalidQuery(f"Invalid date: {value!r}", field=field)


@dataclass(frozen=True)
class DateWindow:
    """Half-open range of UTC dates, ``start`` included and ``end`` excluded."""

    start: date
    end: date

    @classmethod
    def from_inclusive(cls, start_date: Optional[str], end_date: Optional[str], today: date) -> "DateWindow":
        """
        Build a window from the inclusive dates the HTTP layer receives.
        Missing bounds default to the last 30 days ending today.
        """
        end = parse_query_date(end_date, "end_date") if end_date else today
        if start_date:
            start = parse_query_date(start_date, "start_date")
        else:
            start = end - timedelta(days=DEFAULT_WINDOW_DAYS - 1)
        if end < start:
            raise InvalidQuery("end_date must not be before start_date", field="end_date")
        return cls(start=start, end=end + timedelta(days=1))

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def previous(self) -> "DateWindow":
        """The window of equal length ending where this one starts."""
        return DateWindow(start=self.start - timedelta(days=self.days), end=self.start)

    def dates(self) -> List[date]:
        return [self.start + timedelta(days=offset) for offset in range(self.days)]

    def to_dict(self) -> Dict[str, str]:
        """Inclusive start/end dates, the same shape the API accepts."""
        return {
            "start": self.start.isoformat(),
            "end": (self.end - timedelta(days=1)).isoformat(),
        }


class AnalyticsQueryService:
    """Serves statistics from the rollup tables. Failures never return partial data."""

    def __init__(self, db: Session, context: AnalyticsContext):
        self.db = db
        self.context = context
        self._handlers = {
            StatType.OVERVIEW: lambda window, page_url: self.overview(window, page_url),
            StatType.PAGES: lambda window, page_url: self.pages(window, page_url),
            StatType.REFERRERS: lambda window, page_url: self.referrers(window),
            StatType.DEVICES: lambda window, page_url: self.devices(window),
            StatType.GEO: lambda window, page_url: self.geo(window),
        }

    def stats(self, stat_type: StatType, window: DateWindow, page_url: Optional[str] = None) -> Any:
        try:
            return self._handlers[stat_type](window, page_url)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load {stat_type.value} stats: {e}", exc_info=True)
            raise QueryFailed("Failed to retrieve analytics data") from e

    # ------------------------------------------------------------------
    # Statistics over the summary tables
    # ------------------------------------------------------------------

    def _overview_totals(self, window: DateWindow, page_url: Optional[str]) -> Dict[str, Any]:
        query = self.db.query(
            func.sum(AnalyticsDaily.views),
            func.sum(AnalyticsDaily.unique_visitors),
            func.avg(AnalyticsDaily.avg_time_on_page),
            func.avg(AnalyticsDaily.bounce_rate),
            func.count(func.distinct(AnalyticsDaily.page_url)),
        ).filter(
            AnalyticsDaily.date >= window.start,
            AnalyticsDaily.date < window.end
        )
        if page_url:
            query = query.filter(AnalyticsDaily.page_url == page_url)

        views, unique_visitors, avg_time, avg_bounce, unique_pages = query.one()
        return {
            "total_views": int(views or 0),
            "total_unique_visitors": int(unique_visitors or 0),
            "avg_time_on_page": round(float(avg_time or 0), 2),
            "avg_bounce_rate": round(float(avg_bounce or 0), 2),
            "unique_pages": int(unique_pages or 0),
        }

    def overview(self, window: DateWindow, page_url: Optional[str] = None) -> Dict[str, Any]:
        """Window totals plus the same totals for the preceding window of equal length."""
        previous = window.previous()
        result = self._overview_totals(window, page_url)
        comparison = self._overview_totals(previous, page_url)
        comparison["period"] = previous.to_dict()
        result["comparison"] = comparison
        return result

    def pages(self, window: DateWindow, page_url: Optional[str] = None) -> List[Dict[str, Any]]:
        total_views = func.sum(AnalyticsDaily.views).label("total_views")
        query = self.db.query(
            AnalyticsDaily.page_url,
            func.max(AnalyticsDaily.page_title),
            total_views,
            func.sum(AnalyticsDaily.unique_visitors),
            func.avg(AnalyticsDaily.avg_time_on_page),
            func.avg(AnalyticsDaily.bounce_rate),
        ).filter(
            AnalyticsDaily.date >= window.start,
            AnalyticsDaily.date < window.end
        )
        if page_url:
            query = query.filter(AnalyticsDaily.page_url == page_url)

        rows = query.group_by(AnalyticsDaily.page_url).order_by(
            total_views.desc(), AnalyticsDaily.page_url
        ).limit(PAGES_LIMIT).all()

        return [
            {
                "page_url": url,
                "page_title": title,
                "total_views": int(views or 0),
                "total_unique_visitors": int(visitors or 0),
                "avg_time_on_page": round(float(avg_time or 0), 2),
                "bounce_rate": round(float(bounce or 0), 2),
            }
            for url, title, views, visitors, avg_time, bounce in rows
        ]

    def referrers(self, window: DateWindow) -> List[Dict[str, Any]]:
        total_visits = func.sum(AnalyticsReferrer.visits).label("total_visits")
        rows = self.db.query(
            AnalyticsReferrer.referrer_domain,
            total_visits,
            func.sum(AnalyticsReferrer.unique_visitors),
        ).filter(
            AnalyticsReferrer.date >= window.start,
            AnalyticsReferrer.date < window.end
        ).group_by(AnalyticsReferrer.referrer_domain).order_by(
            total_visits.desc(), AnalyticsReferrer.referrer_domain
        ).limit(DIMENSION_LIMIT).all()

        return [
            {
                "referrer_domain": domain,
                "total_visits": int(visits or 0),
                "total_unique_visitors": int(visitors or 0),
            }
            for domain, visits, visitors in rows
        ]

    def devices(self, window: DateWindow) -> List[Dict[str, Any]]:
        total_views = func.sum(AnalyticsDevice.views).label("total_views")
        rows = self.db.query(
            AnalyticsDevice.device_type,
            AnalyticsDevice.browser,
            AnalyticsDevice.os,
            total_views,
            func.sum(AnalyticsDevice.unique_visitors),
        ).filter(
            AnalyticsDevice.date >= window.start,
            AnalyticsDevice.date < window.end
        ).group_by(
            AnalyticsDevice.device_type, AnalyticsDevice.browser, AnalyticsDevice.os
        ).order_by(
            total_views.desc(), AnalyticsDevice.device_type, AnalyticsDevice.browser, AnalyticsDevice.os
        ).limit(DIMENSION_LIMIT).all()

        return [
            {
                "device_type": device_type,
                "browser": browser or None,
                "os": os_name or None,
                "total_views": int(views or 0),
                "total_unique_visitors": int(visitors or 0),
            }
            for device_type, browser, os_name, views, visitors in rows
        ]

    def geo(self, window: DateWindow) -> List[Dict[str, Any]]:
        total_views = func.sum(AnalyticsGeo.views).label("total_views")
        rows = self.db.query(
            AnalyticsGeo.country_code,
            AnalyticsGeo.city,
            total_views,
            func.sum(AnalyticsGeo.unique_visitors),
        ).filter(
            AnalyticsGeo.date >= window.start,
            AnalyticsGeo.date < window.end
        ).group_by(AnalyticsGeo.country_code, AnalyticsGeo.city).order_by(
            total_views.desc(), AnalyticsGeo.country_code, AnalyticsGeo.city
        ).limit(DIMENSION_LIMIT).all()

        return [
            {
                "country_code": country_code,
                "city": city or None,
                "total_views": int(views or 0),
                "total_unique_visitors": int(visitors or 0),
            }
            for country_code, city, views, visitors in rows
        ]

    def chart(self, window: DateWindow, chart_type: ChartType = ChartType.PAGEVIEWS) -> ChartResponse:
        """Per-day series for the dashboard chart; days without data read as 0."""
        try:
            rows = self.db.query(
                AnalyticsDaily.date,
                func.sum(AnalyticsDaily.views),
                func.sum(AnalyticsDaily.unique_visitors),
            ).filter(
                AnalyticsDaily.date >= window.start,
                AnalyticsDaily.date < window.end
            ).group_by(AnalyticsDaily.date).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load chart data: {e}", exc_info=True)
            raise QueryFailed("Failed to retrieve chart data") from e

        by_date = {day: (int(views or 0), int(visitors or 0)) for day, views, visitors in rows}
        days = window.dates()
        pageviews = [by_date.get(day, (0, 0))[0] for day in days]
        visitors = [by_date.get(day, (0, 0))[1] for day in days]

        datasets = []
        if chart_type in (ChartType.PAGEVIEWS, ChartType.BOTH):
            datasets.append(ChartDataset(label="Page Views", data=pageviews))
        if chart_type in (ChartType.VISITORS, ChartType.BOTH):
            datasets.append(ChartDataset(label="Unique Visitors", data=visitors))

        return ChartResponse(
            labels=[day.isoformat() for day in days],
            datasets=datasets,
            total_points=len(days),
        )

    def summary(self, period: SummaryPeriod) -> SummaryResponse:
        """Overview totals cached by the last rollup run."""
        try:
            cached = crud.get_summary(self.db, f"overview_{period.value}", period.value)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load summary cache: {e}", exc_info=True)
            raise QueryFailed("Failed to retrieve summary") from e

        if cached is None:
            raise NotFound(f"No summary for period {period.value} yet; aggregation has not run")
        value = cached["value"]
        return SummaryResponse(
            period=period,
            total_views=int(value.get("total_views") or 0),
            total_unique_visitors=int(value.get("total_unique_visitors") or 0),
            unique_pages=int(value.get("unique_pages") or 0),
            updated_at=cached["updated_at"],
        )

    # ------------------------------------------------------------------
    # Live counter over raw page views
    # ------------------------------------------------------------------

    def reference_time(self, tz_name: Optional[str] = None, browser_time: Optional[str] = None) -> Optional[datetime]:
        """
        The browser's clock as naive UTC, or None when it cannot be trusted.

        A browser time carrying its own offset is used directly; a naive one is
        interpreted in ``tz_name``. Anything unparseable is logged and ignored.
        """
        if not browser_time:
            return None
        try:
            parsed = parser.isoparse(browser_time.strip())
        except (ValueError, OverflowError) as e:
            logger.warning(f"Ignoring unparseable browser_time {browser_time!r}: {e}")
            return None

        if parsed.tzinfo is None:
            if not tz_name:
                logger.warning("browser_time has no offset and no timezone was given, using server time")
                return None
            try:
                parsed = parsed.replace(tzinfo=ZoneInfo(tz_name))
            except (ZoneInfoNotFoundError, ValueError) as e:
                logger.warning(f"Unknown timezone {tz_name!r}, using server time: {e}")
                return None

        return to_naive_utc(parsed.astimezone(timezone.utc))

    def active_users(self, tz_name: Optional[str] = None, browser_time: Optional[str] = None) -> ActiveUsersResponse:
        window_minutes = self.context.settings.ACTIVE_USERS_WINDOW_MINUTES
        browser_reference = self.reference_time(tz_name, browser_time)
        reference = browser_reference or self.context.clock.now()

        try:
            count = crud.count_distinct_sessions(self.db, reference - timedelta(minutes=window_minutes))
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to count active users: {e}", exc_info=True)
            raise QueryFailed("Failed to retrieve active users") from e

        return ActiveUsersResponse(
            active_users=count,
            window_minutes=window_minutes,
            reference_time=reference,
            used_browser_time=browser_reference is not None,
        )
