# models.py
# Table definitions for the page-view analytics engine. Raw page views are
# append-only; the four summary tables and the summary cache are rebuilt by the
# rollup job and keyed by their natural keys so every write is an upsert.
#
# All timestamps are naive UTC values produced by the engine clock.

from sqlalchemy import (
    BigInteger, Boolean, Column, Date, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
)

from .core.database import Base

# SQLite only auto-increments INTEGER PRIMARY KEY columns
IdType = BigInteger().with_variant(Integer, "sqlite")

PAGE_URL_MAX_LENGTH = 500
PAGE_TITLE_MAX_LENGTH = 255
REFERRER_MAX_LENGTH = 500
SESSION_ID_MAX_LENGTH = 128


class PageView(Base):
    """
    One raw page view, exactly as tracked. Rows are never updated; the
    retention sweeper is the only thing that removes them.
    """
    __tablename__ = "analytics_pageviews"

    id = Column(IdType, primary_key=True, autoincrement=True)
    page_url = Column(String(PAGE_URL_MAX_LENGTH), nullable=False)
    page_title = Column(String(PAGE_TITLE_MAX_LENGTH))
    referrer = Column(String(REFERRER_MAX_LENGTH))
    referrer_domain = Column(String(255))

    # Client details parsed from the user agent
    user_agent = Column(Text)
    device_type = Column(String(20), nullable=False, default="desktop")
    browser = Column(String(50), nullable=False, default="unknown")
    browser_version = Column(String(20), nullable=False, default="")
    os = Column(String(50), nullable=False, default="unknown")

    # Geographic data (optional, resolver dependent)
    country_code = Column(String(2))
    city = Column(String(100))

    # Visitor identity - the plaintext IP is never stored
    ip_hash = Column(String(64))
    session_id = Column(String(SESSION_ID_MAX_LENGTH), nullable=False)
    is_unique_visitor = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_pageviews_created_at", "created_at"),
        Index("idx_pageviews_page_url", "page_url"),
        Index("idx_pageviews_session_date", "session_id", "created_at"),
        Index("idx_pageviews_referrer_domain", "referrer_domain"),
    )


class AnalyticsDaily(Base):
    """Per-page daily rollup."""
    __tablename__ = "analytics_daily"

    id = Column(IdType, primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False)
    page_url = Column(String(PAGE_URL_MAX_LENGTH), nullable=False)
    page_title = Column(String(PAGE_TITLE_MAX_LENGTH))
    views = Column(Integer, nullable=False, default=0)
    unique_visitors = Column(Integer, nullable=False, default=0)
    avg_time_on_page = Column(Integer, nullable=False, default=0)
    bounce_rate = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("date", "page_url", name="unique_date_page"),
        Index("idx_daily_date", "date"),
        Index("idx_daily_page_url", "page_url"),
    )


class AnalyticsReferrer(Base):
    """Daily visits per referring domain and landing page."""
    __tablename__ = "analytics_referrers"

    id = Column(IdType, primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False)
    referrer_domain = Column(String(255), nullable=False)
    referrer_url = Column(String(REFERRER_MAX_LENGTH))
    page_url = Column(String(PAGE_URL_MAX_LENGTH), nullable=False)
    visits = Column(Integer, nullable=False, default=0)
    unique_visitors = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("date", "referrer_domain", "page_url", name="unique_date_referrer_page"),
        Index("idx_referrers_date", "date"),
        Index("idx_referrers_domain", "referrer_domain"),
    )


class AnalyticsDevice(Base):
    """Daily views per device type, browser and operating system."""
    __tablename__ = "analytics_devices"

    id = Column(IdType, primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False)
    device_type = Column(String(20), nullable=False)
    browser = Column(String(50), nullable=False, default="")
    os = Column(String(50), nullable=False, default="")
    views = Column(Integer, nullable=False, default=0)
    unique_visitors = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("date", "device_type", "browser", "os", name="unique_date_device"),
        Index("idx_devices_date", "date"),
    )


class AnalyticsGeo(Base):
    """Daily views per country and city. An unknown city is stored as ''."""
    __tablename__ = "analytics_geo"

    id = Column(IdType, primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False)
    country_code = Column(String(2), nullable=False)
    city = Column(String(100), nullable=False, default="")
    views = Column(Integer, nullable=False, default=0)
    unique_visitors = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("date", "country_code", "city", name="unique_date_location"),
        Index("idx_geo_date", "date"),
        Index("idx_geo_country", "country_code"),
    )


class AnalyticsSummary(Base):
    """Pre-computed overview totals keyed by period label (7d, 30d, all_time)."""
    __tablename__ = "analytics_summary"

    id = Column(IdType, primary_key=True, autoincrement=True)
    stat_key = Column(String(100), nullable=False)
    stat_period = Column(String(20), nullable=False)
    stat_value = Column(Text)  # JSON document
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("stat_key", "stat_period", name="unique_stat"),
        Index("idx_summary_updated_at", "updated_at"),
    )


class AnalyticsSetting(Base):
    """Engine key/value store: watermarks, retention override and the job lease."""
    __tablename__ = "analytics_settings"

    id = Column(IdType, primary_key=True, autoincrement=True)
    setting_key = Column(String(100), nullable=False, unique=True)
    setting_value = Column(Text)
    updated_at = Column(DateTime, nullable=False)


SUMMARY_MODELS = (AnalyticsDaily, AnalyticsReferrer, AnalyticsDevice, AnalyticsGeo)
