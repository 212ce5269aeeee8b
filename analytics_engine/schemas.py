from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from enum import Enum

# ====================================================================================
# --- Enums: Closed sets of choices resolved at the HTTP boundary. ---
# ====================================================================================
class StatType(str, Enum):
    """
    The statistic families served by GET /analytics/stats.
    - OVERVIEW: Totals for the window plus the previous-period comparison.
    - PAGES: Top pages by views.
    - REFERRERS: Top referring domains.
    - DEVICES: Views by device type, browser and operating system.
    - GEO: Views by country and city.
    """
    OVERVIEW = "overview"
    PAGES = "pages"
    REFERRERS = "referrers"
    DEVICES = "devices"
    GEO = "geo"

class ChartType(str, Enum):
    PAGEVIEWS = "pageviews"
    VISITORS = "visitors"
    BOTH = "both"

class SummaryPeriod(str, Enum):
    """Periods the rollup job pre-computes overview totals for."""
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    ALL_TIME = "all_time"

# ====================================================================================
# --- Tracking Schemas: What the tracking script sends and receives. ---
# ====================================================================================
class TrackRequest(BaseModel):
    """
    One page view as reported by the browser. Every field is optional at the
    schema level so that a missing page_url is reported as MISSING_FIELD rather
    than a generic validation error.
    """
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None

class TrackResponse(BaseModel):
    success: bool = True
    pageview_id: int
    is_unique_visitor: bool
    session_id: str

# ====================================================================================
# --- Query Schemas ---
# ====================================================================================
class ActiveUsersResponse(BaseModel):
    active_users: int
    window_minutes: int
    reference_time: datetime = Field(..., description="UTC instant the trailing window ends at")
    used_browser_time: bool = False

class ChartDataset(BaseModel):
    label: str
    data: List[int]

class ChartResponse(BaseModel):
    labels: List[str]
    datasets: List[ChartDataset]
    total_points: int

class SummaryResponse(BaseModel):
    period: SummaryPeriod
    total_views: int = 0
    total_unique_visitors: int = 0
    unique_pages: int = 0
    updated_at: Optional[datetime] = None

# ====================================================================================
# --- Engine Settings Schemas ---
# ====================================================================================
class SettingsUpdate(BaseModel):
    """Operator-editable engine settings. Omitted fields are left unchanged."""
    retention_days: Optional[int] = Field(None, description="Days of raw page views to keep")
    track_logged_in_users: Optional[bool] = None
    anonymize_ips: Optional[bool] = None
    exclude_bots: Optional[bool] = None

class SettingsResponse(BaseModel):
    settings: Dict[str, Optional[str]]

# ====================================================================================
# --- Job Schemas ---
# ====================================================================================
class AggregationResult(BaseModel):
    status: str = Field(..., description="completed, locked, disabled or failed")
    started_at: Optional[datetime] = None
    watermark: Optional[datetime] = Field(None, description="last_aggregation after the run")
    events_processed: int = 0
    dates_processed: List[date] = []
    rows_written: Dict[str, int] = {}
    error: Optional[str] = None

class CleanupResult(BaseModel):
    status: str = Field(..., description="completed, disabled or failed")
    cutoff: Optional[datetime] = None
    retention_days: Optional[int] = None
    deleted: int = 0
    error: Optional[str] = None

class HealthResponse(BaseModel):
    status: str
    version: str
    analytics_enabled: bool
    last_aggregation: Optional[datetime] = None
    last_cleanup: Optional[datetime] = None
    details: Dict[str, Any] = {}
