"""Dashboard statistics endpoints."""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ..core.context import AnalyticsContext
from ..core.database import get_db
from ..core.query_service import AnalyticsQueryService, DateWindow
from .. import schemas
from .dependencies import get_context

router = APIRouter(prefix="/analytics", tags=["Analytics"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _window(context: AnalyticsContext, start_date: Optional[str], end_date: Optional[str]) -> DateWindow:
    return DateWindow.from_inclusive(start_date, end_date, today=context.clock.now().date())


@router.get("/stats", summary="Statistics for a date range")
async def get_stats(
    start_date: Optional[str] = Query(None, description="First day, inclusive (ISO-8601 date or datetime)"),
    end_date: Optional[str] = Query(None, description="Last day, inclusive (ISO-8601 date or datetime)"),
    page_url: Optional[str] = Query(None, description="Restrict overview and pages to one URL"),
    stat_type: schemas.StatType = Query(schemas.StatType.OVERVIEW, description="Statistic family"),
    db: Session = Depends(get_db),
    context: AnalyticsContext = Depends(get_context)
) -> dict:
    """Statistics from the rollup tables. Defaults to the last 30 days."""
    window = _window(context, start_date, end_date)
    data = AnalyticsQueryService(db, context).stats(stat_type, window, page_url)
    return {
        "success": True,
        "stat_type": stat_type.value,
        "period": window.to_dict(),
        "data": data,
    }


@router.get("/chart", response_model=schemas.ChartResponse, summary="Daily chart series")
async def get_chart(
    start_date: Optional[str] = Query(None, description="First day, inclusive"),
    end_date: Optional[str] = Query(None, description="Last day, inclusive"),
    chart_type: schemas.ChartType = Query(schemas.ChartType.PAGEVIEWS, description="pageviews, visitors or both"),
    db: Session = Depends(get_db),
    context: AnalyticsContext = Depends(get_context)
) -> schemas.ChartResponse:
    window = _window(context, start_date, end_date)
    return AnalyticsQueryService(db, context).chart(window, chart_type)


@router.get("/summary", response_model=schemas.SummaryResponse, summary="Cached overview totals")
async def get_summary(
    period: schemas.SummaryPeriod = Query(schemas.SummaryPeriod.LAST_30_DAYS, description="7d, 30d or all_time"),
    db: Session = Depends(get_db),
    context: AnalyticsContext = Depends(get_context)
) -> schemas.SummaryResponse:
    return AnalyticsQueryService(db, context).summary(period)


@router.get("/active-users", response_model=schemas.ActiveUsersResponse, summary="Visitors active right now")
async def get_active_users(
    response: Response,
    timezone: Optional[str] = Query(None, description="IANA zone of the browser, e.g. Europe/Berlin"),
    browser_time: Optional[str] = Query(None, description="Browser clock as ISO-8601"),
    db: Session = Depends(get_db),
    context: AnalyticsContext = Depends(get_context)
) -> schemas.ActiveUsersResponse:
    """Distinct visitors seen in the trailing window. Never cached."""
    response.headers.update(NO_STORE_HEADERS)
    return AnalyticsQueryService(db, context).active_users(timezone, browser_time)
