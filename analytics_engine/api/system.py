"""System endpoints for health checks and manual job triggers."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.aggregation_service import RollupAggregator
from ..core.context import AnalyticsContext
from ..core.database import get_db
from ..core.retention_service import RetentionSweeper
from ..crud.settings import LAST_AGGREGATION, LAST_CLEANUP
from .. import crud, schemas
from .dependencies import get_context

router = APIRouter(prefix="/system", tags=["System"])

logger = logging.getLogger(__name__)


@router.get("/health", response_model=schemas.HealthResponse, summary="Service health check")
async def health_check(
    db: Session = Depends(get_db),
    context: AnalyticsContext = Depends(get_context)
) -> schemas.HealthResponse:
    """Check the health of the API and report when the jobs last ran."""
    try:
        last_aggregation = crud.get_timestamp_setting(db, LAST_AGGREGATION)
        last_cleanup = crud.get_timestamp_setting(db, LAST_CLEANUP)
    except SQLAlchemyError as e:
        logger.error(f"Health check could not reach the database: {e}")
        return schemas.HealthResponse(
            status="degraded",
            version=context.settings.APP_VERSION,
            analytics_enabled=context.enabled,
            details={"database": "unavailable"},
        )

    return schemas.HealthResponse(
        status="healthy",
        version=context.settings.APP_VERSION,
        analytics_enabled=context.enabled,
        last_aggregation=last_aggregation,
        last_cleanup=last_cleanup,
        details={"app_name": context.settings.APP_NAME, "timestamp": context.clock.now().isoformat()},
    )


@router.post("/aggregate", response_model=schemas.AggregationResult, summary="Run the rollup job now")
async def trigger_aggregation(
    db: Session = Depends(get_db),
    context: AnalyticsContext = Depends(get_context)
) -> schemas.AggregationResult:
    """Fold new page views into the summary tables. This is what an external cron calls."""
    return RollupAggregator(db, context).run()


@router.post("/cleanup", response_model=schemas.CleanupResult, summary="Run the retention sweep now")
async def trigger_cleanup(
    db: Session = Depends(get_db),
    context: AnalyticsContext = Depends(get_context)
) -> schemas.CleanupResult:
    """Delete raw page views older than the retention window."""
    return RetentionSweeper(db, context).run()
