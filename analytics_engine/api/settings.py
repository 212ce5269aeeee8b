"""Engine settings endpoints."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.context import AnalyticsContext
from ..core.database import get_db
from ..core.errors import InvalidQuery
from ..crud.settings import RETENTION_DAYS
from .. import crud, schemas
from .dependencies import get_context

router = APIRouter(prefix="/analytics", tags=["Analytics Settings"])

logger = logging.getLogger(__name__)


@router.get("/settings", response_model=schemas.SettingsResponse, summary="Engine key/value settings")
async def get_settings(db: Session = Depends(get_db)) -> schemas.SettingsResponse:
    """All engine settings, including the read-only watermarks and the rollup lease."""
    return schemas.SettingsResponse(settings=crud.get_all_settings(db))


@router.post("/settings", response_model=schemas.SettingsResponse, summary="Update editable settings")
async def update_settings(
    update: schemas.SettingsUpdate,
    db: Session = Depends(get_db),
    context: AnalyticsContext = Depends(get_context)
) -> schemas.SettingsResponse:
    """Update retention and privacy switches. Watermarks and the lease cannot be set here."""
    changes = update.model_dump(exclude_none=True)
    if RETENTION_DAYS in changes and changes[RETENTION_DAYS] < 1:
        raise InvalidQuery("retention_days must be a positive integer", field=RETENTION_DAYS)

    now = context.clock.now()
    for key, value in changes.items():
        stored = str(int(value)) if isinstance(value, bool) else str(value)
        crud.update_setting(db, key, stored, now=now)
    db.commit()
    context.settings_cache.invalidate()

    if changes:
        logger.info(f"Updated analytics settings: {sorted(changes)}")
    return schemas.SettingsResponse(settings=crud.get_all_settings(db))
