"""Page view tracking endpoint called by the browser tracking script."""

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ..core.context import AnalyticsContext
from ..core.database import get_db
from ..core.geolocation import get_client_ip
from ..core.ingestion_service import IngestionService
from .. import schemas
from .dependencies import get_context

router = APIRouter(prefix="/analytics", tags=["Analytics Tracking"])

logger = logging.getLogger(__name__)


@router.post("/track", response_model=schemas.TrackResponse, summary="Record one page view")
async def track_page_view(
    payload: schemas.TrackRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    context: AnalyticsContext = Depends(get_context)
) -> schemas.TrackResponse:
    """
    Record a page view reported by the tracking script.

    When the browser offers no valid visitor token a new one is minted and
    returned both in the body and as the visitor cookie.
    """
    cookie_name = context.settings.SESSION_COOKIE_NAME
    result, session = IngestionService(db, context).track(
        payload,
        client_ip=get_client_ip(request),
        cookie_session_id=request.cookies.get(cookie_name),
        header_user_agent=request.headers.get("user-agent"),
    )

    if session.is_new:
        response.set_cookie(
            key=cookie_name,
            value=session.session_id,
            max_age=context.settings.SESSION_COOKIE_MAX_AGE_DAYS * 86400,
            httponly=True,
            samesite="lax",
            secure=request.url.scheme == "https",
        )
    return result
