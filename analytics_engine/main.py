"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .core.config import Settings, settings
from .core.context import AnalyticsContext, build_context
from .core.cors_middleware import CustomCORSMiddleware
from .core.database import init_db, close_db
from .core.errors import AnalyticsError, RateLimitExceeded
from .core.startup_tasks import startup_tasks
from .api import (
    tracking_router,
    stats_router,
    settings_router,
    system_router,
)

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    init_db()

    # Start background jobs
    async with startup_tasks(app.state.analytics_context):
        yield

    # Shutdown
    close_db()


async def analytics_error_handler(request: Request, exc: AnalyticsError):
    headers = None
    if isinstance(exc, RateLimitExceeded) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and query parameters share the INVALID_PAYLOAD code."""
    content = {"detail": "Invalid request payload", "error_code": "INVALID_PAYLOAD"}
    errors = exc.errors()
    if errors:
        location = [str(part) for part in errors[0].get("loc", ()) if part not in ("body", "query")]
        if location:
            content["field"] = ".".join(location)
        content["detail"] = errors[0].get("msg", content["detail"])
    return JSONResponse(status_code=422, content=content)


async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(app_settings: Optional[Settings] = None, context: Optional[AnalyticsContext] = None) -> FastAPI:
    """Build the application. Analytics routes are only mounted when analytics is enabled."""
    app_settings = app_settings or (context.settings if context else settings)
    context = context or build_context(app_settings)

    app = FastAPI(
        title=app_settings.APP_NAME,
        description="Page-view analytics: tracking, daily rollups, retention and dashboard statistics.",
        version=app_settings.APP_VERSION,
        debug=app_settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.analytics_context = context

    # Tracking endpoints allow all origins, dashboard endpoints are restricted
    app.add_middleware(
        CustomCORSMiddleware,
        restricted_origins=app_settings.CORS_ORIGINS,
        tracking_paths=app_settings.TRACKING_PATHS
    )

    app.add_exception_handler(AnalyticsError, analytics_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    if context.enabled:
        app.include_router(tracking_router)
        app.include_router(stats_router)
        app.include_router(settings_router)
    else:
        logger.info("Analytics disabled, /analytics routes are not registered")
    app.include_router(system_router)

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Root endpoint."""
        return {
            "message": f"Welcome to {app_settings.APP_NAME}",
            "version": app_settings.APP_VERSION,
            "docs": "/docs",
            "health": "/system/health"
        }

    return app


app = create_app()
