"""Database configuration and session management."""

import logging
import time
from typing import Generator
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str, debug: bool = False) -> Engine:
    """Create an engine with per-dialect pool settings."""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # In-memory databases live on a single shared connection
            return create_engine(
                database_url,
                echo=debug,
                connect_args=connect_args,
                poolclass=StaticPool
            )
        return create_engine(database_url, echo=debug, connect_args=connect_args)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=300,
        echo=debug
    )


# Database engine configuration
engine = build_engine(settings.DATABASE_URL, settings.DEBUG)

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# Base class for models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Database dependency for FastAPI endpoints."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@event.listens_for(Engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Remember when a statement started so slow queries can be reported."""
    conn.info.setdefault("query_start_time", []).append(time.perf_counter())


@event.listens_for(Engine, "after_cursor_execute")
def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Log query execution time in debug mode."""
    started = conn.info.get("query_start_time")
    if not started:
        return
    elapsed = time.perf_counter() - started.pop()
    if settings.DEBUG:
        logger.debug(f"Query executed in {elapsed:.4f}s: {statement[:100]}...")


def init_db(bind: Engine = None) -> None:
    """Initialize database tables and seed the engine settings."""
    from .. import models  # noqa: F401  registers the tables on Base.metadata
    from ..crud.settings import insert_default_settings

    bind = bind or engine
    Base.metadata.create_all(bind=bind)

    db = Session(bind=bind)
    try:
        insert_default_settings(db, retention_days=settings.ANALYTICS_RETENTION_DAYS)
        db.commit()
    finally:
        db.close()


def close_db() -> None:
    """Close database connections."""
    engine.dispose()
