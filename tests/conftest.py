"""Shared fixtures: in-memory database, frozen clock and a wired test client."""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from analytics_engine import crud, models  # noqa: F401  registers the tables
from analytics_engine.core.clock import FrozenClock
from analytics_engine.core.config import Settings
from analytics_engine.core.context import AnalyticsContext
from analytics_engine.core.database import Base, build_engine, get_db
from analytics_engine.core.geolocation import NullGeoResolver
from analytics_engine.core.rate_limiter import InMemoryRateLimiter
from analytics_engine.main import create_app

NOW = datetime(2024, 3, 15, 12, 0, 0)
TEST_SALT = "test-salt-that-is-long-enough-for-validation"


class CountingTokens:
    """Deterministic random-bytes provider; every call returns a different token."""

    def __init__(self):
        self.calls = 0

    def __call__(self, size: int) -> bytes:
        self.calls += 1
        return self.calls.to_bytes(size, "big")


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite://",
        "IP_HASH_SALT": TEST_SALT,
        "SCHEDULER_ENABLED": False,
        "RATE_LIMIT_BACKEND": "memory",
        "CORS_ORIGINS": ["http://dashboard.example.com"],
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_context(clock, **overrides) -> AnalyticsContext:
    app_settings = make_settings(**overrides)
    return AnalyticsContext(
        settings=app_settings,
        clock=clock,
        rate_limiter=InMemoryRateLimiter(
            app_settings.RATE_LIMIT_REQUESTS, app_settings.RATE_LIMIT_WINDOW_SECONDS, clock
        ),
        geo_resolver=NullGeoResolver(),
        token_bytes=CountingTokens(),
    )


def add_view(db, page_url="/home", session_id="abc.123", created_at=NOW, **fields) -> int:
    """Insert a raw page view directly, bypassing ingestion."""
    row = {
        "page_url": page_url,
        "page_title": fields.pop("page_title", None),
        "device_type": "desktop",
        "browser": "Chrome",
        "browser_version": "120.0",
        "os": "Windows",
        "session_id": session_id,
        "is_unique_visitor": True,
        "created_at": created_at,
    }
    row.update(fields)
    return crud.append_page_view(db, **row)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    crud.insert_default_settings(session, now=NOW)
    session.commit()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def context(clock):
    return make_context(clock)


@pytest.fixture
def build_client(db, session_factory):
    """Factory for a TestClient around an app built with the given context."""

    def _build(context: AnalyticsContext) -> TestClient:
        app = create_app(context=context)

        def override_get_db():
            session = session_factory()
            try:
                yield session
            finally:
                session.close()

        app.dependency_overrides[get_db] = override_get_db
        # No context manager: the lifespan (init_db, scheduler) is not started
        return TestClient(app)

    return _build


@pytest.fixture
def client(build_client, context):
    return build_client(context)
