"""Application configuration using Pydantic settings."""

from typing import Optional
from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_IP_HASH_SALT = "change-this-salt-in-production-it-keeps-visitor-ip-hashes-private"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Database Configuration
    DATABASE_URL: str = Field(default="sqlite:///./analytics.db", description="Database connection URL")

    # Application Configuration
    APP_NAME: str = Field(default="Page Analytics API", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    DEBUG: bool = Field(default=False, description="Debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    # CORS Configuration
    CORS_ORIGINS: list[str] = Field(default=["http://localhost:3000"], description="Origins allowed to read dashboard endpoints")
    TRACKING_PATHS: list[str] = Field(default=["/analytics/track"], description="Paths open to every origin")

    # Analytics switches (owned by the host settings store)
    ANALYTICS_ENABLED: bool = Field(default=True, description="Register analytics routes and run jobs")
    ANALYTICS_RETENTION_DAYS: int = Field(default=30, ge=1, description="Days of raw page views to keep")

    # Privacy
    IP_HASH_SALT: str = Field(default=DEFAULT_IP_HASH_SALT, description="Secret salt mixed into visitor IP hashes")

    # Rate Limiting
    RATE_LIMIT_REQUESTS: int = Field(default=100, ge=1, description="Tracking requests allowed per window per IP")
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=3600, ge=1, description="Sliding window length")
    RATE_LIMIT_BACKEND: str = Field(default="memory", description="memory or redis")

    # Redis Configuration
    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: Optional[str] = Field(default=None, description="Redis password")

    # Sessions
    SESSION_COOKIE_NAME: str = Field(default="analytics_session", description="Cookie carrying the visitor token")
    SESSION_COOKIE_MAX_AGE_DAYS: int = Field(default=30, description="Visitor token lifetime")

    # Query layer
    ACTIVE_USERS_WINDOW_MINUTES: int = Field(default=5, ge=1, description="Trailing window for active users")

    # Jobs
    SCHEDULER_ENABLED: bool = Field(default=True, description="Run aggregation/cleanup loops in-process")
    AGGREGATION_INTERVAL_SECONDS: int = Field(default=1800, description="Rollup cadence")
    CLEANUP_INTERVAL_SECONDS: int = Field(default=86400, description="Retention sweep cadence")
    AGGREGATION_LOCK_TTL_SECONDS: int = Field(default=600, description="Advisory lease lifetime for a rollup run")

    # Geolocation
    GEO_LOOKUP_ENABLED: bool = Field(default=False, description="Resolve visitor country/city over HTTP")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @validator("DATABASE_URL")
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL is properly formatted."""
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql+psycopg2://", 1)
        return v

    @validator("IP_HASH_SALT")
    def validate_ip_hash_salt(cls, v: str) -> str:
        """Ensure the salt is long enough to resist dictionary attacks on IPv4 space."""
        # Allow the default salt in development
        if v == DEFAULT_IP_HASH_SALT:
            return v
        if len(v) < 32:
            raise ValueError("IP hash salt must be at least 32 characters long")
        return v

    @validator("RATE_LIMIT_BACKEND")
    def validate_rate_limit_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError("RATE_LIMIT_BACKEND must be 'memory' or 'redis'")
        return v


# Global settings instance
settings = Settings()
