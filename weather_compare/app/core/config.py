"""
Environment configuration: single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Durations are in seconds. Cache TTLs follow the volatility of each data
kind: multi-year archives change once a day, the current year a few times
a day, "now" conditions hourly.

Usage:
    from weather_compare.app.core.config import settings
    print(settings.THROTTLE_QUOTA)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

HOUR = 60 * 60
MINUTE = 60


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Weather Compare"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── External APIs ──
    ARCHIVE_API_URL: str = "https://archive-api.open-meteo.com/v1/archive"
    FORECAST_API_URL: str = "https://api.open-meteo.com/v1/forecast"
    ARCHIVE_TIMEZONE: str = "Europe/London"
    WEATHER_FETCH_TIMEOUT: float = Field(default=30.0, gt=0)
    HISTORY_YEARS: int = Field(default=10, ge=1, le=80)

    # ── Request throttle ──
    THROTTLE_QUOTA: int = Field(default=100, ge=1)  # calls per window
    THROTTLE_WINDOW_SECONDS: float = Field(default=60.0, gt=0)
    SIDE_FEED_MAX_CALLS: int = Field(default=10, ge=1)  # hard ceiling, no waiting

    # ── Cache ──
    CACHE_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_KEY_PREFIX: str = "rainfall_cache_"
    CACHE_COORD_PRECISION: int = Field(default=4, ge=0, le=8)
    CACHE_DEFAULT_TTL: float = Field(default=12 * HOUR, gt=0)
    CACHE_HISTORICAL_TTL: float = Field(default=24 * HOUR, gt=0)
    CACHE_CURRENT_YEAR_TTL: float = Field(default=6 * HOUR, gt=0)
    CACHE_CURRENT_WEATHER_TTL: float = Field(default=1 * HOUR, gt=0)
    CACHE_WARNINGS_TTL: float = Field(default=10 * MINUTE, gt=0)
    CACHE_NEWS_TTL: float = Field(default=30 * MINUTE, gt=0)

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
