"""Application configuration and settings management.

This module defines the application settings loaded from environment
variables and provides a helper for accessing the cached settings.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Attributes:
        DATABASE_URL: Database connection string.
        STORAGE_BACKEND: Which storage implementation serves requests,
            ``"database"`` or ``"memory"``.
        SEED_DEMO_DATA: Whether demo fixtures are loaded at startup.
        SECRET_KEY: Secret key used for JWT signing.
        ALGORITHM: Algorithm used to encode JWT tokens.
        ACCESS_TOKEN_EXPIRE_MINUTES: Access token lifetime in minutes.
        REFRESH_TOKEN_EXPIRE_MINUTES: Refresh token lifetime in minutes.
        ALLOWED_ORIGINS: Allowed origins for CORS.
        REDIS_URL: Redis connection URL for rate limiting.
        RATE_LIMIT_TIMES: Requests allowed per window on limited routes.
        RATE_LIMIT_SECONDS: Length of the rate limit window.
        LOG_LEVEL: Root logger level.
        LOG_FILE: Optional path of a log file.
    """

    DATABASE_URL: str = "sqlite:///./worship.db"
    STORAGE_BACKEND: Literal["database", "memory"] = "database"
    SEED_DEMO_DATA: bool = True
    SECRET_KEY: str = "dev-secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7
    ALLOWED_ORIGINS: List[str] = ["*"]
    REDIS_URL: str = "redis://localhost:6379"
    RATE_LIMIT_TIMES: int = 20
    RATE_LIMIT_SECONDS: int = 60
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = None

    model_config = SettingsConfigDict(env_file=".env", extra="allow")


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings.

    The settings object is cached to prevent reloading environment
    variables multiple times during application lifetime.
    """

    return Settings()
