"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation.

Usage:
    from utils.config import settings

    api_host = settings.APP_STORE_API_HOST
    redis_url = settings.REDIS_URL
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Linux; Android 10; K) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/133.0.0.0 Mobile Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/133.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.4 Mobile/15E148 Safari/604.1",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App Store Configuration
    APP_STORE_API_HOST: str = Field(default="https://amp-api-edge.apps.apple.com")
    APP_STORE_API_PATH: str = Field(default="/v1/catalog/{country}/apps/{app_id}/reviews")
    APP_STORE_REFERRER: str = Field(default="https://apps.apple.com/")
    APP_STORE_LANDING_HOST: str = Field(default="https://apps.apple.com")
    APP_STORE_LIMIT: int = Field(default=500, ge=1)
    APP_STORE_PAGE_SIZE: int = Field(default=20, ge=1, le=20)
    APP_STORE_PAGE_DELAY_SECONDS: float = Field(default=0.0, ge=0)

    # HTTP Configuration
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0)
    HTTP_MAX_RETRIES: int = Field(default=3, ge=0)
    HTTP_BACKOFF_INITIAL_SECONDS: float = Field(default=1.0)
    HTTP_BACKOFF_MAX_SECONDS: float = Field(default=10.0)
    HTTP_USER_AGENTS: list[str] = Field(default_factory=lambda: list(DEFAULT_USER_AGENTS))

    # Rate Limit Backoff
    RATE_LIMIT_MAX_RETRIES: int = Field(default=5, ge=0)
    RATE_LIMIT_BACKOFF_INITIAL_SECONDS: float = Field(default=1.0)
    RATE_LIMIT_BACKOFF_MAX_SECONDS: float = Field(default=60.0)

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    REDIS_MAX_CONNECTIONS: int = Field(default=10)
    REDIS_CHANNEL_REQUEST: str = Field(default="pipeline.extract_request")
    REDIS_CHANNEL_COMPLETED: str = Field(default="pipeline.extract_completed")

    # Database Configuration
    SQLITE_PATH: str = Field(default="/data/db/reviews.db")

    # Consumer Configuration
    MESSAGE_TIMEOUT_SECONDS: float = Field(default=900.0)
    RUN_ONCE: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")

    # Application Metadata
    ENVIRONMENT: str = Field(default="production")
    APP_NAME: str = Field(default="review-ingestor")
    APP_VERSION: str = Field(default="0.1.0")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
