"""
Application configuration.

All tunables are read from the environment (or a local ``.env`` file) so
that the same build can run on a laptop, on a sleeping free-tier host and in
production without code changes.
"""

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DELETE_SECRET = "change-me-before-deploying"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database Configuration
    database_url: str = "sqlite:///./restaurant.db"
    log_sql_queries: bool = False
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # Environment Settings
    environment: str = "development"
    log_level: str = "INFO"
    app_version: str = "1.0.0"

    # Restaurant Configuration
    default_table_count: int = Field(default=25, ge=1, le=100)
    cart_ttl_minutes: int = Field(default=60, ge=1)
    currency: str = "NPR"
    order_number_prefix: str = "ORD"
    default_delivery_fee: str = "0"
    # IANA zone whose calendar day is the business date, e.g. Asia/Kathmandu
    restaurant_timezone: str = "UTC"

    # Destructive actions (order deletion) require this secret
    order_delete_secret: str = DEFAULT_DELETE_SECRET

    # Realtime broadcast
    redis_url: Optional[str] = None
    broadcast_channel_name: str = "restaurant:events"
    broadcast_queue_size: int = 1000

    # Client resilience (health probing / wake / timeouts)
    health_failure_threshold: int = 5
    health_poll_interval_seconds: float = 15.0
    health_probe_timeout_seconds: float = 30.0
    http_timeout_seconds: float = 15.0
    wake_max_attempts: int = 6
    wake_backoff_base_seconds: float = 1.0
    wake_parallel_probes: int = 3
    api_base_url: str = "http://localhost:8000"
    offline_queue_path: Optional[str] = None
    cart_debounce_seconds: float = 0.4

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("restaurant_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        v = v.strip()
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"RESTAURANT_TIMEZONE {v!r} is not a known IANA timezone")
        return v

    @field_validator("order_number_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("ORDER_NUMBER_PREFIX must not be empty")
        return v

    @model_validator(mode="after")
    def validate_delete_secret(self):
        """Ensure the deletion secret is not left at its default in production."""
        if self.is_production and self.order_delete_secret == DEFAULT_DELETE_SECRET:
            raise ValueError(
                "ORDER_DELETE_SECRET must be set to a secure value in production"
            )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def redis_enabled(self) -> bool:
        """Check if Redis is configured for cross-process event fan-out."""
        return bool(self.redis_url)


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Returns:
        Settings instance with environment variables loaded
    """
    return Settings()


# Export settings instance for easy import
settings = get_settings()
