"""
Settings for the sync worker.

Values come from environment variables or a .env file in the working
directory; names are case-insensitive (FEED_MAX_RETRIES, feed_max_retries).
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Feed fetching, sync, scheduling and notification settings."""

    # Environment
    python_env: Literal["development", "production"] = Field(
        default="development",
        description="Application environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./data/booking_sync.db",
        description="Database connection URL"
    )

    # Property-local calendar day used to decide what is in the past
    timezone: str = Field(
        default="UTC",
        description="IANA timezone used to turn feed timestamps into calendar dates"
    )

    # Feed fetching
    feed_request_timeout: float = Field(
        default=20.0,
        gt=0,
        description="Per-request timeout for feed downloads (seconds)"
    )
    feed_total_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Hard deadline for one complete feed download (seconds)"
    )
    feed_max_redirects: int = Field(
        default=5,
        ge=0,
        description="Maximum number of redirects followed when fetching a feed"
    )
    feed_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        description="Largest accepted feed document (bytes)"
    )
    feed_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts for transient feed failures (timeouts, 429, 5xx)"
    )
    feed_user_agent: str = Field(
        default="BookingSync/1.0",
        description="User-Agent header sent to feed servers"
    )

    # Synchronization
    sync_batch_size: int = Field(
        default=100,
        ge=1,
        description="Number of event writes committed per batch"
    )
    sync_max_workers: int = Field(
        default=4,
        ge=1,
        description="Maximum connections synced in parallel"
    )
    sync_lease_seconds: int = Field(
        default=900,
        ge=30,
        description="Lifetime of a per-connection in-flight sync lease (seconds)"
    )
    sync_trigger_minutes: list[int] = Field(
        default=[15, 30, 45, 60],
        description="Cadences of the periodic sync triggers (minutes)"
    )
    skip_past_events: bool = Field(
        default=True,
        description="Ignore feed entries and stored events that ended before today"
    )

    # Connection defaults
    default_sync_frequency: int = Field(
        default=60,
        description="Sync interval assigned to new connections (minutes)"
    )
    min_sync_frequency: int = Field(
        default=15,
        ge=1,
        description="Smallest sync interval a connection may request (minutes)"
    )

    # Notifications
    new_booking_notification_cap: int = Field(
        default=5,
        ge=0,
        description="Individual new-booking notifications per sync before summarizing"
    )
    webhook_url: str = Field(
        default="",
        description="Optional endpoint receiving notifications as signed webhooks"
    )
    webhook_secret: str = Field(
        default="",
        description="HMAC secret used to sign webhook notifications"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("sync_trigger_minutes")
    @classmethod
    def validate_trigger_minutes(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("At least one sync trigger is required")
        if any(minutes <= 0 for minutes in v):
            raise ValueError("Sync trigger intervals must be positive")
        return sorted(set(v))

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.python_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.python_env == "production"

    @property
    def uses_postgresql(self) -> bool:
        """Check if PostgreSQL is the configured database."""
        return "postgresql" in self.database_url.lower()

    @property
    def uses_webhooks(self) -> bool:
        """Check if webhook notifications are configured."""
        return bool(self.webhook_url)

    def validate_production_config(self) -> None:
        """
        Reject settings that are unsafe outside development.

        Raises:
            ValueError: Listing every problem found
        """
        if not self.is_production:
            return

        errors = []

        if not self.uses_postgresql:
            errors.append(
                "Production requires PostgreSQL. "
                "Set DATABASE_URL to a PostgreSQL connection string."
            )

        if self.uses_webhooks and not self.webhook_secret:
            errors.append("WEBHOOK_SECRET is required when WEBHOOK_URL is set.")

        if self.default_sync_frequency < self.min_sync_frequency:
            errors.append(
                "DEFAULT_SYNC_FREQUENCY must not be lower than MIN_SYNC_FREQUENCY."
            )

        if errors:
            raise ValueError("Production configuration errors:\n- " + "\n- ".join(errors))


@lru_cache()
def get_settings() -> Settings:
    """Settings read once per process."""
    return Settings()
