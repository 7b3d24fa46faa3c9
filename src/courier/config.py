"""Configuration management for Courier."""

import logging
import warnings
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Upper bound for any HTTP timeout, global or per subscription.
MAX_TIMEOUT_SECONDS = 300.0


class RetryPolicy(BaseModel):
    """Retry schedule for failed deliveries.

    The delay before try ``k + 1`` is:
        min(base_delay_seconds * 2 ** (k - 1), max_delay_seconds)

    With the defaults a failing delivery is tried three times, waiting 5s
    and then 10s between tries.

    Attributes:
        max_tries: Total tries per (event, subscription), including the first.
        base_delay_seconds: Delay after the first failed try.
        max_delay_seconds: Upper bound for any single delay.
        retry_client_errors: Retry 4xx responses (other than 429) too.
    """

    max_tries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Total delivery tries per event and subscription",
    )
    base_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Delay after the first failed try (doubles each try)",
    )
    max_delay_seconds: float = Field(
        default=300.0,
        ge=0.0,
        description="Cap applied to every retry delay",
    )
    retry_client_errors: bool = Field(
        default=True,
        description="Retry 4xx responses other than 429 instead of failing immediately",
    )

    @model_validator(mode="after")
    def _validate_delay_bounds(self) -> "RetryPolicy":
        """Reject a cap below the base delay."""
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be greater than or "
                f"equal to base_delay_seconds ({self.base_delay_seconds})"
            )
        return self

    def delay_for(self, try_number: int) -> float:
        """Seconds to wait after ``try_number`` failed."""
        if try_number < 1:
            raise ValueError(f"try_number must be >= 1, got {try_number}")
        return min(self.base_delay_seconds * (2 ** (try_number - 1)), self.max_delay_seconds)


class Settings(BaseSettings):
    """Courier configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the COURIER_ prefix. For example:
        COURIER_DATABASE_URL=postgresql+asyncpg://courier:secret@db/courier
        COURIER_RETRY__MAX_TRIES=5
        COURIER_DISABLE_THRESHOLD=20
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./courier.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(
        default=False,
        description="Log every SQL statement",
    )

    # Delivery
    delivery_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=MAX_TIMEOUT_SECONDS,
        description="Timeout for a single webhook HTTP call",
    )
    retry: RetryPolicy = Field(
        default_factory=RetryPolicy,
        description="Retry schedule for failed deliveries",
    )
    disable_threshold: int = Field(
        default=10,
        ge=1,
        description="Consecutive permanently failed deliveries before a subscription is disabled",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum delivery tasks (and HTTP calls) running at once",
    )
    require_https: bool = Field(
        default=False,
        description="Only accept https:// target URLs at registration",
    )
    user_agent: str = Field(
        default="courier-webhooks/0.1",
        description="User-Agent header sent with every delivery",
    )
    response_body_max_chars: int = Field(
        default=1000,
        ge=0,
        le=65536,
        description="Receiver response body is truncated to this length before storing",
    )

    # Retry scheduler
    scheduler_enabled: bool = Field(
        default=True,
        description="Run the background retry scheduler inside the service",
    )
    scheduler_poll_interval_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=60.0,
        description="How often the scheduler looks for due attempts",
    )
    scheduler_batch_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum due attempts submitted per scheduler sweep",
    )
    stuck_attempt_minutes: int = Field(
        default=10,
        ge=1,
        description="In-flight attempts older than this are treated as interrupted",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # CORS Configuration
    cors_enabled: bool = Field(
        default=False,
        description="Enable CORS middleware on the admin API",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=list,
        description="List of allowed CORS origins",
    )

    model_config = {
        "env_prefix": "COURIER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_timeouts(self) -> "Settings":
        """Stuck-attempt detection must not fire while a call can still be running.

        Subscriptions may override the timeout up to MAX_TIMEOUT_SECONDS, so the
        threshold is checked against that cap rather than the global default.
        """
        if self.stuck_attempt_minutes * 60 <= MAX_TIMEOUT_SECONDS:
            raise ValueError(
                f"stuck_attempt_minutes ({self.stuck_attempt_minutes}) must exceed the "
                f"longest possible delivery timeout ({MAX_TIMEOUT_SECONDS:g} seconds)"
            )
        return self

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Warn about settings that are unsafe in production."""
        if self.env != "production":
            return self

        if self.database_url.startswith("sqlite"):
            warnings.warn(
                "SQLite is configured in production. Delivery state will not be shared "
                "between processes. Set COURIER_DATABASE_URL to a PostgreSQL URL.",
                UserWarning,
                stacklevel=2,
            )
            logger.warning("SQLite database configured in production")

        if not self.require_https:
            logger.warning("Plain http:// webhook targets are accepted in production")

        return self


# Global settings instance
settings = Settings()
