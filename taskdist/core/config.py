"""Configuration management for taskdist."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="./data/taskdist.db", description="Path to the SQLite database file")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    environment: str = Field(default="production", description="Deployment environment reported to Logfire")

    # Redis Configuration (optional)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")

    # Registry Configuration
    registry_base_url: str | None = Field(
        default=None,
        description="Base URL of the remote organization/collection-point registry (local tables when unset)",
    )
    registry_api_key: str | None = Field(default=None, description="API key sent to the remote registry")
    registry_timeout_seconds: float = Field(default=5.0, description="Upper bound for a single registry lookup")

    # Scheduler Configuration
    scheduler_enabled: bool = Field(default=True, description="Run the periodic distribution tick")
    scheduler_interval_minutes: int = Field(default=5, description="Minutes between distribution ticks")
    scheduler_max_concurrency: int = Field(default=4, description="Templates processed concurrently per tick")
    template_timeout_seconds: float = Field(
        default=60.0, description="Upper bound for processing a single template within a tick"
    )

    # Template Defaults
    default_timezone: str = Field(default="Asia/Shanghai", description="Timezone used when a template sets none")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # HTTP Status Codes
    HTTP_OK: int = 200
    HTTP_SERVICE_UNAVAILABLE: int = 503

    # Calendar
    MINUTES_IN_DAY: int = 24 * 60
    DAYS_IN_WEEK: int = 7
    MAX_BACKFILL_PERIODS: int = 365

    # Scheduler
    TICK_JOB_ID: str = "distribution_tick"
    TICK_MAX_RETRIES: int = 3

    # Job Tracker Configuration
    TRACKER_TTL_SECONDS: int = 86400 * 7  # Keep job history for 7 days
    TRACKER_DEAD_LETTER_QUEUE_MAXLEN: int = 100  # Max items in dead letter queue
    TRACKER_DLQ_THRESHOLD: int = 3  # Consecutive failures before a job lands in the DLQ
    TRACKER_ERROR_MAX_LENGTH: int = 500

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10  # Maximum connections in Redis connection pool

    # Pagination Defaults
    DEFAULT_PER_PAGE_LIMIT: int = 100  # Default pagination limit for list queries
    REGISTRY_PAGE_LIMIT: int = 1000


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
