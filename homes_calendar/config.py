"""
Configuration management for Homes Calendar.

Uses Pydantic Settings for type-safe environment variable loading.
Configured via .env file in project root.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via .env file or environment variables.
    """

    # Python & Application
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
        default="sqlite:///./data/homes_calendar.db",
        description="Database connection URL"
    )

    # Timezone used to normalise all-day events and format dates
    timezone: str = Field(
        default="America/Los_Angeles",
        description="Default family timezone (IANA name)"
    )

    # Encryption of ICS URLs and OAuth tokens at rest
    encryption_key: str = Field(
        default="",
        description="32-byte key, 64 hex chars or 44 base64 chars"
    )

    # Google OAuth Configuration (read-only calendar import)
    google_oauth_client_id: str = Field(
        default="",
        description="Google OAuth 2.0 client ID"
    )
    google_oauth_client_secret: str = Field(
        default="",
        description="Google OAuth 2.0 client secret"
    )
    google_oauth_redirect_uri: str = Field(
        default="http://localhost:8000/integrations/google/callback",
        description="OAuth redirect URI (must match Google Cloud Console)"
    )

    # Scheduled sync
    cron_secret: str = Field(
        default="",
        description="Shared secret required by the scheduled sync endpoint"
    )
    sync_fetch_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound for a single upstream fetch"
    )
    sync_past_months: int = Field(default=6, description="Sync window before today")
    sync_future_months: int = Field(default=12, description="Sync window after today")
    sync_max_sources_per_run: int = Field(
        default=10,
        description="Maximum sources synced by one scheduled run"
    )
    ics_max_response_bytes: int = Field(
        default=5 * 1024 * 1024,
        description="Largest ICS feed accepted"
    )
    ics_max_occurrences: int = Field(
        default=2000,
        description="Hard cap on events produced from one feed"
    )
    ics_default_refresh_minutes: int = Field(default=30)
    ics_min_sync_interval_minutes: int = Field(default=5)

    # Home-day workflow
    home_day_overlap_policy: Literal["allow", "reject"] = Field(
        default="allow",
        description=(
            "'allow' lets confirmed home days at different homes overlap "
            "(transition days); 'reject' refuses the overlap"
        )
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

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
    def uses_google_oauth(self) -> bool:
        """Check if Google OAuth is configured."""
        return bool(self.google_oauth_client_id and self.google_oauth_client_secret)

    def validate_production_config(self) -> None:
        """
        Validate configuration for production environment.

        Raises:
            ValueError: If required production settings are missing or invalid
        """
        if not self.is_production:
            return

        errors = []

        if not self.uses_postgresql:
            errors.append(
                "Production requires PostgreSQL. "
                "Set DATABASE_URL to a PostgreSQL connection string."
            )

        if not self.encryption_key:
            errors.append("ENCRYPTION_KEY is required in production.")

        if errors:
            raise ValueError("Production configuration errors:\n- " + "\n- ".join(errors))


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Example:
        >>> from homes_calendar.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.database_url)
    """
    return Settings()
