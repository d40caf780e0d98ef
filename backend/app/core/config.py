"""Application configuration using pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DRIVESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "DriveSync"
    version: str = "0.1.0"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8080, description="Server port")

    # Paths
    config_path: Path = Field(
        default=Path("/config"),
        description="Path for configuration files and database",
    )

    # Database
    database_url: str | None = Field(
        default=None,
        description="Database connection URL (defaults to SQLite under config_path)",
    )

    # CORS
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )

    # Google OAuth client (token refresh only, the consent flow lives elsewhere)
    google_client_id: str | None = Field(
        default=None,
        description="Google OAuth client ID",
    )
    google_client_secret: str | None = Field(
        default=None,
        description="Google OAuth client secret",
    )
    google_token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="Google OAuth token endpoint",
    )

    # Token storage
    encryption_key: str | None = Field(
        default=None,
        description="Fernet key used to seal OAuth tokens at rest",
    )
    token_refresh_margin_seconds: int = Field(
        default=300,
        ge=0,
        description="Refresh access tokens expiring within this many seconds",
    )

    # Google API pacing
    google_request_delay: float = Field(
        default=0.1,
        ge=0,
        description="Minimum seconds between Drive API requests",
    )
    google_requests_per_minute: int = Field(
        default=600,
        ge=1,
        description="Maximum Drive API requests per minute per process",
    )

    # Drive retry policy
    drive_max_retries: int = Field(
        default=5,
        ge=0,
        le=10,
        description="Retry attempts for 429/403/5xx responses",
    )
    drive_backoff_base: float = Field(
        default=0.4,
        ge=0,
        description="Base delay in seconds for exponential backoff",
    )
    drive_backoff_factor: float = Field(
        default=1.8,
        ge=1,
        description="Multiplier applied per backoff attempt",
    )
    drive_backoff_max: float = Field(
        default=60.0,
        description="Upper bound for a single backoff delay",
    )
    drive_page_size: int = Field(
        default=1000,
        ge=1,
        le=1000,
        description="Page size for files.list and changes.list",
    )

    # Sync settings
    sync_folder_budget: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Folders expanded per sync batch (1-20)",
    )
    sync_batch_delay: float = Field(
        default=1.0,
        ge=0,
        description="Seconds between batches in the background sync loop",
    )
    batch_lease_seconds: int = Field(
        default=300,
        ge=1,
        description="Age after which an unfinished batch lease may be taken over",
    )
    orphan_warning_days: int = Field(
        default=5,
        ge=0,
        description="Days before auto-deletion at which orphans trigger a warning",
    )

    @property
    def google_oauth_configured(self) -> bool:
        """Check if the Google OAuth client is configured."""
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def db_path(self) -> Path:
        """Get the SQLite database file path."""
        return self.config_path / "drivesync.db"


# Global settings instance
settings = Settings()
