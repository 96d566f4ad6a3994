"""Application settings and configuration.

This module defines all configuration options for the zlog federation service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="zlog", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Public identity of this instance
    site_url: str = Field(default="http://localhost:8000", alias="SITE_URL")
    blog_title: str = Field(default="zlog", alias="BLOG_TITLE")
    blog_display_name: str = Field(default="zlog owner", alias="BLOG_DISPLAY_NAME")
    blog_description: str | None = Field(default=None, alias="BLOG_DESCRIPTION")
    blog_avatar_url: str | None = Field(default=None, alias="BLOG_AVATAR_URL")

    # Static bearer token guarding the admin endpoints
    admin_token: str | None = Field(default=None, alias="ADMIN_TOKEN")

    # Database configuration
    database_url: str = Field(default="sqlite:///./zlog.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Push delivery (webhook dispatcher)
    federation_dispatch_timeout_seconds: float = Field(
        default=10.0,
        alias="FEDERATION_DISPATCH_TIMEOUT_SECONDS",
    )
    federation_dispatch_workers: int = Field(default=8, alias="FEDERATION_DISPATCH_WORKERS")
    federation_dispatch_queue_size: int = Field(
        default=1000,
        alias="FEDERATION_DISPATCH_QUEUE_SIZE",
    )

    # Pull reconciliation (sync worker)
    federation_fetch_timeout_seconds: float = Field(
        default=15.0,
        alias="FEDERATION_FETCH_TIMEOUT_SECONDS",
    )
    federation_sync_enabled: bool = Field(default=True, alias="FEDERATION_SYNC_ENABLED")
    federation_sync_interval_minutes: int = Field(
        default=15,
        alias="FEDERATION_SYNC_INTERVAL_MINUTES",
    )
    federation_sync_initial_delay_seconds: float = Field(
        default=5.0,
        alias="FEDERATION_SYNC_INITIAL_DELAY_SECONDS",
    )
    federation_sync_concurrency: int = Field(default=4, alias="FEDERATION_SYNC_CONCURRENCY")
    federation_sync_failure_threshold: int = Field(
        default=10,
        alias="FEDERATION_SYNC_FAILURE_THRESHOLD",
    )
    federation_sync_max_pages: int = Field(default=20, alias="FEDERATION_SYNC_MAX_PAGES")
    federation_sync_stale_after_seconds: float = Field(
        default=180.0,
        alias="FEDERATION_SYNC_STALE_AFTER_SECONDS",
    )

    # Chat webhook receiving subscription lifecycle notifications
    notify_webhook_url: str | None = Field(default=None, alias="NOTIFY_WEBHOOK_URL")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @field_validator("site_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def sync_interval_seconds(self) -> float:
        """Return the pull interval in seconds, never shorter than one minute."""
        return max(1, self.federation_sync_interval_minutes) * 60.0


settings = Settings()
