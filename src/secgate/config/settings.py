"""
Application settings using Pydantic.

Provides environment-based configuration loading with SECGATE_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SECGATE_",
    )

    # Database
    database_url: str = "postgresql+psycopg://localhost/secgate"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    # Debug
    debug: bool = False

    # Logging: json for the service, console for humans
    log_level: str = "INFO"
    log_format: str = "json"

    # Environment
    environment: str = "development"

    # API
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = []

    # Storage backend for policies, gates and audit events: memory, sql
    policy_store: str = "memory"
    seed_default_policies: bool = True

    # Metrics snapshot provider
    metrics_url: str | None = None
    metrics_token: str | None = None
    metrics_window_days: int = 30

    # HTTP client settings
    http_timeout: float = 30.0

    # Notifications
    slack_webhook_url: str | None = None
    notification_webhook_url: str | None = None
    email_relay_url: str | None = None
    notification_timeout: float = 10.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
