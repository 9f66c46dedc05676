"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Collection Monitor engine, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="Connection pool size (ignored for SQLite)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string"
            )
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings.

    Redis is only needed when cooldown and dirty-set state is shared
    between processes (``STATE_BACKEND=redis``).
    """

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string",
    )
    key_prefix: str = Field(
        default="collection_monitor:",
        alias="REDIS_KEY_PREFIX",
        description="Namespace prefix for all Redis keys",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class AlertSettings(BaseSettings):
    """Alert thresholds and cooldown."""

    model_config = SettingsConfigDict(env_prefix="ALERT_", extra="ignore")

    price_drop_percent: float = Field(
        default=10.0,
        alias="ALERT_PRICE_DROP_PERCENT",
        ge=0.0,
        le=100.0,
        description="Fire price_drop when the 24h price change is below -N%",
    )
    volume_spike_percent: float = Field(
        default=50.0,
        alias="ALERT_VOLUME_SPIKE_PERCENT",
        ge=0.0,
        description="Fire volume_spike when the 24h purchase volume exceeds N",
    )
    listing_depletion_percent: float = Field(
        default=30.0,
        alias="ALERT_LISTING_DEPLETION_PERCENT",
        ge=0.0,
        le=100.0,
        description="Fire listing_depletion when listed count shrinks by more than N%",
    )
    cooldown_minutes: int = Field(
        default=60,
        alias="ALERT_COOLDOWN_MINUTES",
        ge=0,
        le=7 * 24 * 60,
        description="Minimum minutes between two alerts of the same type for one collection",
    )


class RetentionSettings(BaseSettings):
    """Data retention sweeper settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    retention_hours: int = Field(
        default=72,
        alias="DATA_RETENTION_HOURS",
        ge=1,
        le=24 * 365,
        description="Rows older than this many hours are deleted",
    )
    batch_size: int = Field(
        default=500,
        alias="CLEANUP_BATCH_SIZE",
        ge=1,
        le=100_000,
        description="Maximum rows deleted per batch",
    )
    warning_threshold: int = Field(
        default=1000,
        alias="CLEANUP_WARNING_THRESHOLD",
        ge=0,
        description="Warn when one table loses more than this many rows in a run",
    )


class WebhookSettings(BaseSettings):
    """Webhook notification channel settings."""

    model_config = SettingsConfigDict(env_prefix="WEBHOOK_", extra="ignore")

    url: SecretStr | None = Field(
        default=None,
        alias="WEBHOOK_URL",
        description="Endpoint receiving alert JSON payloads",
    )
    max_retries: int = Field(
        default=3,
        alias="WEBHOOK_MAX_RETRIES",
        ge=0,
        le=20,
        description="Retries after the first failed delivery attempt",
    )
    backoff_ms: int = Field(
        default=1000,
        alias="WEBHOOK_BACKOFF_MS",
        ge=0,
        le=600_000,
        description="Base backoff in milliseconds (doubles with each retry)",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="WEBHOOK_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="Per-request timeout",
    )

    @property
    def enabled(self) -> bool:
        """Return True if a webhook URL is configured."""
        return self.url is not None and bool(self.url.get_secret_value())


class EmailSettings(BaseSettings):
    """Email notification channel settings."""

    model_config = SettingsConfigDict(env_prefix="EMAIL_", extra="ignore")

    enabled: bool = Field(
        default=False,
        alias="EMAIL_ENABLED",
        description="Enable email notifications",
    )
    to: str | None = Field(
        default=None,
        alias="EMAIL_TO",
        description="Comma-separated recipient list",
    )
    sender: str = Field(
        default="alerts@collection-monitor.local",
        alias="EMAIL_FROM",
        description="Sender address",
    )
    smtp_host: str | None = Field(
        default=None,
        alias="EMAIL_SMTP_HOST",
        description="SMTP server; when unset the composed message is only logged",
    )
    smtp_port: int = Field(
        default=587,
        alias="EMAIL_SMTP_PORT",
        ge=1,
        le=65535,
        description="SMTP server port",
    )
    smtp_user: str | None = Field(
        default=None,
        alias="EMAIL_SMTP_USER",
        description="SMTP login user",
    )
    smtp_password: SecretStr | None = Field(
        default=None,
        alias="EMAIL_SMTP_PASSWORD",
        description="SMTP login password",
    )

    @property
    def recipients(self) -> list[str]:
        """Parse the recipient list."""
        if not self.to:
            return []
        return [r.strip() for r in self.to.split(",") if r.strip()]


class SchedulerSettings(BaseSettings):
    """Scheduled job switches."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    enable_hourly_refresh: bool = Field(
        default=False,
        alias="ENABLE_CRON",
        description="Run the metrics refresh at the top of every hour",
    )
    enable_cleanup: bool = Field(
        default=False,
        alias="ENABLE_CLEANUP_CRON",
        description="Run the retention sweep every hour",
    )
    cleanup_minute: int = Field(
        default=10,
        alias="CLEANUP_CRON_MINUTE",
        ge=0,
        le=59,
        description="Minute past the hour at which the cleanup job runs",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from collection_monitor.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.alerts.cooldown_minutes)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    alerts: AlertSettings = Field(
        default_factory=lambda: AlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    retention: RetentionSettings = Field(
        default_factory=lambda: RetentionSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    webhook: WebhookSettings = Field(
        default_factory=lambda: WebhookSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    email: EmailSettings = Field(
        default_factory=lambda: EmailSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scheduler: SchedulerSettings = Field(
        default_factory=lambda: SchedulerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    state_backend: Literal["memory", "redis"] = Field(
        default="memory",
        alias="STATE_BACKEND",
        description="Where cooldown and dirty-set state lives",
    )
    admin_api_key: SecretStr | None = Field(
        default=None,
        alias="ADMIN_API_KEY",
        description="Key required by the on-demand admin refresh",
    )
    max_refresh_workers: int | None = Field(
        default=None,
        alias="MAX_REFRESH_WORKERS",
        ge=1,
        le=256,
        description="Concurrent collection refreshes (defaults to CPU count)",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Evaluate and persist alerts without sending notifications",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "alerts": {
                "price_drop_percent": str(self.alerts.price_drop_percent),
                "volume_spike_percent": str(self.alerts.volume_spike_percent),
                "listing_depletion_percent": str(self.alerts.listing_depletion_percent),
                "cooldown_minutes": str(self.alerts.cooldown_minutes),
            },
            "retention": {
                "retention_hours": str(self.retention.retention_hours),
                "batch_size": str(self.retention.batch_size),
                "warning_threshold": str(self.retention.warning_threshold),
            },
            "webhook": {
                "url": "(set)" if self.webhook.enabled else "(not set)",
                "max_retries": str(self.webhook.max_retries),
                "backoff_ms": str(self.webhook.backoff_ms),
            },
            "email": {
                "enabled": str(self.email.enabled),
                "to": self.email.to or "(not set)",
                "smtp_host": self.email.smtp_host or "(not set)",
                "smtp_password": "(set)" if self.email.smtp_password else "(not set)",
            },
            "scheduler": {
                "hourly_refresh": str(self.scheduler.enable_hourly_refresh),
                "cleanup": str(self.scheduler.enable_cleanup),
            },
            "admin_api_key": "(set)" if self.admin_api_key else "(not set)",
            "state_backend": self.state_backend,
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self) -> None:
        """Validate cross-group requirements.

        Raises:
            ValueError: If a selected capability is not configured.
        """
        if self.state_backend == "redis" and not self.redis.url:
            raise ValueError("REDIS_URL is required when STATE_BACKEND=redis")
        if self.email.enabled and not self.email.recipients:
            raise ValueError("EMAIL_TO is required when EMAIL_ENABLED=true")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
