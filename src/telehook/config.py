"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the relay,
loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from telehook.queue.rules import DEFAULT_SPAM_KEYWORDS


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )
    echo: bool = Field(
        default=False,
        alias="DATABASE_ECHO",
        description="Log every SQL statement",
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


class TelegramSettings(BaseSettings):
    """Fallback bot for alerts without channel routing."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Default Telegram bot token",
    )
    channel_id: str | None = Field(
        default=None,
        alias="TELEGRAM_CHANNEL_ID",
        description="Default Telegram channel ID",
    )

    @property
    def enabled(self) -> bool:
        """Check if the default bot is configured."""
        return self.bot_token is not None and self.channel_id is not None


class QueueSettings(BaseSettings):
    """Alert queue sizing."""

    model_config = SettingsConfigDict(env_prefix="QUEUE_")

    workers: int = Field(
        default=20,
        alias="QUEUE_WORKERS",
        description="Concurrent delivery workers",
        ge=1,
    )
    size: int = Field(
        default=15_000,
        alias="QUEUE_SIZE",
        description="Work queue capacity",
        ge=1,
    )
    batch_size: int = Field(
        default=10,
        alias="QUEUE_BATCH_SIZE",
        description="Buffered alerts that trigger a batch flush",
        ge=1,
    )
    batch_interval_seconds: float = Field(
        default=5.0,
        alias="QUEUE_BATCH_INTERVAL_SECONDS",
        description="Seconds between timed batch flushes",
        gt=0,
    )
    max_backoff_seconds: float = Field(
        default=300.0,
        alias="QUEUE_MAX_BACKOFF_SECONDS",
        description="Upper bound on a retry delay",
        gt=0,
    )


class RuleSettings(BaseSettings):
    """Rule engine settings."""

    model_config = SettingsConfigDict(env_prefix="")

    dedup_window_seconds: float = Field(
        default=30.0,
        alias="DEDUP_WINDOW_SECONDS",
        description="Window within which identical alerts are suppressed",
        gt=0,
    )
    spam_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SPAM_KEYWORDS),
        alias="SPAM_KEYWORDS",
        description="Keywords that get an alert filtered (JSON list)",
    )
    spam_case_insensitive: bool = Field(
        default=False,
        alias="SPAM_CASE_INSENSITIVE",
        description="Match spam keywords regardless of case",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from telehook.config import get_settings

        settings = get_settings()
        print(settings.queue.workers)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Nested configuration groups
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    rules: RuleSettings = Field(default_factory=RuleSettings)

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    host: str = Field(
        default="0.0.0.0",
        alias="SERVER_HOST",
        description="HTTP bind address",
    )
    port: int = Field(
        default=10000,
        alias="PORT",
        description="HTTP port for the webhook and stats endpoints",
        ge=1,
        le=65535,
    )
    rate_limit: int = Field(
        default=10,
        alias="RATE_LIMIT",
        description="Webhook requests per minute per client",
        ge=1,
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "telegram_enabled": str(self.telegram.enabled),
            "queue_workers": str(self.queue.workers),
            "queue_size": str(self.queue.size),
            "dedup_window_seconds": str(self.rules.dedup_window_seconds),
            "log_level": self.log_level,
            "listen": f"{self.host}:{self.port}",
            "rate_limit": str(self.rate_limit),
        }

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
