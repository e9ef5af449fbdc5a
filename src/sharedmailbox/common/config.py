"""
Configuration management for sharedmailbox.

This module provides configuration loading from environment variables
and configuration files, with type-safe settings classes.
"""

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .exceptions import InvalidConfigError, MissingConfigError

DEFAULT_CALLBACK_HOSTS = [
    "id.dev.trade-tariff.service.gov.uk",
    "id.staging.trade-tariff.service.gov.uk",
]


class MailboxSettings(BaseSettings):
    """Shared inbox configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="MAILBOX_",
        extra="ignore",
    )

    recipient: str = Field(default="", description="Shared test mailbox address")
    prefix: str = Field(default="inbound/", description="Storage prefix holding raw emails")
    wait_timeout: float = Field(
        default=20.0, gt=0, description="Seconds to wait for a new email"
    )
    poll_interval: float = Field(
        default=1.0, gt=0, description="Seconds between inbox polls"
    )
    list_limit: int = Field(
        default=100, ge=1, le=1000, description="Maximum keys listed per poll"
    )
    allowed_hosts: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_CALLBACK_HOSTS),
        description="Hosts a passwordless callback link may point at",
    )

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, v: Any) -> list[str]:
        """Parse allowed hosts from comma-separated string or list."""
        if isinstance(v, str):
            return [host.strip().lower() for host in v.split(",") if host.strip()]
        return v


class StorageSettings(BaseSettings):
    """Object storage configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        extra="ignore",
    )

    backend: str = Field(default="s3", description="Storage backend: s3 or memory")
    bucket: str = Field(default="", description="Bucket holding the inbox and lock")
    region: str = Field(default="eu-west-2", description="Storage region")
    endpoint_url: Optional[str] = Field(
        None, description="Custom endpoint for S3-compatible storage"
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate storage backend name."""
        v_lower = v.lower()
        if v_lower not in ("s3", "memory"):
            raise ValueError("Storage backend must be one of: s3, memory")
        return v_lower


class LockSettings(BaseSettings):
    """Mailbox lock configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOCK_",
        extra="ignore",
    )

    key: str = Field(default="locks/myott-e2e.lock", description="Lock object key")
    max_wait: float = Field(
        default=60.0, gt=0, description="Seconds to wait for the lock"
    )
    poll_interval: float = Field(
        default=5.0, gt=0, description="Seconds between acquisition attempts"
    )
    stale_after: float = Field(
        default=300.0, gt=0, description="Age in seconds after which a lock is stale"
    )


class ProbeSettings(BaseSettings):
    """Retry probe and API configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="PROBE_",
        extra="ignore",
    )

    api_url: str = Field(
        default="https://search.dev.trade-tariff.service.gov.uk/fpo-code-search",
        description="Classification API endpoint",
    )
    retries: int = Field(default=120, ge=1, description="Maximum probe attempts")
    interval: float = Field(
        default=1.0, ge=0, description="Seconds between probe attempts"
    )
    timeout: float = Field(default=30.0, gt=0, description="HTTP request timeout")

    @field_validator("api_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate API URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper


class Settings(BaseSettings):
    """Main settings aggregating all configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SHAREDMAILBOX_",
        extra="ignore",
    )

    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")

    # Sub-settings
    mailbox: MailboxSettings = Field(default_factory=MailboxSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    lock: LockSettings = Field(default_factory=LockSettings)
    probe: ProbeSettings = Field(default_factory=ProbeSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_toml(cls, path: str | Path) -> "Settings":
        """
        Load settings from a TOML configuration file.

        Args:
            path: Path to the TOML configuration file.

        Returns:
            Settings instance with loaded configuration.

        Raises:
            MissingConfigError: If the file does not exist.
            InvalidConfigError: If the file cannot be parsed.
        """
        path = Path(path)
        if not path.exists():
            raise MissingConfigError("config_file", details={"path": str(path)})

        try:
            with open(path, "rb") as f:
                config_data = tomllib.load(f)
        except Exception as e:
            raise InvalidConfigError(
                config_key="config_file",
                value=str(path),
                reason=f"Failed to parse TOML: {e}",
            )

        return cls._from_dict(config_data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Create settings from a dictionary of TOML sections."""
        settings_kwargs: dict[str, Any] = {}

        if "app" in data:
            settings_kwargs.update(data["app"])

        if "mailbox" in data:
            settings_kwargs["mailbox"] = MailboxSettings(**data["mailbox"])

        if "storage" in data:
            settings_kwargs["storage"] = StorageSettings(**data["storage"])

        if "lock" in data:
            settings_kwargs["lock"] = LockSettings(**data["lock"])

        if "probe" in data:
            settings_kwargs["probe"] = ProbeSettings(**data["probe"])

        if "logging" in data:
            settings_kwargs["logging"] = LoggingSettings(**data["logging"])

        return cls(**settings_kwargs)

    def validate_required(self) -> None:
        """
        Validate that all required configuration is present.

        Raises:
            MissingConfigError: If required configuration is missing.
            InvalidConfigError: If values are inconsistent.
        """
        if not self.mailbox.recipient:
            raise MissingConfigError("MAILBOX_RECIPIENT")
        if self.storage.backend == "s3" and not self.storage.bucket:
            raise MissingConfigError("STORAGE_BUCKET")
        if self.lock.poll_interval > self.lock.max_wait:
            raise InvalidConfigError(
                config_key="LOCK_POLL_INTERVAL",
                value=self.lock.poll_interval,
                reason="poll interval must not exceed LOCK_MAX_WAIT",
            )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings.

    Settings come from environment variables, or from the TOML file named
    by SHAREDMAILBOX_CONFIG_FILE when it exists.

    Returns:
        Settings instance.
    """
    config_file = os.getenv("SHAREDMAILBOX_CONFIG_FILE")

    if config_file and Path(config_file).exists():
        settings = Settings.from_toml(config_file)
    else:
        settings = Settings()

    return settings


def reload_settings() -> Settings:
    """
    Reload settings, clearing the cache.

    Returns:
        Fresh Settings instance.
    """
    get_settings.cache_clear()
    return get_settings()
