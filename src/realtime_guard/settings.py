from __future__ import annotations

import structlog
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from realtime_guard.logging import configure_structlog, get_log_level_value

NETWORK_FAILURE_THRESHOLD = 3


def _env(field_name: str, env_name: str) -> AliasChoices:
    return AliasChoices(field_name, env_name)


class GuardSettings(BaseSettings):
    """Runtime settings for the realtime update guard.

    Every value is optional. Environment variable names follow the ones the
    realtime updater has always read, so deployments need no new variables.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_ignore_empty=True,
        populate_by_name=True,
    )

    timeout_ms: int = Field(
        default=30_000,
        validation_alias=_env("timeout_ms", "GTFS_REALTIME_TIMEOUT"),
    )
    max_retries: int = Field(
        default=2,
        validation_alias=_env("max_retries", "GTFS_REALTIME_RETRIES"),
    )
    failure_threshold: int = Field(
        default=5,
        validation_alias=_env("failure_threshold", "GTFS_CB_FAILURE_THRESHOLD"),
    )
    reset_timeout_ms: int = Field(
        default=60_000,
        validation_alias=_env("reset_timeout_ms", "GTFS_CB_RESET_TIMEOUT"),
    )
    detailed_logging: bool = Field(
        default=False,
        validation_alias=_env("detailed_logging", "GTFS_DETAILED_LOGGING"),
    )
    disable_wrapper: bool = Field(
        default=False,
        validation_alias=_env("disable_wrapper", "GTFS_DISABLE_ROBUST_WRAPPER"),
    )
    environment: str = Field(
        default="production",
        validation_alias=_env("environment", "ENVIRONMENT"),
    )
    log_level: str = Field(
        default="INFO",
        validation_alias=_env("log_level", "LOG_LEVEL"),
    )

    @field_validator("environment", "log_level", mode="before")
    @classmethod
    def _strip_string(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        get_log_level_value(value)
        return value.upper()

    @model_validator(mode="after")
    def _validate_guard_settings(self) -> GuardSettings:
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms must be >= 0")
        return self

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    @property
    def reset_timeout_seconds(self) -> float:
        return self.reset_timeout_ms / 1000

    @property
    def logging_enabled(self) -> bool:
        """Whether start/success events of each update are logged."""
        return self.detailed_logging or self.environment.lower() == "development"

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Set up process logging from ``log_level`` and ``environment``."""
        return configure_structlog(
            log_level=self.log_level,
            environment=self.environment,
        )


class RealtimeFeedSettings(BaseSettings):
    """Endpoints and per-request timeouts for the realtime feed provider."""

    model_config = SettingsConfigDict(
        env_prefix="GTFS_",
        case_sensitive=False,
        env_ignore_empty=True,
    )

    alerts_url: str | None = None
    trip_updates_url: str | None = None
    vehicle_positions_url: str | None = None
    alerts_timeout: float = 10.0
    trip_updates_timeout: float = 15.0
    vehicle_positions_timeout: float = 15.0
    download_timeout: float = 30.0

    @model_validator(mode="after")
    def _validate_timeouts(self) -> RealtimeFeedSettings:
        for name in (
            "alerts_timeout",
            "trip_updates_timeout",
            "vehicle_positions_timeout",
            "download_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        return self
