"""
Configuration Management for the Identity Session Manager

Provides validated configuration with sensible defaults.
Supports environment variable overrides (prefix AUTHSESSION_).

Design:
- Immutable after construction
- Fail-fast on invalid configuration
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from authsession.core.types import Result, Ok, Err
from authsession.core import constants as C


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters and per-operation attempt budgets."""

    base_delay_ms: int = C.RETRY_BASE_DELAY_MS
    max_delay_ms: int = C.RETRY_MAX_DELAY_MS
    login_max_attempts: int = C.LOGIN_MAX_ATTEMPTS
    registration_max_attempts: int = C.REGISTRATION_MAX_ATTEMPTS


@dataclass(frozen=True)
class MonitorConfig:
    """Session expiry monitor timing."""

    poll_interval_s: float = C.MONITOR_POLL_INTERVAL_S
    refresh_threshold_s: float = C.REFRESH_THRESHOLD_S


@dataclass(frozen=True)
class ValidationConfig:
    """Client-side input rules applied before registration."""

    min_secret_length: int = C.MIN_SECRET_LENGTH
    identifier_pattern: str = C.IDENTIFIER_PATTERN


@dataclass(frozen=True)
class ProfileStoreConfig:
    """PostgreSQL profile store configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "postgres"
    user: str = "postgres"
    password: str = field(default="", repr=False)
    table: str = C.PROFILE_TABLE
    pool_min: int = C.PROFILE_POOL_MIN
    pool_max: int = C.PROFILE_POOL_MAX
    query_timeout_ms: int = C.PROFILE_QUERY_TIMEOUT_MS

    @property
    def dsn(self) -> str:
        """PostgreSQL connection string (without password)."""
        return f"postgresql://{self.user}@{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    log_json: bool = True


@dataclass(frozen=True)
class SessionConfig:
    """Root configuration for the session manager."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    profile_store: ProfileStoreConfig = field(default_factory=ProfileStoreConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Result[SessionConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with AUTHSESSION_.
        Example: AUTHSESSION_LOGIN_MAX_ATTEMPTS, AUTHSESSION_PG_HOST
        """
        env = os.environ if environ is None else environ
        try:
            retry = RetryConfig(
                base_delay_ms=int(env.get("AUTHSESSION_RETRY_BASE_MS", C.RETRY_BASE_DELAY_MS)),
                max_delay_ms=int(env.get("AUTHSESSION_RETRY_MAX_MS", C.RETRY_MAX_DELAY_MS)),
                login_max_attempts=int(
                    env.get("AUTHSESSION_LOGIN_MAX_ATTEMPTS", C.LOGIN_MAX_ATTEMPTS)
                ),
                registration_max_attempts=int(
                    env.get("AUTHSESSION_REGISTRATION_MAX_ATTEMPTS", C.REGISTRATION_MAX_ATTEMPTS)
                ),
            )

            monitor = MonitorConfig(
                poll_interval_s=float(
                    env.get("AUTHSESSION_MONITOR_INTERVAL_S", C.MONITOR_POLL_INTERVAL_S)
                ),
                refresh_threshold_s=float(
                    env.get("AUTHSESSION_REFRESH_THRESHOLD_S", C.REFRESH_THRESHOLD_S)
                ),
            )

            validation = ValidationConfig(
                min_secret_length=int(
                    env.get("AUTHSESSION_MIN_SECRET_LENGTH", C.MIN_SECRET_LENGTH)
                ),
            )

            profile_store = ProfileStoreConfig(
                host=env.get("AUTHSESSION_PG_HOST", "localhost"),
                port=int(env.get("AUTHSESSION_PG_PORT", "5432")),
                database=env.get("AUTHSESSION_PG_DATABASE", "postgres"),
                user=env.get("AUTHSESSION_PG_USER", "postgres"),
                password=env.get("AUTHSESSION_PG_PASSWORD", ""),
                table=env.get("AUTHSESSION_PG_TABLE", C.PROFILE_TABLE),
            )

            observability = ObservabilityConfig(
                log_level=env.get("AUTHSESSION_LOG_LEVEL", "INFO").upper(),
                log_json=env.get("AUTHSESSION_LOG_JSON", "true").lower() in ("1", "true", "yes"),
            )

            return Ok(cls(
                retry=retry,
                monitor=monitor,
                validation=validation,
                profile_store=profile_store,
                observability=observability,
            ))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        if self.retry.base_delay_ms < 0:
            return Err("Retry base delay cannot be negative")
        if self.retry.base_delay_ms > self.retry.max_delay_ms:
            return Err("Retry base delay cannot exceed max delay")
        if self.retry.login_max_attempts < 1 or self.retry.registration_max_attempts < 1:
            return Err("Attempt budgets must be >= 1")
        if self.monitor.poll_interval_s <= 0:
            return Err("Monitor poll interval must be positive")
        if self.monitor.refresh_threshold_s < 0:
            return Err("Refresh threshold cannot be negative")
        if self.validation.min_secret_length < 1:
            return Err("Minimum secret length must be >= 1")
        if self.profile_store.pool_min > self.profile_store.pool_max:
            return Err("Profile store pool_min cannot exceed pool_max")
        return Ok(None)
