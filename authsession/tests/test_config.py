"""
Unit tests for configuration loading and validation.
"""

from dataclasses import replace

from authsession.core.config import (
    MonitorConfig,
    ProfileStoreConfig,
    RetryConfig,
    SessionConfig,
)


class TestFromEnv:
    """Tests for environment-driven configuration."""

    def test_defaults(self):
        config = SessionConfig.from_env({}).unwrap()
        assert config.retry.base_delay_ms == 1000
        assert config.retry.max_delay_ms == 10_000
        assert config.retry.login_max_attempts == 5
        assert config.retry.registration_max_attempts == 3
        assert config.monitor.poll_interval_s == 60
        assert config.monitor.refresh_threshold_s == 300
        assert config.validation.min_secret_length == 6
        assert config.profile_store.table == "users"
        assert config.validate().is_ok()

    def test_overrides(self):
        config = SessionConfig.from_env({
            "AUTHSESSION_RETRY_BASE_MS": "50",
            "AUTHSESSION_LOGIN_MAX_ATTEMPTS": "2",
            "AUTHSESSION_MONITOR_INTERVAL_S": "5",
            "AUTHSESSION_PG_HOST": "db.internal",
            "AUTHSESSION_PG_PASSWORD": "pw",
            "AUTHSESSION_LOG_LEVEL": "debug",
            "AUTHSESSION_LOG_JSON": "no",
        }).unwrap()
        assert config.retry.base_delay_ms == 50
        assert config.retry.login_max_attempts == 2
        assert config.monitor.poll_interval_s == 5.0
        assert config.profile_store.host == "db.internal"
        assert config.observability.log_level == "DEBUG"
        assert config.observability.log_json is False

    def test_malformed_value_is_err(self):
        result = SessionConfig.from_env({"AUTHSESSION_PG_PORT": "not-a-port"})
        assert result.is_err()
        assert "Configuration error" in result.error

    def test_password_not_in_repr_or_dsn(self):
        store = ProfileStoreConfig(password="topsecret")
        assert "topsecret" not in repr(store)
        assert "topsecret" not in store.dsn


class TestValidate:
    """Tests for invariant checks."""

    def test_base_above_max_rejected(self):
        config = SessionConfig(retry=RetryConfig(base_delay_ms=20_000, max_delay_ms=10_000))
        assert config.validate().is_err()

    def test_zero_attempt_budget_rejected(self):
        config = SessionConfig(retry=RetryConfig(login_max_attempts=0))
        assert config.validate().is_err()

    def test_non_positive_interval_rejected(self):
        config = SessionConfig(monitor=MonitorConfig(poll_interval_s=0))
        assert config.validate().is_err()

    def test_pool_bounds_checked(self):
        config = SessionConfig(profile_store=replace(ProfileStoreConfig(), pool_min=10, pool_max=2))
        assert config.validate().is_err()
