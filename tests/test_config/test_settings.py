"""Tests for harvester configuration models."""

import pytest
from pydantic import ValidationError

from domharvest.config.settings import (
    BackoffStrategy,
    HarvesterConfig,
    HarvestOptions,
    LoggingConfig,
    ProxyConfig,
    RateLimitConfig,
    RetryPolicy,
    SessionConfig,
)


class TestHarvesterConfig:
    def test_defaults(self, monkeypatch):
        for var in ("DOMHARVEST_HEADLESS", "DOMHARVEST_TIMEOUT_MS", "DOMHARVEST_LOG_LEVEL"):
            monkeypatch.delenv(var, raising=False)
        config = HarvesterConfig()
        assert config.headless is True
        assert config.timeout_ms == 30000
        assert config.viewport.width == 1280
        assert config.viewport.height == 720
        assert config.rate_limit is None
        assert config.retry.max_attempts == 1
        assert config.logging.level == "INFO"
        assert config.java_script_enabled is True

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DOMHARVEST_HEADLESS", "false")
        monkeypatch.setenv("DOMHARVEST_TIMEOUT_MS", "5000")
        monkeypatch.setenv("DOMHARVEST_LOG_LEVEL", "debug")
        monkeypatch.setenv("DOMHARVEST_SESSION_DIR", str(tmp_path))
        config = HarvesterConfig()
        assert config.headless is False
        assert config.timeout_ms == 5000
        assert config.logging.level == "DEBUG"
        assert config.session.storage_dir == tmp_path

    def test_env_timeout_is_validated(self, monkeypatch):
        monkeypatch.setenv("DOMHARVEST_TIMEOUT_MS", "0")
        with pytest.raises(ValidationError):
            HarvesterConfig()

    def test_env_log_level_is_normalized(self, monkeypatch):
        monkeypatch.setenv("DOMHARVEST_LOG_LEVEL", "warning")
        assert LoggingConfig().level == "WARNING"
        monkeypatch.setenv("DOMHARVEST_LOG_LEVEL", "chatty")
        with pytest.raises(ValidationError):
            LoggingConfig()

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValidationError):
            HarvesterConfig(timeout_ms=0)

    def test_rejects_unknown_log_level(self):
        with pytest.raises(ValidationError):
            LoggingConfig(level="chatty")

    def test_rejects_empty_proxy_server(self):
        with pytest.raises(ValidationError):
            ProxyConfig(server="  ")

    def test_session_config(self, tmp_path):
        config = SessionConfig(storage_dir=tmp_path, session_id="user123")
        assert config.session_id == "user123"


class TestRateLimitConfig:
    def test_flat_form_is_global(self):
        config = RateLimitConfig.model_validate({"requests": 10, "window_ms": 60000})
        assert config.global_.requests == 10
        assert config.global_.window_ms == 60000
        assert config.per_domain is None

    def test_scoped_form(self):
        config = RateLimitConfig.model_validate(
            {"global": {"requests": 20, "per": 60000}, "per_domain": {"requests": 5, "per": 60000}}
        )
        assert config.global_.requests == 20
        assert config.per_domain.window_ms == 60000

    def test_rejects_zero_quota(self):
        with pytest.raises(ValidationError):
            RateLimitConfig.model_validate({"requests": 0, "window_ms": 1000})

    def test_nested_in_harvester_config(self):
        config = HarvesterConfig(rate_limit={"requests": 2, "window_ms": 1000})
        assert config.rate_limit.global_.requests == 2


class TestRetryPolicyMerge:
    def test_unset_fields_keep_default(self):
        default = RetryPolicy(max_attempts=3, base_delay_ms=200)
        assert HarvestOptions().retry_policy(default) == default

    def test_retries_become_attempts(self):
        policy = HarvestOptions(retries=2, backoff="linear", retry_on=["MatchTimeout"]).retry_policy(RetryPolicy())
        assert policy.max_attempts == 3
        assert policy.backoff is BackoffStrategy.LINEAR
        assert policy.retry_on == ["MatchTimeout"]

    def test_policy_is_frozen(self):
        policy = RetryPolicy()
        with pytest.raises(ValidationError):
            policy.max_attempts = 5

    def test_rejects_negative_retries(self):
        with pytest.raises(ValidationError):
            HarvestOptions(retries=-1)
