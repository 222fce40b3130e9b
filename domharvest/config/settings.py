"""domharvest configuration settings."""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _bool_env(var_name: str, default: bool) -> bool:
    raw = os.getenv(var_name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


class BackoffStrategy(str, Enum):
    EXPONENTIAL = "exponential"
    LINEAR = "linear"


class RetryPolicy(BaseModel):
    """Retry and backoff policy for one logical operation.

    ``retry_on`` is an optional allow-list of error kind names. When it is
    ``None`` every error kind is retried.
    """

    max_attempts: int = Field(default=1, ge=1)
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_delay_ms: int = Field(default=1000, ge=0)
    max_backoff_ms: int = Field(default=10000, ge=0)
    retry_on: list[str] | None = None

    model_config = {"frozen": True}


class RateWindow(BaseModel):
    """A sliding-window quota: ``requests`` per ``window_ms``."""

    requests: int
    window_ms: int

    @model_validator(mode="before")
    @classmethod
    def _accept_per_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "per" in data and "window_ms" not in data:
            per = data["per"]
            data = {key: value for key, value in data.items() if key != "per"}
            data["window_ms"] = per
        return data

    @field_validator("requests", "window_ms")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("rate limit requests and window_ms must be >= 1")
        return value


class RateLimitConfig(BaseModel):
    """Rate limiting for the global scope and for each target domain.

    Accepts the flat ``{"requests": 10, "window_ms": 60000}`` form as a
    global quota, or ``{"global": {...}, "per_domain": {...}}``.
    """

    global_: RateWindow | None = Field(default=None, alias="global")
    per_domain: RateWindow | None = None

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _accept_flat_form(cls, data: Any) -> Any:
        if isinstance(data, dict) and "requests" in data:
            return {"global": data}
        return data


class Viewport(BaseModel):
    width: int = 1280
    height: int = 720


class Geolocation(BaseModel):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    accuracy: float | None = None


class ProxyConfig(BaseModel):
    """Proxy settings passed through to the browser launcher."""

    server: str
    bypass: str | None = None
    username: str | None = None
    password: str | None = None

    @field_validator("server")
    @classmethod
    def _validate_server(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("proxy server cannot be empty")
        return value


class LoggingConfig(BaseModel):
    """Logger level and an optional handler acting as the log sink."""

    level: str = Field(
        default_factory=lambda: os.getenv("DOMHARVEST_LOG_LEVEL", "INFO"), validate_default=True
    )
    sink: logging.Handler | None = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level


class SessionConfig(BaseModel):
    """Where sessions live and which one (if any) to restore on start."""

    storage_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("DOMHARVEST_SESSION_DIR", "./sessions"))
    )
    session_id: str | None = None


class WaitForSelector(BaseModel):
    state: Literal["attached", "detached", "visible", "hidden"] = "visible"
    timeout_ms: int | None = None


class ScreenshotOptions(BaseModel):
    path: Path | None = None
    full_page: bool = False
    type: Literal["png", "jpeg"] = "png"
    quality: int | None = Field(default=None, ge=0, le=100)


class HarvestOptions(BaseModel):
    """Per-call options for a single harvest, custom evaluation, or screenshot.

    Retry fields left unset fall back to the harvester's default policy.
    """

    retries: int | None = Field(default=None, ge=0)
    backoff: BackoffStrategy | None = None
    base_delay_ms: int | None = Field(default=None, ge=0)
    max_backoff_ms: int | None = Field(default=None, ge=0)
    retry_on: list[str] | None = None
    timeout_ms: int | None = Field(default=None, ge=1)
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = "domcontentloaded"
    wait_for_load_state: Literal["load", "domcontentloaded", "networkidle"] | None = None
    wait_for_selector: WaitForSelector = Field(default_factory=WaitForSelector)
    screenshot: ScreenshotOptions | None = None

    def retry_policy(self, default: RetryPolicy) -> RetryPolicy:
        """Merge the per-call retry fields over ``default``."""
        updates: dict[str, Any] = {}
        if self.retries is not None:
            updates["max_attempts"] = self.retries + 1
        if self.backoff is not None:
            updates["backoff"] = self.backoff
        if self.base_delay_ms is not None:
            updates["base_delay_ms"] = self.base_delay_ms
        if self.max_backoff_ms is not None:
            updates["max_backoff_ms"] = self.max_backoff_ms
        if self.retry_on is not None:
            updates["retry_on"] = self.retry_on
        return default.model_copy(update=updates)


class HarvesterConfig(BaseModel):
    """Root configuration for a Harvester."""

    headless: bool = Field(default_factory=lambda: _bool_env("DOMHARVEST_HEADLESS", True))
    timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("DOMHARVEST_TIMEOUT_MS", "30000")),
        validate_default=True,
    )
    viewport: Viewport | None = Field(default_factory=Viewport)
    user_agent: str | None = None
    locale: str | None = None
    timezone_id: str | None = None
    geolocation: Geolocation | None = None
    proxy: ProxyConfig | None = None
    extra_http_headers: dict[str, str] = Field(default_factory=dict)
    cookies: list[dict[str, Any]] = Field(default_factory=list)
    java_script_enabled: bool = True
    rate_limit: RateLimitConfig | None = None
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    signals_ledger: Path | None = None
    signals_history: int = Field(default=1000, ge=1)
    on_error: Callable[[Exception, dict[str, Any]], Any] | None = None

    @field_validator("timeout_ms")
    @classmethod
    def _validate_timeout(cls, value: int) -> int:
        if value < 1:
            raise ValueError("timeout_ms must be >= 1")
        return value
