"""Sliding-window rate limiting, global and per target domain."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

from domharvest.config.settings import RateLimitConfig
from domharvest.signals.emitter import SignalEmitter
from domharvest.signals.types import SignalType

logger = logging.getLogger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class SlidingWindow:
    """Exact issuance timestamps (ms) within a moving window of ``window_ms``."""

    def __init__(self, quota: int, window_ms: int) -> None:
        if quota < 1 or window_ms < 1:
            raise ValueError("quota and window_ms must be >= 1")
        self.quota = quota
        self.window_ms = window_ms
        self._timestamps: deque[float] = deque()

    def __len__(self) -> int:
        return len(self._timestamps)

    def purge(self, now: float) -> None:
        cutoff = now - self.window_ms
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def wait_ms(self, now: float) -> float:
        """Milliseconds until a slot frees up; 0 when one is available now."""
        self.purge(now)
        if len(self._timestamps) < self.quota:
            return 0.0
        return max(self._timestamps[0] + self.window_ms - now, 0.0)

    def record(self, now: float) -> None:
        self._timestamps.append(now)


class RateLimiter:
    """Suspends callers until both the global and the target's domain quota allow them.

    Scopes are checked in order, global first. Timestamp deques are touched
    only from the event loop and are not locked.
    """

    def __init__(
        self,
        global_scope: SlidingWindow | None = None,
        per_domain: tuple[int, int] | None = None,
        signals: SignalEmitter | None = None,
        clock: Callable[[], float] = _monotonic_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._global = global_scope
        self._per_domain = per_domain
        self._domains: dict[str, SlidingWindow] = {}
        self._signals = signals
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, config: RateLimitConfig | None, signals: SignalEmitter | None = None
    ) -> RateLimiter:
        if config is None:
            return cls(signals=signals)
        global_scope = None
        if config.global_ is not None:
            global_scope = SlidingWindow(config.global_.requests, config.global_.window_ms)
        per_domain = None
        if config.per_domain is not None:
            per_domain = (config.per_domain.requests, config.per_domain.window_ms)
        return cls(global_scope=global_scope, per_domain=per_domain, signals=signals)

    @property
    def enabled(self) -> bool:
        return self._global is not None or self._per_domain is not None

    def domain_scope(self, domain: str) -> SlidingWindow | None:
        if self._per_domain is None:
            return None
        scope = self._domains.get(domain)
        if scope is None:
            scope = SlidingWindow(*self._per_domain)
            self._domains[domain] = scope
        return scope

    async def acquire(self, target: str) -> None:
        """Wait until ``target`` may be requested, then record the request."""
        if self._global is not None:
            await self._acquire_scope(self._global, "global", target)

        domain = _domain_of(target)
        if domain is None:
            return
        scope = self.domain_scope(domain)
        if scope is not None:
            await self._acquire_scope(scope, domain, target)

    async def _acquire_scope(self, scope: SlidingWindow, name: str, target: str) -> None:
        while True:
            wait_ms = scope.wait_ms(self._clock())
            if wait_ms <= 0:
                break
            logger.debug(
                "Rate limit reached for %s scope, waiting %.0fms",
                name,
                wait_ms,
                extra={"url": target, "scope": name},
            )
            if self._signals:
                await self._signals.emit(
                    SignalType.RATE_LIMITED,
                    {"scope": name, "url": target, "wait_ms": round(wait_ms)},
                )
            await self._sleep(wait_ms / 1000.0)
        scope.record(self._clock())


def _domain_of(target: str) -> str | None:
    try:
        hostname = urlparse(target).hostname
    except ValueError:
        return None
    return hostname or None
