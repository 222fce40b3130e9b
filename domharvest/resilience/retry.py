"""Retry/backoff controller for a single logical operation.

Attempts run strictly one after another. After a failed attempt the error
is either retried (when attempts remain and its kind is permitted by the
policy) or propagated after the error observer has seen it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from domharvest.config.settings import BackoffStrategy, RetryPolicy
from domharvest.harvester.errors import error_kind
from domharvest.signals.emitter import SignalEmitter
from domharvest.signals.types import SignalType
from domharvest.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorObserver = Callable[[Exception, dict[str, Any]], Any]


def calculate_backoff(
    attempt: int,
    strategy: BackoffStrategy | str = BackoffStrategy.EXPONENTIAL,
    max_backoff_ms: int = 10000,
    base_delay_ms: int = 1000,
) -> int:
    """Delay in milliseconds before retrying after failed attempt ``attempt`` (0-indexed)."""
    strategy = BackoffStrategy(strategy)
    if strategy is BackoffStrategy.LINEAR:
        delay = base_delay_ms * (attempt + 1)
    else:
        delay = base_delay_ms * (2**attempt)
    return min(delay, max_backoff_ms)


def should_retry(error: BaseException, retry_on: list[str] | None) -> bool:
    """True when ``error`` may be retried under the ``retry_on`` allow-list."""
    if retry_on is None:
        return True
    return error_kind(error) in retry_on


class RetryController:
    """Runs operations under a ``RetryPolicy``.

    ``sleep`` takes seconds and defaults to ``asyncio.sleep``; tests swap it
    for a recorder.
    """

    def __init__(
        self,
        signals: SignalEmitter | None = None,
        on_error: ErrorObserver | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._signals = signals
        self._on_error = on_error
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        context: dict[str, Any] | None = None,
    ) -> T:
        policy = policy or RetryPolicy()
        context = context or {}
        started = time.monotonic()
        attempt = 0

        while True:
            try:
                return await operation()
            except Exception as exc:
                last_attempt = attempt >= policy.max_attempts - 1
                if last_attempt or not should_retry(exc, policy.retry_on):
                    await self._report_failure(exc, attempt + 1, started, context)
                    raise

                delay_ms = calculate_backoff(
                    attempt, policy.backoff, policy.max_backoff_ms, policy.base_delay_ms
                )
                logger.warning(
                    "Retrying %s after %s (attempt %d/%d, delay %dms)",
                    context.get("operation", "operation"),
                    error_kind(exc),
                    attempt + 1,
                    policy.max_attempts,
                    delay_ms,
                    extra={"url": context.get("url"), "error_message": str(exc)},
                )
                if self._signals:
                    await self._signals.emit(
                        SignalType.RETRY_ATTEMPT,
                        {
                            **context,
                            "attempt": attempt,
                            "max_attempts": policy.max_attempts,
                            "delay_ms": delay_ms,
                            "error_kind": error_kind(exc),
                        },
                    )
                await self._sleep(delay_ms / 1000.0)
                attempt += 1

    async def _report_failure(
        self, error: Exception, attempts: int, started: float, context: dict[str, Any]
    ) -> None:
        details = {
            **context,
            "attempts": attempts,
            "duration_ms": round((time.monotonic() - started) * 1000),
            "error_kind": error_kind(error),
        }
        emit_structured_error(
            logger,
            code=ErrorCode.OPERATION_FAILED,
            message=str(error),
            suppressed=False,
            target=context.get("url"),
            operation=context.get("operation"),
            details=details,
        )
        if self._signals:
            await self._signals.emit(SignalType.OPERATION_FAILED, details)
        if self._on_error is None:
            return
        try:
            result = self._on_error(error, details)
            if asyncio.iscoroutine(result):
                await result
        except Exception as observer_exc:
            emit_structured_error(
                logger,
                code=ErrorCode.ERROR_OBSERVER_FAILED,
                message=str(observer_exc),
                suppressed=True,
                target=context.get("url"),
                operation=context.get("operation"),
            )
