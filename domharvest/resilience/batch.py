"""Batch orchestration: many independent jobs under a concurrency ceiling.

Jobs are split into consecutive chunks of ``concurrency``. A chunk runs
concurrently and must settle completely before the next chunk starts, so
peak concurrency never exceeds the configured value. Individual job
failures become failure outcomes; they never abort siblings or the batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from domharvest.config.settings import HarvestOptions, RetryPolicy
from domharvest.harvester.errors import error_kind
from domharvest.resilience.rate_limiter import RateLimiter
from domharvest.resilience.retry import RetryController
from domharvest.signals.emitter import SignalEmitter
from domharvest.signals.types import SignalType
from domharvest.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Any]


class BatchJob(BaseModel):
    """One unit of batch work."""

    url: str
    selector: str
    extractor: Any = None
    options: HarvestOptions = Field(default_factory=HarvestOptions)

    model_config = ConfigDict(arbitrary_types_allowed=True)


class BatchOutcome(BaseModel):
    """Result of one batch job. Exactly one of ``data``/``error`` is meaningful."""

    url: str
    success: bool
    data: Any = None
    error: str | None = None
    error_name: str | None = None
    duration_ms: int = 0


class BatchOrchestrator:
    """Runs jobs chunk by chunk, composing rate limiting and retries per job."""

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        retry: RetryController | None = None,
        signals: SignalEmitter | None = None,
        default_policy: RetryPolicy | None = None,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._retry = retry or RetryController()
        self._signals = signals
        self._default_policy = default_policy or RetryPolicy()

    async def run(
        self,
        jobs: Sequence[BatchJob],
        operation: Callable[[BatchJob], Awaitable[Any]],
        *,
        concurrency: int = 3,
        on_progress: ProgressCallback | None = None,
    ) -> list[BatchOutcome]:
        """Run ``operation`` for every job; ``outcomes[i]`` belongs to ``jobs[i]``."""
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency!r}")
        if isinstance(jobs, (str, bytes)) or not isinstance(jobs, Sequence):
            raise TypeError("jobs must be a sequence of BatchJob")
        for index, job in enumerate(jobs):
            if not isinstance(job, BatchJob):
                raise TypeError(f"jobs[{index}] is {type(job).__name__}, expected BatchJob")

        total = len(jobs)
        completed = 0
        outcomes: list[BatchOutcome] = []

        async def settle(job: BatchJob) -> BatchOutcome:
            nonlocal completed
            outcome = await self._run_job(job, operation)
            completed += 1
            await self._notify_progress(on_progress, completed, total)
            return outcome

        logger.info("Starting batch of %d jobs (concurrency %d)", total, concurrency)
        for start in range(0, total, concurrency):
            chunk = jobs[start : start + concurrency]
            outcomes.extend(await asyncio.gather(*(settle(job) for job in chunk)))

        succeeded = sum(1 for outcome in outcomes if outcome.success)
        logger.info("Batch complete: %d succeeded, %d failed", succeeded, total - succeeded)
        if self._signals:
            await self._signals.emit(
                SignalType.BATCH_COMPLETE,
                {"total": total, "succeeded": succeeded, "failed": total - succeeded},
            )
        return outcomes

    async def _run_job(
        self, job: BatchJob, operation: Callable[[BatchJob], Awaitable[Any]]
    ) -> BatchOutcome:
        started = time.monotonic()
        try:
            if self._rate_limiter is not None:
                await self._rate_limiter.acquire(job.url)
            data = await self._retry.execute(
                lambda: operation(job),
                job.options.retry_policy(self._default_policy),
                {"url": job.url, "operation": "harvest", "selector": job.selector},
            )
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.BATCH_JOB_FAILED,
                message=str(exc),
                suppressed=True,
                target=job.url,
                operation="harvest",
                details={"error_kind": error_kind(exc)},
            )
            return BatchOutcome(
                url=job.url,
                success=False,
                error=str(exc),
                error_name=error_kind(exc),
                duration_ms=_elapsed_ms(started),
            )
        return BatchOutcome(url=job.url, success=True, data=data, duration_ms=_elapsed_ms(started))

    async def _notify_progress(
        self, on_progress: ProgressCallback | None, completed: int, total: int
    ) -> None:
        if self._signals:
            await self._signals.emit(
                SignalType.BATCH_PROGRESS, {"completed": completed, "total": total}
            )
        if on_progress is None:
            return
        try:
            result = on_progress(completed, total)
            if asyncio.iscoroutine(result):
                await result
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.PROGRESS_CALLBACK_FAILED,
                message=str(exc),
                suppressed=True,
                details={"completed": completed, "total": total},
            )


def _elapsed_ms(started: float) -> int:
    return round((time.monotonic() - started) * 1000)
