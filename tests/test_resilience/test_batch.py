"""Tests for chunked batch orchestration."""

import asyncio

import pytest

from domharvest.config.settings import HarvestOptions, RetryPolicy
from domharvest.harvester.errors import MatchTimeout, NavigationFailure
from domharvest.resilience.batch import BatchJob, BatchOrchestrator
from domharvest.resilience.rate_limiter import RateLimiter, SlidingWindow
from domharvest.resilience.retry import RetryController
from domharvest.signals.emitter import SignalEmitter
from domharvest.signals.types import SignalType


async def _no_sleep(seconds):
    return None


def make_jobs(n, **options):
    return [
        BatchJob(url=f"https://example.com/{i}", selector=".item", options=HarvestOptions(**options))
        for i in range(n)
    ]


def orchestrator(**kwargs):
    kwargs.setdefault("retry", RetryController(sleep=_no_sleep))
    return BatchOrchestrator(**kwargs)


class TestBatchOrchestrator:
    @pytest.mark.asyncio
    async def test_outcomes_in_input_order_with_failure(self):
        jobs = make_jobs(4)

        async def operation(job):
            if job.url.endswith("/1"):
                raise NavigationFailure("down", url=job.url)
            return [{"url": job.url}]

        outcomes = await orchestrator().run(jobs, operation, concurrency=2)
        assert [o.url for o in outcomes] == [job.url for job in jobs]
        assert [o.success for o in outcomes] == [True, False, True, True]
        assert outcomes[1].error == "down"
        assert outcomes[1].error_name == "NavigationFailure"
        assert outcomes[1].data is None
        assert outcomes[0].data == [{"url": "https://example.com/0"}]
        assert all(o.duration_ms >= 0 for o in outcomes)

    @pytest.mark.asyncio
    async def test_order_preserved_when_completion_order_differs(self):
        jobs = make_jobs(3)
        delays = {"https://example.com/0": 0.03, "https://example.com/1": 0.0, "https://example.com/2": 0.01}

        async def operation(job):
            await asyncio.sleep(delays[job.url])
            return job.url

        progress = []
        outcomes = await orchestrator().run(
            jobs, operation, concurrency=3, on_progress=lambda done, total: progress.append(done)
        )
        assert [o.data for o in outcomes] == [job.url for job in jobs]
        assert progress == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_chunk_barrier_bounds_concurrency(self):
        jobs = make_jobs(5)
        running = 0
        peak = 0
        events = []

        async def operation(job):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            events.append(("start", job.url[-1]))
            # the first job of each chunk is the slowest
            await asyncio.sleep(0.03 if job.url[-1] in "024" else 0.0)
            running -= 1
            events.append(("end", job.url[-1]))
            return True

        await orchestrator().run(jobs, operation, concurrency=2)
        assert peak == 2
        # job 2 waits for the slow job 0 even though job 1 freed a slot earlier
        assert events.index(("end", "0")) < events.index(("start", "2"))
        assert events.index(("end", "2")) < events.index(("start", "4"))

    @pytest.mark.asyncio
    async def test_progress_fires_once_per_job(self):
        calls = []

        async def operation(job):
            if job.url.endswith("/2"):
                raise MatchTimeout("slow")
            return 1

        await orchestrator().run(
            make_jobs(5), operation, concurrency=2, on_progress=lambda c, t: calls.append((c, t))
        )
        assert calls == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]

    @pytest.mark.asyncio
    async def test_async_progress_callback(self):
        calls = []

        async def on_progress(completed, total):
            calls.append(completed)

        async def operation(job):
            return 1

        await orchestrator().run(make_jobs(3), operation, concurrency=1, on_progress=on_progress)
        assert calls == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_abort(self):
        def on_progress(completed, total):
            raise RuntimeError("progress broke")

        async def operation(job):
            return 1

        outcomes = await orchestrator().run(make_jobs(2), operation, on_progress=on_progress)
        assert all(o.success for o in outcomes)

    @pytest.mark.asyncio
    async def test_job_retries_use_job_policy(self):
        attempts = {}

        async def operation(job):
            attempts[job.url] = attempts.get(job.url, 0) + 1
            if attempts[job.url] < 3:
                raise MatchTimeout("not yet")
            return "done"

        outcomes = await orchestrator().run(make_jobs(2, retries=2), operation, concurrency=2)
        assert all(o.success for o in outcomes)
        assert set(attempts.values()) == {3}

    @pytest.mark.asyncio
    async def test_default_policy_applies_without_job_retries(self):
        attempts = []

        async def operation(job):
            attempts.append(job.url)
            raise MatchTimeout("never")

        orch = orchestrator(default_policy=RetryPolicy(max_attempts=2))
        outcomes = await orch.run(make_jobs(1), operation)
        assert not outcomes[0].success
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_rate_limiter_acquired_per_job(self):
        acquired = []

        class RecordingLimiter(RateLimiter):
            async def acquire(self, target):
                acquired.append(target)

        async def operation(job):
            return 1

        jobs = make_jobs(3)
        await orchestrator(rate_limiter=RecordingLimiter(global_scope=SlidingWindow(1, 1))).run(
            jobs, operation
        )
        assert sorted(acquired) == sorted(job.url for job in jobs)

    @pytest.mark.asyncio
    async def test_signals_for_progress_and_completion(self):
        emitter = SignalEmitter(source="test")

        async def operation(job):
            if job.url.endswith("/0"):
                raise NavigationFailure("x")
            return 1

        await orchestrator(signals=emitter).run(make_jobs(2), operation)
        progress = [s for s in emitter.signals if s.signal_type == SignalType.BATCH_PROGRESS]
        complete = [s for s in emitter.signals if s.signal_type == SignalType.BATCH_COMPLETE]
        assert len(progress) == 2
        assert complete[0].payload == {"total": 2, "succeeded": 1, "failed": 1}

    @pytest.mark.asyncio
    async def test_empty_job_list(self):
        async def operation(job):
            return 1

        assert await orchestrator().run([], operation) == []


class TestMisuse:
    @pytest.mark.asyncio
    async def test_non_positive_concurrency(self):
        async def operation(job):
            return 1

        with pytest.raises(ValueError):
            await orchestrator().run(make_jobs(1), operation, concurrency=0)

    @pytest.mark.asyncio
    async def test_malformed_job_list(self):
        async def operation(job):
            return 1

        with pytest.raises(TypeError):
            await orchestrator().run([{"url": "https://example.com"}], operation)
        with pytest.raises(TypeError):
            await orchestrator().run("https://example.com", operation)
