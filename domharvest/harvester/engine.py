"""Harvester: extraction entry points with resilience controls.

Every entry point follows the same path:

    RateLimiter.acquire(url) -> RetryController.execute(attempt) ->
    BrowserLayer.navigate -> compiled schema evaluated in the page

Responsibilities:
- Own the browser layer, rate limiter, retry controller, and signals
- Compile extractors once per call, before any navigation
- Open one page per attempt and always close it
- Raise the terminal error for single-target calls
- Never raise for individual job failures in batch calls
"""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence

from domharvest.browser.layer import BrowserLayer
from domharvest.config.settings import HarvesterConfig, HarvestOptions, ScreenshotOptions
from domharvest.resilience.batch import BatchJob, BatchOrchestrator, BatchOutcome, ProgressCallback
from domharvest.resilience.rate_limiter import RateLimiter
from domharvest.resilience.retry import RetryController
from domharvest.schema.compiler import CompiledSchema, compile_extractor
from domharvest.schema.fields import Callback, SchemaError
from domharvest.session.store import SessionStore
from domharvest.signals.emitter import SignalEmitter
from domharvest.signals.types import SignalType
from domharvest.telemetry.logconfig import configure_logging

logger = logging.getLogger(__name__)


class Harvester:
    """Extracts structured records from rendered pages.

    Use as an async context manager, or call ``start``/``stop`` explicitly.
    """

    def __init__(
        self,
        config: HarvesterConfig | None = None,
        browser: BrowserLayer | None = None,
        session_store: SessionStore | None = None,
    ) -> None:
        self._config = config or HarvesterConfig()
        self._id = f"harvester_{uuid.uuid4().hex[:12]}"
        configure_logging(self._config.logging)

        self._signals = SignalEmitter(
            source=self._id,
            ledger_path=self._config.signals_ledger,
            history_limit=self._config.signals_history,
        )
        self._browser = browser or BrowserLayer(self._config)
        self._sessions = session_store or SessionStore(self._config.session.storage_dir)
        self._rate_limiter = RateLimiter.from_config(self._config.rate_limit, self._signals)
        self._retry = RetryController(signals=self._signals, on_error=self._config.on_error)
        self._batch = BatchOrchestrator(
            rate_limiter=self._rate_limiter,
            retry=self._retry,
            signals=self._signals,
            default_policy=self._config.retry,
        )

    @property
    def config(self) -> HarvesterConfig:
        return self._config

    @property
    def signals(self) -> SignalEmitter:
        return self._signals

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def browser(self) -> BrowserLayer:
        return self._browser

    # --- Lifecycle ---

    async def start(self) -> None:
        """Launch the browser, restoring the configured session if any."""
        storage_state: Path | None = None
        session_id = self._config.session.session_id
        if session_id:
            # Fails with SessionNotFound before a browser is launched.
            self._sessions.load(session_id)
            storage_state = self._sessions.path_for(session_id)
        await self._browser.start(storage_state=storage_state)

    async def stop(self) -> None:
        await self._browser.stop()

    async def __aenter__(self) -> Harvester:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # --- Entry points ---

    async def harvest(
        self,
        url: str,
        selector: str,
        extractor: Any = None,
        options: HarvestOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Extract one record per element matching ``selector`` on ``url``.

        ``extractor`` is a schema mapping, a field descriptor, JavaScript
        callback source (``str`` or ``js(...)``), or ``None`` for the default
        ``text``/``html``/``tag`` record.
        """
        options = options or HarvestOptions()
        compiled = compile_extractor(extractor)
        return await self._guarded(
            url,
            "harvest",
            lambda: self._harvest_once(url, selector, compiled, options),
            options,
            selector=selector,
        )

    async def harvest_custom(
        self,
        url: str,
        page_function: str | Callback,
        options: HarvestOptions | None = None,
    ) -> Any:
        """Navigate to ``url`` and return the result of ``page_function`` evaluated in the page."""
        options = options or HarvestOptions()
        source = page_function.source if isinstance(page_function, Callback) else page_function
        if not isinstance(source, str) or not source.strip():
            raise SchemaError("page_function must be non-empty JavaScript source")
        return await self._guarded(
            url, "harvest_custom", lambda: self._evaluate_once(url, source, options), options
        )

    async def harvest_batch(
        self,
        jobs: Sequence[BatchJob | dict[str, Any]],
        *,
        concurrency: int = 3,
        on_progress: ProgressCallback | None = None,
    ) -> list[BatchOutcome]:
        """Harvest many targets; one outcome per job, in input order.

        Jobs may be ``BatchJob`` instances or dicts with the same fields. A job
        whose schema does not compile makes the whole job list invalid.
        """
        if isinstance(jobs, (str, bytes)) or not isinstance(jobs, Sequence):
            raise TypeError("jobs must be a sequence of BatchJob or dict")
        batch_jobs = [BatchJob.model_validate(job) if isinstance(job, dict) else job for job in jobs]
        compiled = {
            id(job): compile_extractor(job.extractor)
            for job in batch_jobs
            if isinstance(job, BatchJob)
        }

        async def operation(job: BatchJob) -> list[dict[str, Any]]:
            return await self._harvest_once(job.url, job.selector, compiled[id(job)], job.options)

        return await self._batch.run(
            batch_jobs, operation, concurrency=concurrency, on_progress=on_progress
        )

    async def screenshot(self, url: str, options: HarvestOptions | None = None) -> bytes:
        """Capture an image of ``url``; ``options.screenshot`` controls format and path."""
        options = options or HarvestOptions()
        shot = options.screenshot or ScreenshotOptions()
        return await self._guarded(
            url, "screenshot", lambda: self._screenshot_once(url, shot, options), options
        )

    async def cookies(self, urls: list[str] | None = None) -> list[dict[str, Any]]:
        return await self._browser.cookies(urls)

    async def save_session(self, session_id: str) -> Path:
        """Persist the current browser context under ``session_id``."""
        if not self._browser.started:
            raise RuntimeError("Harvester not started")
        path = await self._sessions.save(session_id, self._browser.context)
        await self._signals.emit(SignalType.SESSION_SAVED, {"session_id": session_id})
        return path

    # --- Internals ---

    async def _guarded(
        self,
        url: str,
        operation_name: str,
        attempt: Callable[[], Awaitable[Any]],
        options: HarvestOptions,
        selector: str | None = None,
    ) -> Any:
        await self._rate_limiter.acquire(url)
        return await self._retry.execute(
            attempt,
            options.retry_policy(self._config.retry),
            {"url": url, "operation": operation_name, "selector": selector},
        )

    async def _harvest_once(
        self, url: str, selector: str, compiled: CompiledSchema, options: HarvestOptions
    ) -> list[dict[str, Any]]:
        started = time.monotonic()
        async with self._browser.new_page() as page:
            await self._open(page, url, options)
            await self._browser.wait_for_match(
                page,
                url,
                selector,
                state=options.wait_for_selector.state,
                timeout_ms=options.wait_for_selector.timeout_ms or options.timeout_ms,
            )
            records = await self._browser.extract(page, url, selector, compiled)
            if options.screenshot is not None:
                await self._browser.capture_image(page, url, options.screenshot)

        duration_ms = round((time.monotonic() - started) * 1000)
        logger.info(
            "Extracted %d records from %s",
            len(records),
            url,
            extra={"url": url, "selector": selector, "duration_ms": duration_ms},
        )
        await self._signals.emit(
            SignalType.EXTRACTION_COMPLETE,
            {
                "url": url,
                "selector": selector,
                "records": len(records),
                "mode": compiled.mode.value,
                "duration_ms": duration_ms,
            },
        )
        return records

    async def _evaluate_once(self, url: str, source: str, options: HarvestOptions) -> Any:
        async with self._browser.new_page() as page:
            await self._open(page, url, options)
            return await self._browser.evaluate(page, url, source)

    async def _screenshot_once(
        self, url: str, shot: ScreenshotOptions, options: HarvestOptions
    ) -> bytes:
        async with self._browser.new_page() as page:
            await self._open(page, url, options)
            return await self._browser.capture_image(page, url, shot)

    async def _open(self, page: Any, url: str, options: HarvestOptions) -> None:
        await self._browser.navigate(
            page, url, wait_until=options.wait_until, timeout_ms=options.timeout_ms
        )
        if options.wait_for_load_state:
            await self._browser.wait_for_load_state(
                page, url, options.wait_for_load_state, timeout_ms=options.timeout_ms
            )


async def harvest(
    url: str,
    selector: str,
    extractor: Any = None,
    options: HarvestOptions | None = None,
    config: HarvesterConfig | None = None,
) -> list[dict[str, Any]]:
    """One-off harvest: start a Harvester, extract, and stop it."""
    async with Harvester(config) as harvester:
        return await harvester.harvest(url, selector, extractor, options)
