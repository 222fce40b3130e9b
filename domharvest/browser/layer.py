"""Playwright browser layer used by the Harvester.

The Browser Layer makes no decisions. It owns the browser and context,
opens one page per operation, and exposes the primitives extraction needs:
navigate, wait for a match, evaluate in the page, capture an image, and
cookies. Engine errors are translated into the harvest error taxonomy.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from domharvest.config.settings import HarvesterConfig, ScreenshotOptions
from domharvest.harvester.errors import ExtractionFailure, MatchTimeout, NavigationFailure
from domharvest.schema.compiler import CompiledSchema
from domharvest.schema.interpreter import INTERPRETER
from domharvest.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class BrowserLayer:
    """Playwright-based browser layer.

    Contract:
    - ``start`` launches the browser and one isolated context
    - every operation gets its own page via ``new_page`` and closes it after
    - failures surface as ``NavigationFailure``, ``MatchTimeout`` or
      ``ExtractionFailure`` chained to the Playwright error
    """

    def __init__(self, config: HarvesterConfig | None = None) -> None:
        self._config = config or HarvesterConfig()
        self._playwright: Any = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

    @property
    def browser(self) -> Browser | None:
        return self._browser

    @property
    def context(self) -> BrowserContext | None:
        return self._context

    @property
    def started(self) -> bool:
        return self._context is not None

    def context_options(self, storage_state: Path | None = None) -> dict[str, Any]:
        """Keyword arguments for ``browser.new_context`` built from config."""
        config = self._config
        options: dict[str, Any] = {"java_script_enabled": config.java_script_enabled}
        if config.viewport is not None:
            options["viewport"] = config.viewport.model_dump()
        if config.user_agent:
            options["user_agent"] = config.user_agent
        if config.locale:
            options["locale"] = config.locale
        if config.timezone_id:
            options["timezone_id"] = config.timezone_id
        if config.geolocation is not None:
            options["geolocation"] = config.geolocation.model_dump(exclude_none=True)
            options["permissions"] = ["geolocation"]
        if config.extra_http_headers:
            options["extra_http_headers"] = dict(config.extra_http_headers)
        if storage_state is not None:
            options["storage_state"] = str(storage_state)
        return options

    async def start(self, storage_state: Path | None = None) -> None:
        """Launch the browser and create an isolated context."""
        try:
            self._playwright = await async_playwright().start()
            launch_options: dict[str, Any] = {"headless": self._config.headless}
            if self._config.proxy is not None:
                launch_options["proxy"] = self._config.proxy.model_dump(exclude_none=True)
            self._browser = await self._playwright.chromium.launch(**launch_options)
            self._context = await self._browser.new_context(**self.context_options(storage_state))
            self._context.set_default_timeout(self._config.timeout_ms)
            if self._config.cookies:
                await self._context.add_cookies(self._config.cookies)
        except PlaywrightError as exc:
            await self.stop()
            raise NavigationFailure(
                f"Browser bootstrap failed: {exc}", operation="start", cause=exc
            ) from exc
        logger.info("Browser started", extra={"headless": self._config.headless})

    async def stop(self) -> None:
        """Clean up browser resources."""
        try:
            if self._context:
                await self._context.close()
            if self._browser:
                await self._browser.close()
            if self._playwright:
                await self._playwright.stop()
        except PlaywrightError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.BROWSER_CLEANUP_FAILED,
                message=str(exc),
                suppressed=True,
                operation="stop",
            )
        finally:
            self._context = None
            self._browser = None
            self._playwright = None

    def _require_context(self) -> BrowserContext:
        if self._context is None:
            raise NavigationFailure("Browser not started", operation="new_page")
        return self._context

    @asynccontextmanager
    async def new_page(self) -> AsyncIterator[Page]:
        """Open a page for one operation and close it afterwards."""
        page = await self._require_context().new_page()
        try:
            yield page
        finally:
            await page.close()

    async def navigate(
        self,
        page: Page,
        url: str,
        *,
        wait_until: str = "domcontentloaded",
        timeout_ms: int | None = None,
    ) -> None:
        """Navigate to ``url`` and wait for the requested load condition."""
        timeout = timeout_ms or self._config.timeout_ms
        logger.debug("Navigating", extra={"url": url, "wait_until": wait_until})
        try:
            await page.goto(url, wait_until=wait_until, timeout=timeout)
        except PlaywrightError as exc:
            raise NavigationFailure(
                f"Navigation to {url} failed: {exc}", url=url, operation="navigate", cause=exc
            ) from exc

    async def wait_for_load_state(
        self, page: Page, url: str, state: str, *, timeout_ms: int | None = None
    ) -> None:
        try:
            await page.wait_for_load_state(state, timeout=timeout_ms or self._config.timeout_ms)
        except PlaywrightError as exc:
            raise MatchTimeout(
                f"Load state {state!r} not reached on {url}",
                url=url,
                operation="wait_for_load_state",
                cause=exc,
            ) from exc

    async def wait_for_match(
        self,
        page: Page,
        url: str,
        selector: str,
        *,
        state: str = "visible",
        timeout_ms: int | None = None,
    ) -> None:
        """Wait until ``selector`` reaches ``state``; raises ``MatchTimeout`` otherwise."""
        try:
            await page.wait_for_selector(
                selector, state=state, timeout=timeout_ms or self._config.timeout_ms
            )
        except PlaywrightTimeoutError as exc:
            raise MatchTimeout(
                f"Selector {selector!r} did not become {state} on {url}",
                url=url,
                operation="wait_for_selector",
                selector=selector,
                cause=exc,
            ) from exc
        except PlaywrightError as exc:
            raise NavigationFailure(
                f"Page unavailable while waiting for {selector!r}: {exc}",
                url=url,
                operation="wait_for_selector",
                selector=selector,
                cause=exc,
            ) from exc

    async def extract(
        self, page: Page, url: str, selector: str, compiled: CompiledSchema
    ) -> list[dict[str, Any]]:
        """Run ``compiled`` against every element matching ``selector``."""
        try:
            return await page.eval_on_selector_all(selector, INTERPRETER, compiled.payload)
        except PlaywrightError as exc:
            raise ExtractionFailure(
                f"Extraction failed on {url}: {exc}",
                url=url,
                operation="extract",
                selector=selector,
                cause=exc,
            ) from exc

    async def evaluate(self, page: Page, url: str, source: str, arg: Any = None) -> Any:
        """Evaluate JavaScript ``source`` in the page and return its result."""
        try:
            return await page.evaluate(source, arg)
        except PlaywrightError as exc:
            raise ExtractionFailure(
                f"Page function failed on {url}: {exc}",
                url=url,
                operation="evaluate",
                cause=exc,
            ) from exc

    async def capture_image(self, page: Page, url: str, options: ScreenshotOptions) -> bytes:
        kwargs: dict[str, Any] = {"full_page": options.full_page, "type": options.type}
        if options.path is not None:
            options.path.parent.mkdir(parents=True, exist_ok=True)
            kwargs["path"] = str(options.path)
        if options.quality is not None and options.type == "jpeg":
            kwargs["quality"] = options.quality
        try:
            return await page.screenshot(**kwargs)
        except PlaywrightError as exc:
            raise ExtractionFailure(
                f"Screenshot failed on {url}: {exc}",
                url=url,
                operation="screenshot",
                cause=exc,
            ) from exc

    async def cookies(self, urls: list[str] | None = None) -> list[dict[str, Any]]:
        context = self._require_context()
        if urls:
            return await context.cookies(urls)
        return await context.cookies()
