"""Login and cookie helpers built on the session store."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import BaseModel, SecretStr

from domharvest.harvester.errors import MatchTimeout, NavigationFailure
from domharvest.session.store import SessionStore, dump_cookies

logger = logging.getLogger(__name__)


class Credentials(BaseModel):
    username: str
    password: SecretStr


class LoginSelectors(BaseModel):
    username: str = 'input[name="username"], input[type="email"], input[name="email"]'
    password: str = 'input[name="password"], input[type="password"]'
    submit: str = 'button[type="submit"], input[type="submit"]'


async def save_cookies(context: BrowserContext, path: Path | str | None = None) -> list[dict[str, Any]]:
    """Return the context's cookies, also writing them to ``path`` when given."""
    cookies = await context.cookies()
    if path is not None:
        Path(path).write_text(dump_cookies(cookies))
    return cookies


async def load_cookies(
    context: BrowserContext, cookies_or_path: Path | str | list[dict[str, Any]]
) -> None:
    """Add cookies from a JSON file path or from a cookie list."""
    if isinstance(cookies_or_path, (str, Path)):
        cookies = json.loads(Path(cookies_or_path).read_text())
    elif isinstance(cookies_or_path, list):
        cookies = cookies_or_path
    else:
        raise TypeError("cookies_or_path must be a file path or a list of cookies")
    await context.add_cookies(cookies)


async def _wait_for_field(page: Page, selector: str, timeout_ms: int, field: str) -> Any:
    try:
        return await page.wait_for_selector(selector, timeout=timeout_ms)
    except PlaywrightTimeoutError as exc:
        raise MatchTimeout(
            f"{field} field not found with selector: {selector}",
            url=page.url,
            operation="fill_login_form",
            selector=selector,
            cause=exc,
        ) from exc


async def fill_login_form(
    page: Page,
    credentials: Credentials,
    selectors: LoginSelectors | None = None,
    *,
    timeout_ms: int = 30000,
    wait_for_navigation: bool = True,
) -> None:
    """Fill the username and password fields and submit the form."""
    selectors = selectors or LoginSelectors()

    username_field = await _wait_for_field(page, selectors.username, timeout_ms, "Username")
    await username_field.fill(credentials.username)

    password_field = await _wait_for_field(page, selectors.password, timeout_ms, "Password")
    await password_field.fill(credentials.password.get_secret_value())

    submit_button = await _wait_for_field(page, selectors.submit, timeout_ms, "Submit")
    if wait_for_navigation:
        async with page.expect_navigation(timeout=timeout_ms):
            await submit_button.click()
    else:
        await submit_button.click()


async def login(
    page: Page,
    login_url: str,
    credentials: Credentials,
    *,
    selectors: LoginSelectors | None = None,
    store: SessionStore | None = None,
    session_id: str | None = None,
    cookies_path: Path | str | None = None,
    success_selector: str | None = None,
    timeout_ms: int = 30000,
) -> Path | None:
    """Log in through a form and optionally persist the resulting session.

    Returns the saved session path when ``store`` and ``session_id`` are given.
    """
    try:
        await page.goto(login_url, timeout=timeout_ms)
    except PlaywrightError as exc:
        raise NavigationFailure(
            f"Navigation to {login_url} failed: {exc}",
            url=login_url,
            operation="login",
            cause=exc,
        ) from exc

    await fill_login_form(page, credentials, selectors, timeout_ms=timeout_ms)

    if success_selector:
        try:
            await page.wait_for_selector(success_selector, timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise MatchTimeout(
                f"Login did not reach {success_selector!r}",
                url=login_url,
                operation="login",
                selector=success_selector,
                cause=exc,
            ) from exc

    logger.info("Logged in", extra={"url": login_url, "username": credentials.username})

    session_path = None
    if store is not None and session_id:
        session_path = await store.save(session_id, page.context)
    if cookies_path is not None:
        await save_cookies(page.context, cookies_path)
    return session_path
