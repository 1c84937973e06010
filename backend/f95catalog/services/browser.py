"""Playwright browser manager and browsing-context adapter."""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from f95catalog.config import config
from f95catalog.errors import ErrorCategory, PipelineError

logger = logging.getLogger(__name__)

_NETWORK_ERROR_MARKERS = (
    "net::err_name_not_resolved",
    "net::err_internet_disconnected",
    "net::err_connection",
    "net::err_address_unreachable",
    "net::err_network_changed",
)


class BrowsingContext(Protocol):
    """Operations the scraper and session manager need from a browser tab."""

    async def navigate(self, url: str, timeout_ms: Optional[int] = None) -> Optional[int]: ...

    async def wait_for_selector(self, selector: str, timeout_ms: Optional[int] = None) -> None: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    def current_url(self) -> str: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def click_and_wait(self, selector: str, timeout_ms: Optional[int] = None) -> None: ...

    async def has_element(self, selector: str) -> bool: ...

    async def close(self) -> None: ...


class BrowsingContextProvider(Protocol):
    """Factory for fresh browsing contexts."""

    async def open(self) -> BrowsingContext: ...


def translate_playwright_error(exc: Exception, url: str) -> PipelineError:
    """Map a Playwright failure onto the pipeline error taxonomy.

    Args:
        exc: Exception raised by Playwright.
        url: URL that was being loaded.

    Returns:
        PipelineError: Categorised error for the caller.
    """
    if isinstance(exc, PlaywrightTimeoutError):
        return PipelineError(ErrorCategory.NAVIGATION_TIMEOUT, f"Timed out loading {url}: {exc}")
    message = str(exc)
    lowered = message.lower()
    if any(marker in lowered for marker in _NETWORK_ERROR_MARKERS):
        return PipelineError(ErrorCategory.NETWORK_UNREACHABLE, f"Network error loading {url}: {message}")
    return PipelineError(ErrorCategory.NAVIGATION_FAILED, f"Browser failed to load {url}: {message}")


class PlaywrightBrowsingContext:
    """Single-page browsing context backed by a Playwright ``BrowserContext``."""

    def __init__(self, context: BrowserContext, page: Page, wait_until: Optional[str] = None) -> None:
        self._context = context
        self._page = page
        self._wait_until = wait_until or config.PLAYWRIGHT_DEFAULT_WAIT_UNTIL
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def navigate(self, url: str, timeout_ms: Optional[int] = None) -> Optional[int]:
        """Load ``url`` and return the HTTP status of the main response.

        Raises:
            PipelineError: With a timeout, network or navigation category.
        """
        timeout = timeout_ms or config.PLAYWRIGHT_NAVIGATION_TIMEOUT_MS
        try:
            response = await self._page.goto(url, wait_until=self._wait_until, timeout=timeout)
        except (PlaywrightTimeoutError, PlaywrightError) as exc:
            raise translate_playwright_error(exc, url) from exc
        return response.status if response else None

    async def wait_for_selector(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        timeout = timeout_ms or config.PLAYWRIGHT_READY_TIMEOUT_MS
        try:
            await self._page.wait_for_selector(selector, timeout=timeout)
        except (PlaywrightTimeoutError, PlaywrightError) as exc:
            raise translate_playwright_error(exc, self._page.url) from exc

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            return await self._page.evaluate(script, arg)
        except PlaywrightError as exc:
            raise translate_playwright_error(exc, self._page.url) from exc

    def current_url(self) -> str:
        return self._page.url

    async def fill(self, selector: str, value: str) -> None:
        await self._page.fill(selector, value)

    async def click_and_wait(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        """Click ``selector`` and wait for the navigation it triggers."""
        timeout = timeout_ms or config.PLAYWRIGHT_NAVIGATION_TIMEOUT_MS
        try:
            async with self._page.expect_navigation(wait_until=self._wait_until, timeout=timeout):
                await self._page.click(selector)
        except (PlaywrightTimeoutError, PlaywrightError) as exc:
            raise translate_playwright_error(exc, self._page.url) from exc

    async def has_element(self, selector: str) -> bool:
        try:
            return await self._page.query_selector(selector) is not None
        except PlaywrightError:
            return False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._context.close()
        except PlaywrightError:  # pragma: no cover - best effort cleanup
            logger.debug("Failed to close Playwright context", exc_info=True)


class BrowserManager:
    """Owns one Chromium instance and hands out isolated browsing contexts."""

    def __init__(self, headless: Optional[bool] = None, user_agent: Optional[str] = None) -> None:
        """Set up synchronisation primitives and the browsers path."""
        self._lock = asyncio.Lock()
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._install_attempted = False
        self._headless = config.PLAYWRIGHT_HEADLESS if headless is None else headless
        self._user_agent = user_agent or config.PLAYWRIGHT_USER_AGENT
        browsers_path = os.environ.setdefault("PLAYWRIGHT_BROWSERS_PATH", config.PLAYWRIGHT_BROWSERS_PATH)
        try:
            Path(browsers_path).mkdir(parents=True, exist_ok=True)
        except OSError:  # pragma: no cover - best effort
            logger.debug("Failed to ensure PLAYWRIGHT_BROWSERS_PATH exists", exc_info=True)

    async def open(self) -> PlaywrightBrowsingContext:
        """Open a fresh browsing context with a single page.

        Raises:
            PipelineError: When the browser cannot be launched.
        """
        async with self._lock:
            try:
                await self._ensure_browser()
            except PlaywrightError as exc:
                logger.exception("Failed to initialise Playwright browser")
                raise PipelineError(ErrorCategory.NAVIGATION_FAILED, f"Browser launch failed: {exc}") from exc
            assert self._browser is not None  # for type checkers
            try:
                context = await self._browser.new_context(user_agent=self._user_agent)
            except PlaywrightError:
                try:
                    await self._restart_browser()
                    context = await self._browser.new_context(user_agent=self._user_agent)
                except PlaywrightError as exc:
                    raise PipelineError(ErrorCategory.NAVIGATION_FAILED, f"Browser restart failed: {exc}") from exc
        context.set_default_timeout(config.PLAYWRIGHT_DEFAULT_TIMEOUT_MS)
        context.set_default_navigation_timeout(config.PLAYWRIGHT_NAVIGATION_TIMEOUT_MS)
        try:
            page = await context.new_page()
        except PlaywrightError as exc:
            await context.close()
            raise PipelineError(ErrorCategory.NAVIGATION_FAILED, f"Could not open a browser page: {exc}") from exc
        return PlaywrightBrowsingContext(context, page)

    async def shutdown(self) -> None:
        """Release Playwright resources."""
        async with self._lock:
            await self._close_browser_unlocked()

    async def _close_browser_unlocked(self) -> None:
        if self._browser:
            try:
                await self._browser.close()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.warning("Failed to close Playwright browser", exc_info=True)
            finally:
                self._browser = None
        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.warning("Failed to stop Playwright runtime", exc_info=True)
            finally:
                self._playwright = None

    async def _ensure_browser(self) -> None:
        if self._playwright and self._browser:
            return
        logger.info("Starting Playwright browser instance", extra={"headless": self._headless})
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        try:
            browser = await self._playwright.chromium.launch(headless=self._headless)
        except PlaywrightError as exc:
            if await self._maybe_install_browsers(exc):
                browser = await self._playwright.chromium.launch(headless=self._headless)
            else:
                raise
        self._browser = browser

    async def _restart_browser(self) -> None:
        logger.warning("Restarting Playwright browser after failure")
        await self._close_browser_unlocked()
        await self._ensure_browser()

    async def _maybe_install_browsers(self, exc: PlaywrightError) -> bool:
        if self._install_attempted:
            return False
        if "playwright install" not in str(exc).lower():
            return False
        logger.info("Playwright browser executable missing; attempting automatic install...")
        self._install_attempted = True
        try:
            await asyncio.to_thread(
                subprocess.run,
                [sys.executable, "-m", "playwright", "install", "chromium"],
                check=True,
                capture_output=True,
                text=True,
            )
        except (OSError, subprocess.CalledProcessError):
            logger.exception("Automatic Playwright browser install failed")
            return False
        logger.info("Playwright Chromium browser installed successfully.")
        return True
