"""Forum session lifecycle: login, status tracking and shared-context leasing."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional
from urllib.parse import urlparse

from f95catalog.capabilities import Capability
from f95catalog.config import config
from f95catalog.errors import PipelineError
from f95catalog.services.browser import BrowsingContext, BrowsingContextProvider

logger = logging.getLogger(__name__)

USERNAME_SELECTOR = "input[name='login']"
PASSWORD_SELECTOR = "input[name='password']"
SUBMIT_SELECTOR = "form[action*='login'] button[type='submit']"


class SessionStatus(str, Enum):
    """Authentication state of the shared forum session."""

    NOT_CONFIGURED = "not_configured"
    NOT_AUTHENTICATED = "not_authenticated"
    AUTHENTICATED = "authenticated"
    SESSION_EXPIRED = "session_expired"
    ERROR = "error"


_STATUS_MESSAGES = {
    SessionStatus.NOT_CONFIGURED: "No F95Zone credentials configured; scraping runs unauthenticated.",
    SessionStatus.NOT_AUTHENTICATED: "Credentials configured; login happens on the next scrape.",
    SessionStatus.AUTHENTICATED: "Logged in to F95Zone.",
    SessionStatus.SESSION_EXPIRED: "The F95Zone session expired; it will be renewed on the next scrape.",
    SessionStatus.ERROR: "The last login attempt failed. Check your F95Zone credentials.",
}


@dataclass(frozen=True)
class SessionStatusReport:
    """Snapshot of the session state for callers."""

    status: SessionStatus
    message: str

    @property
    def authenticated(self) -> bool:
        return self.status is SessionStatus.AUTHENTICATED


def is_login_url(url: str, login_path: Optional[str] = None) -> bool:
    """Return True when ``url`` points at the forum's login page.

    Args:
        url: Current page URL.
        login_path: Login path, defaults to ``config.SITE_LOGIN_PATH``.
    """
    marker = (login_path or config.SITE_LOGIN_PATH).rstrip("/") or "/login"
    try:
        path = urlparse(url).path
    except ValueError:
        return False
    return path == marker or path.startswith(marker + "/")


class SessionLease:
    """Borrowed browsing context handed out by :meth:`SessionManager.lease`.

    Attributes:
        context: Browsing context to scrape with.
        authenticated: Whether ``context`` is the logged-in shared context.
    """

    def __init__(
        self,
        context: BrowsingContext,
        authenticated: bool,
        manager: Optional["SessionManager"] = None,
    ) -> None:
        self.context = context
        self.authenticated = authenticated
        self._manager = manager

    async def expire(self) -> None:
        """Tear down the shared session after a login redirect was observed."""
        if self._manager is not None and self.authenticated:
            await self._manager._invalidate_unlocked(reason="login redirect during scrape")


class SessionManager:
    """Owns the single authenticated browsing context shared by all requests.

    Navigation on the shared context is serialised through an ``asyncio.Lock``:
    :meth:`lease` holds it for the whole borrow, and login, invalidation and
    shutdown take it as well.
    """

    def __init__(
        self,
        provider: BrowsingContextProvider,
        username: Optional[str] = None,
        password: Optional[str] = None,
        login_url: Optional[str] = None,
    ) -> None:
        self._provider = provider
        self._username = config.F95ZONE_USERNAME if username is None else username
        self._password = config.F95ZONE_PASSWORD if password is None else password
        self._login_url = login_url or config.login_url
        self._lock = asyncio.Lock()
        self._context: Optional[BrowsingContext] = None
        self._status = SessionStatus.NOT_AUTHENTICATED if self.has_credentials else SessionStatus.NOT_CONFIGURED
        self._last_error: Optional[str] = None

        if self.has_credentials:
            self.capability = Capability.configured("F95Zone credentials present")
        else:
            self.capability = Capability.not_configured("F95ZONE_USERNAME / F95ZONE_PASSWORD not set")

    @property
    def has_credentials(self) -> bool:
        return bool(self._username and self._password)

    @property
    def status(self) -> SessionStatus:
        return self._status

    async def ensure_authenticated(self) -> bool:
        """Make sure a logged-in shared context exists.

        Returns:
            bool: True when an authenticated context is available, False when
            credentials are missing or the login was rejected. Never raises.
        """
        if not self.has_credentials:
            self._status = SessionStatus.NOT_CONFIGURED
            return False
        async with self._lock:
            if self._status is SessionStatus.AUTHENTICATED and self._context is not None:
                return True
            return await self._login_unlocked()

    async def reauthenticate(self) -> bool:
        """Drop the current session and log in again."""
        if not self.has_credentials:
            return False
        async with self._lock:
            await self._invalidate_unlocked(reason="re-authentication requested")
            return await self._login_unlocked()

    async def invalidate(self) -> None:
        """Tear down the held context and reset to ``not_authenticated``."""
        async with self._lock:
            await self._invalidate_unlocked(reason="explicit reset")

    def get_status(self) -> SessionStatusReport:
        """Report the current session state.

        The only side effect is a liveness check: an authenticated context
        parked on the login page is reported as ``session_expired``.
        """
        if not self.has_credentials:
            self._status = SessionStatus.NOT_CONFIGURED
        elif self._status is SessionStatus.AUTHENTICATED:
            if self._context is None or is_login_url(self._context.current_url(), self._login_path):
                self._status = SessionStatus.SESSION_EXPIRED
        message = _STATUS_MESSAGES[self._status]
        if self._status is SessionStatus.ERROR and self._last_error:
            message = f"{message} ({self._last_error})"
        return SessionStatusReport(self._status, message)

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[SessionLease]:
        """Borrow a browsing context for one navigation and extraction.

        Yields the shared authenticated context while holding the session lock,
        or a fresh unauthenticated context that is closed afterwards.
        """
        async with self._lock:
            if self._status is SessionStatus.AUTHENTICATED and self._context is not None:
                yield SessionLease(self._context, True, self)
                return

        context = await self._provider.open()
        try:
            yield SessionLease(context, False)
        finally:
            await context.close()

    async def close(self) -> None:
        """Release the shared context. Failures are logged, never raised."""
        async with self._lock:
            context, self._context = self._context, None
            if context is None:
                return
            try:
                await context.close()
            except Exception:
                logger.warning("Failed to close the shared browsing context", exc_info=True)
            if self._status is SessionStatus.AUTHENTICATED:
                self._status = SessionStatus.NOT_AUTHENTICATED

    @property
    def _login_path(self) -> str:
        return urlparse(self._login_url).path or config.SITE_LOGIN_PATH

    async def _invalidate_unlocked(self, reason: str) -> None:
        context, self._context = self._context, None
        if context is not None:
            logger.info("Invalidating forum session", extra={"reason": reason})
            try:
                await context.close()
            except Exception:
                logger.warning("Failed to close browsing context during invalidation", exc_info=True)
        self._status = SessionStatus.NOT_AUTHENTICATED if self.has_credentials else SessionStatus.NOT_CONFIGURED

    async def _login_unlocked(self) -> bool:
        logger.info("Logging in to forum", extra={"login_url": self._login_url})
        context: Optional[BrowsingContext] = None
        try:
            context = await self._provider.open()
            await context.navigate(self._login_url)
            await context.wait_for_selector(config.LOGIN_FORM_SELECTOR)
            await context.fill(USERNAME_SELECTOR, self._username)
            await context.fill(PASSWORD_SELECTOR, self._password)
            await context.click_and_wait(SUBMIT_SELECTOR)
            failure = await self._check_login(context)
        except PipelineError as exc:
            failure = f"{exc.category.value}: {exc.message}"
        except Exception as exc:  # pragma: no cover - browser failures are environment specific
            logger.exception("Unexpected failure during login")
            failure = str(exc)

        if failure is None:
            self._context = context
            self._status = SessionStatus.AUTHENTICATED
            self._last_error = None
            logger.info("Forum login succeeded")
            return True

        logger.warning("Forum login failed", extra={"reason": failure})
        self._status = SessionStatus.ERROR
        self._last_error = failure
        if context is not None:
            try:
                await context.close()
            except Exception:
                logger.warning("Failed to close browsing context after failed login", exc_info=True)
        return False

    async def _check_login(self, context: BrowsingContext) -> Optional[str]:
        """Return None when all three success signals hold, else the failed check."""
        if is_login_url(context.current_url(), self._login_path):
            return "still on the login page after submitting"
        if await context.has_element(config.ERROR_PANEL_SELECTOR):
            return "login error panel displayed"
        if not await context.has_element(config.MEMBER_NAV_SELECTOR):
            return "member navigation not found"
        return None
