"""Thread page scraping: navigation, login-redirect detection and DOM extraction."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse

from f95catalog.config import config
from f95catalog.errors import ErrorCategory, PipelineError
from f95catalog.services.providers import has_download_keyword, is_known_host
from f95catalog.services.session_manager import SessionManager, is_login_url
from f95catalog.utils.helpers import is_absolute_http_url

logger = logging.getLogger(__name__)

SPOILER_SELECTOR = ".bbCodeSpoiler-content, .spoiler-content, [data-spoiler]"

EXTRACT_SCRIPT = """
([contextChars, spoilerSelector]) => {
  const clean = (value) => (value || '').replace(/\\s+/g, ' ').trim();
  const describe = (anchor) => {
    const block = anchor.closest('li, p, td, blockquote, div') || anchor.parentElement;
    const context = block ? clean(block.innerText || block.textContent) : '';
    return {
      href: anchor.href || '',
      text: clean(anchor.innerText || anchor.textContent),
      context: context.slice(0, contextChars),
    };
  };
  const anchors = Array.from(document.querySelectorAll('a[href]')).map(describe);
  const spoilers = Array.from(document.querySelectorAll(spoilerSelector)).flatMap(
    (region) => Array.from(region.querySelectorAll('a[href]')).map(describe)
  );
  const images = Array.from(document.images).map((img) => ({
    src: img.currentSrc || img.src || img.getAttribute('data-src') || '',
    alt: img.alt || '',
  }));
  return {
    title: document.title || '',
    content: document.body ? (document.body.innerText || '') : '',
    images,
    anchors,
    spoilers,
  };
}
"""


@dataclass(frozen=True)
class ImageRef:
    src: str
    alt: str = ""


@dataclass(frozen=True)
class LinkRef:
    href: str
    text: str = ""
    context: str = ""
    from_spoiler: bool = False


@dataclass(frozen=True)
class RawPageArtifact:
    """Raw content scraped from one thread page."""

    title: str
    url: str
    content: str
    images: Tuple[ImageRef, ...] = field(default_factory=tuple)
    links: Tuple[LinkRef, ...] = field(default_factory=tuple)


def validate_url(url: str, domain: Optional[str] = None) -> str:
    """Check that ``url`` is an absolute http(s) URL on the forum's domain.

    Args:
        url: Candidate thread URL.
        domain: Allowed domain, defaults to ``config.SITE_DOMAIN``. Subdomains are accepted.

    Returns:
        str: The stripped URL.

    Raises:
        PipelineError: With ``invalid_input`` when the URL is malformed or off-site.
    """
    allowed = (domain or config.SITE_DOMAIN).lower()
    candidate = (url or "").strip()
    if not is_absolute_http_url(candidate):
        raise PipelineError(ErrorCategory.INVALID_INPUT, f"Not an absolute http(s) URL: {url!r}")
    host = (urlparse(candidate).hostname or "").lower()
    if host != allowed and not host.endswith("." + allowed):
        raise PipelineError(ErrorCategory.INVALID_INPUT, f"URL host {host!r} is not on {allowed}")
    return candidate


class PageExtractor:
    """Loads thread pages through the session manager and extracts raw artifacts."""

    def __init__(
        self,
        session: SessionManager,
        domain: Optional[str] = None,
        navigation_timeout_ms: Optional[int] = None,
        ready_timeout_ms: Optional[int] = None,
        context_chars: Optional[int] = None,
        max_links: Optional[int] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> None:
        self._session = session
        self._domain = domain or config.SITE_DOMAIN
        self._navigation_timeout_ms = navigation_timeout_ms or config.PLAYWRIGHT_NAVIGATION_TIMEOUT_MS
        self._ready_timeout_ms = ready_timeout_ms or config.PLAYWRIGHT_READY_TIMEOUT_MS
        self._context_chars = context_chars or config.SCRAPE_CONTEXT_CHARS
        self._max_links = max_links or config.SCRAPE_MAX_LINKS
        self._max_attempts = max_attempts or config.SCRAPE_MAX_ATTEMPTS
        self._backoff_seconds = config.SCRAPE_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds

    def validate_url(self, url: str) -> str:
        """Validate ``url`` against this extractor's domain."""
        return validate_url(url, self._domain)

    async def scrape(self, url: str) -> RawPageArtifact:
        """Scrape one thread page.

        Args:
            url: Absolute thread URL on the forum domain.

        Returns:
            RawPageArtifact: Page title, visible text, images and candidate download links.

        Raises:
            PipelineError: ``invalid_input``, ``authentication_required``,
                ``authentication_failed``, ``content_empty`` or a navigation category.
        """
        target = self.validate_url(url)

        async with self._session.lease() as lease:
            context = lease.context
            await context.navigate(target, self._navigation_timeout_ms)
            await context.wait_for_selector("body", self._ready_timeout_ms)

            final_url = context.current_url() or target
            if is_login_url(final_url):
                if lease.authenticated:
                    await lease.expire()
                    raise PipelineError(
                        ErrorCategory.AUTHENTICATION_FAILED,
                        f"Session expired: {target} redirected to the login page",
                    )
                raise PipelineError(
                    ErrorCategory.AUTHENTICATION_REQUIRED,
                    f"{target} redirected to the login page and no session is available",
                )

            raw = await context.evaluate(EXTRACT_SCRIPT, [self._context_chars, SPOILER_SELECTOR])

        artifact = self._build_artifact(raw if isinstance(raw, dict) else {}, final_url)
        if not artifact.content.strip():
            raise PipelineError(ErrorCategory.CONTENT_EMPTY, f"No text content found on {target}")

        logger.info(
            "Scraped thread page",
            extra={
                "url": final_url,
                "authenticated": lease.authenticated,
                "images": len(artifact.images),
                "links": len(artifact.links),
            },
        )
        return artifact

    async def scrape_with_retry(self, url: str, max_attempts: Optional[int] = None) -> RawPageArtifact:
        """Scrape with bounded retries.

        Authentication failures trigger a re-login before the next attempt;
        other retryable failures back off linearly (attempt x backoff).

        Raises:
            PipelineError: The last failure, or ``authentication_failed`` once
                re-authentication attempts are exhausted.
        """
        attempts = max(1, max_attempts or self._max_attempts)
        last_error: Optional[PipelineError] = None

        for attempt in range(1, attempts + 1):
            try:
                return await self.scrape(url)
            except PipelineError as exc:
                # Invalid input, a login wall without credentials and empty pages are final.
                if not exc.retryable and exc.category is not ErrorCategory.AUTHENTICATION_FAILED:
                    raise
                last_error = exc
                logger.warning(
                    "Scrape attempt failed",
                    extra={"url": url, "attempt": attempt, "max_attempts": attempts, "category": exc.category.value},
                )
                if attempt >= attempts:
                    break
                if exc.category is ErrorCategory.AUTHENTICATION_FAILED:
                    await self._session.reauthenticate()
                else:
                    await asyncio.sleep(attempt * self._backoff_seconds)

        assert last_error is not None
        if last_error.category is ErrorCategory.AUTHENTICATION_FAILED:
            raise PipelineError(
                ErrorCategory.AUTHENTICATION_FAILED,
                f"Authentication failed after {attempts} attempts",
            ) from last_error
        raise last_error

    def _build_artifact(self, raw: Dict[str, Any], final_url: str) -> RawPageArtifact:
        images = tuple(
            ImageRef(src=str(item.get("src") or ""), alt=str(item.get("alt") or ""))
            for item in raw.get("images") or []
            if isinstance(item, dict) and item.get("src")
        )
        links = self._collect_links(raw.get("anchors") or [], raw.get("spoilers") or [])
        return RawPageArtifact(
            title=str(raw.get("title") or "").strip(),
            url=final_url,
            content=str(raw.get("content") or ""),
            images=images,
            links=links,
        )

    def _collect_links(self, anchors: Iterable[Any], spoilers: Iterable[Any]) -> Tuple[LinkRef, ...]:
        """Keep known-host or download-keyword anchors, then add spoiler-only host matches."""
        spoiler_entries = [item for item in spoilers if isinstance(item, dict)]
        spoiler_hrefs: Set[str] = {str(item.get("href") or "") for item in spoiler_entries}
        seen: Set[str] = set()
        links: List[LinkRef] = []

        def add(item: Dict[str, Any], from_spoiler: bool) -> None:
            href = str(item.get("href") or "").strip()
            if href in seen or not is_absolute_http_url(href):
                return
            seen.add(href)
            links.append(
                LinkRef(
                    href=href,
                    text=str(item.get("text") or ""),
                    context=str(item.get("context") or "")[: self._context_chars],
                    from_spoiler=from_spoiler,
                )
            )

        for item in anchors:
            if not isinstance(item, dict):
                continue
            href = str(item.get("href") or "")
            if is_known_host(href) or has_download_keyword(str(item.get("text") or "")):
                add(item, href in spoiler_hrefs)

        # Second pass over collapsed regions.
        for item in spoiler_entries:
            if is_known_host(str(item.get("href") or "")):
                add(item, True)

        return tuple(links[: self._max_links])
