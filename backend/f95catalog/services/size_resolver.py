"""Download size probing over HTTP."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, List, Mapping, Optional, Protocol, Sequence

import httpx

from f95catalog.config import config
from f95catalog.errors import SizeProbeError
from f95catalog.schemas import DownloadLink, LinkSize, SizeSummary
from f95catalog.utils.helpers import bytes_to_gib

logger = logging.getLogger(__name__)

_CONTENT_RANGE_PATTERN = re.compile(r"bytes\s+(?:\d+-\d+|\*)/(\d+)", re.IGNORECASE)


class ProbeTransport(Protocol):
    async def head(self, url: str, timeout: float) -> Mapping[str, str]: ...

    async def range_get(self, url: str, timeout: float) -> Mapping[str, str]: ...


def _positive_int(value: Any) -> Optional[int]:
    """Return ``value`` as a positive int, or None if it is missing, non-numeric or not positive."""
    if value is None:
        return None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def parse_content_length(value: Optional[str]) -> Optional[int]:
    return _positive_int(value)


def parse_content_range(value: Optional[str]) -> Optional[int]:
    """Extract the total size from a ``Content-Range`` header such as ``bytes 0-1/1048576``."""
    if not value:
        return None
    match = _CONTENT_RANGE_PATTERN.search(value)
    return _positive_int(match.group(1)) if match else None


class HttpxProbeTransport:
    """Size probe transport built on a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: Optional[str] = None,
        max_redirects: Optional[int] = None,
    ) -> None:
        self._client = client
        self._user_agent = user_agent or config.SIZE_USER_AGENT
        self._max_redirects = config.SIZE_MAX_REDIRECTS if max_redirects is None else max_redirects

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                max_redirects=self._max_redirects,
                headers={"User-Agent": self._user_agent},
            )
        return self._client

    async def head(self, url: str, timeout: float) -> Mapping[str, str]:
        """Issue a HEAD request and return the response headers.

        Raises:
            SizeProbeError: On transport errors or non-success status codes.
        """
        try:
            response = await self._get_client().head(url, timeout=timeout, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise SizeProbeError(f"HEAD {url} failed: {exc}") from exc
        if response.status_code >= 400:
            raise SizeProbeError(f"HEAD {url} returned {response.status_code}")
        return response.headers

    async def range_get(self, url: str, timeout: float) -> Mapping[str, str]:
        """Request the first two bytes and return the response headers without reading the body.

        Raises:
            SizeProbeError: On transport errors or non-success status codes.
        """
        try:
            async with self._get_client().stream(
                "GET",
                url,
                headers={"Range": "bytes=0-1"},
                timeout=timeout,
                follow_redirects=True,
            ) as response:
                if response.status_code >= 400:
                    raise SizeProbeError(f"Range GET {url} returned {response.status_code}")
                return response.headers
        except httpx.HTTPError as exc:
            raise SizeProbeError(f"Range GET {url} failed: {exc}") from exc

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class SizeResolver:
    """Resolves per-link and total download sizes with bounded concurrency."""

    def __init__(
        self,
        transport: Optional[ProbeTransport] = None,
        head_timeout: Optional[float] = None,
        range_timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
    ) -> None:
        self._transport = transport or HttpxProbeTransport()
        self._head_timeout = head_timeout or config.SIZE_HEAD_TIMEOUT_SECONDS
        self._range_timeout = range_timeout or config.SIZE_RANGE_TIMEOUT_SECONDS
        self._max_concurrency = max(1, max_concurrency or config.SIZE_MAX_CONCURRENCY)

    async def resolve_sizes(self, links: Optional[Sequence[DownloadLink]]) -> SizeSummary:
        """Probe every link and aggregate the resolved sizes.

        Links whose size cannot be determined are left out of
        ``individual_sizes``; they never fail the batch.

        Args:
            links: Download links to probe.

        Returns:
            SizeSummary: Total bytes, total GiB (two decimals) and per-link sizes.
        """
        if not links:
            return SizeSummary()

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def probe(link: DownloadLink) -> Optional[int]:
            async with semaphore:
                try:
                    return await self.probe_size(link.url)
                except Exception:
                    logger.warning("Size probe crashed", extra={"url": link.url}, exc_info=True)
                    return None

        sizes = await asyncio.gather(*(probe(link) for link in links))

        individual: List[LinkSize] = []
        for link, size in zip(links, sizes):
            if size is None:
                continue
            individual.append(
                LinkSize(
                    provider=link.provider,
                    platform=link.platform,
                    url=link.url,
                    size_bytes=size,
                    size_gb=bytes_to_gib(size),
                )
            )

        total = sum(item.size_bytes for item in individual)
        logger.info(
            "Resolved download sizes",
            extra={"links": len(links), "resolved": len(individual), "total_bytes": total},
        )
        return SizeSummary(total_size_bytes=total, total_size_gb=bytes_to_gib(total), individual_sizes=individual)

    async def probe_size(self, url: str) -> Optional[int]:
        """Return the size of ``url`` in bytes, or None when it cannot be determined."""
        try:
            headers = await self._transport.head(url, self._head_timeout)
            size = parse_content_length(headers.get("content-length"))
            if size is not None:
                return size
        except SizeProbeError as exc:
            logger.debug("HEAD probe failed, trying range request", extra={"url": url, "error": str(exc)})

        try:
            headers = await self._transport.range_get(url, self._range_timeout)
        except SizeProbeError as exc:
            logger.debug("Range probe failed", extra={"url": url, "error": str(exc)})
            return None
        return parse_content_range(headers.get("content-range"))
