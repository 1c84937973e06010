"""Structured game data extraction with a deterministic fallback."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Protocol

from f95catalog.capabilities import Capability
from f95catalog.config import config
from f95catalog.errors import ErrorCategory, ExtractionServiceError, PipelineError
from f95catalog.schemas import UNKNOWN, UNKNOWN_GAME, DownloadLink, GameData
from f95catalog.services.page_extractor import ImageRef, RawPageArtifact
from f95catalog.services.providers import DEFAULT_PLATFORM, detect_platform, detect_provider, is_known_host
from f95catalog.utils.helpers import is_absolute_http_url, truncate

logger = logging.getLogger(__name__)

FALLBACK_DESCRIPTION_CHARS = 200

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_TITLE_SPLIT_PATTERN = re.compile(r"\s+-\s+|\|")
_VERSION_PATTERN = re.compile(r"(?<![\w.])v?(\d+(?:\.\d+)+[a-z]?)", re.IGNORECASE)
_BRACKET_PATTERN = re.compile(r"\[([^\]]*)\]")
_SIZE_PATTERN = re.compile(r"\b(\d+(?:[.,]\d+)?\s?(?:[KMGT]i?B))\b", re.IGNORECASE)

PROMPT_TEMPLATE = """You are a data extraction specialist for F95Zone game pages. Extract structured game information from the provided web page content.

IMPORTANT: Extract ALL information accurately and return ONLY valid JSON.

Extract the following data:
- game_name: The exact game title
- version: Current version (look for v1.0, Version 1.2, etc.)
- developer: Game developer/creator name
- release_date: Release or update date if mentioned
- cover_image: Direct URL to the main game cover/preview image
- description: Brief game description (max 200 chars)
- tags: Array of game tags/genres mentioned
- download_links: Array of download objects with {{provider, url, platform, version}}
- file_size: Any size information mentioned in the text

For download_links, look for:
- PC/Windows, Mac, Linux and Android downloads
- MEGA, Google Drive, MediaFire, GoFile, PixelDrain, WorkUpload links
- Different versions if multiple exist
- Links with "from_spoiler": true were inside collapsed spoiler sections, where the download list usually is

Page Content:
Title: {title}
URL: {url}
Content: {content}

Images found: {images}
Links found: {links}

Return only valid JSON with the structure above."""


class ExtractionProvider(Protocol):
    capability: Capability

    async def generate(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str: ...


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence from a model reply."""
    return _FENCE_PATTERN.sub("", text.strip()).strip()


def parse_extraction_response(text: str) -> Dict[str, Any]:
    """Parse the model reply into a dict.

    Raises:
        ValueError: When the reply is not a JSON object.
    """
    parsed = json.loads(strip_code_fences(text))
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def find_version(*texts: Optional[str]) -> Optional[str]:
    """Return the first dotted version number found in ``texts``, without a ``v`` prefix."""
    for text in texts:
        if not text:
            continue
        match = _VERSION_PATTERN.search(text)
        if match:
            return match.group(1)
    return None


def _clean_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


class StructuredDataExtractor:
    """Turns a raw page artifact into a validated :class:`GameData` record."""

    def __init__(
        self,
        provider: Optional[ExtractionProvider] = None,
        timeout_seconds: Optional[float] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        max_content_chars: Optional[int] = None,
        max_images: Optional[int] = None,
        max_links: Optional[int] = None,
        max_description_chars: Optional[int] = None,
    ) -> None:
        self._provider = provider
        self._timeout_seconds = timeout_seconds or config.LLM_TIMEOUT_SECONDS
        self._temperature = config.LLM_TEMPERATURE if temperature is None else temperature
        self._max_tokens = config.LLM_MAX_TOKENS if max_tokens is None else max_tokens
        self._max_content_chars = max_content_chars or config.LLM_MAX_CONTENT_CHARS
        self._max_images = max_images or config.LLM_MAX_IMAGES
        self._max_links = max_links or config.LLM_MAX_LINKS
        self._max_description_chars = max_description_chars or config.MAX_DESCRIPTION_CHARS

    async def extract(self, artifact: RawPageArtifact, source_url: str) -> GameData:
        """Extract a record, falling back to pattern matching if the service fails.

        Args:
            artifact: Scraped page content.
            source_url: Thread URL stored on the record.

        Returns:
            GameData: Validated record; never ``None``.

        Raises:
            PipelineError: ``extraction_service_failure`` when both paths fail.
        """
        outcome = await self._try_primary(artifact, source_url)
        if isinstance(outcome, GameData):
            return outcome
        primary_error = outcome

        logger.warning("Falling back to pattern extraction", extra={"url": source_url, "reason": primary_error})
        try:
            data = self.fallback_extract(artifact, source_url)
        except Exception as exc:
            raise PipelineError(
                ErrorCategory.EXTRACTION_SERVICE_FAILURE,
                f"Extraction failed: {primary_error}. Fallback also failed: {exc}",
            ) from exc
        return self.validate(data)

    async def _try_primary(self, artifact: RawPageArtifact, source_url: str) -> Any:
        """Return a GameData on success, otherwise a string describing the failure."""
        if self._provider is None:
            return "no extraction provider"
        if not self._provider.capability.available:
            return f"extraction provider {self._provider.capability.state.value}: {self._provider.capability.detail}"

        prompt = self.build_prompt(artifact, source_url)
        try:
            reply = await asyncio.wait_for(
                self._provider.generate(prompt, temperature=self._temperature, max_tokens=self._max_tokens),
                timeout=self._timeout_seconds,
            )
            data = parse_extraction_response(reply)
        except asyncio.TimeoutError:
            return f"extraction service timed out after {self._timeout_seconds}s"
        except ExtractionServiceError as exc:
            return str(exc)
        except ValueError as exc:
            return f"invalid JSON from extraction service: {exc}"
        except Exception as exc:
            logger.warning("Extraction service call crashed", extra={"url": source_url}, exc_info=True)
            return f"extraction service error: {type(exc).__name__}: {exc}"

        data["original_url"] = source_url
        record = self.validate(data)
        logger.info("Extraction service produced record", extra={"url": source_url, "game_name": record.game_name})
        return record

    def build_prompt(self, artifact: RawPageArtifact, source_url: str) -> str:
        """Render the extraction prompt from bounded samples of the artifact."""
        images = [asdict(image) for image in artifact.images[: self._max_images]]
        links = [
            {"href": link.href, "text": link.text, "context": link.context, "from_spoiler": link.from_spoiler}
            for link in artifact.links[: self._max_links]
        ]
        return PROMPT_TEMPLATE.format(
            title=artifact.title or "No title",
            url=source_url,
            content=artifact.content[: self._max_content_chars],
            images=json.dumps(images, ensure_ascii=False),
            links=json.dumps(links, ensure_ascii=False),
        )

    def fallback_extract(self, artifact: RawPageArtifact, source_url: str) -> Dict[str, Any]:
        """Derive a lower-fidelity record from the title, images and known-host links."""
        title = artifact.title or ""
        content = artifact.content or ""

        head = _TITLE_SPLIT_PATTERN.split(title, maxsplit=1)[0]
        game_name = _BRACKET_PATTERN.sub("", head).strip() or UNKNOWN_GAME
        version = find_version(title, content) or UNKNOWN

        developer = UNKNOWN
        for segment in reversed(_BRACKET_PATTERN.findall(title)):
            segment = segment.strip()
            if segment and not find_version(segment):
                developer = segment
                break

        download_links: List[Dict[str, Any]] = []
        for link in artifact.links:
            if not is_known_host(link.href):
                continue
            hint = f"{link.text} {link.context}"
            download_links.append(
                {
                    "provider": detect_provider(link.href),
                    "url": link.href,
                    "platform": detect_platform(hint, DEFAULT_PLATFORM),
                    "version": find_version(link.text, link.context) or version,
                }
            )

        size_match = _SIZE_PATTERN.search(content)
        return {
            "game_name": game_name,
            "version": version,
            "developer": developer,
            "release_date": None,
            "cover_image": self._find_cover_image(artifact.images),
            "description": truncate(content.strip(), FALLBACK_DESCRIPTION_CHARS, "..."),
            "tags": [],
            "download_links": download_links,
            "file_size": size_match.group(1) if size_match else None,
            "original_url": source_url,
        }

    @staticmethod
    def _find_cover_image(images: Any) -> Optional[str]:
        candidates = [image for image in images if isinstance(image, ImageRef) and image.src]
        for image in candidates:
            if "cover" in image.src.lower() or "cover" in image.alt.lower():
                return image.src
        for image in candidates:
            if "attachments" in image.src:
                return image.src
        return None

    def validate(self, data: Any) -> GameData:
        """Type-check, trim and default every field.

        Never raises: malformed input degrades to a minimal all-defaults record.
        """
        original_url = ""
        try:
            if not isinstance(data, dict):
                data = {}
            original_url = _clean_str(data.get("original_url"))
            version = _clean_str(data.get("version")) or UNKNOWN

            tags_value = data.get("tags")
            tags: List[str] = []
            if isinstance(tags_value, list):
                tags = [tag.strip() for tag in tags_value if isinstance(tag, str) and tag.strip()]

            links: List[DownloadLink] = []
            raw_links = data.get("download_links")
            for item in raw_links if isinstance(raw_links, list) else []:
                if not isinstance(item, dict):
                    continue
                url = _clean_str(item.get("url"))
                if not is_absolute_http_url(url):
                    continue
                try:
                    link = DownloadLink(
                        provider=_clean_str(item.get("provider")) or detect_provider(url),
                        url=url,
                        platform=_clean_str(item.get("platform")) or DEFAULT_PLATFORM,
                        version=_clean_str(item.get("version")) or version,
                    )
                except (TypeError, ValueError):
                    logger.warning("Dropping malformed download link", extra={"url": url})
                    continue
                links.append(link)

            cover = _clean_str(data.get("cover_image"))
            return GameData(
                game_name=_clean_str(data.get("game_name")) or UNKNOWN_GAME,
                version=version,
                developer=_clean_str(data.get("developer")) or UNKNOWN,
                release_date=_clean_str(data.get("release_date")) or None,
                cover_image=cover if is_absolute_http_url(cover) else None,
                description=_clean_str(data.get("description"))[: self._max_description_chars],
                tags=tags,
                download_links=links,
                file_size=_clean_str(data.get("file_size")) or None,
                original_url=original_url,
            )
        except (TypeError, ValueError, AttributeError):
            logger.exception("Record validation failed; returning minimal record")
            return GameData(original_url=original_url)
