"""Known file-hosting providers and platform keyword tables."""

from __future__ import annotations

import re
from typing import Optional, Tuple
from urllib.parse import urlparse

UNKNOWN_PROVIDER = "Unknown"
DEFAULT_PLATFORM = "PC"

# Host substring -> provider label, checked in order.
PROVIDER_HOSTS: Tuple[Tuple[str, str], ...] = (
    ("mega.nz", "MEGA"),
    ("mega.co.nz", "MEGA"),
    ("drive.google.com", "Google Drive"),
    ("mediafire.com", "MediaFire"),
    ("uploadhaven.com", "UploadHaven"),
    ("gofile.io", "GoFile"),
    ("pixeldrain.com", "PixelDrain"),
    ("workupload.com", "WorkUpload"),
    ("rapidgator.net", "Rapidgator"),
    ("katfile.com", "Katfile"),
    ("mixdrop.co", "MixDrop"),
    ("anonfiles.com", "AnonFiles"),
)

# Anchor text containing any of these marks a link as download-intent.
DOWNLOAD_KEYWORDS: Tuple[str, ...] = ("download", "pc", "windows", "win", "mac", "linux", "android")

# Keyword -> platform label, checked in order.
PLATFORM_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("android", "Android"),
    ("apk", "Android"),
    ("linux", "Linux"),
    ("mac", "Mac"),
    ("osx", "Mac"),
    ("windows", "Windows"),
    ("win", "Windows"),
)

_KEYWORD_PATTERNS = {keyword: re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE) for keyword in DOWNLOAD_KEYWORDS}
_PLATFORM_PATTERNS = tuple(
    (re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE), label) for keyword, label in PLATFORM_KEYWORDS
)


def _host(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def detect_provider(url: str) -> str:
    """Return the provider label for ``url`` or ``"Unknown"``.

    Args:
        url: Download link URL.

    Returns:
        str: Provider label from ``PROVIDER_HOSTS``.
    """
    host = _host(url)
    if not host:
        return UNKNOWN_PROVIDER
    for needle, label in PROVIDER_HOSTS:
        if needle in host:
            return label
    return UNKNOWN_PROVIDER


def is_known_host(url: str) -> bool:
    """Return True when ``url`` points at a known file host."""
    return detect_provider(url) != UNKNOWN_PROVIDER


def has_download_keyword(text: str) -> bool:
    """Return True when ``text`` contains a download-intent keyword as a whole word."""
    if not text:
        return False
    return any(pattern.search(text) for pattern in _KEYWORD_PATTERNS.values())


def detect_platform(text: Optional[str], default: str = DEFAULT_PLATFORM) -> str:
    """Guess the target platform mentioned in ``text``.

    Args:
        text: Anchor text or surrounding context.
        default: Label returned when nothing matches.

    Returns:
        str: One of ``Android``, ``Linux``, ``Mac``, ``Windows`` or ``default``.
    """
    if not text:
        return default
    for pattern, label in _PLATFORM_PATTERNS:
        if pattern.search(text):
            return label
    return default
