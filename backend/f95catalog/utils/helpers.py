"""Utility helpers."""

import json
import time
from typing import Any, Dict
from urllib.parse import urlparse

GIB = 1024 * 1024 * 1024


def sse_event(data: Dict[str, Any]) -> str:
    """Format data into a Server-Sent Events payload.

    Args:
        data: JSON-serializable payload to emit.

    Returns:
        str: SSE-formatted string containing the payload.
    """
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


def get_timestamp() -> int:
    """Return the current Unix timestamp in seconds.

    Returns:
        int: Unix timestamp.
    """
    return int(time.time())


def bytes_to_gib(size_bytes: int) -> str:
    """Convert a byte count to gibibytes with two decimals.

    Args:
        size_bytes: Size in bytes.

    Returns:
        str: Size in GiB formatted as ``"0.00"``.
    """
    return f"{size_bytes / GIB:.2f}"


def is_absolute_http_url(value: Any) -> bool:
    """Return True when ``value`` is an absolute http(s) URL with a host."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        # Unbalanced IPv6 brackets and similar.
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def truncate(text: str, limit: int, suffix: str = "") -> str:
    """Cut ``text`` to ``limit`` characters, appending ``suffix`` when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + suffix
