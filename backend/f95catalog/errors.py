"""Error taxonomy shared by the scrape pipeline and the HTTP layer."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Machine-readable failure categories surfaced to callers."""

    INVALID_INPUT = "invalid_input"
    AUTHENTICATION_REQUIRED = "authentication_required"
    AUTHENTICATION_FAILED = "authentication_failed"
    NAVIGATION_TIMEOUT = "navigation_timeout"
    NETWORK_UNREACHABLE = "network_unreachable"
    NAVIGATION_FAILED = "navigation_failed"
    CONTENT_EMPTY = "content_empty"
    EXTRACTION_SERVICE_FAILURE = "extraction_service_failure"
    PERSISTENCE_FAILURE = "persistence_failure"
    SIZE_PROBE_FAILURE = "size_probe_failure"
    INTERNAL_ERROR = "internal_error"


class PersistenceReason(str, Enum):
    """Sub-reasons for store failures, used to pick remediation guidance."""

    NETWORK = "network"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


# Categories worth another scrape attempt with plain backoff.
TRANSIENT_CATEGORIES = frozenset(
    {
        ErrorCategory.NAVIGATION_TIMEOUT,
        ErrorCategory.NETWORK_UNREACHABLE,
        ErrorCategory.NAVIGATION_FAILED,
    }
)

_HINTS: Dict[ErrorCategory, str] = {
    ErrorCategory.INVALID_INPUT: (
        "Provide a full thread URL on the supported forum (for example https://f95zone.to/threads/...)."
    ),
    ErrorCategory.AUTHENTICATION_REQUIRED: (
        "This page requires a logged-in session. Configure F95ZONE_USERNAME and F95ZONE_PASSWORD."
    ),
    ErrorCategory.AUTHENTICATION_FAILED: "Login was rejected or the session expired. Check your F95Zone credentials.",
    ErrorCategory.NAVIGATION_TIMEOUT: "The forum took too long to respond. Try again in a few minutes.",
    ErrorCategory.NETWORK_UNREACHABLE: "The forum could not be reached. Check your network connection.",
    ErrorCategory.NAVIGATION_FAILED: "The browser could not load the page. Try again later.",
    ErrorCategory.CONTENT_EMPTY: "The page loaded but contained no readable content. Check that the thread exists.",
    ErrorCategory.EXTRACTION_SERVICE_FAILURE: "Game details could not be extracted from the page.",
    ErrorCategory.SIZE_PROBE_FAILURE: "Download sizes could not be determined.",
    ErrorCategory.INTERNAL_ERROR: "An unexpected error occurred. Check the server logs.",
}

_PERSISTENCE_HINTS: Dict[PersistenceReason, str] = {
    PersistenceReason.NETWORK: "Unable to reach the record store. Check that the database is available.",
    PersistenceReason.PERMISSION: "The record store rejected the write. Check file and database permissions.",
    PersistenceReason.NOT_FOUND: "The record store or target record was not found. Check DATABASE_URL.",
    PersistenceReason.UNKNOWN: "The record could not be saved. The extracted data is included in this response.",
}


def error_hint(category: ErrorCategory, reason: Optional[PersistenceReason] = None) -> str:
    """Return the caller-facing remediation hint for a failure.

    Args:
        category: Failure category.
        reason: Store sub-reason, only used for persistence failures.

    Returns:
        str: Human-readable guidance.
    """
    if category is ErrorCategory.PERSISTENCE_FAILURE:
        return _PERSISTENCE_HINTS[reason or PersistenceReason.UNKNOWN]
    return _HINTS.get(category, _HINTS[ErrorCategory.INTERNAL_ERROR])


class PipelineError(Exception):
    """Categorised failure raised by pipeline stages.

    Attributes:
        category: Machine-readable failure category.
        message: Technical description of what went wrong.
        reason: Persistence sub-reason when ``category`` is a store failure.
        hint: Remediation text shown to the caller.
        partial: Data produced before the failure, returned so work is not lost.
    """

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        *,
        reason: Optional[PersistenceReason] = None,
        hint: Optional[str] = None,
        partial: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Store category, message and optional context."""
        super().__init__(message)
        self.category = category
        self.message = message
        self.reason = reason
        self.hint = hint or error_hint(category, reason)
        self.partial = partial

    @property
    def retryable(self) -> bool:
        """Whether another scrape attempt with backoff may succeed."""
        return self.category in TRANSIENT_CATEGORIES

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serialisable representation for error events."""
        payload: Dict[str, Any] = {
            "error_code": self.category.value,
            "error_message": self.message,
            "hint": self.hint,
        }
        if self.reason is not None:
            payload["reason"] = self.reason.value
        if self.partial is not None:
            payload["partial"] = self.partial
        return payload


class ExtractionServiceError(Exception):
    """Raised when the natural-language extraction service call fails."""


class SizeProbeError(Exception):
    """Raised by probe transports when a size request fails."""
