"""Duplicate detection and merge rules for persisted game records."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Protocol, Union

from f95catalog.schemas import UNKNOWN, UNKNOWN_GAME, GameData, PersistedGame, utc_now_iso

logger = logging.getLogger(__name__)

_BRACKETED = re.compile(r"[\[(][^\])]*[\])]")
_VERSION_TOKEN = re.compile(
    r"\s*\b(?:v|ver|version|ep|episode|chapter|ch|part|pt|release|r)\s*[\d.]+\w*\b",
    re.IGNORECASE,
)
_LEADING_ARTICLES = re.compile(r"^(?:(?:the|a|an)\s+)+")
_WHITESPACE = re.compile(r"\s+")

# Values that never overwrite an existing field during a merge.
_PLACEHOLDERS = frozenset({UNKNOWN, UNKNOWN_GAME, "0.00"})

# Fields owned by the store, never taken from an incoming candidate.
_PRESERVED_FIELDS = ("game_number", "extracted_date")


class MatchType(str, Enum):
    URL = "url"
    NAME = "name"


@dataclass(frozen=True)
class ExistingMatch:
    record: PersistedGame
    match_type: MatchType


class RecordSource(Protocol):
    async def read_all_rows(self) -> list: ...


def _normalize_once(text: str) -> str:
    text = _BRACKETED.sub(" ", text)
    text = _VERSION_TOKEN.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip()
    text = _LEADING_ARTICLES.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def normalize_game_name(name: Any) -> str:
    """Normalise a game title for duplicate detection.

    Lowercases, drops bracketed segments, version tokens such as ``v1.2``,
    ``Episode 3`` or ``Part 2``, and leading articles, then collapses
    whitespace. The result is a fixed point: normalising it again returns
    the same string.

    Args:
        name: Raw game title.

    Returns:
        str: Normalised name, empty for non-string input.
    """
    if not isinstance(name, str):
        return ""
    text = name.lower()
    previous = None
    while text != previous:
        previous = text
        text = _normalize_once(text)
    return text


def is_absent(value: Any) -> bool:
    """Return True for values that count as missing when merging."""
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        stripped = value.strip()
        return not stripped or stripped in _PLACEHOLDERS
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def merge_records(existing: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Field-wise merge preferring present values from ``incoming``.

    Args:
        existing: Stored record fields.
        incoming: Newly extracted fields.

    Returns:
        Dict[str, Any]: Merged fields; absent incoming values keep the stored value.
    """
    merged = dict(existing)
    for key, value in incoming.items():
        if not is_absent(value) or key not in merged:
            merged[key] = value
    return merged


def match_existing(
    records: Iterable[PersistedGame],
    url: Optional[str],
    name: Optional[str] = None,
) -> Optional[ExistingMatch]:
    """Find a stored record by exact URL, then by normalised name.

    Args:
        records: Persisted records to search.
        url: Original thread URL of the candidate.
        name: Candidate game name, used only when no URL matches.

    Returns:
        Optional[ExistingMatch]: First match, tagged with how it matched.
    """
    records = list(records)
    if url:
        for record in records:
            if record.original_url == url:
                return ExistingMatch(record, MatchType.URL)

    target = normalize_game_name(name)
    if target:
        for record in records:
            if normalize_game_name(record.game_name) == target:
                return ExistingMatch(record, MatchType.NAME)
    return None


class RecordReconciler:
    """Decides insert versus merge-update against the persisted store."""

    def __init__(self, store: RecordSource) -> None:
        self._store = store

    async def find_existing(self, url: Optional[str], name: Optional[str] = None) -> Optional[ExistingMatch]:
        """Look up a stored record for the candidate.

        Raises:
            PipelineError: When the store cannot be read.
        """
        records = await self._store.read_all_rows()
        match = match_existing(records, url, name)
        if match is not None:
            logger.info(
                "Found existing game",
                extra={
                    "match_type": match.match_type.value,
                    "game_number": match.record.game_number,
                    "stored_name": match.record.game_name,
                    "candidate_name": name,
                },
            )
        return match

    def reconcile(
        self,
        existing: PersistedGame,
        candidate: Union[GameData, PersistedGame],
        match_type: Optional[MatchType] = None,
    ) -> PersistedGame:
        """Merge ``candidate`` into ``existing``.

        The stored game number is always kept and the extraction timestamp
        is refreshed. A name match whose developer disagrees is merged
        anyway after logging a warning.
        """
        if (
            match_type is MatchType.NAME
            and not is_absent(existing.developer)
            and not is_absent(candidate.developer)
            and existing.developer.strip().lower() != candidate.developer.strip().lower()
        ):
            logger.warning(
                "Name match with a different developer; merging anyway",
                extra={
                    "game_number": existing.game_number,
                    "stored_developer": existing.developer,
                    "candidate_developer": candidate.developer,
                },
            )

        incoming = candidate.model_dump(exclude=set(_PRESERVED_FIELDS))
        merged = merge_records(existing.model_dump(), incoming)
        merged["game_number"] = existing.game_number
        merged["extracted_date"] = utc_now_iso()
        return PersistedGame.model_validate(merged)
