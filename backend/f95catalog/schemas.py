"""Pydantic schemas."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN = "Unknown"
UNKNOWN_GAME = "Unknown Game"


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


# ==================== Game records ====================


class DownloadLink(BaseModel):
    """A download mirror for one game build."""

    provider: str = UNKNOWN
    url: str
    platform: str = "PC"
    version: str = UNKNOWN
    size_bytes: Optional[int] = None


class GameData(BaseModel):
    """Structured game details extracted from a thread page."""

    game_name: str = UNKNOWN_GAME
    version: str = UNKNOWN
    developer: str = UNKNOWN
    release_date: Optional[str] = None
    cover_image: Optional[str] = None
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    download_links: List[DownloadLink] = Field(default_factory=list)
    file_size: Optional[str] = None
    original_url: str = ""


class LinkSize(BaseModel):
    """Resolved size of a single download link."""

    provider: str
    platform: str
    url: str
    size_bytes: int
    size_gb: str


class SizeSummary(BaseModel):
    """Aggregate download size for a game."""

    total_size_bytes: int = 0
    total_size_gb: str = "0.00"
    individual_sizes: List[LinkSize] = Field(default_factory=list)


class PersistedGame(GameData):
    """A game row as stored in the records table."""

    model_config = ConfigDict(from_attributes=True)

    game_number: int = 0
    total_size_bytes: int = 0
    total_size_gb: str = "0.00"
    individual_sizes: List[LinkSize] = Field(default_factory=list)
    extracted_date: str = Field(default_factory=utc_now_iso)


class PipelineResult(BaseModel):
    """Outcome of one pipeline run."""

    correlation_id: str
    action: str = Field(..., description="created, updated or discarded")
    game_number: Optional[int] = None
    match_type: Optional[str] = None
    data: PersistedGame


# ==================== Scrape API ====================


class ScrapeRequest(BaseModel):
    """Request payload for starting a pipeline run."""

    url: str = Field(..., min_length=1)
    correlation_id: Optional[str] = Field(None, max_length=100, description="Client-chosen progress stream id.")


class ScrapeAccepted(BaseModel):
    """Response returned once a run has been scheduled."""

    correlation_id: str
    events_url: str
    status: str = "accepted"


class GameListResponse(BaseModel):
    """All persisted games."""

    games: List[PersistedGame]


class AuthStatusResponse(BaseModel):
    """Forum session status."""

    status: str
    message: str
    authenticated: bool


class HealthResponse(BaseModel):
    """Health probe with collaborator capability states."""

    status: str
    timestamp: str
    services: Dict[str, str]


# ==================== SSE events ====================


class SSEEvent(BaseModel):
    """Base schema for Server-Sent Event payloads."""

    type: str
    timestamp: int


class ProgressEvent(SSEEvent):
    """Pipeline progress update.

    ``type`` is one of ``connected``, ``progress``, ``completed`` or ``error``.
    """

    correlation_id: str
    step: int
    total_steps: int
    percentage: int
    message: str
    stage: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
