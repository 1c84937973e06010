"""Persisted game listing and export endpoints."""

import csv
import io
import json
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from f95catalog.dependencies import AppServices, get_services
from f95catalog.errors import PipelineError
from f95catalog.schemas import GameListResponse, PersistedGame

router = APIRouter(prefix="/api/games", tags=["Games"])

EXPORT_COLUMNS = [
    "Game Number",
    "Game Name",
    "Version",
    "Developer",
    "Release Date",
    "Original URL",
    "Cover Image",
    "Description",
    "Tags",
    "Total Size (GB)",
    "Total Size (Bytes)",
    "Download Links",
    "Individual Sizes",
    "File Size",
    "Extracted Date",
]


def _export_row(game: PersistedGame) -> List[object]:
    return [
        game.game_number,
        game.game_name,
        game.version,
        game.developer,
        game.release_date or "",
        game.original_url,
        game.cover_image or "",
        game.description,
        ", ".join(game.tags),
        game.total_size_gb,
        game.total_size_bytes,
        json.dumps([link.model_dump(exclude_none=True) for link in game.download_links], ensure_ascii=False),
        json.dumps([item.model_dump() for item in game.individual_sizes], ensure_ascii=False),
        game.file_size or "",
        game.extracted_date,
    ]


async def _read_games(services: AppServices) -> List[PersistedGame]:
    try:
        return await services.store.read_all_rows()
    except PipelineError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_dict()) from exc


@router.get("", response_model=GameListResponse)
async def list_games(services: AppServices = Depends(get_services)):
    """Return every persisted game ordered by game number."""
    return GameListResponse(games=await _read_games(services))


@router.get("/export")
async def export_games(services: AppServices = Depends(get_services)):
    """Export the games table as CSV.

    Returns:
        Response: ``text/csv`` attachment with one row per game.
    """
    games = await _read_games(services)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for game in games:
        writer.writerow(_export_row(game))

    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="games.csv"'},
    )
