"""Scrape pipeline endpoints."""

import asyncio
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from f95catalog.dependencies import AppServices, get_services
from f95catalog.errors import PipelineError
from f95catalog.schemas import ScrapeAccepted, ScrapeRequest
from f95catalog.utils.helpers import sse_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scrape", tags=["Scrape"])


async def _run_pipeline(services: AppServices, url: str, correlation_id: str) -> None:
    try:
        await services.pipeline.run(url, correlation_id)
    except PipelineError as exc:
        # Already reported on the progress stream.
        logger.info(
            "Pipeline run ended with an error",
            extra={"correlation_id": correlation_id, "category": exc.category.value},
        )


@router.post("", response_model=ScrapeAccepted, status_code=status.HTTP_202_ACCEPTED)
async def start_scrape(request: ScrapeRequest, services: AppServices = Depends(get_services)):
    """Validate the URL and start a pipeline run in the background.

    Args:
        request: Thread URL and optional client-chosen correlation id.
        services: Application services.

    Returns:
        ScrapeAccepted: Correlation id and the progress stream URL.

    Raises:
        HTTPException: 400 for an invalid URL, 409 when the correlation id is already running.
    """
    try:
        url = services.page_extractor.validate_url(request.url)
    except PipelineError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict()) from exc

    correlation_id = request.correlation_id or uuid.uuid4().hex
    running = services.runs.get(correlation_id)
    if running is not None and not running.done():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A run with this correlation id is active")

    services.broker.open(correlation_id, fresh=True)
    task = asyncio.create_task(_run_pipeline(services, url, correlation_id))
    services.runs[correlation_id] = task

    def _forget(finished: asyncio.Task) -> None:
        if services.runs.get(correlation_id) is finished:
            del services.runs[correlation_id]

    task.add_done_callback(_forget)
    logger.info("Scrape accepted", extra={"correlation_id": correlation_id, "url": url})

    return ScrapeAccepted(correlation_id=correlation_id, events_url=f"/api/scrape/{correlation_id}/events")


@router.get("/{correlation_id}/events")
async def scrape_events(correlation_id: str, services: AppServices = Depends(get_services)):
    """Stream progress events for a run over Server-Sent Events.

    Args:
        correlation_id: Identifier returned by ``POST /api/scrape`` or chosen by the client.
        services: Application services.

    Returns:
        StreamingResponse: SSE stream ending with a ``completed`` or ``error`` event.
    """
    channel = services.broker.get(correlation_id)
    if channel is not None and channel.subscribed:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Progress stream already has a subscriber")

    async def event_generator():
        async for event in services.broker.subscribe(correlation_id):
            yield sse_event(event.model_dump(exclude_none=True))

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable Nginx buffering.
        },
    )
