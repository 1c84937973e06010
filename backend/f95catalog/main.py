"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from f95catalog.api import games, scrape, status
from f95catalog.dependencies import build_services, shutdown_services
from f95catalog.errors import PipelineError
from f95catalog.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan hooks.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control is yielded back to FastAPI to run the app.
    """
    setup_logging()
    logger.info("Starting F95 catalog backend...")
    services = build_services()
    if services.store.capability.available:
        try:
            await services.store.ensure_schema()
        except PipelineError as exc:
            logger.error("Record store schema setup failed", extra={"error": exc.message})
    app.state.services = services
    logger.info("Service started")
    yield
    logger.info("Shutting down service...")
    await shutdown_services(services)
    app.state.services = None


app = FastAPI(
    title="F95 catalog backend",
    description="Scrapes F95Zone game threads, extracts structured details and keeps a deduplicated catalog",
    version="1.0.0",
    lifespan=lifespan,
)

# Register routers.
app.include_router(scrape.router)
app.include_router(games.router)
app.include_router(status.router)


@app.get("/")
def read_root():
    """Return service metadata.

    Returns:
        dict: Basic service information for smoke testing.
    """
    return {
        "message": "F95 catalog backend",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }
