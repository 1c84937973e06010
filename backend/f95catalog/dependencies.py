"""Service wiring and FastAPI dependency helpers."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import HTTPException, Request, status

from f95catalog.services.browser import BrowserManager
from f95catalog.services.data_extractor import StructuredDataExtractor
from f95catalog.services.llm import OpenAIExtractionProvider
from f95catalog.services.page_extractor import PageExtractor
from f95catalog.services.pipeline import ScrapePipeline
from f95catalog.services.progress import ProgressBroker
from f95catalog.services.reconciler import RecordReconciler
from f95catalog.services.session_manager import SessionManager
from f95catalog.services.size_resolver import HttpxProbeTransport, SizeResolver
from f95catalog.services.store import GameStore

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Process-wide service instances shared by all requests."""

    session: SessionManager
    page_extractor: PageExtractor
    extraction_provider: OpenAIExtractionProvider
    store: GameStore
    broker: ProgressBroker
    pipeline: ScrapePipeline
    browser: Optional[BrowserManager] = None
    size_transport: Optional[HttpxProbeTransport] = None
    runs: Dict[str, asyncio.Task] = field(default_factory=dict)


def build_services() -> AppServices:
    """Construct the service graph from the module-level configuration.

    Returns:
        AppServices: Wired services; nothing is launched until first use.
    """
    browser = BrowserManager()
    session = SessionManager(browser)
    page_extractor = PageExtractor(session)
    provider = OpenAIExtractionProvider()
    data_extractor = StructuredDataExtractor(provider)
    transport = HttpxProbeTransport()
    size_resolver = SizeResolver(transport)
    store = GameStore()
    reconciler = RecordReconciler(store)
    broker = ProgressBroker()
    pipeline = ScrapePipeline(
        session=session,
        page_extractor=page_extractor,
        data_extractor=data_extractor,
        reconciler=reconciler,
        size_resolver=size_resolver,
        store=store,
        broker=broker,
    )

    for name, capability in (
        ("session", session.capability),
        ("extraction", provider.capability),
        ("store", store.capability),
    ):
        if capability.available:
            logger.info("Service ready", extra={"service": name, "detail": capability.detail})
        else:
            logger.warning(
                "Service degraded",
                extra={"service": name, "state": capability.state.value, "detail": capability.detail},
            )

    return AppServices(
        session=session,
        page_extractor=page_extractor,
        extraction_provider=provider,
        store=store,
        broker=broker,
        pipeline=pipeline,
        browser=browser,
        size_transport=transport,
    )


async def shutdown_services(services: AppServices) -> None:
    """Release browser and HTTP resources. Failures are logged, never raised."""
    pending = [task for task in services.runs.values() if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    try:
        await services.session.close()
    except Exception:
        logger.warning("Failed to close forum session", exc_info=True)
    if services.browser is not None:
        try:
            await services.browser.shutdown()
        except Exception:
            logger.warning("Failed to shut down browser", exc_info=True)
    if services.size_transport is not None:
        try:
            await services.size_transport.aclose()
        except Exception:
            logger.warning("Failed to close size probe client", exc_info=True)


def get_services(request: Request) -> AppServices:
    """Return the services attached to the application state.

    Raises:
        HTTPException: 503 when the application has not finished starting.
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Services are not initialised")
    return services
