"""Scrape, extract, reconcile, size and persist one game thread."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from f95catalog.errors import ErrorCategory, PipelineError
from f95catalog.schemas import PersistedGame, PipelineResult, SizeSummary
from f95catalog.services.data_extractor import StructuredDataExtractor
from f95catalog.services.page_extractor import PageExtractor
from f95catalog.services.progress import PIPELINE_TOTAL_STEPS, ProgressBroker, ProgressChannel, make_event
from f95catalog.services.reconciler import ExistingMatch, RecordReconciler
from f95catalog.services.session_manager import SessionManager
from f95catalog.services.size_resolver import SizeResolver
from f95catalog.services.store import GameStore

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    RECEIVED = "received"
    SCRAPING = "scraping"
    EXTRACTING = "extracting"
    RECONCILING = "reconciling"
    RESOLVING_SIZES = "resolving_sizes"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


# Stage -> (step index, message published before the stage runs).
STAGE_STEPS: Dict[PipelineStage, Tuple[int, str]] = {
    PipelineStage.SCRAPING: (1, "Scraping thread page..."),
    PipelineStage.EXTRACTING: (2, "Extracting game details..."),
    PipelineStage.RECONCILING: (3, "Checking for an existing record..."),
    PipelineStage.RESOLVING_SIZES: (4, "Resolving download sizes..."),
    PipelineStage.PERSISTING: (5, "Saving record..."),
}


class ScrapePipeline:
    """Runs the stages for one request strictly in order and reports progress.

    Size resolution and the existing-record lookup degrade to safe defaults
    on failure; every other stage failure ends the run with one error event.
    """

    def __init__(
        self,
        session: SessionManager,
        page_extractor: PageExtractor,
        data_extractor: StructuredDataExtractor,
        reconciler: RecordReconciler,
        size_resolver: SizeResolver,
        store: GameStore,
        broker: ProgressBroker,
    ) -> None:
        self._session = session
        self._page_extractor = page_extractor
        self._data_extractor = data_extractor
        self._reconciler = reconciler
        self._size_resolver = size_resolver
        self._store = store
        self._broker = broker

    async def run(self, url: str, correlation_id: str) -> PipelineResult:
        """Execute the pipeline for ``url``.

        Args:
            url: Thread URL to scrape.
            correlation_id: Progress stream identifier.

        Returns:
            PipelineResult: Persisted (or, after a disconnect, discarded) record.

        Raises:
            PipelineError: For any fatal stage failure, after the error event is published.
        """
        channel = self._broker.open(correlation_id, fresh=True)
        stage = PipelineStage.RECEIVED
        partial: Optional[Dict[str, Any]] = None
        logger.info("Pipeline started", extra={"correlation_id": correlation_id, "url": url})

        try:
            stage = self._enter(channel, PipelineStage.SCRAPING)
            target = self._page_extractor.validate_url(url)
            authenticated = await self._session.ensure_authenticated()
            if not authenticated:
                logger.info("Scraping without an authenticated session", extra={"correlation_id": correlation_id})
            artifact = await self._page_extractor.scrape_with_retry(target)

            stage = self._enter(channel, PipelineStage.EXTRACTING)
            extracted = await self._data_extractor.extract(artifact, target)
            partial = extracted.model_dump()

            stage = self._enter(channel, PipelineStage.RECONCILING)
            match = await self._find_existing(extracted.original_url or target, extracted.game_name)

            stage = self._enter(channel, PipelineStage.RESOLVING_SIZES)
            sizes = await self._resolve_sizes(extracted.download_links)
            resolved = {item.url: item.size_bytes for item in sizes.individual_sizes}
            candidate = PersistedGame(
                **extracted.model_dump(exclude={"download_links"}),
                download_links=[
                    link.model_copy(update={"size_bytes": resolved.get(link.url)}) for link in extracted.download_links
                ],
                total_size_bytes=sizes.total_size_bytes,
                total_size_gb=sizes.total_size_gb,
                individual_sizes=sizes.individual_sizes,
            )
            record = (
                self._reconciler.reconcile(match.record, candidate, match.match_type) if match else candidate
            )
            partial = record.model_dump()

            stage = self._enter(channel, PipelineStage.PERSISTING)
            result = await self._persist(record, match, correlation_id, channel)
        except PipelineError as exc:
            if exc.partial is None and partial is not None:
                exc.partial = partial
            self._fail(channel, stage, exc)
            raise
        except Exception as exc:
            logger.exception("Unexpected pipeline failure", extra={"correlation_id": correlation_id})
            error = PipelineError(ErrorCategory.INTERNAL_ERROR, str(exc) or type(exc).__name__, partial=partial)
            self._fail(channel, stage, error)
            raise error from exc

        channel.publish(
            make_event(
                "completed",
                correlation_id,
                PIPELINE_TOTAL_STEPS,
                PIPELINE_TOTAL_STEPS,
                self._completion_message(result),
                stage=PipelineStage.COMPLETED.value,
                payload=result.model_dump(),
            )
        )
        logger.info(
            "Pipeline completed",
            extra={"correlation_id": correlation_id, "action": result.action, "game_number": result.game_number},
        )
        return result

    def _enter(self, channel: ProgressChannel, stage: PipelineStage) -> PipelineStage:
        step, message = STAGE_STEPS[stage]
        channel.publish(
            make_event("progress", channel.correlation_id, step, PIPELINE_TOTAL_STEPS, message, stage=stage.value)
        )
        return stage

    def _fail(self, channel: ProgressChannel, stage: PipelineStage, exc: PipelineError) -> None:
        step = STAGE_STEPS.get(stage, (0, ""))[0]
        logger.warning(
            "Pipeline failed",
            extra={"correlation_id": channel.correlation_id, "stage": stage.value, "category": exc.category.value},
        )
        channel.publish(
            make_event(
                "error",
                channel.correlation_id,
                step,
                PIPELINE_TOTAL_STEPS,
                exc.hint,
                stage=PipelineStage.FAILED.value,
                error=exc.to_dict(),
            )
        )

    async def _find_existing(self, url: str, name: str) -> Optional[ExistingMatch]:
        try:
            return await self._reconciler.find_existing(url, name)
        except Exception:
            logger.warning("Existing-record lookup failed; treating as new", extra={"url": url}, exc_info=True)
            return None

    async def _resolve_sizes(self, links: list) -> SizeSummary:
        try:
            return await self._size_resolver.resolve_sizes(links)
        except Exception:
            logger.warning("Size resolution failed; using zero total", exc_info=True)
            return SizeSummary()

    async def _persist(
        self,
        record: PersistedGame,
        match: Optional[ExistingMatch],
        correlation_id: str,
        channel: ProgressChannel,
    ) -> PipelineResult:
        match_type = match.match_type.value if match else None
        if channel.disconnected:
            logger.info("Subscriber disconnected; discarding result", extra={"correlation_id": correlation_id})
            return PipelineResult(
                correlation_id=correlation_id,
                action="discarded",
                game_number=record.game_number or None,
                match_type=match_type,
                data=record,
            )

        if match is not None:
            await self._store.update_row(record.game_number, record)
            return PipelineResult(
                correlation_id=correlation_id,
                action="updated",
                game_number=record.game_number,
                match_type=match_type,
                data=record,
            )

        game_number = await self._store.append_row(record)
        stored = record.model_copy(update={"game_number": game_number})
        return PipelineResult(correlation_id=correlation_id, action="created", game_number=game_number, data=stored)

    @staticmethod
    def _completion_message(result: PipelineResult) -> str:
        name = result.data.game_name
        if result.action == "created":
            return f"Added {name} as game #{result.game_number}"
        if result.action == "updated":
            return f"Updated {name} (game #{result.game_number})"
        return f"Extracted {name}; not saved because the progress stream was closed"
