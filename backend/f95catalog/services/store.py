"""Persisted game table backed by SQLAlchemy."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any, List, Optional

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from f95catalog.capabilities import Capability
from f95catalog.config import config
from f95catalog.database import create_db_engine, create_session_factory, init_db
from f95catalog.errors import ErrorCategory, PersistenceReason, PipelineError
from f95catalog.models import GameRow
from f95catalog.schemas import PersistedGame

logger = logging.getLogger(__name__)


def classify_store_error(exc: BaseException) -> PersistenceReason:
    """Map a database failure onto a persistence sub-reason.

    Args:
        exc: SQLAlchemy or OS error raised by the store.

    Returns:
        PersistenceReason: Sub-reason used to pick caller guidance.
    """
    if isinstance(exc, PermissionError):
        return PersistenceReason.PERMISSION
    if isinstance(exc, FileNotFoundError):
        return PersistenceReason.NOT_FOUND
    message = str(exc).lower()
    if "readonly" in message or "read-only" in message or "permission" in message or "access denied" in message:
        return PersistenceReason.PERMISSION
    if "unable to open" in message or "no such table" in message or "does not exist" in message:
        return PersistenceReason.NOT_FOUND
    if isinstance(exc, OperationalError) or "locked" in message or "connection" in message:
        return PersistenceReason.NETWORK
    return PersistenceReason.UNKNOWN


def _persistence_error(exc: BaseException, action: str) -> PipelineError:
    reason = classify_store_error(exc)
    return PipelineError(ErrorCategory.PERSISTENCE_FAILURE, f"Failed to {action}: {exc}", reason=reason)


def _load_json_list(value: Optional[str]) -> List[Any]:
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except ValueError:
        logger.warning("Ignoring malformed JSON column value")
        return []
    return parsed if isinstance(parsed, list) else []


def _row_to_record(row: GameRow) -> PersistedGame:
    return PersistedGame(
        game_number=row.game_number,
        game_name=row.game_name,
        version=row.version,
        developer=row.developer,
        release_date=row.release_date,
        original_url=row.original_url or "",
        cover_image=row.cover_image,
        description=row.description or "",
        tags=_load_json_list(row.tags),
        total_size_gb=row.total_size_gb or "0.00",
        total_size_bytes=row.total_size_bytes or 0,
        download_links=_load_json_list(row.download_links),
        individual_sizes=_load_json_list(row.individual_sizes),
        file_size=row.file_size,
        extracted_date=row.extracted_date,
    )


def _apply_record(row: GameRow, record: PersistedGame) -> None:
    row.game_name = record.game_name
    row.version = record.version
    row.developer = record.developer
    row.release_date = record.release_date
    row.original_url = record.original_url
    row.cover_image = record.cover_image
    row.description = record.description
    row.tags = json.dumps(record.tags, ensure_ascii=False)
    row.total_size_gb = record.total_size_gb
    row.total_size_bytes = record.total_size_bytes
    row.download_links = json.dumps([link.model_dump() for link in record.download_links], ensure_ascii=False)
    row.individual_sizes = json.dumps([item.model_dump() for item in record.individual_sizes], ensure_ascii=False)
    row.file_size = record.file_size
    row.extracted_date = record.extracted_date


class GameStore:
    """Tabular record store with one row per game.

    Each write runs in its own transaction, so a record is either fully
    written or not at all. Blocking database calls are moved off the event
    loop with ``asyncio.to_thread``.
    """

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None) -> None:
        self._database_url = database_url or config.DATABASE_URL
        self._write_lock = threading.Lock()
        self._engine: Optional[Engine] = None
        self._session_factory = None
        try:
            self._engine = engine or create_db_engine(self._database_url)
            self._session_factory = create_session_factory(self._engine)
            self.capability = Capability.configured(self._engine.url.get_backend_name())
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Record store unavailable", extra={"error": str(exc)})
            self.capability = Capability.error(str(exc))

    def _require_session_factory(self):
        if self._session_factory is None:
            raise PipelineError(
                ErrorCategory.PERSISTENCE_FAILURE,
                f"Record store is not available: {self.capability.detail}",
                reason=PersistenceReason.NOT_FOUND,
            )
        return self._session_factory

    # ==================== Async API ====================

    async def ensure_schema(self) -> None:
        """Create the games table if it does not exist."""
        await asyncio.to_thread(self.ensure_schema_sync)

    async def append_row(self, record: PersistedGame) -> int:
        """Insert ``record`` under the next game number and return that number."""
        return await asyncio.to_thread(self.append_row_sync, record)

    async def update_row(self, game_number: int, record: PersistedGame) -> None:
        """Overwrite the row identified by ``game_number`` with ``record``."""
        await asyncio.to_thread(self.update_row_sync, game_number, record)

    async def read_all_rows(self) -> List[PersistedGame]:
        """Return every stored record ordered by game number."""
        return await asyncio.to_thread(self.read_all_rows_sync)

    # ==================== Blocking implementations ====================

    def ensure_schema_sync(self) -> None:
        self._require_session_factory()
        try:
            init_db(self._engine)
        except SQLAlchemyError as exc:
            raise _persistence_error(exc, "create the games table") from exc
        logger.info("Record store schema ready", extra={"database": self.capability.detail})

    def append_row_sync(self, record: PersistedGame) -> int:
        factory = self._require_session_factory()
        with self._write_lock:
            db = factory()
            try:
                current = db.query(func.max(GameRow.game_number)).scalar() or 0
                game_number = current + 1
                row = GameRow(game_number=game_number)
                _apply_record(row, record)
                db.add(row)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise _persistence_error(exc, "append game row") from exc
            finally:
                db.close()
        logger.info("Appended game row", extra={"game_number": game_number, "game_name": record.game_name})
        return game_number

    def update_row_sync(self, game_number: int, record: PersistedGame) -> None:
        factory = self._require_session_factory()
        with self._write_lock:
            db = factory()
            try:
                row = db.query(GameRow).filter(GameRow.game_number == game_number).first()
                if row is None:
                    raise PipelineError(
                        ErrorCategory.PERSISTENCE_FAILURE,
                        f"Game #{game_number} not found",
                        reason=PersistenceReason.NOT_FOUND,
                    )
                _apply_record(row, record)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise _persistence_error(exc, f"update game #{game_number}") from exc
            finally:
                db.close()
        logger.info("Updated game row", extra={"game_number": game_number, "game_name": record.game_name})

    def read_all_rows_sync(self) -> List[PersistedGame]:
        factory = self._require_session_factory()
        db = factory()
        try:
            rows = db.query(GameRow).order_by(GameRow.game_number).all()
            records: List[PersistedGame] = []
            for row in rows:
                try:
                    records.append(_row_to_record(row))
                except ValidationError:
                    logger.warning("Skipping malformed game row", extra={"game_number": row.game_number})
            return records
        except SQLAlchemyError as exc:
            raise _persistence_error(exc, "read game rows") from exc
        finally:
            db.close()
