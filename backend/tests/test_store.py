import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from f95catalog.errors import ErrorCategory, PersistenceReason, PipelineError
from f95catalog.schemas import DownloadLink, LinkSize, PersistedGame
from f95catalog.services.store import GameStore, classify_store_error


@pytest.fixture
def store(tmp_path):
    game_store = GameStore(database_url=f"sqlite:///{tmp_path / 'data' / 'games.db'}")
    asyncio.run(game_store.ensure_schema())
    return game_store


def _record(name, url, **fields):
    return PersistedGame(game_name=name, original_url=url, **fields)


def test_store_reports_capability(store):
    assert store.capability.available
    assert store.capability.detail == "sqlite"


def test_append_assigns_sequential_numbers(store):
    async def scenario():
        first = await store.append_row(_record("First", "https://f95zone.to/threads/first.1/"))
        second = await store.append_row(_record("Second", "https://f95zone.to/threads/second.2/"))
        return first, second, await store.read_all_rows()

    first, second, rows = asyncio.run(scenario())

    assert (first, second) == (1, 2)
    assert [row.game_number for row in rows] == [1, 2]
    assert [row.game_name for row in rows] == ["First", "Second"]


def test_nested_fields_survive_storage(store):
    record = _record(
        "Sample Game",
        "https://f95zone.to/threads/sample.3/",
        version="0.5",
        tags=["3DCG", "Romance"],
        download_links=[DownloadLink(provider="MEGA", url="https://mega.nz/file/a", size_bytes=1024)],
        individual_sizes=[
            LinkSize(provider="MEGA", platform="PC", url="https://mega.nz/file/a", size_bytes=1024, size_gb="0.00")
        ],
        total_size_bytes=1024,
    )

    async def scenario():
        await store.append_row(record)
        return await store.read_all_rows()

    (stored,) = asyncio.run(scenario())

    assert stored.tags == ["3DCG", "Romance"]
    assert stored.download_links[0].size_bytes == 1024
    assert stored.individual_sizes[0].url == "https://mega.nz/file/a"
    assert stored.total_size_bytes == 1024
    assert stored.extracted_date == record.extracted_date


def test_update_overwrites_row(store):
    async def scenario():
        number = await store.append_row(_record("Game", "https://f95zone.to/threads/game.1/", version="1.0"))
        await store.update_row(number, _record("Game", "https://f95zone.to/threads/game.1/", version="1.1"))
        return await store.read_all_rows()

    rows = asyncio.run(scenario())

    assert len(rows) == 1
    assert rows[0].game_number == 1
    assert rows[0].version == "1.1"


def test_update_missing_row_is_persistence_failure(store):
    with pytest.raises(PipelineError) as info:
        asyncio.run(store.update_row(42, _record("Ghost", "https://f95zone.to/threads/ghost.42/")))

    assert info.value.category is ErrorCategory.PERSISTENCE_FAILURE
    assert info.value.reason is PersistenceReason.NOT_FOUND


def test_read_without_schema_reports_missing_table(tmp_path):
    game_store = GameStore(database_url=f"sqlite:///{tmp_path / 'empty.db'}")

    with pytest.raises(PipelineError) as info:
        asyncio.run(game_store.read_all_rows())

    assert info.value.category is ErrorCategory.PERSISTENCE_FAILURE
    assert info.value.reason is PersistenceReason.NOT_FOUND
    assert info.value.to_dict()["reason"] == "not_found"


@pytest.mark.parametrize(
    "exc, expected",
    [
        (PermissionError("denied"), PersistenceReason.PERMISSION),
        (FileNotFoundError("gone"), PersistenceReason.NOT_FOUND),
        (OperationalError("SELECT 1", {}, Exception("attempt to write a readonly database")), PersistenceReason.PERMISSION),
        (OperationalError("SELECT 1", {}, Exception("database is locked")), PersistenceReason.NETWORK),
        (OperationalError("SELECT 1", {}, Exception("unable to open database file")), PersistenceReason.NOT_FOUND),
        (ValueError("strange"), PersistenceReason.UNKNOWN),
    ],
)
def test_classify_store_error(exc, expected):
    assert classify_store_error(exc) is expected
