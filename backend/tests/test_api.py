import csv
import io
import json

import pytest
from fakes import (
    LOGIN_URL,
    THREAD_URL,
    FakeBrowsingContext,
    FakeContextProvider,
    FakeExtractionProvider,
    FakeProbeTransport,
    MemoryStore,
    sample_page,
)
from fastapi.testclient import TestClient

from f95catalog.capabilities import Capability
from f95catalog.dependencies import AppServices, get_services
from f95catalog.errors import ErrorCategory, PersistenceReason, PipelineError
from f95catalog.main import app
from f95catalog.schemas import DownloadLink, PersistedGame
from f95catalog.services.data_extractor import StructuredDataExtractor
from f95catalog.services.page_extractor import PageExtractor
from f95catalog.services.pipeline import ScrapePipeline
from f95catalog.services.progress import PIPELINE_TOTAL_STEPS, ProgressBroker, ProgressChannel, make_event
from f95catalog.services.reconciler import RecordReconciler
from f95catalog.services.session_manager import SessionManager
from f95catalog.services.size_resolver import SizeResolver


class _ActiveRun:
    def done(self):
        return False


def _services(store=None):
    provider = FakeContextProvider(lambda: FakeBrowsingContext(pages={THREAD_URL: sample_page()}))
    session = SessionManager(provider, username="", password="", login_url=LOGIN_URL)
    page_extractor = PageExtractor(session, domain="f95zone.to", max_attempts=1, backoff_seconds=0)
    extraction_provider = FakeExtractionProvider(reply="{}")
    store = store if store is not None else MemoryStore()
    broker = ProgressBroker(idle_timeout_seconds=5)
    pipeline = ScrapePipeline(
        session=session,
        page_extractor=page_extractor,
        data_extractor=StructuredDataExtractor(extraction_provider),
        reconciler=RecordReconciler(store),
        size_resolver=SizeResolver(FakeProbeTransport()),
        store=store,
        broker=broker,
    )
    return AppServices(
        session=session,
        page_extractor=page_extractor,
        extraction_provider=extraction_provider,
        store=store,
        broker=broker,
        pipeline=pipeline,
    )


@pytest.fixture
def services():
    return _services(
        MemoryStore(
            [
                PersistedGame(
                    game_number=1,
                    game_name="Sample Game",
                    version="1.0",
                    developer="Dev",
                    tags=["3DCG", "Romance"],
                    original_url=THREAD_URL,
                    download_links=[DownloadLink(provider="MEGA", url="https://mega.nz/file/abc")],
                    total_size_bytes=1073741824,
                    total_size_gb="1.00",
                ),
                PersistedGame(game_number=2, game_name="Other Game", original_url="https://f95zone.to/threads/o.2/"),
            ]
        )
    )


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "running"


def test_health_reports_capabilities(client):
    body = client.get("/api/health").json()

    assert body["status"] == "healthy"
    assert body["services"] == {"session": "not_configured", "extraction": "configured", "store": "configured"}


def test_health_is_degraded_when_store_errors(client, services):
    services.store.capability = Capability.error("disk unavailable")

    body = client.get("/api/health").json()

    assert body["status"] == "degraded"
    assert body["services"]["store"] == "error"


def test_auth_status_without_credentials(client):
    body = client.get("/api/auth/status").json()

    assert body["status"] == "not_configured"
    assert body["authenticated"] is False
    assert body["message"]


def test_list_games(client):
    body = client.get("/api/games").json()

    assert [game["game_number"] for game in body["games"]] == [1, 2]
    assert body["games"][0]["download_links"][0]["provider"] == "MEGA"


def test_list_games_store_failure(client, services):
    services.store.read_error = PipelineError(
        ErrorCategory.PERSISTENCE_FAILURE, "database is locked", reason=PersistenceReason.NETWORK
    )

    response = client.get("/api/games")

    assert response.status_code == 503
    assert response.json()["detail"]["reason"] == "network"


def test_export_games_as_csv(client):
    response = client.get("/api/games/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "games.csv" in response.headers["content-disposition"]

    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0][:3] == ["Game Number", "Game Name", "Version"]
    assert len(rows) == 3
    assert rows[1][1] == "Sample Game"
    assert rows[1][8] == "3DCG, Romance"
    assert json.loads(rows[1][11])[0]["url"] == "https://mega.nz/file/abc"


@pytest.mark.parametrize("url", ["https://example.com/threads/x.1/", "https://[f95zone.to/threads/x.1/"])
def test_scrape_rejects_invalid_url(client, url):
    response = client.post("/api/scrape", json={"url": url})

    assert response.status_code == 400
    assert response.json()["detail"]["error_code"] == "invalid_input"


def test_scrape_rejects_empty_url(client):
    assert client.post("/api/scrape", json={"url": ""}).status_code == 422


def test_scrape_rejects_active_correlation_id(client, services):
    services.runs["busy"] = _ActiveRun()

    response = client.post("/api/scrape", json={"url": THREAD_URL, "correlation_id": "busy"})

    assert response.status_code == 409


def test_scrape_accepts_valid_url(client):
    response = client.post("/api/scrape", json={"url": THREAD_URL, "correlation_id": "run-42"})

    assert response.status_code == 202
    body = response.json()
    assert body["correlation_id"] == "run-42"
    assert body["events_url"] == "/api/scrape/run-42/events"
    assert body["status"] == "accepted"


def test_event_stream_replays_buffered_events(client, services):
    channel = ProgressChannel("run-7")
    services.broker._channels["run-7"] = channel
    channel.publish(make_event("progress", "run-7", 1, PIPELINE_TOTAL_STEPS, "Scraping thread page..."))
    channel.publish(make_event("completed", "run-7", 6, PIPELINE_TOTAL_STEPS, "Done", payload={"action": "created"}))

    response = client.get("/api/scrape/run-7/events")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = [json.loads(line[len("data: "):]) for line in response.text.splitlines() if line.startswith("data: ")]
    assert [event["type"] for event in events] == ["connected", "progress", "completed"]
    assert events[-1]["payload"] == {"action": "created"}
    assert "error" not in events[-1]


def test_event_stream_allows_one_subscriber(client, services):
    channel = ProgressChannel("run-8")
    channel.subscribed = True
    services.broker._channels["run-8"] = channel

    assert client.get("/api/scrape/run-8/events").status_code == 409


def test_services_unavailable_before_startup():
    app.dependency_overrides.clear()
    response = TestClient(app).get("/api/health")
    assert response.status_code == 503
