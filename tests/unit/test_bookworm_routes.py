import json

import pytest
from fastapi.testclient import TestClient

from bookworm.api import main as api_main
from bookworm.api.routes import calibre as calibre_route
from bookworm.api.routes import hardcover as hardcover_route
from bookworm.api.routes import logs as logs_route
from bookworm.api.routes import recommendations as recommendations_route
from bookworm.api.routes import settings as settings_route
from bookworm.api.routes import suggested as suggested_route
from bookworm.application.workflows.recommendation_discovery import RecommendationDiscovery
from bookworm.config import BookwormSettings
from bookworm.domain.catalog import CatalogEntry
from bookworm.domain.crawl import ListHit, ListNeighbor, RecommendationCandidate
from bookworm.infrastructure.stores.catalog_mirror_store import CatalogMirrorStore
from bookworm.infrastructure.stores.suggested_store import SuggestedStore


def _parse_sse_events(text: str):
    """Parse SSE text into (event name, payload) pairs."""
    events = []
    name = None
    for line in text.split("\n"):
        if line.startswith("event: "):
            name = line[7:].strip()
        elif line.startswith("data: "):
            payload = line[6:].strip()
            events.append((name, None if payload == "[DONE]" else json.loads(payload)))
    return events


@pytest.fixture(autouse=True)
def _fresh_route_singletons(monkeypatch):
    """Route-level stores are rebuilt against this test's database."""
    for module, names in (
        (suggested_route, ("_suggested_store", "_mirror_store", "_cache_store")),
        (calibre_route, ("_mirror_store", "_sync_service")),
        (hardcover_route, ("_cache_store", "_want_store")),
        (settings_route, ("_settings_store",)),
        (logs_route, ("_activity",)),
    ):
        for name in names:
            monkeypatch.setattr(module, name, None)


@pytest.fixture
def client():
    return TestClient(api_main.app)


def _seed_mirror():
    CatalogMirrorStore().replace_all(
        [
            CatalogEntry(id=1, title="Dune", authors=["Frank Herbert"], isbn="9780441013593"),
            CatalogEntry(
                id=2, title="Foundation", authors=["Isaac Asimov"], isbn="9780553293357"
            ),
        ],
        source_path="/lib/metadata.db",
    )


def _seed_suggestions():
    SuggestedStore().upsert_missing(
        [
            RecommendationCandidate(
                key="200",
                book={
                    "id": 200,
                    "title": "Foundation",
                    "cached_contributors": [{"name": "Isaac Asimov"}],
                    "default_physical_edition": {"isbn_13": "9780553293357"},
                },
                count=1,
            ),
            RecommendationCandidate(
                key="201",
                book={"id": 201, "title": "Children of Dune", "cached_contributors": [{"name": "Frank Herbert"}]},
                count=2,
            ),
            RecommendationCandidate(key="202", book={"id": 202, "title": "Unrelated"}, count=1),
        ]
    )


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_ranked_suggestions_remove_owned_once(client):
    _seed_mirror()
    _seed_suggestions()

    resp = client.get("/api/suggested/ranked")
    assert resp.status_code == 200
    body = resp.json()
    assert body["removedOwned"] == 1
    assert [i["book"]["title"] for i in body["items"]] == ["Children of Dune", "Unrelated"]

    again = client.get("/api/suggested/ranked?limit=1").json()
    assert again["removedOwned"] == 0
    assert again["count"] == 2
    assert len(again["items"]) == 1


def test_hide_and_ignore_move_rows_between_listings(client):
    _seed_suggestions()
    ids = [i["id"] for i in client.get("/api/suggested").json()["items"]]

    assert client.post("/api/suggested/hide", json={"ids": [ids[0]]}).json() == {"updated": 1}
    assert client.post("/api/suggested/ignore", json={"ids": [ids[1]]}).json() == {"updated": 1}

    assert [i["id"] for i in client.get("/api/suggested").json()["items"]] == [ids[2]]
    assert client.get("/api/suggested/hidden").json()["count"] == 1
    assert client.get("/api/suggested/ignored").json()["count"] == 1
    assert client.get(f"/api/suggested/{ids[0]}").json()["id"] == ids[0]


def test_hide_without_valid_ids_is_bad_request(client):
    resp = client.post("/api/suggested/hide", json={"ids": [0, -1]})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "No valid ids provided."


def test_unknown_suggestion_is_404(client):
    assert client.get("/api/suggested/999").status_code == 404


def test_calibre_sync_without_path_is_bad_request(client):
    resp = client.post("/api/calibre/sync")
    assert resp.status_code == 400
    assert resp.json()["detail"]["setting"] == "BOOKWORM_CALIBRE_DB_PATH"


def test_calibre_state_and_books(client):
    _seed_mirror()
    state = client.get("/api/calibre/state").json()
    assert state["count"] == 2
    assert state["calibre_db_path"] == "/lib/metadata.db"
    assert client.get("/api/calibre/books?limit=1").json()["count"] == 1


def test_settings_round_trip(client, tmp_path):
    assert client.get("/api/settings/hardcover/api-key").json() == {"configured": False}
    assert client.post("/api/settings/hardcover/api-key", json={"apiKey": "Bearer tok"}).json() == {
        "configured": True
    }

    assert client.post("/api/settings/hardcover/list", json={"listId": "abc"}).status_code == 400
    assert client.post("/api/settings/hardcover/list", json={"listId": " 12 "}).json() == {
        "listId": "12",
        "configured": True,
    }

    saved = client.post("/api/settings/calibre", json={"path": str(tmp_path)}).json()
    assert saved["configured"] is True
    assert saved["exists"] is False


def test_list_cache_reset_and_logs(client):
    assert client.get("/api/hardcover/list-cache/status").json()["total"] == 0
    assert client.post("/api/hardcover/list-cache/reset", json={"calibreIds": [1]}).json() == {
        "removed": 0
    }
    assert client.get("/api/hardcover/want-cache").json()["count"] == 0
    assert client.get("/api/logs").json()["count"] >= 0
    assert "removed" in client.delete("/api/logs").json()


class _FakeListService:
    async def find_book_by_title(self, title):
        return {"id": 10, "title": title} if title == "Dune" else None

    async def find_book_by_isbn(self, isbn):
        return None

    async def get_lists_for_book(self, book_id, *, lists_per_book, items_per_list):
        return [
            ListHit(
                list_id="1",
                list_name="Desert Planets",
                neighbors=[ListNeighbor.from_book({"id": 11, "title": "Children of Dune"})],
            )
        ]

    async def get_base_genres(self, book_id):
        return []

    async def close(self):
        pass


def _fake_discovery():
    return RecommendationDiscovery(
        client=_FakeListService(),
        settings=BookwormSettings(hardcover_api_key="k", rate_limit_cooldown_seconds=0),
    )


def test_bulk_crawl_returns_summary(client, monkeypatch):
    _seed_mirror()
    monkeypatch.setattr(recommendations_route, "_new_discovery", _fake_discovery)

    resp = client.get("/api/recommendations/hardcover/lists?delayMs=0")
    assert resp.status_code == 200
    body = resp.json()
    assert body["inspectedCalibreBooks"] == 2
    assert body["matchedCalibreBooks"] == 1
    assert [r["book"]["title"] for r in body["recommendations"]] == ["Children of Dune"]
    assert body["recommendations"][0]["reasons"][0]["text"] == "found in list Desert Planets"
    assert body["traceId"]


def test_bulk_crawl_without_catalog_is_bad_request(client, monkeypatch):
    monkeypatch.setattr(recommendations_route, "_new_discovery", _fake_discovery)
    resp = client.get("/api/recommendations/hardcover/lists")
    assert resp.status_code == 400
    assert "Sync Calibre first" in resp.json()["detail"]["error"]


def test_stream_crawl_emits_steps_then_summary(client, monkeypatch):
    CatalogMirrorStore().replace_all([CatalogEntry(id=1, title="Dune")], source_path="/lib")
    monkeypatch.setattr(recommendations_route, "_new_discovery", _fake_discovery)

    with client.stream("GET", "/api/recommendations/hardcover/lists/stream") as resp:
        assert resp.status_code == 200
        text = "".join(resp.iter_text())

    events = _parse_sse_events(text)
    assert [name for name, _ in events] == ["step", "summary", "done"]
    step = events[0][1]
    assert step["data"]["calibreId"] == 1
    assert step["data"]["matchedHardcover"] is True
    assert step["envelope"]["workflow"] == "hardcover_lists"
    assert events[1][1]["data"]["uniqueRecommendations"] == 1


def test_stream_crawl_without_key_emits_error(client, monkeypatch):
    monkeypatch.setattr(
        recommendations_route,
        "_new_discovery",
        lambda: RecommendationDiscovery(client=_FakeListService(), settings=BookwormSettings()),
    )
    with client.stream("GET", "/api/recommendations/hardcover/lists/stream") as resp:
        text = "".join(resp.iter_text())

    events = _parse_sse_events(text)
    assert [name for name, _ in events] == ["error", "done"]
    assert "Hardcover API key" in events[0][1]["message"]
