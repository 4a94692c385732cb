from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from bookworm.application.services.activity_log_service import ActivityLogService
from bookworm.application.workflows.recommendation_discovery import (
    DiscoveryConfig,
    DiscoverySummary,
    RecommendationDiscovery,
)
from bookworm.config import BookwormSettings
from bookworm.domain.catalog import CatalogEntry
from bookworm.domain.crawl import (
    BookListResult,
    CrawlStatus,
    CrawlStep,
    ListHit,
    ListNeighbor,
)
from bookworm.domain.errors import CatalogUnavailableError, NotConfiguredError, RateLimitedError
from bookworm.infrastructure.stores.activity_log_store import ActivityLogStore
from bookworm.infrastructure.stores.catalog_mirror_store import CatalogMirrorStore
from bookworm.infrastructure.stores.list_cache_store import ListCacheStore
from bookworm.infrastructure.stores.suggested_store import SuggestedStore

SETTINGS = BookwormSettings(hardcover_api_key="k", rate_limit_cooldown_seconds=0)
FAST = DiscoveryConfig(delay_ms=0)


def _book(book_id, title, rating=None):
    book = {"id": book_id, "title": title}
    if rating is not None:
        book["rating"] = rating
    return book


class FakeListService:
    """In-memory list service keyed by exact title."""

    def __init__(self, titles=None, lists=None, fail=None, list_fail=None):
        self.titles = titles or {}
        self.lists = lists or {}
        self.fail = fail or {}
        self.list_fail = list_fail or {}
        self.calls = []
        self.closed = False

    async def find_book_by_title(self, title):
        self.calls.append(("title", title))
        error = self.fail.get(title)
        if error is not None:
            raise error
        return self.titles.get(title)

    async def find_book_by_isbn(self, isbn):
        self.calls.append(("isbn", isbn))
        return None

    async def get_lists_for_book(self, book_id, *, lists_per_book, items_per_list):
        self.calls.append(("lists", book_id))
        error = self.list_fail.get(book_id)
        if error is not None:
            raise error
        return [
            ListHit(
                list_id=str(idx),
                list_name=name,
                neighbors=[ListNeighbor.from_book(b) for b in books[:items_per_list]],
            )
            for idx, (name, books) in enumerate(self.lists.get(book_id, [])[:lists_per_book], start=1)
        ]

    async def get_base_genres(self, book_id):
        return ["Science Fiction"]

    async def close(self):
        self.closed = True


@pytest.fixture
def stores(tmp_path):
    db_url = f"sqlite:///{tmp_path / 'discovery.db'}"
    return {
        "mirror": CatalogMirrorStore(db_url=db_url),
        "cache": ListCacheStore(db_url=db_url),
        "suggested": SuggestedStore(db_url=db_url),
        "activity": ActivityLogService(ActivityLogStore(db_url=db_url)),
    }


def _mirror(stores, *titles):
    # newest first in the mirror: later arguments get later timestamps
    entries = [
        CatalogEntry(id=i, title=t, added_at=datetime(2024, 1, i, tzinfo=timezone.utc))
        for i, t in enumerate(titles, start=1)
    ]
    stores["mirror"].replace_all(entries, source_path="/lib/metadata.db")
    stores["cache"].sync_with_catalog(entries)


def _discovery(stores, client, settings=SETTINGS):
    return RecommendationDiscovery(client=client, settings=settings, **stores)


async def _collect(discovery, config=FAST, cancel=None):
    return [item async for item in discovery.run(config, cancel=cancel)]


@pytest.mark.asyncio
async def test_dune_lists_aggregate_occurrences(stores):
    _mirror(stores, "Dune")
    client = FakeListService(
        titles={"Dune": _book(10, "Dune")},
        lists={
            10: [
                ("Desert Planets", [_book(11, "Children of Dune"), _book(12, "Foundation")]),
                ("Herbert Essentials", [_book(11, "Children of Dune")]),
            ]
        },
    )

    items = await _collect(_discovery(stores, client))
    step, summary = items

    assert isinstance(step, CrawlStep)
    assert step.matched_hardcover is True
    assert step.lists_checked == 2
    assert step.recommendations_added == 3
    assert isinstance(summary, DiscoverySummary)
    assert [(r.book["title"], r.count) for r in summary.recommendations] == [
        ("Children of Dune", 2),
        ("Foundation", 1),
    ]
    assert [r.list_name for r in summary.recommendations[0].reasons] == [
        "Desert Planets",
        "Herbert Essentials",
    ]
    assert summary.suggested_inserted == 2
    assert stores["cache"].get(1)["status"] == "ok"
    assert stores["activity"].recent()[0]["level"] == "success"


@pytest.mark.asyncio
async def test_min_rating_drops_only_known_low_ratings(stores):
    _mirror(stores, "Dune")
    client = FakeListService(
        titles={"Dune": _book(10, "Dune")},
        lists={10: [("Mixed", [_book(11, "Low", 2.5), _book(12, "High", 4.2), _book(13, "Unrated")])]},
    )

    summary = await _discovery(stores, client).run_sync(DiscoveryConfig(delay_ms=0, min_rating=3.5))

    assert sorted(r.book["title"] for r in summary.recommendations) == ["High", "Unrated"]


@pytest.mark.asyncio
async def test_rate_limited_book_falls_back_to_cache_and_batch_continues(stores):
    _mirror(stores, "Foundation", "Dune")
    previous = BookListResult(
        calibre_id=2,
        calibre_title="Dune",
        status=CrawlStatus.OK,
        hardcover_id="10",
        hardcover_title="Dune",
        lists=[
            ListHit(
                list_id="1",
                list_name="Desert Planets",
                neighbors=[ListNeighbor.from_book(_book(11, "Children of Dune"))],
            )
        ],
    )
    stores["cache"].upsert(previous, previous.recommendations())
    client = FakeListService(
        titles={"Foundation": _book(20, "Foundation")},
        lists={20: [("Asimov", [_book(21, "I, Robot")])]},
        fail={"Dune": RateLimitedError("Too many requests", retry_after=0)},
    )

    items = await _collect(_discovery(stores, client))
    dune, foundation, summary = items

    # one cooldown, one retry
    assert client.calls.count(("title", "Dune")) == 2
    assert dune.calibre_id == 2
    assert dune.matched_hardcover is True
    assert dune.from_cache is True
    assert dune.error == "Too many requests"
    assert dune.recommendations_added == 1
    assert foundation.matched_hardcover is True
    assert foundation.error is None
    assert {r.book["title"] for r in summary.recommendations} == {"Children of Dune", "I, Robot"}
    assert summary.failed == 1
    assert stores["activity"].recent()[0]["level"] == "warning"


@pytest.mark.asyncio
async def test_rate_limited_list_crawl_after_resolution(stores):
    _mirror(stores, "Foundation", "Hyperion", "Dune")
    previous = BookListResult(
        calibre_id=3,
        calibre_title="Dune",
        status=CrawlStatus.OK,
        hardcover_id="10",
        hardcover_title="Dune",
        lists=[
            ListHit(
                list_id="1",
                list_name="Desert Planets",
                neighbors=[ListNeighbor.from_book(_book(11, "Children of Dune"))],
            )
        ],
    )
    stores["cache"].upsert(previous, previous.recommendations())
    throttled = RateLimitedError("Too many requests", retry_after=0)
    client = FakeListService(
        titles={
            "Dune": _book(10, "Dune"),
            "Hyperion": _book(30, "Hyperion"),
            "Foundation": _book(20, "Foundation"),
        },
        lists={20: [("Asimov", [_book(21, "I, Robot")])]},
        list_fail={10: throttled, 30: throttled},
    )

    dune, hyperion, foundation, summary = await _collect(_discovery(stores, client))

    assert client.calls.count(("lists", 10)) == 2
    assert client.calls.count(("lists", 30)) == 2

    assert (dune.matched_hardcover, dune.from_cache, dune.error) == (True, True, "Too many requests")
    assert dune.hardcover_book_id == "10"
    assert dune.recommendations_added == 1

    assert (hyperion.matched_hardcover, hyperion.from_cache) == (False, False)
    assert hyperion.error == "Too many requests"
    assert hyperion.recommendations_added == 0
    assert stores["cache"].get(2)["status"] != "ok"

    assert foundation.matched_hardcover is True
    assert foundation.error is None
    assert {r.book["title"] for r in summary.recommendations} == {"Children of Dune", "I, Robot"}
    assert summary.failed == 2
    assert stores["cache"].get(3)["list_count"] == 1


@pytest.mark.asyncio
async def test_previous_match_is_preserved_when_lookup_stops_matching(stores):
    _mirror(stores, "Dune")
    client = FakeListService(
        titles={"Dune": _book(10, "Dune")},
        lists={10: [("Desert Planets", [_book(11, "Children of Dune")])]},
    )
    await _discovery(stores, client).run_sync(FAST)

    client.titles = {}
    [step, summary] = await _collect(_discovery(stores, client))

    assert step.from_cache is True
    assert step.matched_hardcover is True
    assert step.hardcover_book_id == "10"
    row = stores["cache"].get(1)
    assert row["status"] == "ok"
    assert row["hardcover_id"] == "10"
    assert row["list_count"] == 1
    assert row["recommendation_count"] == 1
    assert [r.book["title"] for r in summary.recommendations] == ["Children of Dune"]


@pytest.mark.asyncio
async def test_unmatched_book_without_history_is_cached_as_not_matched(stores):
    _mirror(stores, "Obscure Zine")
    [step, summary] = await _collect(_discovery(stores, FakeListService()))

    assert step.matched_hardcover is False
    assert step.from_cache is False
    assert stores["cache"].get(1)["status"] == "not_matched"
    assert summary.matched == 0


@pytest.mark.asyncio
async def test_take_limits_to_newest_books(stores):
    _mirror(stores, "Old", "Middle", "New")
    client = FakeListService()
    summary = await _discovery(stores, client).run_sync(DiscoveryConfig(take=2, delay_ms=0))

    assert [s.title for s in summary.steps] == ["New", "Middle"]
    assert all(s.total_calibre_books == 2 for s in summary.steps)


@pytest.mark.asyncio
async def test_cancel_stops_further_books(stores):
    _mirror(stores, "A", "B", "C")
    cancel = asyncio.Event()
    discovery = _discovery(stores, FakeListService())

    items = []
    async for item in discovery.run(DiscoveryConfig(delay_ms=1000), cancel=cancel):
        items.append(item)
        cancel.set()

    steps = [i for i in items if isinstance(i, CrawlStep)]
    summary = items[-1]
    assert len(steps) == 1
    assert summary.cancelled is True
    assert summary.inspected == 1


@pytest.mark.asyncio
async def test_run_refuses_without_key_or_catalog(stores):
    with pytest.raises(NotConfiguredError):
        await _discovery(stores, FakeListService(), settings=BookwormSettings()).run_sync(FAST)
    with pytest.raises(CatalogUnavailableError, match="Sync Calibre first"):
        await _discovery(stores, FakeListService()).run_sync(FAST)


@pytest.mark.asyncio
async def test_injected_client_is_not_closed(stores):
    client = FakeListService()
    async with _discovery(stores, client):
        pass
    assert client.closed is False
