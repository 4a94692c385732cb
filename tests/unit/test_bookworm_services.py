from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from bookworm.application.services.activity_log_service import ActivityLogService
from bookworm.application.services.bookshelf_resolver import BookshelfResolver
from bookworm.application.services.catalog_sync_service import CatalogSyncService
from bookworm.application.services.list_crawler import ListCrawler, apply_min_rating
from bookworm.application.services.want_sync_service import WantSyncService
from bookworm.config import BookwormSettings
from bookworm.domain.catalog import CatalogEntry
from bookworm.domain.crawl import CrawlStatus, ListHit, ListNeighbor
from bookworm.domain.errors import (
    CatalogUnavailableError,
    NotConfiguredError,
    RateLimitedError,
    StorageError,
)
from bookworm.infrastructure.stores.activity_log_store import ActivityLogStore
from bookworm.infrastructure.stores.bookshelf_map_store import BookshelfMapStore
from bookworm.infrastructure.stores.catalog_mirror_store import CatalogMirrorStore
from bookworm.infrastructure.stores.list_cache_store import ListCacheStore
from bookworm.infrastructure.stores.want_cache_store import WantCacheStore


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'services.db'}"


@pytest.fixture
def activity(db_url):
    return ActivityLogService(ActivityLogStore(db_url=db_url))


def _entry(calibre_id, title, isbn=None):
    return CatalogEntry(
        id=calibre_id,
        title=title,
        isbn=isbn,
        added_at=datetime(2024, 1, calibre_id, tzinfo=timezone.utc),
    )


# ---------------------------------------------------------------------------
# Want-to-read sync
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_want_sync_keeps_cache_when_hardcover_returns_nothing(db_url, activity):
    store = WantCacheStore(db_url=db_url)
    store.replace_all([{"id": 1, "title": "Piranesi"}])
    client = MagicMock()
    client.fetch_want_to_read = AsyncMock(return_value=[])

    result = await WantSyncService(client, store=store, activity=activity).run_once()

    assert result == {"cached": 1, "removed": 0, "kept_existing": True}
    assert [b["title"] for b in store.list_books()] == ["Piranesi"]
    assert activity.recent()[0]["level"] == "warning"


@pytest.mark.asyncio
async def test_want_sync_replaces_cache(db_url, activity):
    store = WantCacheStore(db_url=db_url)
    store.replace_all([{"id": 1, "title": "Piranesi"}])
    client = MagicMock()
    client.fetch_want_to_read = AsyncMock(return_value=[{"id": 2, "title": "Anathem"}])

    result = await WantSyncService(client, store=store, activity=activity).run_once()

    assert result == {"cached": 1, "removed": 1, "kept_existing": False}
    assert [b["title"] for b in store.list_books()] == ["Anathem"]


@pytest.mark.asyncio
async def test_want_sync_failure_is_recorded_and_raised(db_url, activity):
    client = MagicMock()
    client.fetch_want_to_read = AsyncMock(side_effect=RateLimitedError())

    with pytest.raises(RateLimitedError):
        await WantSyncService(client, store=WantCacheStore(db_url=db_url), activity=activity).run_once()
    assert activity.recent()[0]["level"] == "error"


# ---------------------------------------------------------------------------
# Bookshelf resolver
# ---------------------------------------------------------------------------


def _resolver_client():
    client = MagicMock()
    client.search_isbn = AsyncMock(
        side_effect=lambda isbn: [
            {"id": "900", "title": "Something Else"},
            {"id": "312460", "title": "Dune", "alternative_titles": []},
        ]
        if isbn == "9780441013593"
        else []
    )
    client.find_book_by_title = AsyncMock(
        side_effect=lambda title: {"id": 555, "title": "foundation"} if title == "Foundation" else None
    )
    client.add_book_to_list = AsyncMock(return_value="1")
    return client


@pytest.mark.asyncio
async def test_bookshelf_resolver_maps_and_pushes(db_url, activity):
    mirror = CatalogMirrorStore(db_url=db_url)
    mirror.replace_all(
        [
            _entry(1, "Dune", "978-0-441-01359-3"),
            _entry(2, "Foundation"),
            _entry(3, "Unknown Pamphlet"),
            _entry(4, "Already Mapped"),
        ],
        source_path="/lib",
    )
    map_store = BookshelfMapStore(db_url=db_url)
    map_store.upsert(4, "42")
    client = _resolver_client()

    resolver = BookshelfResolver(
        client,
        mirror=mirror,
        map_store=map_store,
        activity=activity,
        settings=BookwormSettings(hardcover_api_key="k", hardcover_list_id="7"),
        push_delay=0,
    )
    result = await resolver.resolve()

    assert result.already_mapped == 1
    assert result.attempted == 3
    assert result.resolved == 2
    assert result.missing_isbn == 2
    assert result.pushed == 2
    assert map_store.get_all() == {1: "312460", 2: "555", 3: None, 4: "42"}
    pushed = sorted(c.args for c in client.add_book_to_list.call_args_list)
    assert pushed == [(555, 7), (312460, 7)]


@pytest.mark.asyncio
async def test_bookshelf_push_retries_on_rate_limit(db_url, activity):
    mirror = CatalogMirrorStore(db_url=db_url)
    mirror.replace_all([_entry(2, "Foundation")], source_path="/lib")
    client = _resolver_client()
    client.add_book_to_list = AsyncMock(side_effect=[RateLimitedError(), "1"])

    result = await BookshelfResolver(
        client,
        mirror=mirror,
        map_store=BookshelfMapStore(db_url=db_url),
        activity=activity,
        settings=BookwormSettings(hardcover_api_key="k", hardcover_list_id="7"),
        push_delay=0,
    ).resolve()

    assert result.pushed == 1
    assert client.add_book_to_list.await_count == 2


@pytest.mark.asyncio
async def test_bookshelf_lookup_failure_skips_one_book_and_still_pushes(db_url, activity):
    mirror = CatalogMirrorStore(db_url=db_url)
    mirror.replace_all(
        [_entry(1, "Dune", "9780441013593"), _entry(2, "Throttled"), _entry(3, "Foundation")],
        source_path="/lib",
    )
    map_store = BookshelfMapStore(db_url=db_url)
    client = _resolver_client()

    async def by_title(title):
        if title == "Throttled":
            raise RateLimitedError(retry_after=30)
        return {"id": 555, "title": "foundation"} if title == "Foundation" else None

    client.find_book_by_title = AsyncMock(side_effect=by_title)
    resolver = BookshelfResolver(
        client,
        mirror=mirror,
        map_store=map_store,
        activity=activity,
        settings=BookwormSettings(hardcover_api_key="k", hardcover_list_id="7"),
        push_delay=0,
    )

    result = await resolver.resolve()

    assert (result.attempted, result.resolved, result.failed, result.pushed) == (3, 2, 1, 2)
    assert map_store.get_all() == {1: "312460", 3: "555"}
    assert sorted(c.args for c in client.add_book_to_list.call_args_list) == [(555, 7), (312460, 7)]
    assert activity.recent()[0]["level"] == "warning"

    again = await resolver.resolve()
    assert (again.already_mapped, again.attempted, again.failed) == (2, 1, 1)


@pytest.mark.asyncio
async def test_bookshelf_resolver_skips_without_key(db_url, activity):
    client = _resolver_client()
    result = await BookshelfResolver(
        client,
        mirror=CatalogMirrorStore(db_url=db_url),
        map_store=BookshelfMapStore(db_url=db_url),
        activity=activity,
        settings=BookwormSettings(),
    ).resolve()

    assert result.attempted == 0
    client.search_isbn.assert_not_called()
    assert activity.recent()[0]["message"].startswith("Skipped bookshelf resolve")


# ---------------------------------------------------------------------------
# Catalog sync
# ---------------------------------------------------------------------------


class _Reader:
    def __init__(self, books=None, error=None):
        self.books = books or []
        self.error = error
        self.calls = 0

    def read_books(self, path):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.books)


def _sync_service(db_url, activity, reader, settings=None):
    return CatalogSyncService(
        reader=reader,
        mirror=CatalogMirrorStore(db_url=db_url),
        cache=ListCacheStore(db_url=db_url),
        activity=activity,
        settings=settings or BookwormSettings(calibre_db_path="/lib"),
    )


@pytest.mark.asyncio
async def test_catalog_sync_mirrors_and_reconciles_cache(db_url, activity):
    reader = _Reader([_entry(1, "Dune"), _entry(2, "Foundation")])
    service = _sync_service(db_url, activity, reader)

    result = await service.sync()

    assert result.count == 2
    assert sorted(result.added_ids) == [1, 2]
    assert service.cache.status()["pending"] == 2
    assert activity.recent()[0]["level"] == "success"


@pytest.mark.asyncio
async def test_concurrent_syncs_share_one_run(db_url, activity):
    reader = _Reader([_entry(1, "Dune")])
    service = _sync_service(db_url, activity, reader)

    first, second = await asyncio.gather(service.sync(), service.sync())

    assert first is second
    assert reader.calls == 1


@pytest.mark.asyncio
async def test_catalog_sync_failure_leaves_mirror_untouched(db_url, activity):
    good = _sync_service(db_url, activity, _Reader([_entry(1, "Dune")]))
    await good.sync()

    broken = _sync_service(db_url, activity, _Reader(error=CatalogUnavailableError("gone")))
    with pytest.raises(CatalogUnavailableError):
        await broken.sync()

    assert [b.title for b in broken.mirror.list_books()] == ["Dune"]
    assert activity.recent()[0]["level"] == "warning"


@pytest.mark.asyncio
async def test_catalog_sync_storage_failure_is_recorded(db_url, activity):
    service = _sync_service(db_url, activity, _Reader([_entry(1, "Dune")]))
    service._mirror = MagicMock()
    service._mirror.replace_all.side_effect = StorageError("Failed to replace Calibre mirror: disk full")

    with pytest.raises(StorageError):
        await service.sync()

    entry = activity.recent()[0]
    assert entry["level"] == "error"
    assert "disk full" in entry["message"]
    assert service.cache.status()["total"] == 0


@pytest.mark.asyncio
async def test_catalog_sync_requires_path(db_url, activity):
    service = _sync_service(db_url, activity, _Reader(), settings=BookwormSettings())
    with pytest.raises(NotConfiguredError):
        await service.sync()


# ---------------------------------------------------------------------------
# List crawler
# ---------------------------------------------------------------------------


def test_apply_min_rating_keeps_unrated_neighbors():
    hit = ListHit(
        neighbors=[
            ListNeighbor.from_book({"id": 1, "rating": 2.0}),
            ListNeighbor.from_book({"id": 2, "rating": 4.5}),
            ListNeighbor.from_book({"id": 3}),
        ]
    )
    [filtered] = apply_min_rating([hit], 4.0)
    assert [n.key for n in filtered.neighbors] == ["2", "3"]
    assert apply_min_rating([hit], None) == [hit]


@pytest.mark.asyncio
async def test_crawler_falls_back_to_isbn_and_uses_cached_tags():
    client = MagicMock()
    client.find_book_by_title = AsyncMock(return_value=None)
    client.find_book_by_isbn = AsyncMock(
        return_value={
            "id": 9,
            "title": "Dune (40th Anniversary)",
            "cached_tags": {"Genre": [{"tag": "Science Fiction"}]},
        }
    )
    client.get_base_genres = AsyncMock()
    client.get_lists_for_book = AsyncMock(return_value=[ListHit(list_id="1", list_name="L")])

    result = await ListCrawler(client).resolve_and_crawl(
        _entry(1, "Dune", "0441013597"), lists_per_book=3, items_per_list=4
    )

    assert result.status == CrawlStatus.OK
    assert result.hardcover_id == "9"
    assert result.base_genres == ["Science Fiction"]
    client.get_base_genres.assert_not_called()
    client.get_lists_for_book.assert_awaited_once_with(9, lists_per_book=3, items_per_list=4)


@pytest.mark.asyncio
async def test_crawler_reports_not_matched():
    client = MagicMock()
    client.find_book_by_title = AsyncMock(return_value=None)
    client.find_book_by_isbn = AsyncMock(return_value=None)

    result = await ListCrawler(client).resolve_and_crawl(
        _entry(1, "Nothing Like It"), lists_per_book=3, items_per_list=4
    )

    assert result.status == CrawlStatus.NOT_MATCHED
    assert result.matched is False
    client.find_book_by_isbn.assert_not_called()


# ---------------------------------------------------------------------------
# Suggested dedup job
# ---------------------------------------------------------------------------


def test_suggested_dedup_job_records_removals(db_url, activity):
    from bookworm.domain.crawl import RecommendationCandidate
    from bookworm.infrastructure.queue.jobs import DEDUP_SOURCE, run_suggested_dedup
    from bookworm.infrastructure.stores.suggested_store import SuggestedStore

    mirror = CatalogMirrorStore(db_url=db_url)
    mirror.replace_all([_entry(1, "Dune", "9780441013593")], source_path="/lib")
    suggested = SuggestedStore(db_url=db_url)
    suggested.upsert_missing(
        [
            RecommendationCandidate(
                key="1",
                book={"id": 1, "title": "Dune", "default_physical_edition": {"isbn_13": "9780441013593"}},
                count=1,
            ),
            RecommendationCandidate(key="2", book={"id": 2, "title": "Hyperion"}, count=1),
        ]
    )
    stores = dict(suggested=suggested, mirror=mirror, cache=ListCacheStore(db_url=db_url), activity=activity)

    assert run_suggested_dedup(**stores) == {"ranked": 1, "removed": 1}
    assert activity.recent()[0]["source"] == DEDUP_SOURCE

    assert run_suggested_dedup(**stores) == {"ranked": 1, "removed": 0}
    assert len(activity.recent()) == 1
