# src/bookworm/application/workflows/recommendation_discovery.py
"""
Recommendation discovery workflow.

Crawls Hardcover lists for the mirrored Calibre books and folds the
co-listed books into one ranked batch:
1. load the catalog mirror (optionally only the newest ``take`` books)
2. per book: resolve + crawl, with one cooldown-and-retry on rate limiting
3. write the crawl cache, or reuse the previous successful row when a live
   crawl no longer resolves (preserve-on-failure)
4. aggregate occurrences across books and store new suggestions

``run()`` yields one ``CrawlStep`` per book in catalog order, then a
``DiscoverySummary``. A per-book failure is recorded on its step and the
batch continues. Setting the cancel event stops further requests and
delays; everything already written stays.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional

from bookworm.application.ports.activity_log_port import ActivityLogPort
from bookworm.application.ports.list_service_port import ListServicePort
from bookworm.application.services.activity_log_service import ActivityLogService
from bookworm.application.services.list_crawler import ListCrawler
from bookworm.application.services.recommendation_aggregator import RecommendationAggregator
from bookworm.config import BookwormSettings, get_settings
from bookworm.domain.book_payload import normalize_isbn
from bookworm.domain.catalog import CatalogEntry
from bookworm.domain.crawl import (
    BookListResult,
    CrawlStatus,
    CrawlStep,
    RecommendationCandidate,
)
from bookworm.domain.errors import CatalogUnavailableError, RateLimitedError
from bookworm.infrastructure.stores.catalog_mirror_store import CatalogMirrorStore
from bookworm.infrastructure.stores.list_cache_store import ListCacheStore
from bookworm.infrastructure.stores.suggested_store import SuggestedStore
from bookworm.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)

SOURCE = "hardcover-lists"
EMPTY_CATALOG_MESSAGE = "No Calibre books available. Sync Calibre first."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clamp(value: Optional[float], default: float, low: float, high: float) -> float:
    if value is None:
        return default
    return max(low, min(high, value))


@dataclass
class DiscoveryConfig:
    """Request parameters for one crawl run."""

    take: int = 0
    lists_per_book: int = 12
    items_per_list: int = 20
    min_rating: Optional[float] = None
    delay_ms: int = 450

    @classmethod
    def bulk(
        cls,
        *,
        take: Optional[int] = None,
        lists: Optional[int] = None,
        per_list: Optional[int] = None,
        min_rating: Optional[float] = None,
        delay_ms: Optional[int] = None,
    ) -> "DiscoveryConfig":
        return cls(
            take=max(0, int(take or 0)),
            lists_per_book=int(_clamp(lists, 12, 1, 50)),
            items_per_list=int(_clamp(per_list, 20, 1, 60)),
            min_rating=min_rating,
            delay_ms=int(_clamp(delay_ms, 450, 0, 2000)),
        )

    @classmethod
    def stream(
        cls,
        *,
        take: Optional[int] = None,
        lists: Optional[int] = None,
        per_list: Optional[int] = None,
        min_rating: Optional[float] = None,
        delay_ms: Optional[int] = None,
    ) -> "DiscoveryConfig":
        return cls(
            take=max(0, int(take or 0)),
            lists_per_book=int(_clamp(lists, 25, 1, 100)),
            items_per_list=int(_clamp(per_list, 30, 1, 100)),
            min_rating=min_rating,
            delay_ms=int(_clamp(delay_ms, 2000, 2000, 120000)),
        )


@dataclass
class DiscoverySummary:
    """Final result of a crawl run."""

    run_id: str
    inspected: int
    matched: int
    recommendations: List[RecommendationCandidate]
    steps: List[CrawlStep]
    suggested_inserted: int = 0
    cancelled: bool = False
    errors: Dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def failed(self) -> int:
        return sum(1 for s in self.steps if s.error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "inspectedCalibreBooks": self.inspected,
            "matchedCalibreBooks": self.matched,
            "uniqueRecommendations": len(self.recommendations),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "steps": [s.to_dict() for s in self.steps],
            "failedSteps": self.failed,
            "suggestedInserted": self.suggested_inserted,
            "cancelled": self.cancelled,
            "errors": dict(self.errors),
            "durationSeconds": round(self.duration_seconds, 3),
        }


def _cache_is_preservable(row: Optional[Dict[str, Any]]) -> bool:
    return bool(
        row
        and row.get("status") == CrawlStatus.OK.value
        and row.get("hardcover_id")
    )


def _cached_candidates(row: Optional[Dict[str, Any]]) -> List[RecommendationCandidate]:
    if not row:
        return []
    return [
        RecommendationCandidate.from_dict(item)
        for item in row.get("recommendations") or []
        if isinstance(item, dict)
    ]


class RecommendationDiscovery:
    """
    Crawl/aggregate workflow behind the bulk and streaming endpoints.

    Collaborators are created lazily and may be injected for tests.
    """

    def __init__(
        self,
        *,
        client: Optional[ListServicePort] = None,
        mirror: Optional[CatalogMirrorStore] = None,
        cache: Optional[ListCacheStore] = None,
        suggested: Optional[SuggestedStore] = None,
        activity: Optional[ActivityLogPort] = None,
        settings: Optional[BookwormSettings] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self._mirror = mirror
        self._cache = cache
        self._suggested = suggested
        self._activity = activity
        self._settings = settings

    @property
    def settings(self) -> BookwormSettings:
        return self._settings or get_settings()

    @property
    def client(self) -> ListServicePort:
        if self._client is None:
            from bookworm.infrastructure.api_clients.hardcover_client import HardcoverClient

            self._client = HardcoverClient(self.settings)
        return self._client

    @property
    def mirror(self) -> CatalogMirrorStore:
        if self._mirror is None:
            self._mirror = CatalogMirrorStore()
        return self._mirror

    @property
    def cache(self) -> ListCacheStore:
        if self._cache is None:
            self._cache = ListCacheStore()
        return self._cache

    @property
    def suggested(self) -> SuggestedStore:
        if self._suggested is None:
            self._suggested = SuggestedStore()
        return self._suggested

    @property
    def activity(self) -> ActivityLogPort:
        if self._activity is None:
            self._activity = ActivityLogService()
        return self._activity

    @staticmethod
    def new_run_id() -> str:
        timestamp = _utcnow().strftime("%Y%m%d-%H%M%S")
        return f"crawl-{timestamp}-{uuid.uuid4().hex[:8]}"

    @staticmethod
    async def _pause(seconds: float, cancel: Optional[asyncio.Event]) -> bool:
        """Sleep up to ``seconds``; returns True when cancellation cut it short."""
        if cancel is None:
            if seconds > 0:
                await asyncio.sleep(seconds)
            return False
        if cancel.is_set():
            return True
        if seconds <= 0:
            return False
        try:
            await asyncio.wait_for(cancel.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _crawl(
        self,
        crawler: ListCrawler,
        entry: CatalogEntry,
        config: DiscoveryConfig,
        cancel: Optional[asyncio.Event],
    ) -> BookListResult:
        kwargs = dict(
            lists_per_book=config.lists_per_book,
            items_per_list=config.items_per_list,
            min_rating=config.min_rating,
        )
        try:
            return await crawler.resolve_and_crawl(entry, **kwargs)
        except RateLimitedError as exc:
            cooldown = max(self.settings.rate_limit_cooldown_seconds, exc.retry_after or 0.0)
            Logger.warning(
                f"Rate limited on calibre #{entry.id}; cooling down {cooldown:.0f}s before one retry",
                file=LogFiles.CRAWL,
            )
            if await self._pause(cooldown, cancel):
                raise
            return await crawler.resolve_and_crawl(entry, **kwargs)

    def _record(
        self,
        entry: CatalogEntry,
        result: BookListResult,
        aggregator: RecommendationAggregator,
        total: int,
    ) -> CrawlStep:
        """Apply the cache policy for a live result and fold its recommendations in."""
        isbn = normalize_isbn(entry.isbn) or None
        cached = self.cache.get(entry.id)

        if not result.matched and _cache_is_preservable(cached):
            added = aggregator.add(_cached_candidates(cached))
            return CrawlStep(
                calibre_id=entry.id,
                title=entry.title,
                isbn=isbn,
                matched_hardcover=True,
                hardcover_book_id=cached.get("hardcover_id"),
                hardcover_title=cached.get("hardcover_title"),
                lists_checked=int(cached.get("list_count") or 0),
                recommendations_added=added,
                total_calibre_books=total,
                from_cache=True,
            )

        recommendations = result.recommendations()
        self.cache.upsert(result, recommendations)
        added = aggregator.add(recommendations)
        return CrawlStep(
            calibre_id=entry.id,
            title=entry.title,
            isbn=isbn,
            matched_hardcover=result.matched,
            hardcover_book_id=result.hardcover_id,
            hardcover_title=result.hardcover_title,
            lists_checked=len(result.lists),
            recommendations_added=added,
            total_calibre_books=total,
        )

    def _failed_step(
        self,
        entry: CatalogEntry,
        error: Exception,
        aggregator: RecommendationAggregator,
        total: int,
    ) -> CrawlStep:
        """A failed live crawl falls back on whatever the cache remembers."""
        cached = self.cache.get(entry.id)
        usable = _cache_is_preservable(cached)
        added = aggregator.add(_cached_candidates(cached)) if usable else 0
        return CrawlStep(
            calibre_id=entry.id,
            title=entry.title,
            isbn=normalize_isbn(entry.isbn) or None,
            matched_hardcover=usable,
            hardcover_book_id=cached.get("hardcover_id") if usable else None,
            hardcover_title=cached.get("hardcover_title") if usable else None,
            lists_checked=int(cached.get("list_count") or 0) if usable else 0,
            recommendations_added=added,
            total_calibre_books=total,
            from_cache=usable,
            error=str(error) or error.__class__.__name__,
        )

    async def run(
        self,
        config: DiscoveryConfig,
        *,
        cancel: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None,
    ) -> AsyncGenerator[CrawlStep | DiscoverySummary, None]:
        """
        Execute the crawl with per-book progress.

        Raises before the first yield when the Hardcover key is missing or
        the mirror is empty.

        Yields:
            CrawlStep per catalog entry, in catalog order
            DiscoverySummary as final yield
        """
        self.settings.require_hardcover_api_key()
        books = self.mirror.list_books()
        if not books:
            raise CatalogUnavailableError(EMPTY_CATALOG_MESSAGE)
        if config.take > 0:
            books = books[: config.take]

        run_id = run_id or self.new_run_id()
        started = time.monotonic()
        total = len(books)
        crawler = ListCrawler(self.client)
        aggregator = RecommendationAggregator()
        steps: List[CrawlStep] = []
        cancelled = False
        delay_s = config.delay_ms / 1000.0

        Logger.info(
            f"Crawl {run_id} started: books={total} lists={config.lists_per_book} "
            f"per_list={config.items_per_list} min_rating={config.min_rating} delay_ms={config.delay_ms}",
            file=LogFiles.CRAWL,
        )

        for index, entry in enumerate(books):
            if cancel is not None and cancel.is_set():
                cancelled = True
                break

            try:
                result = await self._crawl(crawler, entry, config, cancel)
                step = self._record(entry, result, aggregator, total)
            except Exception as exc:
                logger.warning(f"Crawl failed for calibre #{entry.id} {entry.title!r}: {exc}")
                Logger.warning(f"calibre #{entry.id} failed: {exc}", file=LogFiles.CRAWL)
                step = self._failed_step(entry, exc, aggregator, total)

            steps.append(step)
            yield step

            if index < total - 1 and await self._pause(delay_s, cancel):
                cancelled = True
                break

        recommendations = aggregator.results()
        errors: Dict[str, str] = {}
        inserted = 0
        try:
            inserted = self.suggested.upsert_missing(recommendations)
        except Exception as exc:
            logger.exception("Failed to store suggestions")
            errors["suggested"] = str(exc)

        summary = DiscoverySummary(
            run_id=run_id,
            inspected=len(steps),
            matched=sum(1 for s in steps if s.matched_hardcover),
            recommendations=recommendations,
            steps=steps,
            suggested_inserted=inserted,
            cancelled=cancelled,
            errors=errors,
            duration_seconds=time.monotonic() - started,
        )
        Logger.info(
            f"Crawl {run_id} finished: inspected={summary.inspected} matched={summary.matched} "
            f"unique={len(recommendations)} inserted={inserted} failed={summary.failed} cancelled={cancelled}",
            file=LogFiles.CRAWL,
        )
        level = "warning" if summary.failed or errors else "success"
        self.activity.log(
            SOURCE,
            level,
            f"Crawled {summary.inspected} Calibre book(s): {summary.matched} matched, "
            f"{len(recommendations)} recommendation(s), {inserted} new suggestion(s).",
            {
                "run_id": run_id,
                "failed": summary.failed,
                "cancelled": cancelled,
                "errors": errors or None,
            },
        )
        yield summary

    async def run_sync(
        self,
        config: DiscoveryConfig,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> DiscoverySummary:
        """Execute the crawl and return only the summary (bulk endpoint, CLI)."""
        summary: Optional[DiscoverySummary] = None
        async for item in self.run(config, cancel=cancel):
            if isinstance(item, DiscoverySummary):
                summary = item
        if summary is None:
            raise RuntimeError("Discovery completed without a summary")
        return summary

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None

    async def __aenter__(self) -> "RecommendationDiscovery":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
