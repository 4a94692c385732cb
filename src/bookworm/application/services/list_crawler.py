# src/bookworm/application/services/list_crawler.py
"""
List crawler.

Resolves one catalog entry to a Hardcover book (exact title, then exact
ISBN) and harvests the books that share public lists with it. The crawler
never retries and never sleeps: pacing, 429 back-off and cancellation are
the caller's job.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from bookworm.application.ports.list_service_port import ListServicePort
from bookworm.domain.book_payload import as_text, book_genres, book_title
from bookworm.domain.catalog import CatalogEntry
from bookworm.domain.crawl import BookListResult, CrawlStatus, ListHit

logger = logging.getLogger(__name__)


def _numeric_id(raw: Optional[str]) -> Optional[int]:
    try:
        return int(raw) if raw else None
    except ValueError:
        return None


def apply_min_rating(hits: List[ListHit], min_rating: Optional[float]) -> List[ListHit]:
    """Drop a neighbour only when both the threshold and its rating are known and it falls short."""
    if min_rating is None:
        return hits
    for hit in hits:
        hit.neighbors = [
            n for n in hit.neighbors if n.rating is None or n.rating >= min_rating
        ]
    return hits


class ListCrawler:
    def __init__(self, client: ListServicePort):
        self.client = client

    async def resolve(self, entry: CatalogEntry) -> Optional[Dict[str, Any]]:
        book = await self.client.find_book_by_title(entry.title)
        if book is not None:
            return book
        for isbn in entry.normalized_isbns():
            book = await self.client.find_book_by_isbn(isbn)
            if book is not None:
                return book
        return None

    async def resolve_and_crawl(
        self,
        entry: CatalogEntry,
        *,
        lists_per_book: int,
        items_per_list: int,
        min_rating: Optional[float] = None,
    ) -> BookListResult:
        book = await self.resolve(entry)
        hardcover_id = as_text(book.get("id")) if book else None
        if not hardcover_id:
            logger.info(f"No Hardcover match for calibre #{entry.id} {entry.title!r}")
            return BookListResult(
                calibre_id=entry.id,
                calibre_title=entry.title,
                status=CrawlStatus.NOT_MATCHED,
            )

        result = BookListResult(
            calibre_id=entry.id,
            calibre_title=entry.title,
            status=CrawlStatus.OK,
            hardcover_id=hardcover_id,
            hardcover_title=book_title(book),
        )
        numeric_id = _numeric_id(hardcover_id)
        if numeric_id is None:
            return result

        if "cached_tags" in book:
            result.base_genres = book_genres(book)
        else:
            result.base_genres = await self.client.get_base_genres(numeric_id)

        hits = await self.client.get_lists_for_book(
            numeric_id,
            lists_per_book=lists_per_book,
            items_per_list=items_per_list,
        )
        result.lists = apply_min_rating(hits, min_rating)
        logger.info(
            f"Calibre #{entry.id} -> Hardcover {hardcover_id}: "
            f"{len(result.lists)} list(s), {sum(len(h.neighbors) for h in result.lists)} neighbour(s)"
        )
        return result
