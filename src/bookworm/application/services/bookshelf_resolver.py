# src/bookworm/application/services/bookshelf_resolver.py
"""
Bookshelf resolver.

Maps every mirrored Calibre book to its Hardcover id (ISBN search first,
exact title second), remembers misses, and pushes newly resolved ids to the
user's Hardcover list.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from bookworm.application.ports.list_service_port import ListServicePort
from bookworm.application.services.activity_log_service import ActivityLogService
from bookworm.config import BookwormSettings, get_settings
from bookworm.domain.book_payload import (
    as_text,
    book_title,
    document_title_matches,
    normalize_isbn,
    normalize_title,
)
from bookworm.domain.catalog import CatalogEntry
from bookworm.domain.errors import RateLimitedError, UpstreamError
from bookworm.infrastructure.stores.bookshelf_map_store import BookshelfMapStore
from bookworm.infrastructure.stores.catalog_mirror_store import CatalogMirrorStore
from bookworm.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)

SOURCE = "hardcover-bookshelf"
PUSH_ATTEMPTS = 3
PUSH_INITIAL_DELAY = 1.5


@dataclass
class BookshelfResolveResult:
    attempted: int = 0
    resolved: int = 0
    missing_isbn: int = 0
    title_fallback: int = 0
    already_mapped: int = 0
    failed: int = 0
    pushed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _numeric(raw: Optional[str]) -> Optional[int]:
    try:
        return int(raw) if raw else None
    except ValueError:
        return None


class BookshelfResolver:
    def __init__(
        self,
        client: ListServicePort,
        *,
        mirror: Optional[CatalogMirrorStore] = None,
        map_store: Optional[BookshelfMapStore] = None,
        activity: Optional[ActivityLogService] = None,
        settings: Optional[BookwormSettings] = None,
        push_delay: float = PUSH_INITIAL_DELAY,
    ):
        self.client = client
        self.mirror = mirror or CatalogMirrorStore()
        self.map_store = map_store or BookshelfMapStore()
        self.activity = activity or ActivityLogService()
        self._settings = settings
        self.push_delay = push_delay

    @property
    def settings(self) -> BookwormSettings:
        return self._settings or get_settings()

    async def resolve(self) -> BookshelfResolveResult:
        result = BookshelfResolveResult()
        if not self.settings.hardcover_configured:
            self.activity.info(SOURCE, "Skipped bookshelf resolve: Hardcover API key not configured.")
            return result

        mapping = self.map_store.get_all()
        newly_resolved: List[int] = []

        for book in self.mirror.list_books():
            existing = mapping.get(book.id)
            if _numeric(existing) is not None:
                result.already_mapped += 1
                continue

            result.attempted += 1
            try:
                hardcover_id = await self._resolve_book(book, result)
            except UpstreamError as exc:
                # Left unmapped so the next run tries again.
                result.failed += 1
                Logger.warning(f"Bookshelf lookup failed for calibre {book.id}: {exc}", file=LogFiles.SYNC)
                continue
            self.map_store.upsert(book.id, hardcover_id)
            if hardcover_id:
                result.resolved += 1
                numeric = _numeric(hardcover_id)
                if numeric is not None:
                    newly_resolved.append(numeric)

        if newly_resolved:
            result.pushed = await self._push_to_list(newly_resolved)

        Logger.info(f"Bookshelf resolve: {result.to_dict()}", file=LogFiles.SYNC)
        if result.failed:
            self.activity.warning(
                SOURCE,
                f"Hardcover bookshelf sync finished with {result.failed} failed lookup(s).",
                result.to_dict(),
            )
        else:
            self.activity.success(SOURCE, "Hardcover bookshelf sync completed.", result.to_dict())
        return result

    async def _resolve_book(self, book: CatalogEntry, result: BookshelfResolveResult) -> Optional[str]:
        hardcover_id: Optional[str] = None
        isbn = normalize_isbn(book.isbn)
        if isbn:
            for doc in await self.client.search_isbn(isbn):
                if document_title_matches(doc, book.title):
                    hardcover_id = as_text(doc.get("id"))
                    if hardcover_id:
                        break
        else:
            result.missing_isbn += 1

        if hardcover_id is None and book.title:
            result.title_fallback += 1
            found = await self.client.find_book_by_title(book.title)
            if found and normalize_title(book_title(found)) == normalize_title(book.title):
                hardcover_id = as_text(found.get("id"))
        return hardcover_id

    async def _push_to_list(self, book_ids: List[int]) -> int:
        list_id = self.settings.hardcover_list_id_int()
        if list_id is None:
            self.activity.info(SOURCE, "Skipped list push: Hardcover list id not configured.")
            return 0

        pushed = 0
        for book_id in book_ids:
            delay = self.push_delay
            for attempt in range(1, PUSH_ATTEMPTS + 1):
                try:
                    await self.client.add_book_to_list(book_id, list_id)
                    pushed += 1
                    break
                except RateLimitedError:
                    if attempt >= PUSH_ATTEMPTS:
                        logger.warning(f"Gave up pushing book {book_id} after {attempt} rate-limited attempts")
                        break
                    await asyncio.sleep(delay)
                    delay *= 2
                except UpstreamError as exc:
                    logger.warning(f"Failed to push book {book_id} to list {list_id}: {exc}")
                    break
        if pushed < len(book_ids):
            self.activity.warning(
                SOURCE,
                f"Pushed {pushed} of {len(book_ids)} book(s) to the Hardcover list.",
                {"list_id": list_id},
            )
        return pushed
