# src/bookworm/application/services/catalog_sync_service.py
"""
Catalog sync service.

Refreshes the local Calibre mirror:
1. read the whole Calibre catalog (all-or-nothing)
2. replace the mirror tables in one transaction and record the sync state
3. reconcile the list crawl cache (pending rows for new books)

Concurrent ``sync()`` calls share a single in-flight run and its result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from bookworm.application.ports.catalog_reader_port import CatalogReaderPort
from bookworm.application.services.activity_log_service import ActivityLogService
from bookworm.config import BookwormSettings, get_settings
from bookworm.domain.catalog import CatalogSyncResult
from bookworm.domain.errors import CatalogUnavailableError, NotConfiguredError, StorageError
from bookworm.infrastructure.stores.catalog_mirror_store import CatalogMirrorStore
from bookworm.infrastructure.stores.list_cache_store import ListCacheStore
from bookworm.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)

SOURCE = "calibre-sync"


class CatalogSyncService:
    def __init__(
        self,
        *,
        reader: Optional[CatalogReaderPort] = None,
        mirror: Optional[CatalogMirrorStore] = None,
        cache: Optional[ListCacheStore] = None,
        activity: Optional[ActivityLogService] = None,
        settings: Optional[BookwormSettings] = None,
    ):
        self._reader = reader
        self._mirror = mirror
        self._cache = cache
        self._activity = activity
        self._settings = settings
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None

    @property
    def settings(self) -> BookwormSettings:
        return self._settings or get_settings()

    @property
    def reader(self) -> CatalogReaderPort:
        if self._reader is None:
            from bookworm.infrastructure.connectors.calibre_reader import CalibreReader

            self._reader = CalibreReader()
        return self._reader

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
    def activity(self) -> ActivityLogService:
        if self._activity is None:
            self._activity = ActivityLogService()
        return self._activity

    async def sync(self) -> CatalogSyncResult:
        async with self._lock:
            task = self._inflight
            if task is None or task.done():
                task = asyncio.ensure_future(self._run())
                self._inflight = task
        # shield: one cancelled waiter must not cancel the shared run
        return await asyncio.shield(task)

    async def _run(self) -> CatalogSyncResult:
        try:
            path = self.settings.require_calibre_path()
        except NotConfiguredError as exc:
            self.activity.warning(SOURCE, str(exc))
            raise

        Logger.info(f"Calibre sync started: {path}", file=LogFiles.SYNC)
        try:
            entries = await asyncio.to_thread(self.reader.read_books, path)
        except CatalogUnavailableError as exc:
            Logger.warning(f"Calibre sync failed: {exc}", file=LogFiles.SYNC)
            self.activity.warning(SOURCE, str(exc), {"path": path})
            raise

        try:
            result = await asyncio.to_thread(self.mirror.replace_all, entries, source_path=path)
            reconciled = await asyncio.to_thread(self.cache.sync_with_catalog, entries)
        except StorageError as exc:
            Logger.error(f"Calibre sync failed: {exc}", file=LogFiles.SYNC)
            self.activity.error(SOURCE, str(exc), {"path": path, "books_read": len(entries)})
            raise

        details = result.to_dict()
        details["list_cache"] = reconciled
        Logger.info(
            f"Calibre sync done: count={result.count} new={len(result.added_ids)} "
            f"removed={len(result.removed_ids)} cache={reconciled}",
            file=LogFiles.SYNC,
        )
        self.activity.success(
            SOURCE,
            f"Synced {result.count} Calibre book(s) "
            f"({len(result.added_ids)} new, {len(result.removed_ids)} removed).",
            {k: v for k, v in details.items() if k not in ("added_ids", "removed_ids")},
        )
        return result
