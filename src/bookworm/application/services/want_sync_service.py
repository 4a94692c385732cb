"""Refreshes the local copy of the Hardcover want-to-read shelf."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from bookworm.application.ports.list_service_port import ListServicePort
from bookworm.application.services.activity_log_service import ActivityLogService
from bookworm.infrastructure.stores.want_cache_store import WantCacheStore
from bookworm.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)

SOURCE = "hardcover-want"


class WantSyncService:
    def __init__(
        self,
        client: ListServicePort,
        *,
        store: Optional[WantCacheStore] = None,
        activity: Optional[ActivityLogService] = None,
    ):
        self.client = client
        self.store = store or WantCacheStore()
        self.activity = activity or ActivityLogService()

    async def run_once(self) -> Dict[str, Any]:
        """
        Fetch the shelf and replace the cache.

        An empty answer while the cache holds rows is treated as a glitch
        upstream: the cache is kept and a warning recorded.
        """
        try:
            books = await self.client.fetch_want_to_read()
        except Exception as exc:
            Logger.error(f"Want-to-read fetch failed: {exc}", file=LogFiles.SYNC)
            self.activity.error(SOURCE, "Failed to refresh the want-to-read cache.", {"error": str(exc)})
            raise

        stats = self.store.stats()
        if not books and stats["count"] > 0:
            logger.warning("Hardcover returned no want-to-read books; keeping the cached shelf")
            self.activity.warning(
                SOURCE,
                "Hardcover returned 0 want-to-read books; kept the existing cache.",
                {"cached": stats["count"]},
            )
            return {"cached": stats["count"], "removed": 0, "kept_existing": True}

        result = self.store.replace_all(books)
        Logger.info(f"Want-to-read cache refreshed: {result}", file=LogFiles.SYNC)
        self.activity.success(SOURCE, f"Cached {result['cached']} want-to-read book(s).", result)
        return {**result, "kept_existing": False}
