"""
Background job bodies shared by the in-process scheduler, the arq worker and
the CLI.

Each job builds its own collaborators from the current settings, closes the
Hardcover client it opened and returns a JSON-friendly dict. A missing
credential surfaces as ``NotConfiguredError`` so callers can decide whether
that is a skip (scheduler) or a user error (CLI / API).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from bookworm.application.services.activity_log_service import ActivityLogService
from bookworm.application.services.bookshelf_resolver import BookshelfResolver
from bookworm.application.services.catalog_sync_service import CatalogSyncService
from bookworm.application.services.suggested_ranking_service import SuggestedRankingService
from bookworm.application.services.want_sync_service import WantSyncService
from bookworm.config import BookwormSettings, get_settings
from bookworm.domain.suggestion import RankedSuggestion
from bookworm.infrastructure.api_clients.hardcover_client import HardcoverClient
from bookworm.infrastructure.stores.catalog_mirror_store import CatalogMirrorStore
from bookworm.infrastructure.stores.list_cache_store import ListCacheStore
from bookworm.infrastructure.stores.suggested_store import SuggestedStore

logger = logging.getLogger(__name__)

DEDUP_SOURCE = "suggested-dedup"


async def run_calibre_sync(
    settings: Optional[BookwormSettings] = None,
    *,
    service: Optional[CatalogSyncService] = None,
) -> Dict[str, Any]:
    settings = settings or get_settings()
    settings.require_calibre_path()
    service = service or CatalogSyncService(settings=settings)
    result = await service.sync()
    return result.to_dict()


async def run_want_sync(settings: Optional[BookwormSettings] = None) -> Dict[str, Any]:
    settings = settings or get_settings()
    settings.require_hardcover_api_key()
    async with HardcoverClient(settings) as client:
        return await WantSyncService(client).run_once()


async def run_bookshelf_resolve(settings: Optional[BookwormSettings] = None) -> Dict[str, Any]:
    settings = settings or get_settings()
    settings.require_hardcover_api_key()
    async with HardcoverClient(settings) as client:
        result = await BookshelfResolver(client, settings=settings).resolve()
    return result.to_dict()


def rank_stored_suggestions(
    *,
    cleanup: bool = False,
    hidden_only: Optional[int] = None,
    suggested: Optional[SuggestedStore] = None,
    mirror: Optional[CatalogMirrorStore] = None,
    cache: Optional[ListCacheStore] = None,
    ranking: Optional[SuggestedRankingService] = None,
) -> Tuple[List[RankedSuggestion], int]:
    """
    Rank stored suggestions against the mirror.

    ``hidden_only`` restricts the input to one hidden state; ``None`` ranks
    every row. With ``cleanup`` the owned suggestions are deleted once and
    left out of the returned list.
    """
    suggested = suggested or SuggestedStore()
    mirror = mirror or CatalogMirrorStore()
    cache = cache or ListCacheStore()
    ranking = ranking or SuggestedRankingService()

    rows = suggested.list_everything() if hidden_only is None else suggested.get_by_hidden(hidden_only)
    ranked = ranking.rank(rows, mirror.list_books(), cache.all_base_genres())
    if not cleanup:
        return ranked, 0
    return ranking.remove_owned(ranked, suggested)


def run_suggested_dedup(
    *,
    suggested: Optional[SuggestedStore] = None,
    mirror: Optional[CatalogMirrorStore] = None,
    cache: Optional[ListCacheStore] = None,
    activity: Optional[ActivityLogService] = None,
) -> Dict[str, Any]:
    ranked, removed = rank_stored_suggestions(
        cleanup=True, suggested=suggested, mirror=mirror, cache=cache
    )
    if removed:
        (activity or ActivityLogService()).info(
            DEDUP_SOURCE,
            f"Removed {removed} suggestion(s) already in Calibre.",
            {"removed": removed},
        )
    return {"ranked": len(ranked), "removed": removed}
