"""Calibre mirror routes: trigger a sync, read the sync state, page through the mirror."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query

from bookworm.api.errors import to_http_exception
from bookworm.application.services.catalog_sync_service import CatalogSyncService
from bookworm.domain.errors import BookwormError
from bookworm.infrastructure.stores.catalog_mirror_store import CatalogMirrorStore
from bookworm.utils.logging_config import LogFiles, Logger, set_trace_id

router = APIRouter()

_sync_service: Optional[CatalogSyncService] = None
_mirror_store: Optional[CatalogMirrorStore] = None


def _get_mirror_store() -> CatalogMirrorStore:
    global _mirror_store
    if _mirror_store is None:
        _mirror_store = CatalogMirrorStore()
    return _mirror_store


def _get_sync_service() -> CatalogSyncService:
    global _sync_service
    if _sync_service is None:
        _sync_service = CatalogSyncService(mirror=_get_mirror_store())
    return _sync_service


@router.post("/calibre/sync")
async def sync_calibre():
    trace_id = set_trace_id()
    Logger.info("Calibre sync requested", file=LogFiles.API)
    try:
        result = await _get_sync_service().sync()
    except BookwormError as exc:
        raise to_http_exception(exc) from exc
    return {**result.to_dict(), "trace_id": trace_id}


@router.get("/calibre/state")
def calibre_state():
    mirror = _get_mirror_store()
    return {**mirror.get_state().to_dict(), "count": mirror.count()}


@router.get("/calibre/books")
def calibre_books(
    limit: int = Query(0, ge=0, le=10000, description="0 returns the whole mirror"),
):
    books = _get_mirror_store().list_books(limit=limit)
    return {"count": len(books), "items": [b.to_dict() for b in books]}
