"""Hardcover cache routes: list-crawl cache status/reset and the want-to-read cache."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from bookworm.infrastructure.stores.list_cache_store import ListCacheStore
from bookworm.infrastructure.stores.want_cache_store import WantCacheStore
from bookworm.utils.logging_config import LogFiles, Logger

router = APIRouter()

_cache_store: Optional[ListCacheStore] = None
_want_store: Optional[WantCacheStore] = None


def _get_cache_store() -> ListCacheStore:
    global _cache_store
    if _cache_store is None:
        _cache_store = ListCacheStore()
    return _cache_store


def _get_want_store() -> WantCacheStore:
    global _want_store
    if _want_store is None:
        _want_store = WantCacheStore()
    return _want_store


class ResetRequest(BaseModel):
    calibre_ids: Optional[List[int]] = Field(
        None, alias="calibreIds", description="Reset only these rows; omit to reset everything"
    )


@router.get("/hardcover/list-cache/status")
def list_cache_status():
    return _get_cache_store().status()


@router.get("/hardcover/list-cache")
def list_cache_rows(limit: int = Query(0, ge=0, le=10000)):
    rows = _get_cache_store().get_all()
    return {"count": len(rows), "items": rows[:limit] if limit else rows}


@router.post("/hardcover/list-cache/reset")
def list_cache_reset(body: Optional[ResetRequest] = None):
    ids = body.calibre_ids if body else None
    removed = _get_cache_store().reset(ids)
    Logger.info(f"List cache reset: removed={removed} ids={ids or 'all'}", file=LogFiles.API)
    return {"removed": removed}


@router.get("/hardcover/want-cache")
def want_cache():
    store = _get_want_store()
    return {**store.stats(), "items": store.list_books()}
