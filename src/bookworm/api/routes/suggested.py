# src/bookworm/api/routes/suggested.py
"""
Suggested-book routes: plain listings, the ranked view and hide/ignore.

``GET /suggested/ranked`` deletes suggestions found to be owned (ISBN
overlap with the Calibre mirror) once per call and leaves them out of the
response.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from bookworm.api.errors import to_http_exception
from bookworm.application.services.suggested_ranking_service import SuggestedRankingService
from bookworm.domain.suggestion import HiddenState
from bookworm.infrastructure.queue.jobs import rank_stored_suggestions
from bookworm.infrastructure.stores.catalog_mirror_store import CatalogMirrorStore
from bookworm.infrastructure.stores.list_cache_store import ListCacheStore
from bookworm.infrastructure.stores.suggested_store import SuggestedStore
from bookworm.utils.logging_config import LogFiles, Logger

router = APIRouter()

_suggested_store: Optional[SuggestedStore] = None
_mirror_store: Optional[CatalogMirrorStore] = None
_cache_store: Optional[ListCacheStore] = None
_ranking = SuggestedRankingService()


def _get_suggested_store() -> SuggestedStore:
    global _suggested_store
    if _suggested_store is None:
        _suggested_store = SuggestedStore()
    return _suggested_store


def _get_mirror_store() -> CatalogMirrorStore:
    global _mirror_store
    if _mirror_store is None:
        _mirror_store = CatalogMirrorStore()
    return _mirror_store


def _get_cache_store() -> ListCacheStore:
    global _cache_store
    if _cache_store is None:
        _cache_store = ListCacheStore()
    return _cache_store


class HideRequest(BaseModel):
    ids: List[int] = Field(default_factory=list, description="Suggested ids")
    hidden: int = Field(int(HiddenState.HIDDEN), description="Hidden state (<= 0 means hidden)")


class IgnoreRequest(BaseModel):
    ids: List[int] = Field(default_factory=list, description="Suggested ids")


def _listing(hidden: int):
    entries = _get_suggested_store().get_by_hidden(hidden)
    return {"count": len(entries), "items": [e.to_dict() for e in entries]}


@router.get("/suggested")
def list_suggested():
    return _listing(HiddenState.VISIBLE)


@router.get("/suggested/hidden")
def list_hidden():
    return _listing(HiddenState.HIDDEN)


@router.get("/suggested/ignored")
def list_ignored():
    return _listing(HiddenState.IGNORED)


@router.get("/suggested/ranked")
def list_ranked(
    limit: int = Query(0, ge=0, le=5000, description="0 returns everything"),
    include_hidden: bool = Query(False, alias="includeHidden"),
):
    ranked, removed = rank_stored_suggestions(
        cleanup=True,
        hidden_only=None if include_hidden else int(HiddenState.VISIBLE),
        suggested=_get_suggested_store(),
        mirror=_get_mirror_store(),
        cache=_get_cache_store(),
        ranking=_ranking,
    )
    if removed:
        Logger.info(f"Ranked view removed {removed} owned suggestion(s)", file=LogFiles.API)
    items = ranked[:limit] if limit else ranked
    return {
        "count": len(ranked),
        "removedOwned": removed,
        "items": [r.to_dict() for r in items],
    }


@router.post("/suggested/hide")
def hide_suggested(body: HideRequest):
    try:
        updated = _get_suggested_store().hide(body.ids, body.hidden)
    except ValueError as exc:
        raise to_http_exception(exc) from exc
    return {"updated": updated}


@router.post("/suggested/ignore")
def ignore_suggested(body: IgnoreRequest):
    try:
        updated = _get_suggested_store().hide(body.ids, HiddenState.IGNORED)
    except ValueError as exc:
        raise to_http_exception(exc) from exc
    return {"updated": updated}


@router.get("/suggested/{suggested_id}")
def get_suggested(suggested_id: int):
    entry = _get_suggested_store().get(suggested_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    return entry.to_dict()
