# src/bookworm/api/routes/settings.py
"""
User settings routes.

Saved values override the environment. Every write rebuilds the cached
settings object through ``reload_settings()`` so the next crawl, sync or
scheduled run picks it up. The API key is write-only: reads only report
whether one is configured.
"""

from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from bookworm.config import get_settings, reload_settings
from bookworm.infrastructure.connectors.calibre_reader import resolve_metadata_path
from bookworm.infrastructure.stores.user_settings_store import UserSettingsStore
from bookworm.utils.logging_config import LogFiles, Logger

router = APIRouter()

_settings_store: Optional[UserSettingsStore] = None


def _get_settings_store() -> UserSettingsStore:
    global _settings_store
    if _settings_store is None:
        _settings_store = UserSettingsStore(db_url=get_settings().db_url)
    return _settings_store


class CalibrePathRequest(BaseModel):
    path: Optional[str] = Field(None, description="metadata.db or the Calibre library folder")


class ListIdRequest(BaseModel):
    list_id: Optional[str] = Field(None, alias="listId", description="Hardcover list id")


class ApiKeyRequest(BaseModel):
    api_key: Optional[str] = Field(None, alias="apiKey", description="Hardcover API token")


def _calibre_payload():
    path = get_settings().calibre_db_path
    exists = bool(path) and os.path.isfile(resolve_metadata_path(path))
    return {"path": path, "configured": bool(path), "exists": exists}


@router.get("/settings/calibre")
def get_calibre_settings():
    return _calibre_payload()


@router.post("/settings/calibre")
def save_calibre_settings(body: CalibrePathRequest):
    saved = _get_settings_store().set_calibre_path(body.path)
    reload_settings()
    Logger.info(f"Calibre path saved: {saved}", file=LogFiles.API)
    return _calibre_payload()


@router.get("/settings/hardcover/list")
def get_hardcover_list():
    settings = get_settings()
    return {"listId": settings.hardcover_list_id, "configured": bool(settings.hardcover_list_id)}


@router.post("/settings/hardcover/list")
def save_hardcover_list(body: ListIdRequest):
    value = (body.list_id or "").strip()
    if value and not value.isdigit():
        raise HTTPException(status_code=400, detail={"error": "Hardcover list id must be numeric."})
    _get_settings_store().set_hardcover_list_id(value or None)
    reload_settings()
    return get_hardcover_list()


@router.get("/settings/hardcover/api-key")
def get_hardcover_api_key_status():
    return {"configured": get_settings().hardcover_configured}


@router.post("/settings/hardcover/api-key")
def save_hardcover_api_key(body: ApiKeyRequest):
    configured = _get_settings_store().set_hardcover_api_key(body.api_key)
    reload_settings()
    Logger.info(f"Hardcover API key {'saved' if configured else 'cleared'}", file=LogFiles.API)
    return {"configured": get_settings().hardcover_configured}
