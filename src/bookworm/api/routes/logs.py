"""Activity log routes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query

from bookworm.application.services.activity_log_service import ActivityLogService

router = APIRouter()

_activity: Optional[ActivityLogService] = None


def _get_activity() -> ActivityLogService:
    global _activity
    if _activity is None:
        _activity = ActivityLogService()
    return _activity


@router.get("/logs")
def recent_logs(take: int = Query(200, ge=1, le=500)):
    entries = _get_activity().recent(take)
    return {"count": len(entries), "items": entries}


@router.delete("/logs")
def clear_logs():
    return {"removed": _get_activity().clear()}
