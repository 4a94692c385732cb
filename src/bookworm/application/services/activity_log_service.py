"""
Activity log service.

Thin fire-and-forget wrapper over ``ActivityLogStore``: a failure to record
an activity is written to the diagnostic log and never reaches the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from bookworm.config import get_settings
from bookworm.infrastructure.stores.activity_log_store import ActivityLogStore
from bookworm.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)


class ActivityLogService:
    def __init__(self, store: Optional[ActivityLogStore] = None):
        self._store = store

    @property
    def store(self) -> ActivityLogStore:
        if self._store is None:
            self._store = ActivityLogStore(max_entries=get_settings().activity_log_max_entries)
        return self._store

    def log(
        self,
        source: str,
        level: str,
        message: str,
        details: Optional[Any] = None,
    ) -> None:
        try:
            self.store.append(source=source, level=level, message=message, details=details)
        except Exception as exc:
            logger.warning(f"Failed to record activity from {source}: {exc}")
            Logger.error(f"activity log write failed: source={source} error={exc}", file=LogFiles.ERROR)

    def info(self, source: str, message: str, details: Optional[Any] = None) -> None:
        self.log(source, "info", message, details)

    def success(self, source: str, message: str, details: Optional[Any] = None) -> None:
        self.log(source, "success", message, details)

    def warning(self, source: str, message: str, details: Optional[Any] = None) -> None:
        self.log(source, "warning", message, details)

    def error(self, source: str, message: str, details: Optional[Any] = None) -> None:
        self.log(source, "error", message, details)

    def recent(self, take: int = 200) -> List[Dict[str, Any]]:
        return self.store.recent(take)

    def clear(self) -> int:
        return self.store.clear()
