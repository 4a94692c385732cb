from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select

from bookworm.infrastructure.stores.models import ActivityLogModel, Base
from bookworm.infrastructure.stores.sqlalchemy_db import SessionProvider

LEVELS = ("info", "success", "warning", "error")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_level(level: Optional[str]) -> str:
    value = (level or "info").strip().lower()
    if value in ("warn",):
        return "warning"
    return value if value in LEVELS else "info"


def activity_to_dict(row: ActivityLogModel) -> Dict[str, Any]:
    created = row.created_at
    if created is not None and created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return {
        "id": int(row.id),
        "created_at": created.isoformat() if created else None,
        "source": row.source or "",
        "level": row.level or "info",
        "message": row.message or "",
        "details": row.get_details(),
    }


class ActivityLogStore:
    """User-facing operational log, trimmed to the newest ``max_entries`` rows."""

    def __init__(
        self,
        db_url: Optional[str] = None,
        *,
        max_entries: int = 1000,
        auto_create_schema: bool = True,
    ):
        self._provider = SessionProvider(db_url)
        self.max_entries = max(1, int(max_entries))
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    def append(
        self,
        *,
        source: str,
        level: str,
        message: str,
        details: Optional[Any] = None,
    ) -> Dict[str, Any]:
        row = ActivityLogModel(
            created_at=_utcnow(),
            source=(source or "")[:128],
            level=normalize_level(level),
            message=message or "",
            details_json=json.dumps(details, ensure_ascii=False, default=str)
            if details is not None
            else None,
        )
        with self._provider.session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            self._trim(session)
            return activity_to_dict(row)

    def _trim(self, session) -> None:
        total = int(session.execute(select(func.count(ActivityLogModel.id))).scalar_one())
        overflow = total - self.max_entries
        if overflow <= 0:
            return
        oldest = (
            session.execute(
                select(ActivityLogModel.id).order_by(ActivityLogModel.id.asc()).limit(overflow)
            )
            .scalars()
            .all()
        )
        session.execute(delete(ActivityLogModel).where(ActivityLogModel.id.in_(oldest)))
        session.commit()

    def recent(self, take: int = 200) -> List[Dict[str, Any]]:
        limit = max(1, min(int(take), 500))
        with self._provider.session() as session:
            rows = (
                session.execute(
                    select(ActivityLogModel).order_by(ActivityLogModel.id.desc()).limit(limit)
                )
                .scalars()
                .all()
            )
            return [activity_to_dict(r) for r in rows]

    def clear(self) -> int:
        with self._provider.session() as session:
            result = session.execute(delete(ActivityLogModel))
            session.commit()
            return int(result.rowcount or 0)
