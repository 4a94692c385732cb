from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import select

from bookworm.infrastructure.stores.models import Base, HardcoverBookshelfMapModel
from bookworm.infrastructure.stores.sqlalchemy_db import SessionProvider


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookshelfMapStore:
    """calibre_id -> Hardcover book id, including misses (hardcover_id NULL)."""

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self._provider = SessionProvider(db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    def get_all(self) -> Dict[int, Optional[str]]:
        with self._provider.session() as session:
            rows = session.execute(select(HardcoverBookshelfMapModel)).scalars().all()
            return {int(r.calibre_id): r.hardcover_id for r in rows}

    def upsert(
        self,
        calibre_id: int,
        hardcover_id: Optional[str],
        *,
        checked_at: Optional[datetime] = None,
    ) -> None:
        with self._provider.session() as session:
            row = session.get(HardcoverBookshelfMapModel, int(calibre_id))
            if row is None:
                row = HardcoverBookshelfMapModel(calibre_id=int(calibre_id))
                session.add(row)
            row.hardcover_id = hardcover_id or None
            row.last_checked_utc = checked_at or _utcnow()
            session.commit()
