from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from bookworm.domain.catalog import CatalogEntry, CatalogSyncResult, SyncState
from bookworm.domain.errors import StorageError
from bookworm.infrastructure.stores.models import Base, CalibreBookModel, CalibreSyncStateModel
from bookworm.infrastructure.stores.sqlalchemy_db import SessionProvider

_STATE_ROW_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_model(entry: CatalogEntry, updated_at: datetime) -> CalibreBookModel:
    return CalibreBookModel(
        id=int(entry.id),
        title=entry.title or "",
        authors_json=json.dumps(list(entry.authors), ensure_ascii=False),
        isbn=entry.isbn,
        isbns_json=json.dumps(entry.normalized_isbns(), ensure_ascii=False),
        tags_json=json.dumps(list(entry.tags), ensure_ascii=False),
        rating=entry.rating,
        added_at=entry.added_at,
        published_at=entry.published_at,
        path=entry.path,
        has_cover=1 if entry.has_cover else 0,
        cover_url=entry.cover_url,
        formats_json=json.dumps(list(entry.formats), ensure_ascii=False),
        publisher=entry.publisher,
        series=entry.series,
        file_size_mb=entry.file_size_mb,
        description=entry.description,
        updated_at=updated_at,
    )


def _to_entry(row: CalibreBookModel) -> CatalogEntry:
    return CatalogEntry(
        id=int(row.id),
        title=row.title or "",
        authors=row.get_authors(),
        isbn=row.isbn,
        isbns=row.get_isbns(),
        tags=row.get_tags(),
        rating=row.rating,
        added_at=_as_utc(row.added_at),
        published_at=_as_utc(row.published_at),
        path=row.path,
        has_cover=bool(row.has_cover),
        cover_url=row.cover_url,
        formats=row.get_formats(),
        publisher=row.publisher,
        series=row.series,
        file_size_mb=row.file_size_mb,
        description=row.description,
    )


class CatalogMirrorStore:
    """
    Local snapshot of the Calibre catalog.

    ``replace_all`` swaps the whole table inside one transaction, so readers
    see either the previous snapshot or the new one.
    """

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self._provider = SessionProvider(db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    def replace_all(
        self,
        entries: Sequence[CatalogEntry],
        *,
        source_path: Optional[str],
        snapshot_time: Optional[datetime] = None,
    ) -> CatalogSyncResult:
        snapshot = snapshot_time or _utcnow()
        incoming = {}
        for entry in entries:
            incoming[int(entry.id)] = entry  # last duplicate wins

        try:
            with self._provider.session() as session:
                with session.begin():
                    existing_ids = set(session.execute(select(CalibreBookModel.id)).scalars().all())
                    added = sorted(set(incoming) - existing_ids)
                    removed = sorted(existing_ids - set(incoming))

                    session.execute(delete(CalibreBookModel))
                    session.add_all(_to_model(e, snapshot) for e in incoming.values())

                    state = session.get(CalibreSyncStateModel, _STATE_ROW_ID)
                    if state is None:
                        state = CalibreSyncStateModel(id=_STATE_ROW_ID)
                        session.add(state)
                    state.calibre_db_path = source_path
                    state.last_snapshot = snapshot
                    state.entry_count = len(incoming)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to replace Calibre mirror: {e}") from e

        return CatalogSyncResult(
            count=len(incoming),
            added_ids=added,
            removed_ids=removed,
            snapshot_time=snapshot,
            source_path=source_path,
        )

    def list_books(self, *, limit: int = 0) -> List[CatalogEntry]:
        """Mirror ordered like Calibre's library view: most recently added first."""
        stmt = select(CalibreBookModel).order_by(
            CalibreBookModel.added_at.desc(), CalibreBookModel.id.desc()
        )
        if limit and limit > 0:
            stmt = stmt.limit(int(limit))
        with self._provider.session() as session:
            rows = session.execute(stmt).scalars().all()
            return [_to_entry(r) for r in rows]

    def get_book(self, calibre_id: int) -> Optional[CatalogEntry]:
        with self._provider.session() as session:
            row = session.get(CalibreBookModel, int(calibre_id))
            return _to_entry(row) if row else None

    def count(self) -> int:
        with self._provider.session() as session:
            return int(session.execute(select(func.count(CalibreBookModel.id))).scalar_one())

    def get_state(self) -> SyncState:
        with self._provider.session() as session:
            state = session.get(CalibreSyncStateModel, _STATE_ROW_ID)
            if state is None:
                return SyncState()
            return SyncState(
                calibre_db_path=state.calibre_db_path,
                last_snapshot=_as_utc(state.last_snapshot),
                entry_count=int(state.entry_count or 0),
            )

    def close(self) -> None:
        self._provider.dispose()
