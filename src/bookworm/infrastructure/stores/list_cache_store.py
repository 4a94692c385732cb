from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from bookworm.domain.catalog import CatalogEntry
from bookworm.domain.crawl import BookListResult, CrawlStatus, RecommendationCandidate
from bookworm.domain.errors import StorageError
from bookworm.infrastructure.stores.models import Base, HardcoverListCacheModel
from bookworm.infrastructure.stores.sqlalchemy_db import SessionProvider


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def cache_row_to_dict(row: HardcoverListCacheModel) -> Dict[str, Any]:
    return {
        "calibre_id": int(row.calibre_id),
        "calibre_title": row.calibre_title or "",
        "hardcover_id": row.hardcover_id,
        "hardcover_title": row.hardcover_title,
        "list_count": int(row.list_count or 0),
        "recommendation_count": int(row.recommendation_count or 0),
        "status": row.status or "",
        "last_checked_utc": _iso(row.last_checked_utc),
        "base_genres": row.get_base_genres(),
        "lists": row.get_lists(),
        "recommendations": row.get_recommendations(),
    }


def _is_pending(row: HardcoverListCacheModel) -> bool:
    status = (row.status or "").strip().lower()
    if status == CrawlStatus.PENDING.value:
        return True
    return not status and not row.list_count and not row.recommendation_count


class ListCacheStore:
    """
    Per-Calibre-book record of the last Hardcover list crawl.

    Rows are read-modify-written one catalog id at a time; there is no
    cross-row transaction.
    """

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self._provider = SessionProvider(db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    def get(self, calibre_id: int) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.get(HardcoverListCacheModel, int(calibre_id))
            return cache_row_to_dict(row) if row else None

    def get_all(self) -> List[Dict[str, Any]]:
        with self._provider.session() as session:
            rows = (
                session.execute(
                    select(HardcoverListCacheModel).order_by(HardcoverListCacheModel.calibre_id)
                )
                .scalars()
                .all()
            )
            return [cache_row_to_dict(r) for r in rows]

    def all_base_genres(self) -> List[List[str]]:
        with self._provider.session() as session:
            raw = session.execute(select(HardcoverListCacheModel.base_genres_json)).scalars().all()
        return [HardcoverListCacheModel(base_genres_json=value).get_base_genres() for value in raw]

    def upsert(
        self,
        result: BookListResult,
        recommendations: Sequence[RecommendationCandidate],
        *,
        checked_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Write a live crawl outcome. Status is ``ok`` only when a Hardcover id resolved."""
        status = CrawlStatus.OK if result.matched else CrawlStatus.NOT_MATCHED
        with self._provider.session() as session:
            row = session.get(HardcoverListCacheModel, int(result.calibre_id))
            if row is None:
                row = HardcoverListCacheModel(calibre_id=int(result.calibre_id))
                session.add(row)
            row.calibre_title = result.calibre_title or ""
            row.hardcover_id = result.hardcover_id if result.matched else None
            row.hardcover_title = result.hardcover_title if result.matched else None
            row.list_count = len(result.lists)
            row.recommendation_count = sum(c.count for c in recommendations)
            row.status = status.value
            row.last_checked_utc = checked_at or _utcnow()
            row.set_base_genres(result.base_genres)
            row.set_lists([hit.to_dict() for hit in result.lists])
            row.set_recommendations([c.to_dict() for c in recommendations])
            session.commit()
            session.refresh(row)
            return cache_row_to_dict(row)

    def status(self) -> Dict[str, Any]:
        with self._provider.session() as session:
            rows = session.execute(select(HardcoverListCacheModel)).scalars().all()
            last_checked = session.execute(
                select(func.max(HardcoverListCacheModel.last_checked_utc))
            ).scalar_one_or_none()
        return {
            "total": len(rows),
            "with_lists": sum(1 for r in rows if (r.list_count or 0) > 0),
            "pending": sum(1 for r in rows if _is_pending(r)),
            "matched": sum(1 for r in rows if r.status == CrawlStatus.OK.value),
            "not_matched": sum(1 for r in rows if r.status == CrawlStatus.NOT_MATCHED.value),
            "last_checked_utc": _iso(last_checked),
        }

    def sync_with_catalog(self, books: Sequence[CatalogEntry]) -> Dict[str, int]:
        """
        Pending rows for new books and refreshed titles.

        Rows of books that left the catalog are reported as ``orphaned`` but kept;
        dropping them is left to an explicit ``reset``.
        """
        by_id = {int(b.id): b for b in books}
        added = updated = 0
        try:
            with self._provider.session() as session:
                rows = {
                    int(r.calibre_id): r
                    for r in session.execute(select(HardcoverListCacheModel)).scalars().all()
                }
                for calibre_id, book in by_id.items():
                    row = rows.get(calibre_id)
                    if row is None:
                        session.add(
                            HardcoverListCacheModel(
                                calibre_id=calibre_id,
                                calibre_title=book.title or "",
                                status=CrawlStatus.PENDING.value,
                                list_count=0,
                                recommendation_count=0,
                                base_genres_json="[]",
                                lists_json="[]",
                                recommendations_json="[]",
                            )
                        )
                        added += 1
                    elif (row.calibre_title or "") != (book.title or ""):
                        row.calibre_title = book.title or ""
                        updated += 1

                orphaned = sorted(cid for cid in rows if cid not in by_id)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to reconcile list cache: {e}") from e
        return {"added": added, "updated": updated, "orphaned": len(orphaned)}

    def orphaned_ids(self, catalog_ids: Sequence[int]) -> List[int]:
        known = {int(i) for i in catalog_ids}
        with self._provider.session() as session:
            ids = session.execute(select(HardcoverListCacheModel.calibre_id)).scalars().all()
        return sorted(int(i) for i in ids if int(i) not in known)

    def reset(self, calibre_ids: Optional[Sequence[int]] = None) -> int:
        """Explicit cache reset; the only path that drops successful crawl results."""
        stmt = delete(HardcoverListCacheModel)
        if calibre_ids:
            stmt = stmt.where(
                HardcoverListCacheModel.calibre_id.in_([int(i) for i in calibre_ids])
            )
        with self._provider.session() as session:
            result = session.execute(stmt)
            session.commit()
            return int(result.rowcount or 0)
