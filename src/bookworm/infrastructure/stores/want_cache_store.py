from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select

from bookworm.domain.book_payload import (
    as_text,
    book_authors,
    book_cover_url,
    book_title,
    normalize_isbn,
)
from bookworm.infrastructure.stores.models import Base, HardcoverWantCacheModel
from bookworm.infrastructure.stores.sqlalchemy_db import SessionProvider


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _edition_isbn(book: Dict[str, Any], field: str) -> Optional[str]:
    for edition in ("default_physical_edition", "default_ebook_edition"):
        node = book.get(edition)
        if isinstance(node, dict):
            value = normalize_isbn(as_text(node.get(field)))
            if value:
                return value
    return None


def want_row_to_dict(row: HardcoverWantCacheModel) -> Dict[str, Any]:
    updated = row.last_updated_utc
    if updated is not None and updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    return {
        "hardcover_id": row.hardcover_id,
        "title": row.title,
        "authors": row.get_authors(),
        "isbn13": row.isbn13,
        "isbn10": row.isbn10,
        "cover_url": row.cover_url,
        "book": row.get_book(),
        "last_updated_utc": updated.isoformat() if updated else None,
    }


class WantCacheStore:
    """Local copy of the Hardcover want-to-read shelf."""

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self._provider = SessionProvider(db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    def stats(self) -> Dict[str, Any]:
        with self._provider.session() as session:
            count = int(
                session.execute(select(func.count(HardcoverWantCacheModel.hardcover_id))).scalar_one()
            )
            last = session.execute(
                select(func.max(HardcoverWantCacheModel.last_updated_utc))
            ).scalar_one_or_none()
        if last is not None and last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return {"count": count, "last_updated": last.isoformat() if last else None}

    def replace_all(self, books: Sequence[Dict[str, Any]]) -> Dict[str, int]:
        """Upsert every book that has an id and delete the rest, in one transaction."""
        now = _utcnow()
        incoming: Dict[str, Dict[str, Any]] = {}
        for book in books:
            if not isinstance(book, dict):
                continue
            hid = as_text(book.get("id"))
            if hid:
                incoming[hid] = book

        with self._provider.session() as session:
            with session.begin():
                existing = {
                    r.hardcover_id: r
                    for r in session.execute(select(HardcoverWantCacheModel)).scalars().all()
                }
                stale = [hid for hid in existing if hid not in incoming]
                if stale:
                    session.execute(
                        delete(HardcoverWantCacheModel).where(
                            HardcoverWantCacheModel.hardcover_id.in_(stale)
                        )
                    )
                for hid, book in incoming.items():
                    row = existing.get(hid)
                    if row is None:
                        row = HardcoverWantCacheModel(hardcover_id=hid)
                        session.add(row)
                    row.title = book_title(book) or ""
                    row.authors_json = json.dumps(book_authors(book), ensure_ascii=False)
                    row.isbn13 = _edition_isbn(book, "isbn_13")
                    row.isbn10 = _edition_isbn(book, "isbn_10")
                    row.cover_url = book_cover_url(book)
                    row.book_json = json.dumps(book, ensure_ascii=False)
                    row.last_updated_utc = now
        return {"cached": len(incoming), "removed": len(stale)}

    def list_books(self) -> List[Dict[str, Any]]:
        with self._provider.session() as session:
            rows = (
                session.execute(select(HardcoverWantCacheModel).order_by(HardcoverWantCacheModel.title))
                .scalars()
                .all()
            )
            return [want_row_to_dict(r) for r in rows]
