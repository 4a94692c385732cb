# src/bookworm/domain/catalog.py
"""
Catalog mirror domain models.

- CatalogEntry: one book from the local Calibre library
- CatalogSyncResult: outcome of a mirror refresh (delta + snapshot time)
- SyncState: the single process-wide record of the last refresh
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from bookworm.domain.book_payload import normalize_isbn


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


@dataclass
class CatalogEntry:
    """
    A Calibre book as mirrored locally.

    ``isbn`` is the preferred identifier picked by the reader; ``isbns`` holds
    every normalised ISBN known for the book (inline + identifiers table).
    """

    id: int
    title: str
    authors: List[str] = field(default_factory=list)
    isbn: Optional[str] = None
    isbns: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    rating: Optional[float] = None
    added_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    path: Optional[str] = None
    has_cover: bool = False
    cover_url: Optional[str] = None
    formats: List[str] = field(default_factory=list)
    publisher: Optional[str] = None
    series: Optional[str] = None
    file_size_mb: Optional[float] = None
    description: Optional[str] = None

    def normalized_isbns(self) -> List[str]:
        values = [normalize_isbn(v) for v in [self.isbn, *self.isbns]]
        out: List[str] = []
        for value in values:
            if value and value not in out:
                out.append(value)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "authors": list(self.authors),
            "isbn": self.isbn,
            "isbns": list(self.isbns),
            "tags": list(self.tags),
            "rating": self.rating,
            "added_at": _iso(self.added_at),
            "published_at": _iso(self.published_at),
            "path": self.path,
            "has_cover": self.has_cover,
            "cover_url": self.cover_url,
            "formats": list(self.formats),
            "publisher": self.publisher,
            "series": self.series,
            "file_size_mb": self.file_size_mb,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogEntry":
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            authors=list(data.get("authors") or []),
            isbn=data.get("isbn"),
            isbns=list(data.get("isbns") or []),
            tags=list(data.get("tags") or []),
            rating=data.get("rating"),
            added_at=_parse_dt(data.get("added_at")),
            published_at=_parse_dt(data.get("published_at")),
            path=data.get("path"),
            has_cover=bool(data.get("has_cover")),
            cover_url=data.get("cover_url"),
            formats=list(data.get("formats") or []),
            publisher=data.get("publisher"),
            series=data.get("series"),
            file_size_mb=data.get("file_size_mb"),
            description=data.get("description"),
        )


@dataclass
class CatalogSyncResult:
    """Delta produced by one mirror refresh."""

    count: int
    added_ids: List[int]
    removed_ids: List[int]
    snapshot_time: datetime
    source_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "added_ids": list(self.added_ids),
            "removed_ids": list(self.removed_ids),
            "new_count": len(self.added_ids),
            "removed_count": len(self.removed_ids),
            "snapshot_time": self.snapshot_time.isoformat(),
            "source_path": self.source_path,
        }


@dataclass
class SyncState:
    calibre_db_path: Optional[str] = None
    last_snapshot: Optional[datetime] = None
    entry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calibre_db_path": self.calibre_db_path,
            "last_snapshot": _iso(self.last_snapshot),
            "entry_count": self.entry_count,
        }
