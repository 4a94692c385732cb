from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _loads(raw: Optional[str], default: Any) -> Any:
    try:
        value = json.loads(raw) if raw else default
    except ValueError:
        return default
    return value if isinstance(value, type(default)) else default


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


class CalibreBookModel(Base):
    """Local mirror of one Calibre book, replaced wholesale on every sync."""

    __tablename__ = "calibre_books"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    title: Mapped[str] = mapped_column(String(1024), default="")
    authors_json: Mapped[str] = mapped_column(Text, default="[]")
    isbn: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    isbns_json: Mapped[str] = mapped_column(Text, default="[]")
    tags_json: Mapped[str] = mapped_column(Text, default="[]")
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    added_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    has_cover: Mapped[int] = mapped_column(Integer, default=0)
    cover_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    formats_json: Mapped[str] = mapped_column(Text, default="[]")
    publisher: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    series: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    file_size_mb: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def get_authors(self) -> List[str]:
        return _loads(self.authors_json, [])

    def get_isbns(self) -> List[str]:
        return _loads(self.isbns_json, [])

    def get_tags(self) -> List[str]:
        return _loads(self.tags_json, [])

    def get_formats(self) -> List[str]:
        return _loads(self.formats_json, [])


class CalibreSyncStateModel(Base):
    __tablename__ = "calibre_sync_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    calibre_db_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    last_snapshot: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    entry_count: Mapped[int] = mapped_column(Integer, default=0)


class HardcoverListCacheModel(Base):
    """Last crawl outcome per Calibre book."""

    __tablename__ = "hardcover_list_cache"

    calibre_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    calibre_title: Mapped[str] = mapped_column(String(1024), default="")
    hardcover_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    hardcover_title: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    list_count: Mapped[int] = mapped_column(Integer, default=0)
    recommendation_count: Mapped[int] = mapped_column(Integer, default=0)
    last_checked_utc: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    base_genres_json: Mapped[str] = mapped_column(Text, default="[]")
    lists_json: Mapped[str] = mapped_column(Text, default="[]")
    recommendations_json: Mapped[str] = mapped_column(Text, default="[]")

    def get_base_genres(self) -> List[str]:
        return _loads(self.base_genres_json, [])

    def set_base_genres(self, genres: List[str]) -> None:
        self.base_genres_json = _dumps(list(genres or []))

    def get_lists(self) -> List[Dict[str, Any]]:
        return _loads(self.lists_json, [])

    def set_lists(self, lists: List[Dict[str, Any]]) -> None:
        self.lists_json = _dumps(list(lists or []))

    def get_recommendations(self) -> List[Dict[str, Any]]:
        return _loads(self.recommendations_json, [])

    def set_recommendations(self, recs: List[Dict[str, Any]]) -> None:
        self.recommendations_json = _dumps(list(recs or []))


class SuggestedModel(Base):
    __tablename__ = "suggested"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hardcover_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    # lower(trim(hardcover_key)); the uniqueness check runs against this column
    key_normalized: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )
    book_fingerprint: Mapped[str] = mapped_column(String(64), default="", index=True)
    book_json: Mapped[str] = mapped_column(Text, default="{}")
    base_genres_json: Mapped[str] = mapped_column(Text, default="[]")
    reasons_json: Mapped[str] = mapped_column(Text, default="[]")
    hidden: Mapped[int] = mapped_column(Integer, default=0, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def get_book(self) -> Dict[str, Any]:
        return _loads(self.book_json, {})

    def get_base_genres(self) -> List[str]:
        return _loads(self.base_genres_json, [])

    def get_reasons(self) -> List[Dict[str, Any]]:
        return _loads(self.reasons_json, [])


class ActivityLogModel(Base):
    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    source: Mapped[str] = mapped_column(String(128), default="")
    level: Mapped[str] = mapped_column(String(16), default="info")
    message: Mapped[str] = mapped_column(Text, default="")
    details_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def get_details(self) -> Optional[Any]:
        if not self.details_json:
            return None
        try:
            return json.loads(self.details_json)
        except ValueError:
            return None


class HardcoverWantCacheModel(Base):
    __tablename__ = "hardcover_want_cache"

    hardcover_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(1024), default="")
    authors_json: Mapped[str] = mapped_column(Text, default="[]")
    isbn13: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    isbn10: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    cover_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    book_json: Mapped[str] = mapped_column(Text, default="{}")
    last_updated_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def get_authors(self) -> List[str]:
        return _loads(self.authors_json, [])

    def get_book(self) -> Dict[str, Any]:
        return _loads(self.book_json, {})


class HardcoverBookshelfMapModel(Base):
    __tablename__ = "hardcover_bookshelf_map"

    calibre_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    hardcover_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_checked_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class UserSettingModel(Base):
    __tablename__ = "user_settings"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
