from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from bookworm.domain.catalog import CatalogEntry
from bookworm.domain.errors import CatalogUnavailableError

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.db"
ISBN_IDENTIFIER_TYPES = ("isbn", "isbn10", "isbn-10", "isbn13", "isbn-13", "isbn_10", "isbn_13")
# Calibre stores "no date" as year 101
UNDEFINED_YEAR = 101


def resolve_metadata_path(path: str) -> str:
    """Accept either ``metadata.db`` itself or the library folder that holds it."""
    candidate = os.path.abspath(os.path.expanduser(path.strip()))
    if os.path.isdir(candidate):
        candidate = os.path.join(candidate, METADATA_FILE)
    return candidate


def split_concat(raw: Optional[str]) -> List[str]:
    """Split a GROUP_CONCAT value, dropping blanks and case-insensitive duplicates."""
    if not raw:
        return []
    separator = "|||" if "|||" in raw else ","
    out: List[str] = []
    seen = set()
    for part in raw.split(separator):
        value = part.strip()
        if value and value.casefold() not in seen:
            seen.add(value.casefold())
            out.append(value)
    return out


def _alnum(raw: str) -> str:
    return "".join(ch for ch in raw if ch.isalnum())


def choose_isbn(inline: Optional[str], identifiers: Sequence[str]) -> Optional[str]:
    """Prefer an ISBN-13 shaped value, then an ISBN-10 shaped one, else the first candidate."""
    candidates = [c.strip() for c in [inline or "", *identifiers] if c and c.strip()]
    if not candidates:
        return None
    for low, high in ((13, 16), (10, 11)):
        for value in candidates:
            if low <= len(_alnum(value)) <= high:
                return value
    return candidates[0]


def parse_calibre_date(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, (int, float)):
        parsed = datetime.fromtimestamp(raw, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(raw).strip())
        except ValueError:
            return None
    if parsed.year <= UNDEFINED_YEAR:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _size_mb(total_bytes: Any) -> Optional[float]:
    try:
        value = float(total_bytes or 0)
    except (TypeError, ValueError):
        return None
    if value <= 0:
        return None
    return round(value / (1024 * 1024), 2)


class CalibreReader:
    """
    Read-only access to a Calibre library's ``metadata.db``.

    The whole catalog is read in one statement; the file is opened with
    ``mode=ro`` so Calibre's own writes are never blocked or touched.
    Optional columns (rating, comments, identifiers, data sizes) are probed
    first because older libraries lack some of them.
    """

    def read_books(self, path: str) -> List[CatalogEntry]:
        if not path or not path.strip():
            raise CatalogUnavailableError("Calibre path not configured.")
        db_path = resolve_metadata_path(path)
        if not os.path.isfile(db_path):
            raise CatalogUnavailableError(f"Metadata file not found at {db_path}.")

        engine = create_engine(
            "sqlite://",
            creator=lambda: sqlite3.connect(f"file:{quote(db_path)}?mode=ro", uri=True),
            poolclass=NullPool,
        )
        try:
            with engine.connect() as conn:
                sql = self._build_query(conn)
                rows = conn.execute(text(sql)).mappings().all()
        except (SQLAlchemyError, sqlite3.Error) as exc:
            logger.warning(f"Calibre metadata at {db_path} is unreadable: {exc}")
            raise CatalogUnavailableError(f"Metadata file at {db_path} is unreadable: {exc}") from exc
        finally:
            engine.dispose()

        library_root = os.path.dirname(db_path)
        books = [self._to_entry(row, library_root) for row in rows]
        logger.info(f"Read {len(books)} books from {db_path}")
        return books

    @staticmethod
    def _columns(conn, table: str) -> set[str]:
        rows = conn.execute(text(f"PRAGMA table_info({table})")).all()
        return {str(r[1]).lower() for r in rows}

    def _build_query(self, conn) -> str:
        books_cols = self._columns(conn, "books")
        comments_cols = self._columns(conn, "comments")
        data_cols = self._columns(conn, "data")
        ident_cols = self._columns(conn, "identifiers")
        tag_cols = self._columns(conn, "tags")
        ratings_cols = self._columns(conn, "ratings")

        isbn = "b.isbn" if "isbn" in books_cols else "NULL"
        if "rating" in books_cols:
            rating = "b.rating"
        elif "rating" in ratings_cols:
            # ratings.rating is 0..10 (half stars)
            rating = (
                "(SELECT r.rating / 2.0 FROM books_ratings_link brl "
                "JOIN ratings r ON r.id = brl.rating WHERE brl.book = b.id LIMIT 1)"
            )
        else:
            rating = "NULL"

        comment_col = "text" if "text" in comments_cols else ("value" if "value" in comments_cols else None)
        comments = (
            f"(SELECT c.{comment_col} FROM comments c WHERE c.book = b.id LIMIT 1)"
            if comment_col
            else "NULL"
        )

        if "uncompressed_size" in data_cols and "size" in data_cols:
            size_expr = "COALESCE(d.uncompressed_size, d.size)"
        elif "uncompressed_size" in data_cols:
            size_expr = "d.uncompressed_size"
        elif "size" in data_cols:
            size_expr = "d.size"
        else:
            size_expr = "0"
        formats = "(SELECT GROUP_CONCAT(DISTINCT d.format) FROM data d WHERE d.book = b.id)" if "format" in data_cols else "NULL"
        total_bytes = (
            f"(SELECT SUM({size_expr}) FROM data d WHERE d.book = b.id)" if data_cols else "0"
        )

        if "val" in ident_cols:
            types = ", ".join(f"'{t}'" for t in ISBN_IDENTIFIER_TYPES)
            identifiers = (
                "(SELECT GROUP_CONCAT(DISTINCT i.val) FROM identifiers i "
                f"WHERE i.book = b.id AND LOWER(i.type) IN ({types}))"
            )
        else:
            identifiers = "NULL"
        tags = (
            "(SELECT GROUP_CONCAT(DISTINCT t.name) FROM books_tags_link btl "
            "JOIN tags t ON t.id = btl.tag WHERE btl.book = b.id)"
            if "name" in tag_cols
            else "NULL"
        )

        return f"""
            SELECT
                b.id AS id,
                b.title AS title,
                {isbn} AS isbn,
                {rating} AS rating,
                b.timestamp AS added_at,
                b.pubdate AS published_at,
                b.path AS path,
                b.has_cover AS has_cover,
                {comments} AS description,
                (SELECT GROUP_CONCAT(DISTINCT a.name) FROM books_authors_link bal
                    JOIN authors a ON a.id = bal.author WHERE bal.book = b.id) AS authors,
                {formats} AS formats,
                (SELECT p.name FROM books_publishers_link bpl
                    JOIN publishers p ON p.id = bpl.publisher WHERE bpl.book = b.id LIMIT 1) AS publisher,
                (SELECT s.name FROM books_series_link bsl
                    JOIN series s ON s.id = bsl.series WHERE bsl.book = b.id LIMIT 1) AS series,
                {total_bytes} AS total_bytes,
                {identifiers} AS identifiers,
                {tags} AS tags
            FROM books b
            ORDER BY b.timestamp DESC, b.id DESC
        """

    @staticmethod
    def _to_entry(row: Dict[str, Any], library_root: str) -> CatalogEntry:
        identifiers = split_concat(row.get("identifiers"))
        inline = (row.get("isbn") or "").strip() or None
        isbn = choose_isbn(inline, identifiers)
        isbns: List[str] = []
        for value in [inline, *identifiers]:
            if value and value.strip() and value.strip() not in isbns:
                isbns.append(value.strip())

        path = row.get("path") or None
        has_cover = bool(row.get("has_cover"))
        cover_url = os.path.join(library_root, path, "cover.jpg") if has_cover and path else None

        rating = row.get("rating")
        return CatalogEntry(
            id=int(row["id"]),
            title=row.get("title") or "",
            authors=split_concat(row.get("authors")),
            isbn=isbn,
            isbns=isbns,
            tags=split_concat(row.get("tags")),
            rating=float(rating) if rating is not None else None,
            added_at=parse_calibre_date(row.get("added_at")),
            published_at=parse_calibre_date(row.get("published_at")),
            path=path,
            has_cover=has_cover,
            cover_url=cover_url,
            formats=split_concat(row.get("formats")),
            publisher=(row.get("publisher") or "").strip() or None,
            series=(row.get("series") or "").strip() or None,
            file_size_mb=_size_mb(row.get("total_bytes")),
            description=row.get("description") or None,
        )
