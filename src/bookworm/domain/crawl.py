# src/bookworm/domain/crawl.py
"""
List crawl domain models.

Contains the data structures exchanged between the Hardcover client, the
crawl cache and the recommendation aggregator:
- CrawlStatus: outcome of resolving one catalog entry
- ListReason: why a book was recommended ("found in list X")
- ListNeighbor / ListHit: co-listed books grouped by list
- BookListResult: everything one crawl produced for one catalog entry
- RecommendationCandidate: a book with its occurrence count and reasons
- CrawlStep: the per-entry progress record surfaced to callers
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from bookworm.domain.book_payload import book_key, book_rating, book_title


class CrawlStatus(str, Enum):
    """State of a crawl cache row."""

    OK = "ok"
    NOT_MATCHED = "not_matched"
    PENDING = "pending"


def _opt_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


@dataclass
class ListReason:
    list_id: Optional[str] = None
    list_name: Optional[str] = None
    list_slug: Optional[str] = None
    owner_name: Optional[str] = None
    calibre_id: Optional[int] = None
    calibre_title: Optional[str] = None

    def describe(self) -> str:
        name = self.list_name or self.list_slug or self.list_id or "a list"
        if self.owner_name:
            return f"found in list {name} by {self.owner_name}"
        return f"found in list {name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listId": self.list_id,
            "listName": self.list_name,
            "listSlug": self.list_slug,
            "ownerName": self.owner_name,
            "calibreId": self.calibre_id,
            "calibreTitle": self.calibre_title,
            "text": self.describe(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListReason":
        data = data or {}
        return cls(
            list_id=data.get("listId", data.get("list_id")),
            list_name=data.get("listName", data.get("list_name")),
            list_slug=data.get("listSlug", data.get("list_slug")),
            owner_name=data.get("ownerName", data.get("owner_name")),
            calibre_id=_opt_int(data.get("calibreId", data.get("calibre_id"))),
            calibre_title=data.get("calibreTitle", data.get("calibre_title")),
        )


@dataclass
class ListNeighbor:
    """A book that shares a list with the crawled book."""

    key: Optional[str]
    title: Optional[str]
    rating: Optional[float]
    book: Dict[str, Any]

    @classmethod
    def from_book(cls, book: Dict[str, Any]) -> "ListNeighbor":
        return cls(key=book_key(book), title=book_title(book), rating=book_rating(book), book=book)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "title": self.title, "rating": self.rating, "book": self.book}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListNeighbor":
        book = data.get("book") or {}
        return cls(
            key=data.get("key") or book_key(book),
            title=data.get("title") or book_title(book),
            rating=data.get("rating"),
            book=book,
        )


@dataclass
class ListHit:
    list_id: Optional[str] = None
    list_name: Optional[str] = None
    list_slug: Optional[str] = None
    owner_name: Optional[str] = None
    neighbors: List[ListNeighbor] = field(default_factory=list)

    def reason_for(self, calibre_id: int, calibre_title: str) -> ListReason:
        return ListReason(
            list_id=self.list_id,
            list_name=self.list_name,
            list_slug=self.list_slug,
            owner_name=self.owner_name,
            calibre_id=calibre_id,
            calibre_title=calibre_title,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listId": self.list_id,
            "listName": self.list_name,
            "listSlug": self.list_slug,
            "ownerName": self.owner_name,
            "neighbors": [n.to_dict() for n in self.neighbors],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListHit":
        return cls(
            list_id=data.get("listId"),
            list_name=data.get("listName"),
            list_slug=data.get("listSlug"),
            owner_name=data.get("ownerName"),
            neighbors=[ListNeighbor.from_dict(n) for n in data.get("neighbors") or []],
        )


@dataclass
class RecommendationCandidate:
    """A recommended book with how often and why it surfaced."""

    key: str
    book: Dict[str, Any]
    count: int = 0
    reasons: List[ListReason] = field(default_factory=list)
    base_genres: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "book": self.book,
            "occurrences": self.count,
            "reasons": [r.to_dict() for r in self.reasons],
            "baseGenres": list(self.base_genres),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecommendationCandidate":
        book = data.get("book") or {}
        return cls(
            key=data.get("key") or book_key(book) or "",
            book=book,
            count=int(data.get("occurrences", data.get("count", 0)) or 0),
            reasons=[ListReason.from_dict(r) for r in data.get("reasons") or []],
            base_genres=list(data.get("baseGenres") or []),
        )


@dataclass
class BookListResult:
    """Everything one crawl discovered for a single catalog entry."""

    calibre_id: int
    calibre_title: str
    status: CrawlStatus
    hardcover_id: Optional[str] = None
    hardcover_title: Optional[str] = None
    base_genres: List[str] = field(default_factory=list)
    lists: List[ListHit] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.status == CrawlStatus.OK and bool(self.hardcover_id)

    def iter_neighbors(self) -> Iterator[tuple[ListNeighbor, ListReason]]:
        for hit in self.lists:
            reason = hit.reason_for(self.calibre_id, self.calibre_title)
            for neighbor in hit.neighbors:
                yield neighbor, reason

    def recommendations(self) -> List[RecommendationCandidate]:
        """Neighbours grouped by stable key; one occurrence per list appearance."""
        grouped: Dict[str, RecommendationCandidate] = {}
        for neighbor, reason in self.iter_neighbors():
            if not neighbor.key:
                continue
            candidate = grouped.get(neighbor.key)
            if candidate is None:
                candidate = RecommendationCandidate(key=neighbor.key, book=neighbor.book)
                grouped[neighbor.key] = candidate
            candidate.count += 1
            candidate.reasons.append(reason)
        return list(grouped.values())


@dataclass
class CrawlStep:
    calibre_id: int
    title: str
    isbn: Optional[str]
    matched_hardcover: bool
    hardcover_book_id: Optional[str]
    hardcover_title: Optional[str]
    lists_checked: int
    recommendations_added: int
    total_calibre_books: int
    from_cache: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calibreId": self.calibre_id,
            "title": self.title,
            "isbn": self.isbn,
            "matchedHardcover": self.matched_hardcover,
            "hardcoverBookId": self.hardcover_book_id,
            "hardcoverTitle": self.hardcover_title,
            "listsChecked": self.lists_checked,
            "recommendationsAdded": self.recommendations_added,
            "totalCalibreBooks": self.total_calibre_books,
            "fromCache": self.from_cache,
            "error": self.error,
        }
