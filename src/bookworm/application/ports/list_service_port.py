"""
List service port.

Interface over the external social reading service (book lookup, list
crawl, want-to-read shelf, list maintenance). Implementations raise the
typed errors from ``bookworm.domain.errors``; "no such book" is ``None``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from bookworm.domain.crawl import ListHit


@runtime_checkable
class ListServicePort(Protocol):
    async def find_book_by_title(self, title: str) -> Optional[Dict[str, Any]]:
        """Exact title lookup (case-sensitive first, then case-insensitive)."""
        ...

    async def find_book_by_isbn(self, isbn: str) -> Optional[Dict[str, Any]]:
        """Exact lookup over the default editions' ISBN-10/13 fields."""
        ...

    async def get_lists_for_book(
        self,
        book_id: int,
        *,
        lists_per_book: int,
        items_per_list: int,
    ) -> List[ListHit]:
        """Lists containing the book, each with up to ``items_per_list`` other books."""
        ...

    async def get_base_genres(self, book_id: int) -> List[str]: ...

    async def fetch_want_to_read(self) -> List[Dict[str, Any]]: ...

    async def search_isbn(self, isbn: str) -> List[Dict[str, Any]]:
        """Search-index documents for an ISBN query."""
        ...

    async def add_book_to_list(self, book_id: int, list_id: int) -> Optional[str]:
        """Insert a book into a list; returns the new list_book id."""
        ...

    async def close(self) -> None: ...
