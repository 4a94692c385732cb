"""
Hardcover GraphQL client.

Endpoint: https://api.hardcover.app/v1/graphql (Bearer token)

Every call goes through ``execute`` which maps transport and GraphQL
failures onto the domain error taxonomy:
- HTTP 429 or a "throttle" GraphQL message -> RateLimitedError
- other non-2xx, GraphQL ``errors``, timeouts -> UpstreamError
- 2xx with an unusable body -> MalformedResponseError

The client never retries; callers decide whether a second attempt is worth it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import ClientTimeout

from bookworm.config import BookwormSettings
from bookworm.domain.book_payload import (
    as_text,
    extract_genres,
    normalize_isbn,
    with_source,
)
from bookworm.domain.crawl import ListHit, ListNeighbor
from bookworm.domain.errors import (
    MalformedResponseError,
    RateLimitedError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

BOOK_FIELDS = """
    id
    title
    slug
    rating
    ratings_count
    users_count
    cached_contributors
    cached_tags
    contributions(where: { contributable_type: { _eq: "Book" } }) {
      contributable_type
      author { id name slug }
    }
    image { url }
    default_physical_edition { isbn_13 isbn_10 }
    default_ebook_edition { isbn_13 isbn_10 }
"""

BOOK_BY_TITLE_EXACT = (
    """
query BookByTitle($title: String!) {
  books(where: { title: { _eq: $title } }, limit: 5, order_by: { users_count: desc }) {
"""
    + BOOK_FIELDS
    + """
  }
}"""
)

BOOK_BY_TITLE_ILIKE = (
    """
query BookByTitleInsensitive($title: String!) {
  books(where: { title: { _ilike: $title } }, limit: 5, order_by: { users_count: desc }) {
"""
    + BOOK_FIELDS
    + """
  }
}"""
)

BOOK_BY_ISBN = (
    """
query BookByIsbn($isbn: String!) {
  books(
    where: {
      _or: [
        { default_physical_edition: { isbn_13: { _eq: $isbn } } },
        { default_physical_edition: { isbn_10: { _eq: $isbn } } },
        { default_ebook_edition: { isbn_13: { _eq: $isbn } } },
        { default_ebook_edition: { isbn_10: { _eq: $isbn } } }
      ]
    }
    limit: 5
    order_by: { users_count: desc }
  ) {
"""
    + BOOK_FIELDS
    + """
  }
}"""
)

LISTS_WITH_BOOK = (
    """
query ListsWithBook($bookId: Int!, $listLimit: Int!, $itemLimit: Int!) {
  list_books(
    where: { book_id: { _eq: $bookId } }
    limit: $listLimit
    order_by: { created_at: desc }
  ) {
    list {
      id
      name
      slug
      user { name username }
      list_books(where: { book_id: { _neq: $bookId } }, limit: $itemLimit) {
        book {
"""
    + BOOK_FIELDS
    + """
        }
      }
    }
  }
}"""
)

CACHED_TAGS = """
query CachedTags($bookId: Int!) {
  books(where: { id: { _eq: $bookId } }, limit: 1) {
    cached_tags
  }
}"""

SEARCH_ISBN = """
query SearchIsbn($query: String!) {
  search(query: $query, query_type: "isbns", per_page: 5, page: 1) {
    results
  }
}"""

ADD_BOOK_TO_LIST = """
mutation addBook($bookId: Int!, $listId: Int!) {
  insert_list_book(object: { book_id: $bookId, list_id: $listId }) {
    id
  }
}"""


@dataclass(frozen=True)
class QueryVariant:
    """One shape of a query whose schema differs between API revisions."""

    name: str
    field: str
    query: str


def _want_query(field: str) -> str:
    return (
        """
query WantToRead {
  me {
    %s(where: { status_id: { _eq: 1 } }, order_by: { date_added: desc }) {
      status_id
      book {
"""
        % field
        + BOOK_FIELDS
        + """
      }
    }
  }
}"""
    )


# Tried in order; the first variant that answers without errors and with
# at least one book wins.
WANT_QUERY_VARIANTS = (
    QueryVariant("user_book", "user_book", _want_query("user_book")),
    QueryVariant("user_books", "user_books", _want_query("user_books")),
)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _retry_after(headers: Any) -> Optional[float]:
    raw = headers.get("Retry-After") if headers is not None else None
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return None


def _first_book(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    books = data.get("books")
    if not isinstance(books, list):
        return None
    for book in books:
        if isinstance(book, dict) and as_text(book.get("id")):
            return with_source(book)
    return None


def _owner_name(user: Any) -> Optional[str]:
    if not isinstance(user, dict):
        return None
    return as_text(user.get("name")) or as_text(user.get("username"))


class HardcoverClient:
    """
    Async Hardcover API client.

    Rate limit: Hardcover throttles aggressively; requests are spaced by
    ``REQUEST_INTERVAL`` and the crawl workflow adds its own inter-entry delay.
    """

    REQUEST_INTERVAL = 0.25

    def __init__(self, settings: BookwormSettings):
        self.settings = settings
        self.endpoint = settings.hardcover_endpoint
        self.search_timeout = ClientTimeout(total=settings.search_timeout_seconds)
        self.list_timeout = ClientTimeout(total=settings.list_timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self._last_request_time: float = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            api_key = self.settings.require_hardcover_api_key()
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                    "User-Agent": "Bookworm/0.1",
                }
            )
        return self._session

    async def _rate_limit(self) -> None:
        """Enforce rate limiting between requests."""
        now = time.time()
        elapsed = now - self._last_request_time
        if elapsed < self.REQUEST_INTERVAL:
            await asyncio.sleep(self.REQUEST_INTERVAL - elapsed)
        self._last_request_time = time.time()

    async def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        timeout: Optional[ClientTimeout] = None,
    ) -> Dict[str, Any]:
        """POST one GraphQL document and return its ``data`` object."""
        self.settings.require_hardcover_api_key()
        await self._rate_limit()
        session = await self._get_session()
        payload = {"query": query, "variables": variables or {}}

        try:
            async with session.post(
                self.endpoint, json=payload, timeout=timeout or self.search_timeout
            ) as resp:
                if resp.status == 429:
                    retry_after = _retry_after(resp.headers)
                    await resp.read()
                    logger.warning(f"Hardcover returned 429 (Retry-After={retry_after})")
                    raise RateLimitedError(
                        "Hardcover rate limit reached", retry_after=retry_after
                    )
                if resp.status < 200 or resp.status >= 300:
                    text = await resp.text()
                    logger.warning(f"Hardcover API error {resp.status}: {text[:200]}")
                    raise UpstreamError(
                        f"Hardcover API returned status {resp.status}", status=resp.status
                    )
                try:
                    body = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError) as exc:
                    raise MalformedResponseError(
                        f"Hardcover returned a non-JSON body: {exc}", status=resp.status
                    ) from exc
        except asyncio.TimeoutError as exc:
            raise UpstreamError("Hardcover request timed out") from exc
        except aiohttp.ClientError as exc:
            raise UpstreamError(f"Hardcover request failed: {exc}") from exc

        if not isinstance(body, dict):
            raise MalformedResponseError("Hardcover response is not a JSON object")

        errors = body.get("errors")
        if errors:
            text = json.dumps(errors, ensure_ascii=False)[:500]
            if "throttl" in text.lower():
                raise RateLimitedError(f"Hardcover throttled the request: {text}")
            raise UpstreamError(f"Hardcover GraphQL errors: {text}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise MalformedResponseError("Hardcover response has no data object")
        return data

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_book_by_title(self, title: str) -> Optional[Dict[str, Any]]:
        clean = (title or "").strip()
        if not clean:
            return None
        book = _first_book(await self.execute(BOOK_BY_TITLE_EXACT, {"title": clean}))
        if book is not None:
            return book
        # _ilike without wildcards: case-insensitive but still exact
        return _first_book(
            await self.execute(BOOK_BY_TITLE_ILIKE, {"title": _escape_like(clean)})
        )

    async def find_book_by_isbn(self, isbn: str) -> Optional[Dict[str, Any]]:
        clean = normalize_isbn(isbn)
        if not clean:
            return None
        return _first_book(await self.execute(BOOK_BY_ISBN, {"isbn": clean}))

    async def get_base_genres(self, book_id: int) -> List[str]:
        data = await self.execute(CACHED_TAGS, {"bookId": int(book_id)})
        books = data.get("books")
        if not isinstance(books, list) or not books or not isinstance(books[0], dict):
            return []
        return extract_genres(books[0].get("cached_tags"))

    async def get_lists_for_book(
        self,
        book_id: int,
        *,
        lists_per_book: int,
        items_per_list: int,
    ) -> List[ListHit]:
        data = await self.execute(
            LISTS_WITH_BOOK,
            {"bookId": int(book_id), "listLimit": lists_per_book, "itemLimit": items_per_list},
            timeout=self.list_timeout,
        )
        items = data.get("list_books")
        if not isinstance(items, list):
            raise MalformedResponseError("list_books is missing from the Hardcover response")

        hits: List[ListHit] = []
        for item in items:
            node = item.get("list") if isinstance(item, dict) else None
            if not isinstance(node, dict):
                continue
            neighbors = []
            for entry in node.get("list_books") or []:
                book = entry.get("book") if isinstance(entry, dict) else None
                if isinstance(book, dict):
                    neighbors.append(ListNeighbor.from_book(with_source(book)))
            hits.append(
                ListHit(
                    list_id=as_text(node.get("id")),
                    list_name=as_text(node.get("name")),
                    list_slug=as_text(node.get("slug")),
                    owner_name=_owner_name(node.get("user")),
                    neighbors=neighbors,
                )
            )
        return hits

    # ------------------------------------------------------------------
    # Want-to-read shelf
    # ------------------------------------------------------------------

    async def fetch_want_to_read(self) -> List[Dict[str, Any]]:
        last_error: Optional[UpstreamError] = None
        answered = False
        for variant in WANT_QUERY_VARIANTS:
            try:
                data = await self.execute(variant.query)
            except RateLimitedError:
                raise
            except UpstreamError as exc:
                logger.info(f"Want-to-read variant {variant.name} rejected: {exc}")
                last_error = exc
                continue
            answered = True
            books = self._want_books(data, variant.field)
            if books:
                return books
        if not answered and last_error is not None:
            raise last_error
        return []

    @staticmethod
    def _want_books(data: Dict[str, Any], field: str) -> List[Dict[str, Any]]:
        me = data.get("me")
        users = me if isinstance(me, list) else [me]
        books: List[Dict[str, Any]] = []
        for user in users:
            if not isinstance(user, dict):
                continue
            for row in user.get(field) or []:
                book = row.get("book") if isinstance(row, dict) else None
                if isinstance(book, dict):
                    books.append(with_source(book))
        return books

    # ------------------------------------------------------------------
    # Bookshelf maintenance
    # ------------------------------------------------------------------

    async def search_isbn(self, isbn: str) -> List[Dict[str, Any]]:
        clean = normalize_isbn(isbn)
        if not clean:
            return []
        data = await self.execute(SEARCH_ISBN, {"query": clean})
        search = data.get("search")
        results = search.get("results") if isinstance(search, dict) else None
        if isinstance(results, str):
            try:
                results = json.loads(results)
            except ValueError as exc:
                raise MalformedResponseError("search results are not valid JSON") from exc
        if not isinstance(results, dict):
            return []
        docs = []
        for hit in results.get("hits") or []:
            doc = hit.get("document") if isinstance(hit, dict) else None
            if isinstance(doc, dict):
                docs.append(doc)
        return docs

    async def add_book_to_list(self, book_id: int, list_id: int) -> Optional[str]:
        data = await self.execute(ADD_BOOK_TO_LIST, {"bookId": int(book_id), "listId": int(list_id)})
        inserted = data.get("insert_list_book")
        return as_text(inserted.get("id")) if isinstance(inserted, dict) else None

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

