# src/bookworm/domain/book_payload.py
"""
Tolerant extraction over loosely-typed Hardcover book payloads.

Hardcover returns the same concept under different shapes depending on the
query and the age of the record (``cached_contributors`` vs
``contributions``, ``cached_tags`` as an object, an array or a JSON
string...). Every lookup here is driven by an ordered table of candidate
property paths evaluated against a plain JSON tree. ``"*"`` in a path fans
out over list items.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

PropertyPath = Tuple[str, ...]

# First path with a usable value wins.
KEY_RULE: Tuple[PropertyPath, ...] = (("id",), ("slug",), ("title",))
TITLE_RULE: Tuple[PropertyPath, ...] = (("title",), ("name",))
RATING_RULE: Tuple[PropertyPath, ...] = (("rating",), ("average_rating",))
COVER_RULE: Tuple[PropertyPath, ...] = (("image", "url"), ("cover_url",), ("image_url",))

# First path yielding at least one value wins.
AUTHOR_RULES: Tuple[PropertyPath, ...] = (
    ("cached_contributors", "*", "name"),
    ("cached_contributors", "*", "author", "name"),
    ("contributions", "*", "author", "name"),
    ("authors", "*"),
    ("author_names", "*"),
)

# Every path contributes.
ISBN_RULES: Tuple[PropertyPath, ...] = (
    ("default_physical_edition", "isbn_13"),
    ("default_physical_edition", "isbn_10"),
    ("default_ebook_edition", "isbn_13"),
    ("default_ebook_edition", "isbn_10"),
    ("isbn13",),
    ("isbn_13",),
    ("isbn10",),
    ("isbn_10",),
    ("isbns", "*"),
)

GENRE_KEYS: Tuple[str, ...] = ("Genre", "Genres", "genre", "genres")
TAG_NAME_RULE: Tuple[PropertyPath, ...] = (
    ("name",),
    ("label",),
    ("tag",),
    ("tagSlug",),
    ("genre", "name"),
    ("base_genre", "name"),
)

STOPWORDS = frozenset({"the", "in", "for", "and", "it", "an"})
MIN_KEYWORD_LENGTH = 4

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)


def _walk(node: Any, path: Sequence[str]) -> Iterator[Any]:
    if not path:
        yield node
        return
    head, rest = path[0], path[1:]
    if head == "*":
        if isinstance(node, list):
            for item in node:
                yield from _walk(item, rest)
        return
    if isinstance(node, dict) and head in node:
        yield from _walk(node[head], rest)


def as_text(value: Any) -> Optional[str]:
    """Render a scalar JSON value as trimmed text, or None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return None


def first_text(node: Any, rule: Iterable[PropertyPath]) -> Optional[str]:
    for path in rule:
        for value in _walk(node, path):
            text = as_text(value)
            if text:
                return text
    return None


def first_values(node: Any, rules: Iterable[PropertyPath]) -> List[str]:
    for path in rules:
        values = [t for t in (as_text(v) for v in _walk(node, path)) if t]
        if values:
            return _dedupe(values)
    return []


def all_values(node: Any, rules: Iterable[PropertyPath]) -> List[str]:
    values: List[str] = []
    for path in rules:
        values.extend(t for t in (as_text(v) for v in _walk(node, path)) if t)
    return _dedupe(values)


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for value in values:
        folded = value.casefold()
        if folded in seen:
            continue
        seen.add(folded)
        out.append(value)
    return out


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def normalize_isbn(raw: Optional[str]) -> str:
    """Keep letters and digits only, upper-cased (so ``x`` check digits compare)."""
    if not raw:
        return ""
    return "".join(ch for ch in str(raw) if ch.isalnum()).upper()


def normalize_title(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return " ".join(_WORD_RE.findall(str(raw).lower()))


def title_keywords(title: Optional[str], *, min_length: int = MIN_KEYWORD_LENGTH) -> List[str]:
    """Significant words of a title, lower-cased, in order of first appearance."""
    if not title:
        return []
    words = [
        w
        for w in _WORD_RE.findall(str(title).lower())
        if len(w) >= min_length and w not in STOPWORDS
    ]
    return _dedupe(words)


def genre_words(genres: Iterable[str]) -> set[str]:
    words: set[str] = set()
    for genre in genres:
        words.update(title_keywords(genre, min_length=3))
    return words


# ---------------------------------------------------------------------------
# Book accessors
# ---------------------------------------------------------------------------


def book_key(book: Any) -> Optional[str]:
    """Stable aggregation key: Hardcover id, else slug, else title."""
    return first_text(book, KEY_RULE)


def book_title(book: Any) -> Optional[str]:
    return first_text(book, TITLE_RULE)


def book_authors(book: Any) -> List[str]:
    return first_values(book, AUTHOR_RULES)


def book_isbns(book: Any) -> List[str]:
    return _dedupe(n for n in (normalize_isbn(v) for v in all_values(book, ISBN_RULES)) if n)


def book_cover_url(book: Any) -> Optional[str]:
    return first_text(book, COVER_RULE)


def book_rating(book: Any) -> Optional[float]:
    for path in RATING_RULE:
        for value in _walk(book, path):
            if isinstance(value, bool):
                continue
            if isinstance(value, (int, float)):
                return float(value)
            if isinstance(value, str):
                try:
                    return float(value)
                except ValueError:
                    continue
    return None


def with_source(book: Dict[str, Any], source: str = "hardcover") -> Dict[str, Any]:
    out = dict(book or {})
    out["source"] = source
    return out


def book_fingerprint(book: Any) -> str:
    """Content hash of a payload, independent of key order."""
    canonical = json.dumps(book, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# cached_tags
# ---------------------------------------------------------------------------


class _OrderedNames:
    def __init__(self) -> None:
        self.values: List[str] = []
        self._seen: set[str] = set()

    def add(self, name: Optional[str]) -> None:
        text = as_text(name)
        if not text:
            return
        folded = text.casefold()
        if folded in self._seen:
            return
        self._seen.add(folded)
        self.values.append(text)

    def add_array(self, node: Any) -> None:
        if not isinstance(node, list):
            return
        for item in node:
            if isinstance(item, str):
                self.add(item)
            elif isinstance(item, dict):
                self.add(first_text(item, TAG_NAME_RULE))


def _parse_json_text(raw: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(raw)
    except ValueError:
        return False, None


def extract_genres(cached_tags: Any) -> List[str]:
    """
    Genre names from a ``cached_tags`` value of any observed shape.

    Objects prefer the ``Genre``/``genres`` style keys and only fall back to
    every category when none of those yields a name.
    """
    names = _OrderedNames()
    if isinstance(cached_tags, str):
        ok, parsed = _parse_json_text(cached_tags)
        if ok and not isinstance(parsed, str):
            return extract_genres(parsed)
        names.add(cached_tags)
        return names.values

    if isinstance(cached_tags, list):
        names.add_array(cached_tags)
        return names.values

    if isinstance(cached_tags, dict):
        for key in GENRE_KEYS:
            if key not in cached_tags:
                continue
            node = cached_tags[key]
            if isinstance(node, str):
                names.add(node)
                return names.values
            names.add_array(node)
            if names.values:
                return names.values
        for value in cached_tags.values():
            names.add_array(value)
            if isinstance(value, str):
                names.add(value)
    return names.values


def extract_tag_names(cached_tags: Any) -> List[str]:
    """Every tag name across all ``cached_tags`` categories (genre, mood...)."""
    if isinstance(cached_tags, str):
        ok, parsed = _parse_json_text(cached_tags)
        if ok and not isinstance(parsed, str):
            return extract_tag_names(parsed)
        return extract_genres(cached_tags)
    if isinstance(cached_tags, dict):
        names = _OrderedNames()
        for value in cached_tags.values():
            names.add_array(value)
            if isinstance(value, str):
                names.add(value)
        return names.values
    return extract_genres(cached_tags)


def book_genres(book: Any) -> List[str]:
    if not isinstance(book, dict):
        return []
    return extract_genres(book.get("cached_tags"))


def book_tags(book: Any) -> List[str]:
    if not isinstance(book, dict):
        return []
    return extract_tag_names(book.get("cached_tags"))


def document_title_matches(document: Any, title: Optional[str]) -> bool:
    """A search document's title, or any alternative title, equals ``title`` once normalised."""
    wanted = normalize_title(title)
    if not wanted or not isinstance(document, dict):
        return False
    candidates = [document.get("title")]
    alternatives = document.get("alternative_titles")
    if isinstance(alternatives, list):
        candidates.extend(alternatives)
    return any(normalize_title(as_text(c)) == wanted for c in candidates)
