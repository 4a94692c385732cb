# src/bookworm/application/services/suggested_ranking_service.py
"""
Suggested ranking service.

Scores stored suggestions against the owned catalog with a weighted sum of
signal overlaps:

    match_score = 8 * author_matches
                + 4 * genre_matches
                + 2 * tag_matches
                + 1 * title_bonus_words      (capped at 3)

``rank`` is pure: it never touches a store. Removing suggestions that turn
out to be owned (ISBN overlap) is left to ``remove_owned`` which callers
invoke once per ranking pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from bookworm.domain.book_payload import (
    book_authors,
    book_genres,
    book_isbns,
    book_tags,
    book_title,
    genre_words,
    normalize_isbn,
    title_keywords,
)
from bookworm.domain.catalog import CatalogEntry
from bookworm.domain.suggestion import RankedSuggestion, SuggestedEntry

logger = logging.getLogger(__name__)

AUTHOR_WEIGHT = 8
GENRE_WEIGHT = 4
TAG_WEIGHT = 2
TITLE_BONUS_WEIGHT = 1
MAX_TITLE_BONUS_WORDS = 3


@dataclass
class CatalogProfile:
    """Signals extracted once from the owned catalog."""

    authors: Dict[str, str] = field(default_factory=dict)
    tag_words: set[str] = field(default_factory=set)
    genre_words: set[str] = field(default_factory=set)
    title_words: set[str] = field(default_factory=set)
    isbn_to_id: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        catalog: Sequence[CatalogEntry],
        cache_genres: Iterable[Sequence[str]] = (),
    ) -> "CatalogProfile":
        profile = cls()
        # Lowest catalog id wins an ISBN shared by several entries
        for entry in sorted(catalog, key=lambda e: e.id):
            for author in entry.authors:
                name = (author or "").strip()
                if name:
                    profile.authors.setdefault(name.casefold(), name)
            profile.tag_words.update(genre_words(entry.tags))
            profile.title_words.update(title_keywords(entry.title))
            for isbn in entry.normalized_isbns():
                profile.isbn_to_id.setdefault(isbn, entry.id)
        for genres in cache_genres:
            profile.genre_words.update(genre_words(genres or []))
        return profile


def _owned_match(isbns: Iterable[str], profile: CatalogProfile) -> Optional[int]:
    for isbn in isbns:
        calibre_id = profile.isbn_to_id.get(normalize_isbn(isbn))
        if calibre_id is not None:
            return calibre_id
    return None


def score_entry(entry: SuggestedEntry, profile: CatalogProfile) -> RankedSuggestion:
    book = entry.book or {}

    matched_authors: List[str] = []
    seen = set()
    for author in book_authors(book):
        folded = author.strip().casefold()
        if folded in profile.authors and folded not in seen:
            seen.add(folded)
            matched_authors.append(profile.authors[folded])

    suggestion_genres = genre_words([*book_genres(book), *entry.base_genres])
    matched_genres = sorted(suggestion_genres & profile.genre_words)

    list_names = [r.list_name for r in entry.reasons if r.list_name]
    suggestion_tags = genre_words([*book_tags(book), *list_names])
    matched_tags = sorted(suggestion_tags & profile.tag_words)

    bonus = sorted(set(title_keywords(book_title(book))) & profile.title_words)
    bonus = bonus[:MAX_TITLE_BONUS_WORDS]

    calibre_id = _owned_match(book_isbns(book), profile)

    score = (
        AUTHOR_WEIGHT * len(matched_authors)
        + GENRE_WEIGHT * len(matched_genres)
        + TAG_WEIGHT * len(matched_tags)
        + TITLE_BONUS_WEIGHT * len(bonus)
    )
    return RankedSuggestion(
        entry=entry,
        match_score=score,
        author_matches=len(matched_authors),
        genre_matches=len(matched_genres),
        tag_matches=len(matched_tags),
        title_bonus_words=len(bonus),
        matched_authors=matched_authors,
        matched_genre_words=matched_genres,
        matched_tag_words=matched_tags,
        bonus_words=bonus,
        already_in_calibre=calibre_id is not None,
        matched_calibre_id=calibre_id,
    )


def _sort_key(item: RankedSuggestion) -> Tuple[int, int, int, int, int, int]:
    return (
        -item.match_score,
        1 if item.already_in_calibre else 0,
        -item.author_matches,
        -item.genre_matches,
        -item.tag_matches,
        item.entry.id,
    )


class SuggestedRankingService:
    """Deterministic ranking of suggestions; identical inputs give identical output."""

    def rank(
        self,
        suggestions: Sequence[SuggestedEntry],
        catalog: Sequence[CatalogEntry],
        cache_genres: Iterable[Sequence[str]] = (),
    ) -> List[RankedSuggestion]:
        profile = CatalogProfile.build(catalog, cache_genres)
        ranked = [score_entry(entry, profile) for entry in suggestions]
        ranked.sort(key=_sort_key)
        return ranked

    @staticmethod
    def owned_ids(ranked: Iterable[RankedSuggestion]) -> List[int]:
        return sorted({r.entry.id for r in ranked if r.already_in_calibre})

    def remove_owned(self, ranked: Sequence[RankedSuggestion], store) -> Tuple[List[RankedSuggestion], int]:
        """Delete owned suggestions from ``store``; returns the survivors and the delete count."""
        owned = self.owned_ids(ranked)
        if not owned:
            return list(ranked), 0
        removed = store.delete_by_ids(owned)
        logger.info(f"Removed {removed} suggestion(s) already in the catalog")
        owned_set = set(owned)
        return [r for r in ranked if r.entry.id not in owned_set], removed
