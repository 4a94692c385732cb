# src/bookworm/domain/suggestion.py
"""Suggested-book domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, List, Optional

from bookworm.domain.crawl import ListReason


class HiddenState(IntEnum):
    VISIBLE = 0
    HIDDEN = 1
    IGNORED = 2


@dataclass
class SuggestedEntry:
    """A durably stored recommendation; reasons and genres are fixed at first discovery."""

    id: int
    hardcover_key: Optional[str]
    book: Dict[str, Any]
    base_genres: List[str] = field(default_factory=list)
    reasons: List[ListReason] = field(default_factory=list)
    hidden: int = HiddenState.VISIBLE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceKey": self.hardcover_key,
            "book": self.book,
            "baseGenres": list(self.base_genres),
            "reasons": [r.to_dict() for r in self.reasons],
            "hidden": int(self.hidden),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class RankedSuggestion:
    entry: SuggestedEntry
    match_score: int
    author_matches: int
    genre_matches: int
    tag_matches: int
    title_bonus_words: int
    matched_authors: List[str] = field(default_factory=list)
    matched_genre_words: List[str] = field(default_factory=list)
    matched_tag_words: List[str] = field(default_factory=list)
    bonus_words: List[str] = field(default_factory=list)
    already_in_calibre: bool = False
    matched_calibre_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = self.entry.to_dict()
        payload.update(
            {
                "suggestedId": self.entry.id,
                "matchScore": self.match_score,
                "authorMatches": self.author_matches,
                "genreMatches": self.genre_matches,
                "tagMatches": self.tag_matches,
                "titleBonusWords": self.title_bonus_words,
                "matchedAuthors": list(self.matched_authors),
                "matchedGenreWords": list(self.matched_genre_words),
                "matchedTagWords": list(self.matched_tag_words),
                "bonusWords": list(self.bonus_words),
                "alreadyInCalibre": self.already_in_calibre,
                "calibreId": self.matched_calibre_id,
            }
        )
        return payload
