"""
Recommendation aggregator.

Folds per-entry crawl output (live or cached) into one map keyed by the
stable recommendation key. Occurrence counts are summed and reasons are
concatenated in discovery order; keys compare case-insensitively.
"""

from __future__ import annotations

from typing import Dict, Iterable, List

from bookworm.domain.book_payload import book_genres
from bookworm.domain.crawl import RecommendationCandidate


class RecommendationAggregator:
    def __init__(self) -> None:
        self._candidates: Dict[str, RecommendationCandidate] = {}

    def add(self, candidates: Iterable[RecommendationCandidate]) -> int:
        """Merge a batch; returns the number of occurrences it contributed."""
        added = 0
        for candidate in candidates:
            key = (candidate.key or "").strip()
            if not key or candidate.count <= 0:
                continue
            folded = key.casefold()
            merged = self._candidates.get(folded)
            if merged is None:
                merged = RecommendationCandidate(
                    key=key,
                    book=candidate.book,
                    base_genres=list(candidate.base_genres) or book_genres(candidate.book),
                )
                self._candidates[folded] = merged
            merged.count += candidate.count
            merged.reasons.extend(candidate.reasons)
            added += candidate.count
        return added

    def results(self) -> List[RecommendationCandidate]:
        """Occurrence count descending; ties keep first-encounter order."""
        return sorted(self._candidates.values(), key=lambda c: -c.count)

    def __len__(self) -> int:
        return len(self._candidates)
