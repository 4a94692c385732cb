from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import delete, select, update

from bookworm.domain.book_payload import book_fingerprint, book_key
from bookworm.domain.crawl import ListReason, RecommendationCandidate
from bookworm.domain.suggestion import HiddenState, SuggestedEntry
from bookworm.infrastructure.stores.models import Base, SuggestedModel
from bookworm.infrastructure.stores.sqlalchemy_db import SessionProvider


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_key(key: Optional[str]) -> Optional[str]:
    if key is None:
        return None
    folded = str(key).strip().casefold()
    return folded or None


def _to_entry(row: SuggestedModel) -> SuggestedEntry:
    return SuggestedEntry(
        id=int(row.id),
        hardcover_key=row.hardcover_key,
        book=row.get_book(),
        base_genres=row.get_base_genres(),
        reasons=[ListReason.from_dict(r) for r in row.get_reasons() if isinstance(r, dict)],
        hidden=int(row.hidden or 0),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


class SuggestedStore:
    """
    Every recommendation ever discovered, first discovery wins.

    Inserts are add-if-absent on the (trimmed, case-insensitive) source key;
    payloads without a key are deduplicated on their content fingerprint.
    """

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self._provider = SessionProvider(db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    def upsert_missing(self, candidates: Iterable[RecommendationCandidate]) -> int:
        """Insert candidates whose key is not stored yet. Existing rows are never touched."""
        now = _utcnow()
        inserted = 0
        with self._provider.session() as session:
            known_keys = set(
                session.execute(
                    select(SuggestedModel.key_normalized).where(
                        SuggestedModel.key_normalized.is_not(None)
                    )
                )
                .scalars()
                .all()
            )
            known_prints = set(
                session.execute(select(SuggestedModel.book_fingerprint)).scalars().all()
            )

            for candidate in candidates:
                raw_key = candidate.key or book_key(candidate.book)
                key = _normalize_key(raw_key)
                fingerprint = book_fingerprint(candidate.book)
                if (key and key in known_keys) or fingerprint in known_prints:
                    continue

                session.add(
                    SuggestedModel(
                        hardcover_key=str(raw_key).strip() if raw_key else None,
                        key_normalized=key,
                        book_fingerprint=fingerprint,
                        book_json=json.dumps(candidate.book or {}, ensure_ascii=False),
                        base_genres_json=json.dumps(list(candidate.base_genres), ensure_ascii=False),
                        reasons_json=json.dumps(
                            [r.to_dict() for r in candidate.reasons], ensure_ascii=False
                        ),
                        hidden=int(HiddenState.VISIBLE),
                        created_at=now,
                        updated_at=now,
                    )
                )
                if key:
                    known_keys.add(key)
                known_prints.add(fingerprint)
                inserted += 1
            session.commit()
        return inserted

    def get_all(self) -> List[SuggestedEntry]:
        """Visible suggestions only."""
        return self.get_by_hidden(HiddenState.VISIBLE)

    def get_by_hidden(self, hidden: int) -> List[SuggestedEntry]:
        stmt = (
            select(SuggestedModel)
            .where(SuggestedModel.hidden == int(hidden))
            .order_by(SuggestedModel.id)
        )
        with self._provider.session() as session:
            return [_to_entry(r) for r in session.execute(stmt).scalars().all()]

    def list_everything(self) -> List[SuggestedEntry]:
        with self._provider.session() as session:
            rows = session.execute(select(SuggestedModel).order_by(SuggestedModel.id)).scalars().all()
            return [_to_entry(r) for r in rows]

    def get(self, suggested_id: int) -> Optional[SuggestedEntry]:
        with self._provider.session() as session:
            row = session.get(SuggestedModel, int(suggested_id))
            return _to_entry(row) if row else None

    def hide(self, ids: Sequence[int], hidden_value: int = HiddenState.HIDDEN) -> int:
        valid = sorted({int(i) for i in ids or [] if int(i) > 0})
        if not valid:
            raise ValueError("No valid ids provided.")
        value = int(hidden_value) if int(hidden_value) > 0 else int(HiddenState.HIDDEN)
        with self._provider.session() as session:
            result = session.execute(
                update(SuggestedModel)
                .where(SuggestedModel.id.in_(valid))
                .values(hidden=value, updated_at=_utcnow())
            )
            session.commit()
            return int(result.rowcount or 0)

    def delete_by_ids(self, ids: Sequence[int]) -> int:
        valid = sorted({int(i) for i in ids or [] if int(i) > 0})
        if not valid:
            return 0
        with self._provider.session() as session:
            result = session.execute(delete(SuggestedModel).where(SuggestedModel.id.in_(valid)))
            session.commit()
            return int(result.rowcount or 0)

    def count(self) -> int:
        with self._provider.session() as session:
            return len(session.execute(select(SuggestedModel.id)).scalars().all())
