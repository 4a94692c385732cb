from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy import select

from bookworm.infrastructure.stores.models import Base, UserSettingModel
from bookworm.infrastructure.stores.sqlalchemy_db import SessionProvider
from bookworm.utils.secret import decrypt, encrypt

CALIBRE_DB_PATH = "calibre_db_path"
HARDCOVER_LIST_ID = "hardcover_list_id"
HARDCOVER_API_KEY = "hardcover_api_key"

_ENCRYPTED_KEYS = {HARDCOVER_API_KEY}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_calibre_path(raw: Optional[str]) -> Optional[str]:
    if not raw or not raw.strip():
        return None
    return str(Path(raw.strip()).expanduser().resolve())


class UserSettingsStore:
    """Values saved from the settings API; they take precedence over the environment."""

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self._provider = SessionProvider(db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    def load(self) -> Dict[str, str]:
        with self._provider.session() as session:
            rows = session.execute(select(UserSettingModel)).scalars().all()
        out: Dict[str, str] = {}
        for row in rows:
            if not row.value:
                continue
            out[row.key] = decrypt(row.value) if row.key in _ENCRYPTED_KEYS else row.value
        return out

    def get(self, key: str) -> Optional[str]:
        return self.load().get(key)

    def set(self, key: str, value: Optional[str]) -> None:
        stored = value.strip() if value else None
        if stored and key in _ENCRYPTED_KEYS:
            stored = encrypt(stored)
        with self._provider.session() as session:
            row = session.get(UserSettingModel, key)
            if row is None:
                row = UserSettingModel(key=key)
                session.add(row)
            row.value = stored or None
            row.updated_at = _utcnow()
            session.commit()

    def set_calibre_path(self, path: Optional[str]) -> Optional[str]:
        normalized = normalize_calibre_path(path)
        self.set(CALIBRE_DB_PATH, normalized)
        return normalized

    def set_hardcover_list_id(self, list_id: Optional[str]) -> Optional[str]:
        value = (list_id or "").strip() or None
        self.set(HARDCOVER_LIST_ID, value)
        return value

    def set_hardcover_api_key(self, api_key: Optional[str]) -> bool:
        self.set(HARDCOVER_API_KEY, api_key)
        return bool(api_key and api_key.strip())
