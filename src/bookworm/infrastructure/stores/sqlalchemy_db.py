from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Dict, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

_engines: Dict[str, Engine] = {}
_engines_lock = Lock()


def get_db_url() -> str:
    """Database URL from the active settings (``BOOKWORM_DB_URL``)."""
    from bookworm.config import get_settings

    return get_settings().db_url


def _ensure_sqlite_dir(db_url: str) -> None:
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return
    database = url.database or ""
    if database and database != ":memory:":
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def _enable_sqlite_pragmas(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def get_engine(db_url: str) -> Engine:
    """One engine per URL for the whole process."""
    with _engines_lock:
        engine = _engines.get(db_url)
        if engine is None:
            _ensure_sqlite_dir(db_url)
            connect_args = {}
            if db_url.startswith("sqlite"):
                connect_args["check_same_thread"] = False
            engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
            if db_url.startswith("sqlite") and ":memory:" not in db_url:
                event.listen(engine, "connect", _enable_sqlite_pragmas)
            _engines[db_url] = engine
        return engine


class SessionProvider:
    """Hands out SQLAlchemy sessions bound to a shared engine."""

    def __init__(self, db_url: Optional[str] = None):
        self.db_url = db_url or get_db_url()
        self.engine = get_engine(self.db_url)
        self._factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def session(self) -> Session:
        return self._factory()

    def dispose(self) -> None:
        with _engines_lock:
            engine = _engines.pop(self.db_url, None)
        if engine is not None:
            engine.dispose()
