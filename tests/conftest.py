# tests/conftest.py
"""
Pytest configuration and fixtures.
Adds src/ to sys.path so `import bookworm` works without an install.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

# Keep file logs of the test run out of the working tree
os.environ.setdefault("BOOKWORM_LOG_DIR", tempfile.mkdtemp(prefix="bookworm-logs-"))
os.environ.setdefault("BOOKWORM_SECRET_KEY", "bookworm-test-secret")
# Modules that read settings at import time (the arq worker) need a database too
os.environ.setdefault(
    "BOOKWORM_DB_URL",
    f"sqlite:///{Path(tempfile.mkdtemp(prefix='bookworm-db-')) / 'import.db'}",
)


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch):
    """Every test gets its own sqlite file and a fresh settings cache."""
    from bookworm import config

    monkeypatch.setenv("BOOKWORM_DB_URL", f"sqlite:///{tmp_path / 'bookworm.db'}")
    for name in (
        "BOOKWORM_HARDCOVER_API_KEY",
        "BOOKWORM_CALIBRE_DB_PATH",
        "BOOKWORM_HARDCOVER_LIST_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "_settings", None)
    yield
    monkeypatch.setattr(config, "_settings", None)
