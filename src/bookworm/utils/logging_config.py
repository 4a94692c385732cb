# src/bookworm/utils/logging_config.py
"""
File logging for Bookworm's long-running work (crawls, syncs, scheduled jobs).

Usage:
    from bookworm.utils.logging_config import Logger, LogFiles

    Logger.info("Crawl started", file=LogFiles.CRAWL)
    Logger.error("Calibre sync failed", file=LogFiles.ERROR)

Each named file gets its own rotating handler. Every line carries the trace id
of the current context so one crawl or one scheduled run can be followed
across files.

Configuration via environment variables:
    BOOKWORM_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
    BOOKWORM_LOG_DIR: Base directory for log files (default: logs/)
    BOOKWORM_LOG_MAX_BYTES: Max size per log file in bytes (default: 5MB)
    BOOKWORM_LOG_BACKUP_COUNT: Number of rotated files to keep (default: 3)
"""

from __future__ import annotations

import logging
import os
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Iterator, Optional

import yaml

_trace_id_var: ContextVar[Optional[str]] = ContextVar("bookworm_trace_id", default=None)

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_FILE = "bookworm.log"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 3
LINE_FORMAT = "%(asctime)s [%(levelname)s] [%(trace_id)s] %(caller)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_CONFIG_FILE = Path(__file__).parent / "log_config.yaml"

_DEFAULT_FILES = {
    "crawl": "crawl/crawl.log",
    "sync": "sync/sync.log",
    "scheduler": "scheduler/scheduler.log",
    "api": "api/api.log",
    "error": "errors/error.log",
}


class _LogFilesMeta(type):
    """Allows ``LogFiles.CRAWL`` style access to names from log_config.yaml."""

    def __getattr__(cls, name: str) -> str:
        files = cls._files_map()
        key = name.lower()
        if key in files:
            return files[key]
        raise AttributeError(f"Log file '{name}' not found in config")


class LogFiles(metaclass=_LogFilesMeta):
    """
    Named log files, loaded once from ``log_config.yaml``.

    To add a file, add an entry under ``files:`` and reference it as
    ``LogFiles.<NAME>``.
    """

    _files: Optional[Dict[str, str]] = None

    @classmethod
    def _files_map(cls) -> Dict[str, str]:
        if cls._files is None:
            files = dict(_DEFAULT_FILES)
            if LOG_CONFIG_FILE.exists():
                with open(LOG_CONFIG_FILE, "r", encoding="utf-8") as f:
                    config = yaml.safe_load(f) or {}
                files.update({str(k).lower(): str(v) for k, v in (config.get("files") or {}).items()})
            cls._files = files
        return cls._files

    @classmethod
    def get(cls, name: str) -> str:
        return cls._files_map().get(name.lower(), f"{name}/{name}.log")


class _TraceFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = _trace_id_var.get() or "-"
        if not hasattr(record, "caller"):
            record.caller = f"{record.filename}:{record.lineno}"
        return True


_settings: Dict[str, object] = {}
_file_loggers: Dict[str, logging.Logger] = {}


def _read_env() -> Dict[str, object]:
    return {
        "level": os.environ.get("BOOKWORM_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        "base_dir": os.environ.get("BOOKWORM_LOG_DIR", DEFAULT_LOG_DIR),
        "max_bytes": int(os.environ.get("BOOKWORM_LOG_MAX_BYTES", DEFAULT_MAX_BYTES)),
        "backup_count": int(os.environ.get("BOOKWORM_LOG_BACKUP_COUNT", DEFAULT_BACKUP_COUNT)),
    }


def _resolve_path(file: Optional[str]) -> Path:
    base_dir = Path(str(_settings.get("base_dir", DEFAULT_LOG_DIR)))
    return base_dir / (file or DEFAULT_LOG_FILE)


def _file_logger(file: Optional[str]) -> logging.Logger:
    path = _resolve_path(file)
    key = str(path)
    logger = _file_loggers.get(key)
    if logger is not None:
        return logger

    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=key,
        maxBytes=int(_settings.get("max_bytes", DEFAULT_MAX_BYTES)),
        backupCount=int(_settings.get("backup_count", DEFAULT_BACKUP_COUNT)),
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LINE_FORMAT, DATE_FORMAT))
    handler.addFilter(_TraceFilter())

    logger = logging.getLogger(f"bookworm.files.{key}")
    logger.setLevel(str(_settings.get("level", DEFAULT_LOG_LEVEL)))
    logger.propagate = False
    logger.addHandler(handler)
    _file_loggers[key] = logger
    return logger


class Logger:
    """
    Static facade over the per-file loggers.

        Logger.init(base_dir="/var/log/bookworm")   # optional
        Logger.info("Synced 120 books", file=LogFiles.SYNC)
    """

    @staticmethod
    def init(
        level: Optional[str] = None,
        base_dir: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        if _settings:
            return
        _settings.update(_read_env())
        if level:
            _settings["level"] = level.upper()
        if base_dir:
            _settings["base_dir"] = base_dir
        if max_bytes:
            _settings["max_bytes"] = max_bytes
        if backup_count:
            _settings["backup_count"] = backup_count

    @staticmethod
    def _log(level: int, message: str, file: Optional[str], exc_info: bool = False) -> None:
        Logger.init()
        # stacklevel 3: skip _log and the public wrapper
        _file_logger(file).log(level, message, exc_info=exc_info, stacklevel=3)

    @staticmethod
    def debug(message: str, file: Optional[str] = None) -> None:
        Logger._log(logging.DEBUG, message, file)

    @staticmethod
    def info(message: str, file: Optional[str] = None) -> None:
        Logger._log(logging.INFO, message, file)

    @staticmethod
    def warning(message: str, file: Optional[str] = None) -> None:
        Logger._log(logging.WARNING, message, file)

    @staticmethod
    def error(message: str, file: Optional[str] = None) -> None:
        Logger._log(logging.ERROR, message, file)

    @staticmethod
    def exception(message: str, file: Optional[str] = None) -> None:
        Logger._log(logging.ERROR, message, file, exc_info=True)

    @staticmethod
    def close() -> None:
        for logger in _file_loggers.values():
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
        _file_loggers.clear()
        _settings.clear()


# ============================================================================
# Trace ID Management
# ============================================================================


def generate_trace_id(prefix: str = "req") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def set_trace_id(trace_id: Optional[str] = None) -> str:
    """Set (or generate) the trace id for the current context and return it."""
    tid = trace_id or generate_trace_id()
    _trace_id_var.set(tid)
    return tid


def get_trace_id() -> Optional[str]:
    return _trace_id_var.get()


def clear_trace_id() -> None:
    _trace_id_var.set(None)


@contextmanager
def trace_scope(prefix: str = "job") -> Iterator[str]:
    """Run a block under a fresh trace id, restoring the previous one afterwards."""
    token = _trace_id_var.set(generate_trace_id(prefix))
    try:
        yield _trace_id_var.get() or ""
    finally:
        _trace_id_var.reset(token)
