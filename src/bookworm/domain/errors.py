# src/bookworm/domain/errors.py
"""
Error taxonomy shared by the crawler, the sync services and the API layer.

"Not matched" is deliberately absent: a catalog entry without a Hardcover
counterpart is an expected outcome and is reported through
``CrawlStatus.NOT_MATCHED``.
"""

from __future__ import annotations

from typing import Optional


class BookwormError(Exception):
    """Base class for domain errors."""


class NotConfiguredError(BookwormError):
    """A required setting (credential, path, list id) is missing."""

    def __init__(self, message: str, *, setting: Optional[str] = None):
        super().__init__(message)
        self.setting = setting


class CatalogUnavailableError(BookwormError):
    """The external catalog file is missing or cannot be read."""


class UpstreamError(BookwormError):
    """Non-2xx status or unusable payload from an external service."""

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class MalformedResponseError(UpstreamError):
    """The external service answered 2xx with a body we cannot interpret."""


class RateLimitedError(UpstreamError):
    """The external service throttled us (HTTP 429 or a throttle message)."""

    def __init__(self, message: str = "Rate limited", *, retry_after: Optional[float] = None):
        super().__init__(message, status=429)
        self.retry_after = retry_after


class StorageError(BookwormError):
    """Local persistence failed; the single operation is aborted."""
