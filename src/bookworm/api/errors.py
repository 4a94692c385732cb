"""Mapping from domain errors to HTTP errors for the route modules."""

from __future__ import annotations

from fastapi import HTTPException

from bookworm.domain.errors import (
    CatalogUnavailableError,
    NotConfiguredError,
    RateLimitedError,
    StorageError,
    UpstreamError,
)


def to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, NotConfiguredError):
        detail = {"error": str(exc), "setting": exc.setting}
        return HTTPException(status_code=400, detail=detail)
    if isinstance(exc, CatalogUnavailableError):
        return HTTPException(status_code=400, detail={"error": str(exc)})
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(int(exc.retry_after))} if exc.retry_after else None
        return HTTPException(
            status_code=429,
            detail={"error": "Hardcover rate limit reached. Try again later."},
            headers=headers,
        )
    if isinstance(exc, UpstreamError):
        return HTTPException(status_code=502, detail={"error": str(exc), "status": exc.status})
    if isinstance(exc, StorageError):
        return HTTPException(status_code=500, detail={"error": str(exc)})
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail={"error": str(exc)})
    return HTTPException(status_code=500, detail={"error": str(exc)})
