# src/bookworm/api/routes/recommendations.py
"""
Recommendation discovery routes.

- GET /recommendations/hardcover/lists         bulk crawl, one JSON summary
- GET /recommendations/hardcover/lists/stream  SSE: one ``step`` per book,
  then ``summary``; ``error`` when the run cannot start

Disconnecting from the stream cancels the crawl; cache rows and suggestions
already written stay.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from bookworm.api.errors import to_http_exception
from bookworm.api.streaming import StreamEvent, wrap_generator
from bookworm.application.workflows.recommendation_discovery import (
    DiscoveryConfig,
    DiscoverySummary,
    RecommendationDiscovery,
)
from bookworm.domain.crawl import CrawlStep
from bookworm.domain.errors import BookwormError
from bookworm.utils.logging_config import LogFiles, Logger, set_trace_id

router = APIRouter()


def _new_discovery() -> RecommendationDiscovery:
    """One workflow per request; it owns (and closes) its Hardcover client."""
    return RecommendationDiscovery()


@router.get("/recommendations/hardcover/lists")
async def discover_bulk(
    take: Optional[int] = Query(None, ge=0),
    lists: Optional[int] = Query(None, alias="listsPerBook"),
    per_list: Optional[int] = Query(None, alias="itemsPerList"),
    min_rating: Optional[float] = Query(None, alias="minRating", ge=0, le=5),
    delay_ms: Optional[int] = Query(None, alias="delayMs"),
):
    trace_id = set_trace_id()
    config = DiscoveryConfig.bulk(
        take=take, lists=lists, per_list=per_list, min_rating=min_rating, delay_ms=delay_ms
    )
    Logger.info(f"Bulk crawl requested: {config}", file=LogFiles.API)
    async with _new_discovery() as discovery:
        try:
            summary = await discovery.run_sync(config)
        except BookwormError as exc:
            raise to_http_exception(exc) from exc
    payload = summary.to_dict()
    payload["traceId"] = trace_id
    return payload


async def discovery_stream(
    request: Request,
    discovery: RecommendationDiscovery,
    config: DiscoveryConfig,
    run_id: str,
):
    """Stream crawl progress; a client disconnect sets the cancel event."""
    cancel = asyncio.Event()
    try:
        async for item in discovery.run(config, cancel=cancel, run_id=run_id):
            if isinstance(item, CrawlStep):
                yield StreamEvent(type="step", data={"phase": "crawl", **item.to_dict()})
                if await request.is_disconnected():
                    Logger.info(f"Client left crawl {run_id}; cancelling", file=LogFiles.API)
                    cancel.set()
            elif isinstance(item, DiscoverySummary):
                yield StreamEvent(type="summary", data={"phase": "done", **item.to_dict()})
    except BookwormError as e:
        yield StreamEvent(type="error", message=str(e), data={"phase": "start"})
    finally:
        cancel.set()
        await discovery.close()


@router.get("/recommendations/hardcover/lists/stream")
async def discover_stream(
    request: Request,
    take: Optional[int] = Query(None, ge=0),
    lists: Optional[int] = Query(None, alias="listsPerBook"),
    per_list: Optional[int] = Query(None, alias="itemsPerList"),
    min_rating: Optional[float] = Query(None, alias="minRating", ge=0, le=5),
    delay_ms: Optional[int] = Query(None, alias="delayMs"),
):
    trace_id = set_trace_id()
    config = DiscoveryConfig.stream(
        take=take, lists=lists, per_list=per_list, min_rating=min_rating, delay_ms=delay_ms
    )
    discovery = _new_discovery()
    run_id = discovery.new_run_id()
    Logger.info(f"Streaming crawl {run_id} requested: {config}", file=LogFiles.API)
    return StreamingResponse(
        wrap_generator(
            discovery_stream(request, discovery, config, run_id),
            workflow="hardcover_lists",
            run_id=run_id,
            trace_id=trace_id,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
