"""
Server-Sent Events for the crawl stream.

Frames are named (``event: step``, ``event: summary``, ``event: error``) and
end with ``event: done`` / ``data: [DONE]``. Each JSON body carries an
envelope stamped per stream: workflow, run_id, trace_id, seq, phase, event
and ts. ``seq`` counts frames from 1 within one stream.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncGenerator, Dict, Optional
from uuid import uuid4

from bookworm.utils.logging_config import LogFiles, Logger

DONE_FRAME = "event: done\ndata: [DONE]\n\n"


class StandardEvent(str, Enum):
    STATUS = "status"
    STEP = "step"
    SUMMARY = "summary"
    ERROR = "error"
    DONE = "done"

    @classmethod
    def for_type(cls, event_type: Optional[str]) -> "StandardEvent":
        kind = (event_type or "").strip().lower()
        if kind in ("error", "failed"):
            return cls.ERROR
        if kind in ("summary", "result"):
            return cls.SUMMARY
        if kind in ("step", "progress"):
            return cls.STEP
        if kind in ("done", "complete"):
            return cls.DONE
        return cls.STATUS


@dataclass
class StreamEvent:
    """One frame before it is stamped and serialised."""

    type: str
    event: Optional[str] = None
    data: Any = None
    message: Optional[str] = None
    envelope: Optional[Dict[str, Any]] = None

    @property
    def name(self) -> str:
        return self.event or StandardEvent.for_type(self.type).value

    def to_sse(self) -> str:
        body = json.dumps(
            {
                "type": self.type,
                "event": self.name,
                "data": self.data,
                "message": self.message,
                "envelope": self.envelope,
            },
            default=str,
        )
        return f"event: {self.name}\ndata: {body}\n\n"


def sse_done() -> str:
    return DONE_FRAME


@dataclass
class EnvelopeStamper:
    """Numbers the frames of one stream and attaches its identifiers."""

    workflow: str
    run_id: str = field(default_factory=lambda: f"run_{uuid4().hex[:12]}")
    trace_id: str = field(default_factory=lambda: f"trace_{uuid4().hex[:12]}")
    seq: int = 0

    def stamp(self, event: StreamEvent) -> StreamEvent:
        self.seq += 1
        if event.envelope is not None:
            event.envelope.setdefault("event", event.name)
            return event
        phase = event.data.get("phase") if isinstance(event.data, dict) else None
        event.envelope = {
            "workflow": self.workflow or "unknown",
            "run_id": self.run_id,
            "trace_id": self.trace_id,
            "seq": self.seq,
            "phase": phase,
            "event": event.name,
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        return event


async def wrap_generator(
    generator: AsyncGenerator[StreamEvent, None],
    *,
    workflow: str = "",
    run_id: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> AsyncGenerator[str, None]:
    """Serialise a StreamEvent generator; an escaping exception becomes an ``error`` frame."""
    stamper = EnvelopeStamper(workflow=workflow)
    if run_id:
        stamper.run_id = run_id
    if trace_id:
        stamper.trace_id = trace_id

    try:
        async for event in generator:
            yield stamper.stamp(event).to_sse()
    except Exception as exc:
        Logger.error(f"Stream {stamper.run_id} aborted: {exc}", file=LogFiles.API)
        yield stamper.stamp(StreamEvent(type="error", message=str(exc))).to_sse()
    finally:
        await generator.aclose()
    yield sse_done()
