"""ActivityLogPort: user-facing operational log sink."""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class ActivityLogPort(Protocol):
    """Fire-and-forget: implementations must never raise into core work."""

    def log(
        self,
        source: str,
        level: str,
        message: str,
        details: Optional[Any] = None,
    ) -> None: ...
