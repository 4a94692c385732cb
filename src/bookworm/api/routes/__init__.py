"""API Routes"""

from . import (
    calibre,
    hardcover,
    logs,
    recommendations,
    settings,
    suggested,
)

__all__ = [
    "calibre",
    "hardcover",
    "logs",
    "recommendations",
    "settings",
    "suggested",
]
