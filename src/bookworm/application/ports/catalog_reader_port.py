"""
Catalog reader port.

Reads the complete external library catalog in one synchronous pass.
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from bookworm.domain.catalog import CatalogEntry


@runtime_checkable
class CatalogReaderPort(Protocol):
    """All-or-nothing reader over the external catalog file."""

    def read_books(self, path: str) -> List[CatalogEntry]:
        """
        Read every catalog entry.

        Args:
            path: Catalog file, or the library folder that contains it

        Raises:
            CatalogUnavailableError: file missing or unreadable
        """
        ...
