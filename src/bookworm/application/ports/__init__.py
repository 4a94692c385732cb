"""Application ports (interfaces) used by the application layer."""

from .activity_log_port import ActivityLogPort
from .catalog_reader_port import CatalogReaderPort
from .list_service_port import ListServicePort

__all__ = [
    "ActivityLogPort",
    "CatalogReaderPort",
    "ListServicePort",
]
