"""Bookworm: personal library mirror and list-based recommendation engine."""

__version__ = "0.1.0"
