"""Reppy workout tracker: FastAPI backend and offline-first client library."""

__version__ = "1.4.0"
