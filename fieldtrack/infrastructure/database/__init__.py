"""Database infrastructure - SQLite and in-memory tracking stores."""

from .async_repository import AsyncTrackingRepository
from .memory import InMemoryTrackingRepository
from .schema import TRACKING_SCHEMA

__all__ = [
    "TRACKING_SCHEMA",
    "AsyncTrackingRepository",
    "InMemoryTrackingRepository",
]
