"""In-memory tracking store for tests and embedding."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import date

from fieldtrack.domain.models import DailyAggregate, GPSLogRecord, TrackingSession

logger = logging.getLogger(__name__)


class InMemoryTrackingRepository:
    """
    Dict-backed TrackingRepository and DailyAggregateStore.

    Sessions are copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, TrackingSession] = {}
        self._logs: dict[str, list[GPSLogRecord]] = defaultdict(list)
        self._daily: dict[tuple[str, date], DailyAggregate] = {}
        self._next_log_id = 1
        self._lock = asyncio.Lock()

    # =========================================================================
    # Sessions
    # =========================================================================

    async def create_session(self, session: TrackingSession) -> TrackingSession:
        if session.id in self._sessions:
            raise ValueError(f"session already exists: {session.id}")
        self._sessions[session.id] = session.model_copy(deep=True)
        return session.model_copy(deep=True)

    async def get_session(self, session_id: str) -> TrackingSession | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def update_session(self, session: TrackingSession) -> TrackingSession:
        if session.id not in self._sessions:
            raise KeyError(session.id)
        self._sessions[session.id] = session.model_copy(deep=True)
        return session.model_copy(deep=True)

    async def list_sessions_for_owner(
        self, owner_user_id: str, limit: int | None = 10, open_only: bool = False
    ) -> list[TrackingSession]:
        """Most recent check-ins first. ``limit=None`` returns all of them."""
        owned = [
            s
            for s in self._sessions.values()
            if s.owner_user_id == owner_user_id and not (open_only and s.is_closed)
        ]
        owned.sort(key=lambda s: s.check_in, reverse=True)
        return [s.model_copy(deep=True) for s in owned[:limit]]

    # =========================================================================
    # GPS Logs
    # =========================================================================

    async def append_logs(self, session_id: str, logs: Sequence[GPSLogRecord]) -> int:
        async with self._lock:
            for log in logs:
                self._logs[session_id].append(
                    log.model_copy(update={"id": self._next_log_id, "session_id": session_id})
                )
                self._next_log_id += 1
        return len(logs)

    async def get_logs(self, session_id: str) -> list[GPSLogRecord]:
        return list(self._logs.get(session_id, []))

    # =========================================================================
    # Daily Aggregates
    # =========================================================================

    async def increment_daily_summary(
        self,
        user_id: str,
        day: date,
        distance_km: float,
        hours: float,
        check_ins: int,
    ) -> None:
        key = (user_id, day)
        current = self._daily.get(key) or DailyAggregate(user_id=user_id, day=day)
        self._daily[key] = current.model_copy(
            update={
                "total_km": current.total_km + distance_km,
                "total_hours": current.total_hours + hours,
                "check_in_count": current.check_in_count + check_ins,
            }
        )

    async def get_daily_summary(self, user_id: str, day: date) -> DailyAggregate | None:
        return self._daily.get((user_id, day))
