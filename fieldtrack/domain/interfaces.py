"""Collaborator protocols consumed by the session lifecycle manager."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from typing import Protocol, runtime_checkable

from .models import GPSLogRecord, TrackingSession


@runtime_checkable
class TrackingRepository(Protocol):
    """Persistence for sessions and their append-only coordinate logs."""

    async def create_session(self, session: TrackingSession) -> TrackingSession: ...

    async def get_session(self, session_id: str) -> TrackingSession | None: ...

    async def update_session(self, session: TrackingSession) -> TrackingSession: ...

    async def list_sessions_for_owner(
        self, owner_user_id: str, limit: int | None = 10, open_only: bool = False
    ) -> list[TrackingSession]: ...

    async def append_logs(self, session_id: str, logs: Sequence[GPSLogRecord]) -> int: ...

    async def get_logs(self, session_id: str) -> list[GPSLogRecord]: ...


@runtime_checkable
class DailyAggregateStore(Protocol):
    """Per user/day totals; increments are additive."""

    async def increment_daily_summary(
        self,
        user_id: str,
        day: date,
        distance_km: float,
        hours: float,
        check_ins: int,
    ) -> None: ...


@runtime_checkable
class Authorizer(Protocol):
    """Ownership / oversight decisions made outside the engine."""

    def is_owner_or_overseer(self, caller_id: str, session: TrackingSession) -> bool: ...


class RoleAuthorizer:
    """Owner, or a member of a fixed set of overseer ids."""

    def __init__(self, overseer_ids: Iterable[str] = ()) -> None:
        self.overseer_ids = set(overseer_ids)

    def is_overseer(self, caller_id: str, session: TrackingSession) -> bool:
        return caller_id in self.overseer_ids

    def is_owner_or_overseer(self, caller_id: str, session: TrackingSession) -> bool:
        return caller_id == session.owner_user_id or self.is_overseer(caller_id, session)
