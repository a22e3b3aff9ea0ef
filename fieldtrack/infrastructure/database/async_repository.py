"""
Async Tracking Repository
=========================

Async data access layer for sessions, GPS logs and daily totals using
aiosqlite.

Usage:
    repo = AsyncTrackingRepository("data/fieldtrack.db")
    await repo.init_schema()

    await repo.create_session(session)
    await repo.append_logs(session.id, logs)

    await repo.close()
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from fieldtrack.domain.models import Coordinate, DailyAggregate, GPSLogRecord, TrackingSession

from .schema import TRACKING_SCHEMA

logger = logging.getLogger(__name__)

SESSION_COLUMNS = (
    "id",
    "owner_user_id",
    "check_in",
    "check_out",
    "start_location",
    "end_location",
    "last_location",
    "total_distance_km",
    "coordinate_count",
    "duration_minutes",
    "avg_speed_kmh",
    "calculation_method",
    "close_warnings",
    "close_reason",
    "closed_by",
    "force_closed",
)


def _dump_coordinate(coord: Coordinate | None) -> str | None:
    return coord.model_dump_json() if coord is not None else None


def _load_coordinate(raw: str | None) -> Coordinate | None:
    return Coordinate.model_validate_json(raw) if raw else None


def _dump_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _load_dt(raw: str | None) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


def _session_to_row(session: TrackingSession) -> tuple[Any, ...]:
    return (
        session.id,
        session.owner_user_id,
        _dump_dt(session.check_in),
        _dump_dt(session.check_out),
        _dump_coordinate(session.start_location),
        _dump_coordinate(session.end_location),
        _dump_coordinate(session.last_location),
        session.total_distance_km,
        session.coordinate_count,
        session.duration_minutes,
        session.avg_speed_kmh,
        session.calculation_method,
        json.dumps(session.close_warnings),
        session.close_reason,
        session.closed_by,
        int(session.force_closed),
    )


def _row_to_session(row: aiosqlite.Row) -> TrackingSession:
    return TrackingSession(
        id=row["id"],
        owner_user_id=row["owner_user_id"],
        check_in=_load_dt(row["check_in"]),
        check_out=_load_dt(row["check_out"]),
        start_location=_load_coordinate(row["start_location"]),
        end_location=_load_coordinate(row["end_location"]),
        last_location=_load_coordinate(row["last_location"]),
        total_distance_km=row["total_distance_km"],
        coordinate_count=row["coordinate_count"],
        duration_minutes=row["duration_minutes"],
        avg_speed_kmh=row["avg_speed_kmh"],
        calculation_method=row["calculation_method"],
        close_warnings=json.loads(row["close_warnings"] or "[]"),
        close_reason=row["close_reason"],
        closed_by=row["closed_by"],
        force_closed=bool(row["force_closed"]),
    )


class AsyncTrackingRepository:
    """
    Async repository for tracking persistence.

    Implements both TrackingRepository and DailyAggregateStore.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False

    async def init_schema(self) -> None:
        """Initialize database schema. Must be called after creation."""
        async with self._get_connection() as conn:
            await conn.executescript(TRACKING_SCHEMA)
            await conn.commit()
        self._initialized = True
        logger.info("Tracking database initialized: %s", self.db_path)

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get async database connection with row factory."""
        conn = await aiosqlite.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            await conn.close()

    async def close(self) -> None:
        """Connections are per-operation; nothing persistent to release."""
        logger.debug("Async tracking repository closed")

    # =========================================================================
    # Session Operations
    # =========================================================================

    async def create_session(self, session: TrackingSession) -> TrackingSession:
        placeholders = ", ".join("?" for _ in SESSION_COLUMNS)
        async with self._get_connection() as conn:
            await conn.execute(
                f"INSERT INTO tracking_sessions ({', '.join(SESSION_COLUMNS)}) "
                f"VALUES ({placeholders})",
                _session_to_row(session),
            )
            await conn.commit()
        return session

    async def get_session(self, session_id: str) -> TrackingSession | None:
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM tracking_sessions WHERE id = ?",
                (session_id,),
            )
            row = await cursor.fetchone()
            return _row_to_session(row) if row else None

    async def update_session(self, session: TrackingSession) -> TrackingSession:
        assignments = ", ".join(f"{col} = ?" for col in SESSION_COLUMNS[1:])
        row = _session_to_row(session)
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                f"UPDATE tracking_sessions SET {assignments} WHERE id = ?",
                (*row[1:], session.id),
            )
            await conn.commit()
            if cursor.rowcount == 0:
                raise KeyError(session.id)
        return session

    async def list_sessions_for_owner(
        self, owner_user_id: str, limit: int | None = 10, open_only: bool = False
    ) -> list[TrackingSession]:
        """Most recent check-ins first. ``limit=None`` returns all of them."""
        query = "SELECT * FROM tracking_sessions WHERE owner_user_id = ?"
        if open_only:
            query += " AND check_out IS NULL"
        query += " ORDER BY check_in DESC LIMIT ?"
        # negative LIMIT is unbounded in SQLite
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, (owner_user_id, -1 if limit is None else limit))
            rows = await cursor.fetchall()
            return [_row_to_session(row) for row in rows]

    # =========================================================================
    # GPS Log Operations
    # =========================================================================

    async def append_logs(self, session_id: str, logs: Sequence[GPSLogRecord]) -> int:
        if not logs:
            return 0
        async with self._get_connection() as conn:
            await conn.executemany(
                """
                INSERT INTO gps_logs
                (session_id, timestamp, latitude, longitude, accuracy, speed, altitude)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        session_id,
                        _dump_dt(log.timestamp),
                        log.latitude,
                        log.longitude,
                        log.accuracy,
                        log.speed,
                        log.altitude,
                    )
                    for log in logs
                ],
            )
            await conn.commit()
        return len(logs)

    async def get_logs(self, session_id: str) -> list[GPSLogRecord]:
        """All logs for a session in insertion order."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT id, session_id, timestamp, latitude, longitude, accuracy, speed, altitude
                FROM gps_logs
                WHERE session_id = ?
                ORDER BY id
                """,
                (session_id,),
            )
            rows = await cursor.fetchall()
            return [
                GPSLogRecord(
                    id=row["id"],
                    session_id=row["session_id"],
                    timestamp=_load_dt(row["timestamp"]),
                    latitude=row["latitude"],
                    longitude=row["longitude"],
                    accuracy=row["accuracy"],
                    speed=row["speed"],
                    altitude=row["altitude"],
                )
                for row in rows
            ]

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
        async with self._get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO daily_summaries (user_id, day, total_km, total_hours, check_in_count)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, day) DO UPDATE SET
                    total_km = total_km + excluded.total_km,
                    total_hours = total_hours + excluded.total_hours,
                    check_in_count = check_in_count + excluded.check_in_count
                """,
                (user_id, day.isoformat(), distance_km, hours, check_ins),
            )
            await conn.commit()

    async def get_daily_summary(self, user_id: str, day: date) -> DailyAggregate | None:
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM daily_summaries WHERE user_id = ? AND day = ?",
                (user_id, day.isoformat()),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return DailyAggregate(
                user_id=row["user_id"],
                day=date.fromisoformat(row["day"]),
                total_km=row["total_km"],
                total_hours=row["total_hours"],
                check_in_count=row["check_in_count"],
            )
