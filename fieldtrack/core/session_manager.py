"""
Session Lifecycle Manager
=========================

Check-in, coordinate ingestion, check-out and force-close for tracking
sessions. Writers of one session are serialised with a per-session
``asyncio.Lock``; different sessions proceed in parallel.

Usage:
    manager = SessionManager(repo, build_route_service(config), aggregates=repo, config=config)
    opened = await manager.open_session("agent-7")
    await manager.ingest_coordinates(opened.session_id, "agent-7", batch)
    result = await manager.close_session(opened.session_id, "agent-7")
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from fieldtrack.config import FieldTrackConfig
from fieldtrack.core.geometry import haversine_distance, total_path_distance
from fieldtrack.core.quality import session_summary
from fieldtrack.core.sanitizer import (
    filter_by_accuracy,
    filter_by_speed,
    order_by_timestamp,
    parse_timestamp,
    remove_near_duplicates,
    sanitize,
    validate,
)
from fieldtrack.domain.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from fieldtrack.domain.interfaces import (
    Authorizer,
    DailyAggregateStore,
    RoleAuthorizer,
    TrackingRepository,
)
from fieldtrack.domain.models import (
    CloseResult,
    Coordinate,
    ForceCloseResult,
    GPSLogRecord,
    IngestResult,
    OpenSessionResult,
    RouteResult,
    SessionSummary,
    TrackingSession,
)

logger = logging.getLogger(__name__)

RawCoordinate = Mapping[str, Any] | Coordinate
Clock = Callable[[], datetime]

FORCE_CLOSE_METHOD = "haversine"
DEFAULT_FORCE_CLOSE_REASON = "Force closed"
MAX_FLAG_WARNINGS = 5


class RouteService(Protocol):
    async def calculate_route(self, coordinates: Sequence[Coordinate]) -> RouteResult: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime | str | float | None) -> datetime | None:
    parsed = parse_timestamp(value)
    if value is not None and parsed is None:
        raise ValidationError(f"unparseable timestamp: {value!r}")
    return parsed


def _same_point(a: Coordinate | None, b: Coordinate | None) -> bool:
    if a is None or b is None:
        return a is b
    return a.rounded(6) == b.rounded(6)


@dataclass
class _ChunkOutcome:
    accepted: int = 0
    skipped: int = 0
    distance_km: float = 0.0
    flags: list[str] = field(default_factory=list)


class SessionManager:
    """
    Orchestrates a tracking session from check-in to check-out.

    Args:
        repository: Session and GPS log persistence
        route_service: Anything with ``calculate_route(coordinates)``,
            typically a CachedRouteCalculator
        authorizer: Owner/overseer decisions. Defaults to a RoleAuthorizer
            over ``tracking.overseer_ids``
        aggregates: Daily totals store (best effort)
        config: Engine configuration
        clock: Returns the current aware UTC time
    """

    def __init__(
        self,
        repository: TrackingRepository,
        route_service: RouteService,
        authorizer: Authorizer | None = None,
        aggregates: DailyAggregateStore | None = None,
        config: FieldTrackConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.repository = repository
        self.route_service = route_service
        self.aggregates = aggregates
        self.config = config or FieldTrackConfig()
        self.authorizer = authorizer or RoleAuthorizer(self.config.tracking.overseer_ids)
        self._clock = clock or _utcnow
        # entries vanish once no coroutine holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def _load_authorized(self, session_id: str, caller_id: str) -> TrackingSession:
        session = await self.repository.get_session(session_id)
        if session is None:
            raise NotFoundError(session_id)
        if not self.authorizer.is_owner_or_overseer(caller_id, session):
            raise ForbiddenError(caller_id, session_id)
        return session

    def _coerce_coordinate(self, raw: RawCoordinate, label: str) -> tuple[Coordinate, list[str]]:
        coord = sanitize(raw)
        if coord is None:
            raise ValidationError(f"invalid {label} coordinate", [repr(raw)])
        result = validate(coord, self.config.tracking)
        if not result.valid:
            raise ValidationError(f"invalid {label} coordinate", result.errors)
        return coord, result.errors

    # =========================================================================
    # Check-in
    # =========================================================================

    async def open_session(
        self,
        owner_id: str,
        check_in_time: datetime | str | None = None,
        start_coordinate: RawCoordinate | None = None,
    ) -> OpenSessionResult:
        """
        Check in.

        Raises:
            ValidationError: check-in in the future, or invalid start coordinate
        """
        now = self._clock()
        check_in = _as_utc(check_in_time) or now
        warnings: list[str] = []

        if check_in > now:
            raise ValidationError("check-in time cannot be in the future")
        max_age = timedelta(hours=self.config.tracking.max_check_in_age_hours)
        if now - check_in > max_age:
            warnings.append(
                f"Check-in time is more than {self.config.tracking.max_check_in_age_hours:g} hours old"
            )

        start: Coordinate | None = None
        if start_coordinate is not None:
            start, flags = self._coerce_coordinate(start_coordinate, "start")
            if start.timestamp is None:
                start = start.model_copy(update={"timestamp": check_in})
            warnings.extend(flags)

        unclosed = await self.repository.list_sessions_for_owner(
            owner_id, limit=None, open_only=True
        )
        if unclosed:
            ids = ", ".join(s.id for s in unclosed)
            logger.warning("Owner %s opened a session with unclosed sessions: %s", owner_id, ids)
            warnings.append(f"Owner has {len(unclosed)} unclosed session(s): {ids}")

        session = TrackingSession(
            id=uuid.uuid4().hex,
            owner_user_id=owner_id,
            check_in=check_in,
            start_location=start,
            last_location=start,
            coordinate_count=1 if start else 0,
        )
        await self.repository.create_session(session)
        if start is not None:
            await self.repository.append_logs(
                session.id, [GPSLogRecord.from_coordinate(session.id, start, check_in)]
            )

        logger.info("Session %s opened for %s at %s", session.id, owner_id, check_in.isoformat())
        return OpenSessionResult(session_id=session.id, check_in=check_in, warnings=warnings)

    # =========================================================================
    # Ingestion
    # =========================================================================

    async def ingest_coordinates(
        self,
        session_id: str,
        caller_id: str,
        coordinates: Sequence[RawCoordinate],
    ) -> IngestResult:
        """
        Append a batch of raw coordinates to an open session.

        Invalid, inaccurate, implausible and near-duplicate samples are
        skipped and counted; they never fail the batch.

        Raises:
            ValidationError: empty batch or above the batch ceiling
            NotFoundError: unknown session
            ForbiddenError: caller is neither owner nor overseer
            ConflictError: session already closed
        """
        tracking = self.config.tracking
        if not coordinates:
            raise ValidationError("coordinate batch is empty")
        if len(coordinates) > tracking.max_batch_size:
            raise ValidationError(
                f"batch of {len(coordinates)} exceeds limit of {tracking.max_batch_size}"
            )

        async with self._lock(session_id):
            session = await self._load_authorized(session_id, caller_id)
            if session.is_closed:
                raise ConflictError(f"session {session_id} is already closed", session)

            result = IngestResult()
            flags: list[str] = []
            size = tracking.chunk_size
            for start in range(0, len(coordinates), size):
                chunk = coordinates[start : start + size]
                session, outcome = await self._ingest_chunk(session, chunk)
                result.accepted += outcome.accepted
                result.skipped += outcome.skipped
                result.distance_added_km += outcome.distance_km
                flags.extend(outcome.flags)

        if flags:
            shown = "; ".join(flags[:MAX_FLAG_WARNINGS])
            more = f" (+{len(flags) - MAX_FLAG_WARNINGS} more)" if len(flags) > MAX_FLAG_WARNINGS else ""
            result.warnings.append(f"{len(flags)} flagged value(s): {shown}{more}")
        skip_ratio = result.skipped / len(coordinates)
        if skip_ratio > tracking.high_skip_ratio:
            result.warnings.append(
                f"High skip rate: {result.skipped}/{len(coordinates)} coordinates skipped"
            )

        logger.info(
            "Session %s: accepted %d, skipped %d, +%.3fkm",
            session_id,
            result.accepted,
            result.skipped,
            result.distance_added_km,
        )
        return result

    async def _ingest_chunk(
        self, session: TrackingSession, chunk: Sequence[RawCoordinate]
    ) -> tuple[TrackingSession, _ChunkOutcome]:
        tracking = self.config.tracking
        outcome = _ChunkOutcome()
        now = self._clock()

        valid: list[Coordinate] = []
        for raw in chunk:
            coord = sanitize(raw)
            if coord is None:
                outcome.skipped += 1
                continue
            check = validate(coord, tracking)
            if not check.valid:
                outcome.skipped += 1
                continue
            outcome.flags.extend(check.errors)
            valid.append(coord)

        accurate = filter_by_accuracy(valid, tracking.accuracy_threshold_m)
        ordered = order_by_timestamp(accurate)
        stamped = [c if c.timestamp else c.model_copy(update={"timestamp": now}) for c in ordered]
        anchor = session.last_location
        plausible = filter_by_speed(stamped, tracking.max_speed_kmh, anchor=anchor)
        fresh = remove_near_duplicates(plausible, tracking.near_duplicate_km, anchor=anchor)
        outcome.skipped += len(valid) - len(fresh)

        if not fresh:
            return session, outcome

        distance = 0.0
        previous = anchor
        for coord in fresh:
            if previous is not None:
                distance += haversine_distance(previous, coord)
            previous = coord

        await self.repository.append_logs(
            session.id, [GPSLogRecord.from_coordinate(session.id, c, now) for c in fresh]
        )
        session = session.model_copy(
            update={
                "total_distance_km": session.total_distance_km + distance,
                "coordinate_count": session.coordinate_count + len(fresh),
                "last_location": fresh[-1],
                "start_location": session.start_location or fresh[0],
            }
        )
        session = await self.repository.update_session(session)

        outcome.accepted = len(fresh)
        outcome.distance_km = distance
        return session, outcome

    # =========================================================================
    # Check-out
    # =========================================================================

    @staticmethod
    def _stored_close(session: TrackingSession) -> CloseResult:
        return CloseResult(
            session_id=session.id,
            distance_km=session.total_distance_km,
            duration_minutes=session.duration_minutes or 0.0,
            avg_speed_kmh=session.avg_speed_kmh or 0.0,
            method=session.calculation_method or "unknown",
            warnings=[*session.close_warnings, "Session already closed; returning stored result"],
            coordinate_count=session.coordinate_count,
            check_out=session.check_out,
        )

    async def _ordered_coordinates(self, session_id: str) -> list[Coordinate]:
        logs = await self.repository.get_logs(session_id)
        return order_by_timestamp([log.to_coordinate() for log in logs])

    async def close_session(
        self,
        session_id: str,
        caller_id: str,
        check_out_time: datetime | str | None = None,
        end_coordinate: RawCoordinate | None = None,
    ) -> CloseResult:
        """
        Check out and compute the final distance over the full log.

        A retry against a closed session with a matching payload returns the
        stored result without recomputing.

        Raises:
            NotFoundError: unknown session
            ForbiddenError: caller is neither owner nor overseer
            ConflictError: session closed with a different payload, or force-closed
            ValidationError: check-out not after check-in, invalid end coordinate
        """
        requested_out = _as_utc(check_out_time)
        end: Coordinate | None = None
        end_flags: list[str] = []
        if end_coordinate is not None:
            end, end_flags = self._coerce_coordinate(end_coordinate, "end")

        async with self._lock(session_id):
            session = await self._load_authorized(session_id, caller_id)

            if session.is_closed:
                if session.force_closed:
                    raise ConflictError(f"session {session_id} was force-closed", session)
                matches = (requested_out is None or requested_out == session.check_out) and (
                    end is None or _same_point(end, session.end_location)
                )
                if not matches:
                    raise ConflictError(
                        f"session {session_id} is already closed with a different payload",
                        session,
                    )
                logger.info("Session %s already closed, returning stored result", session_id)
                return self._stored_close(session)

            check_out = requested_out or self._clock()
            if check_out <= session.check_in:
                raise ValidationError("check-out time must be after check-in time")

            warnings = list(end_flags)
            duration_minutes = (check_out - session.check_in).total_seconds() / 60.0
            if duration_minutes > self.config.tracking.max_session_hours * 60:
                warnings.append(
                    f"Session duration exceeds {self.config.tracking.max_session_hours:g} hours"
                )

            if end is not None:
                if end.timestamp is None:
                    end = end.model_copy(update={"timestamp": check_out})
                await self.repository.append_logs(
                    session.id, [GPSLogRecord.from_coordinate(session.id, end, check_out)]
                )
                session = session.model_copy(
                    update={
                        "coordinate_count": session.coordinate_count + 1,
                        "last_location": end,
                    }
                )

            coords = await self._ordered_coordinates(session.id)
            route = await self.route_service.calculate_route(coords)
            warnings.extend(route.warnings)

            hours = duration_minutes / 60.0
            avg_speed = route.distance_km / hours if hours > 0 else 0.0
            session = session.model_copy(
                update={
                    "check_out": check_out,
                    "end_location": end or session.last_location,
                    "total_distance_km": route.distance_km,
                    "coordinate_count": len(coords),
                    "duration_minutes": duration_minutes,
                    "avg_speed_kmh": avg_speed,
                    "calculation_method": route.method,
                    "close_warnings": warnings,
                    "closed_by": caller_id,
                }
            )
            await self.repository.update_session(session)

            await self._update_daily_summary(session, route.distance_km, hours, warnings)

        logger.info(
            "Session %s closed: %.3fkm in %.1fmin via %s",
            session_id,
            route.distance_km,
            duration_minutes,
            route.method,
        )
        return CloseResult(
            session_id=session.id,
            distance_km=route.distance_km,
            duration_minutes=duration_minutes,
            avg_speed_kmh=avg_speed,
            method=route.method,
            warnings=warnings,
            coordinate_count=len(coords),
            check_out=check_out,
            cache_hit=route.cache_hit,
        )

    async def _update_daily_summary(
        self,
        session: TrackingSession,
        distance_km: float,
        hours: float,
        warnings: list[str],
    ) -> None:
        if self.aggregates is None:
            return
        try:
            await self.aggregates.increment_daily_summary(
                session.owner_user_id,
                session.check_in.date(),
                distance_km,
                hours,
                1,
            )
        except Exception as e:
            logger.exception("Daily summary update failed for session %s", session.id)
            warnings.append(f"Daily summary update failed: {e}")

    # =========================================================================
    # Force-close
    # =========================================================================

    async def force_close_session(
        self,
        session_id: str,
        caller_id: str,
        reason: str | None = None,
    ) -> ForceCloseResult:
        """
        Administrative close using geometry only.

        Never touches external routing, so it works with every external
        service down.
        """
        async with self._lock(session_id):
            session = await self._load_authorized(session_id, caller_id)
            if session.is_closed:
                raise ConflictError(f"session {session_id} is already closed", session)

            check_out = max(self._clock(), session.check_in)
            coords = await self._ordered_coordinates(session.id)
            distance = total_path_distance(coords)
            duration_minutes = (check_out - session.check_in).total_seconds() / 60.0
            hours = duration_minutes / 60.0
            reason = reason or DEFAULT_FORCE_CLOSE_REASON

            session = session.model_copy(
                update={
                    "check_out": check_out,
                    "end_location": session.last_location,
                    "total_distance_km": distance,
                    "coordinate_count": len(coords),
                    "duration_minutes": duration_minutes,
                    "avg_speed_kmh": distance / hours if hours > 0 else 0.0,
                    "calculation_method": FORCE_CLOSE_METHOD,
                    "close_reason": reason,
                    "closed_by": caller_id,
                    "force_closed": True,
                }
            )
            await self.repository.update_session(session)

        logger.warning("Session %s force-closed by %s: %s", session_id, caller_id, reason)
        return ForceCloseResult(
            session_id=session_id,
            distance_km=distance,
            method=FORCE_CLOSE_METHOD,
            reason=reason,
            closed_by=caller_id,
            check_out=check_out,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_session(self, session_id: str) -> TrackingSession:
        session = await self.repository.get_session(session_id)
        if session is None:
            raise NotFoundError(session_id)
        return session

    async def get_active_session(self, owner_id: str) -> TrackingSession | None:
        """Most recent unclosed session of ``owner_id``, if any."""
        open_sessions = await self.repository.list_sessions_for_owner(
            owner_id, limit=1, open_only=True
        )
        return open_sessions[0] if open_sessions else None

    async def get_session_summary(self, session_id: str) -> SessionSummary:
        session = await self.get_session(session_id)
        logs = await self.repository.get_logs(session_id)
        return session_summary(session, logs, self.config.tracking.accuracy_threshold_m)
