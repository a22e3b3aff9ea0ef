"""
Session Manager Unit Tests
==========================

Tests for check-in, ingestion, check-out and force-close against the
in-memory repository and a local-only route calculator.
"""

import asyncio
import gc
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from fieldtrack.config import FieldTrackConfig, TrackingConfig
from fieldtrack.core.session_manager import SessionManager
from fieldtrack.domain.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from fieldtrack.domain.interfaces import RoleAuthorizer
from fieldtrack.domain.models import SessionState, TrackingSession
from fieldtrack.infrastructure.database import InMemoryTrackingRepository
from fieldtrack.infrastructure.routing import RouteCalculator

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
OWNER = "agent-7"
ADMIN = "admin-1"

pytestmark = pytest.mark.asyncio


class FakeClock:
    def __init__(self) -> None:
        self.now = T0

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def walk(n: int, start: datetime = T0, step_deg: float = 0.001) -> list[dict]:
    """``n`` raw samples heading north, 30 s apart, 5 m accuracy."""
    return [
        {
            "lat": 41.0 + i * step_deg,
            "lng": 29.0,
            "accuracy": 5,
            "timestamp": (start + timedelta(seconds=30 * (i + 1))).isoformat(),
        }
        for i in range(n)
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repo() -> InMemoryTrackingRepository:
    return InMemoryTrackingRepository()


def make_manager(repo, clock, config=None, aggregates=None) -> SessionManager:
    config = config or FieldTrackConfig()
    return SessionManager(
        repo,
        RouteCalculator(config),
        RoleAuthorizer([ADMIN]),
        aggregates=aggregates if aggregates is not None else repo,
        config=config,
        clock=clock,
    )


@pytest.fixture
def manager(repo, clock) -> SessionManager:
    return make_manager(repo, clock)


@pytest_asyncio.fixture
async def session_id(manager) -> str:
    opened = await manager.open_session(OWNER)
    return opened.session_id


class TestOpenSession:
    """Tests for check-in."""

    async def test_open_defaults_to_now(self, manager, clock):
        opened = await manager.open_session(OWNER)
        session = await manager.get_session(opened.session_id)

        assert opened.check_in == clock.now
        assert opened.warnings == []
        assert session.state == SessionState.OPEN
        assert session.total_distance_km == 0.0

    async def test_future_check_in_rejected(self, manager, clock):
        with pytest.raises(ValidationError):
            await manager.open_session(OWNER, clock.now + timedelta(minutes=5))

    async def test_old_check_in_warns(self, manager, clock):
        opened = await manager.open_session(OWNER, clock.now - timedelta(hours=30))
        assert any("hours old" in w for w in opened.warnings)

    async def test_start_coordinate_becomes_first_log(self, manager, repo):
        opened = await manager.open_session(OWNER, start_coordinate={"lat": 41.0, "lng": 29.0})
        session = await manager.get_session(opened.session_id)

        assert session.coordinate_count == 1
        assert session.start_location.latitude == 41.0
        assert len(await repo.get_logs(opened.session_id)) == 1

    async def test_invalid_start_coordinate(self, manager):
        with pytest.raises(ValidationError):
            await manager.open_session(OWNER, start_coordinate={"lat": 120, "lng": 29.0})

    async def test_unclosed_session_warns(self, manager):
        """A second check-in is allowed but reports the open one."""
        first = await manager.open_session(OWNER)
        second = await manager.open_session(OWNER)

        assert second.session_id != first.session_id
        assert any(first.session_id in w for w in second.warnings)

    async def test_old_unclosed_session_found(self, manager, repo, clock):
        """An unclosed session is reported however many closed ones followed it."""
        await repo.create_session(
            TrackingSession(id="stale", owner_user_id=OWNER, check_in=clock.now - timedelta(days=20))
        )
        for i in range(12):
            check_in = clock.now - timedelta(days=i + 1)
            await repo.create_session(
                TrackingSession(
                    id=f"done-{i}",
                    owner_user_id=OWNER,
                    check_in=check_in,
                    check_out=check_in + timedelta(hours=1),
                )
            )

        active = await manager.get_active_session(OWNER)
        opened = await manager.open_session(OWNER)

        assert active.id == "stale"
        assert any("stale" in w for w in opened.warnings)

    async def test_configured_overseers_authorized(self, repo, clock):
        """Without an explicit authorizer, tracking.overseer_ids decides."""
        config = FieldTrackConfig(tracking=TrackingConfig(overseer_ids=["lead-3"]))
        manager = SessionManager(repo, RouteCalculator(config), config=config, clock=clock)
        opened = await manager.open_session(OWNER)

        result = await manager.ingest_coordinates(opened.session_id, "lead-3", walk(1))

        assert result.accepted == 1
        with pytest.raises(ForbiddenError):
            await manager.ingest_coordinates(opened.session_id, ADMIN, walk(1))


class TestIngest:
    """Tests for ingest_coordinates()."""

    async def test_batch_accumulates_distance(self, manager, session_id):
        """Three samples ~111 m apart add ~0.222 km with nothing skipped."""
        result = await manager.ingest_coordinates(session_id, OWNER, walk(3))
        session = await manager.get_session(session_id)

        assert result.accepted == 3
        assert result.skipped == 0
        assert result.distance_added_km == pytest.approx(0.222, abs=0.001)
        assert session.total_distance_km == pytest.approx(0.222, abs=0.001)
        assert session.coordinate_count == 3
        assert session.state == SessionState.ACTIVE

    async def test_distance_continues_across_batches(self, manager, session_id):
        """The previous batch's last point anchors the next one."""
        points = walk(4)
        await manager.ingest_coordinates(session_id, OWNER, points[:2])
        second = await manager.ingest_coordinates(session_id, OWNER, points[2:])

        assert second.distance_added_km == pytest.approx(0.222, abs=0.001)

    async def test_invalid_samples_skipped(self, manager, session_id):
        batch = walk(2) + [
            {"lat": "x", "lng": 29.0},
            {"lat": 41.0},
            {"lat": 41.0005, "lng": 29.0, "accuracy": 80},
        ]
        result = await manager.ingest_coordinates(session_id, OWNER, batch)

        assert result.accepted == 2
        assert result.skipped == 3
        assert any("High skip rate" in w for w in result.warnings)

    async def test_near_duplicates_skipped(self, manager, session_id):
        batch = walk(1) + [dict(walk(1)[0], lat=41.0 + 0.000001)]
        result = await manager.ingest_coordinates(session_id, OWNER, batch)

        assert result.accepted == 1
        assert result.skipped == 1

    async def test_flags_reported(self, manager, session_id):
        batch = walk(2)
        batch[1]["speed"] = 250
        result = await manager.ingest_coordinates(session_id, OWNER, batch)

        assert result.accepted == 2
        assert any("flagged" in w for w in result.warnings)

    async def test_chunked_ingestion(self, repo, clock):
        config = FieldTrackConfig(tracking=TrackingConfig(chunk_size=2))
        manager = make_manager(repo, clock, config)
        opened = await manager.open_session(OWNER)

        result = await manager.ingest_coordinates(opened.session_id, OWNER, walk(5))

        assert result.accepted == 5
        assert result.distance_added_km == pytest.approx(0.444, abs=0.002)
        assert len(await repo.get_logs(opened.session_id)) == 5

    async def test_concurrent_batches_serialised(self, manager, session_id):
        """Parallel batches on one session never lose a distance increment."""
        results = await asyncio.gather(
            *(manager.ingest_coordinates(session_id, OWNER, [point]) for point in walk(20))
        )
        session = await manager.get_session(session_id)
        logs = await manager.repository.get_logs(session_id)

        assert session.total_distance_km == pytest.approx(
            sum(r.distance_added_km for r in results)
        )
        assert session.coordinate_count == sum(r.accepted for r in results)
        assert session.coordinate_count == len(logs)

    async def test_empty_batch(self, manager, session_id):
        with pytest.raises(ValidationError):
            await manager.ingest_coordinates(session_id, OWNER, [])

    async def test_oversized_batch(self, repo, clock):
        config = FieldTrackConfig(tracking=TrackingConfig(max_batch_size=3))
        manager = make_manager(repo, clock, config)
        opened = await manager.open_session(OWNER)

        with pytest.raises(ValidationError):
            await manager.ingest_coordinates(opened.session_id, OWNER, walk(4))

    async def test_unknown_session(self, manager):
        with pytest.raises(NotFoundError):
            await manager.ingest_coordinates("missing", OWNER, walk(1))

    async def test_foreign_caller(self, manager, session_id):
        with pytest.raises(ForbiddenError):
            await manager.ingest_coordinates(session_id, "agent-9", walk(1))

    async def test_overseer_may_ingest(self, manager, session_id):
        result = await manager.ingest_coordinates(session_id, ADMIN, walk(1))
        assert result.accepted == 1

    async def test_closed_session_rejects(self, manager, session_id, clock):
        await manager.ingest_coordinates(session_id, OWNER, walk(3))
        clock.advance(hours=1)
        await manager.close_session(session_id, OWNER)

        with pytest.raises(ConflictError):
            await manager.ingest_coordinates(session_id, OWNER, walk(1))


class TestCloseSession:
    """Tests for close_session()."""

    async def test_close_computes_route(self, manager, session_id, clock, repo):
        await manager.ingest_coordinates(session_id, OWNER, walk(3))
        clock.advance(hours=1)

        result = await manager.close_session(session_id, OWNER)
        session = await manager.get_session(session_id)

        assert result.method == "vincenty_local"
        assert result.distance_km == pytest.approx(0.222, abs=0.002)
        assert result.duration_minutes == pytest.approx(60.0)
        assert result.avg_speed_kmh == pytest.approx(0.222, abs=0.002)
        assert result.coordinate_count == 3
        assert session.state == SessionState.CLOSED
        assert session.calculation_method == "vincenty_local"

        daily = await repo.get_daily_summary(OWNER, T0.date())
        assert daily.check_in_count == 1
        assert daily.total_hours == pytest.approx(1.0)

    async def test_end_coordinate_appended(self, manager, session_id, clock):
        await manager.ingest_coordinates(session_id, OWNER, walk(2))
        clock.advance(hours=1)

        result = await manager.close_session(
            session_id, OWNER, end_coordinate={"lat": 41.002, "lng": 29.0}
        )
        session = await manager.get_session(session_id)

        assert result.coordinate_count == 3
        assert session.end_location.latitude == 41.002

    async def test_repeat_close_returns_stored_result(self, manager, session_id, clock, repo):
        await manager.ingest_coordinates(session_id, OWNER, walk(3))
        clock.advance(hours=1)
        first = await manager.close_session(session_id, OWNER)
        clock.advance(minutes=5)

        second = await manager.close_session(session_id, OWNER)

        assert second.distance_km == first.distance_km
        assert second.check_out == first.check_out
        assert any("already closed" in w for w in second.warnings)
        daily = await repo.get_daily_summary(OWNER, T0.date())
        assert daily.check_in_count == 1

    async def test_mismatched_repeat_close_conflicts(self, manager, session_id, clock):
        await manager.ingest_coordinates(session_id, OWNER, walk(3))
        clock.advance(hours=1)
        first = await manager.close_session(session_id, OWNER)

        with pytest.raises(ConflictError):
            await manager.close_session(
                session_id, OWNER, check_out_time=first.check_out + timedelta(minutes=1)
            )

    async def test_check_out_before_check_in(self, manager, session_id):
        with pytest.raises(ValidationError):
            await manager.close_session(session_id, OWNER, check_out_time=T0 - timedelta(minutes=1))

    async def test_long_session_warns(self, manager, session_id, clock):
        await manager.ingest_coordinates(session_id, OWNER, walk(2))
        clock.advance(hours=30)

        result = await manager.close_session(session_id, OWNER)

        assert any("exceeds 24 hours" in w for w in result.warnings)

    async def test_aggregate_failure_is_a_warning(self, repo, clock):
        """The close succeeds even when the daily summary store fails."""
        broken = AsyncMock()
        broken.increment_daily_summary.side_effect = RuntimeError("db locked")
        manager = make_manager(repo, clock, aggregates=broken)
        opened = await manager.open_session(OWNER)
        await manager.ingest_coordinates(opened.session_id, OWNER, walk(3))
        clock.advance(hours=1)

        result = await manager.close_session(opened.session_id, OWNER)
        session = await manager.get_session(opened.session_id)

        assert session.is_closed
        assert any("db locked" in w for w in result.warnings)

    async def test_unknown_session(self, manager):
        with pytest.raises(NotFoundError):
            await manager.close_session("missing", OWNER)


class TestForceClose:
    """Tests for force_close_session()."""

    async def test_overseer_force_close(self, manager, session_id, clock):
        await manager.ingest_coordinates(session_id, OWNER, walk(3))
        clock.advance(hours=2)

        result = await manager.force_close_session(session_id, ADMIN, "Forgot to check out")
        session = await manager.get_session(session_id)

        assert result.method == "haversine"
        assert result.distance_km == pytest.approx(0.222, abs=0.001)
        assert result.closed_by == ADMIN
        assert session.force_closed
        assert session.close_reason == "Forgot to check out"

    async def test_default_reason(self, manager, session_id, clock):
        clock.advance(minutes=10)
        result = await manager.force_close_session(session_id, OWNER)
        assert result.reason == "Force closed"
        assert result.distance_km == 0.0

    async def test_foreign_caller(self, manager, session_id):
        with pytest.raises(ForbiddenError):
            await manager.force_close_session(session_id, "agent-9")

    async def test_already_closed(self, manager, session_id, clock):
        clock.advance(minutes=10)
        await manager.force_close_session(session_id, ADMIN)

        with pytest.raises(ConflictError):
            await manager.force_close_session(session_id, ADMIN)
        with pytest.raises(ConflictError):
            await manager.close_session(session_id, OWNER)


class TestSessionLocks:
    """Tests for per-session lock bookkeeping."""

    async def test_unknown_ids_leave_no_locks(self, manager):
        for i in range(50):
            with pytest.raises(NotFoundError):
                await manager.ingest_coordinates(f"ghost-{i}", OWNER, walk(1))
        gc.collect()

        assert len(manager._locks) == 0

    async def test_finished_sessions_leave_no_locks(self, manager, clock):
        for _ in range(5):
            opened = await manager.open_session(OWNER)
            await manager.ingest_coordinates(opened.session_id, OWNER, walk(2, start=clock.now))
            clock.advance(minutes=30)
            await manager.close_session(opened.session_id, OWNER)
        gc.collect()

        assert len(manager._locks) == 0


class TestQueries:
    """Tests for read-side helpers."""

    async def test_active_session(self, manager, session_id, clock):
        active = await manager.get_active_session(OWNER)
        assert active.id == session_id

        clock.advance(minutes=10)
        await manager.close_session(session_id, OWNER)
        assert await manager.get_active_session(OWNER) is None

    async def test_summary(self, manager, session_id):
        await manager.ingest_coordinates(session_id, OWNER, walk(3))
        summary = await manager.get_session_summary(session_id)

        assert summary.coordinate_count == 3
        assert summary.total_distance_km == pytest.approx(0.222, abs=0.001)
        assert summary.quality.good_readings == 3
        assert summary.quality.avg_interval_secs == 30
