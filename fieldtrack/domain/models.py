"""FieldTrack Domain Models - Pydantic models for tracking entities."""

from __future__ import annotations

from datetime import UTC, date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Coordinate(BaseModel):
    """Single GPS sample. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float | None = None  # metres
    speed: float | None = None  # km/h
    altitude: float | None = None  # metres above sea level
    timestamp: datetime | None = None

    def rounded(self, places: int = 6) -> tuple[float, float]:
        return (round(self.latitude, places), round(self.longitude, places))


class SessionState(str, Enum):
    """Lifecycle state of a tracking session."""

    OPEN = "open"  # checked in, no coordinates yet
    ACTIVE = "active"  # at least one coordinate ingested
    CLOSED = "closed"  # terminal


class TrackingSession(BaseModel):
    """A field agent's check-in to check-out interval."""

    id: str
    owner_user_id: str
    check_in: datetime
    check_out: datetime | None = None
    start_location: Coordinate | None = None
    end_location: Coordinate | None = None
    last_location: Coordinate | None = None
    total_distance_km: float = 0.0
    coordinate_count: int = 0

    # Populated at close
    duration_minutes: float | None = None
    avg_speed_kmh: float | None = None
    calculation_method: str | None = None
    close_warnings: list[str] = Field(default_factory=list)
    close_reason: str | None = None
    closed_by: str | None = None
    force_closed: bool = False

    @property
    def state(self) -> SessionState:
        if self.check_out is not None:
            return SessionState.CLOSED
        if self.coordinate_count > 0:
            return SessionState.ACTIVE
        return SessionState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.check_out is not None


class GPSLogRecord(BaseModel):
    """Persisted coordinate scoped to a session (append-only)."""

    id: int | None = None
    session_id: str
    latitude: float
    longitude: float
    timestamp: datetime
    accuracy: float | None = None
    speed: float | None = None
    altitude: float | None = None

    @classmethod
    def from_coordinate(cls, session_id: str, coord: Coordinate, default_ts: datetime) -> GPSLogRecord:
        return cls(
            session_id=session_id,
            latitude=coord.latitude,
            longitude=coord.longitude,
            timestamp=coord.timestamp or default_ts,
            accuracy=coord.accuracy,
            speed=coord.speed,
            altitude=coord.altitude,
        )

    def to_coordinate(self) -> Coordinate:
        return Coordinate(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy=self.accuracy,
            speed=self.speed,
            altitude=self.altitude,
            timestamp=self.timestamp,
        )


class DailyAggregate(BaseModel):
    """Per user/day totals maintained by check-out."""

    user_id: str
    day: date
    total_km: float = 0.0
    total_hours: float = 0.0
    check_in_count: int = 0


# =============================================================================
# Validation / Analysis Models
# =============================================================================


class ValidationResult(BaseModel):
    """Outcome of validating one coordinate.

    ``valid`` is False only for out-of-range latitude/longitude; accuracy,
    speed and altitude problems are reported in ``errors`` as flags.
    """

    valid: bool
    errors: list[str] = Field(default_factory=list)


class RouteComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class MovementPattern(BaseModel):
    """Derived statistics over a coordinate sequence (distances in km)."""

    total_distance_km: float = 0.0
    average_segment_km: float = 0.0
    max_segment_km: float = 0.0
    min_segment_km: float = 0.0
    distance_variance: float = 0.0
    time_span_minutes: float = 0.0
    average_speed_kmh: float = 0.0
    movement_radius_km: float = 0.0
    direction_changes: int = 0
    is_returning: bool = False


class RouteAnalysis(BaseModel):
    """Decision on whether a trace is worth an external routing call."""

    should_use_external_routing: bool
    is_static_location: bool
    complexity: RouteComplexity = RouteComplexity.SIMPLE
    confidence: int = Field(0, ge=0, le=100)
    reasoning: list[str] = Field(default_factory=list)
    complexity_score: int = 0
    skip_routing: bool = False
    movement_distance_km: float = 0.0


# =============================================================================
# Routing Models
# =============================================================================


class RouteResult(BaseModel):
    """Distance/duration for a coordinate sequence and how it was obtained."""

    distance_km: float
    duration_minutes: float
    static_duration_minutes: float | None = None
    polyline: str | None = None
    method: str
    warnings: list[str] = Field(default_factory=list)
    cache_hit: bool = False
    degraded: bool = False  # a tier failed or a segment fell back to geometry
    waypoints: list[Coordinate] = Field(default_factory=list)
    analysis: RouteAnalysis | None = None
    api_calls: int = 0


class RouteCacheEntry(BaseModel):
    """Memoised route keyed by the signature of its coordinate sequence."""

    key: str
    distance_km: float
    duration_minutes: float
    static_duration_minutes: float | None = None
    polyline: str | None = None
    waypoints: list[Coordinate] = Field(default_factory=list)
    computed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    method: str
    warnings: list[str] = Field(default_factory=list)
    travel_mode: str = ""
    variant: str = ""

    def to_result(self, cache_hit: bool) -> RouteResult:
        return RouteResult(
            distance_km=self.distance_km,
            duration_minutes=self.duration_minutes,
            static_duration_minutes=self.static_duration_minutes,
            polyline=self.polyline,
            method=self.method,
            warnings=list(self.warnings),
            cache_hit=cache_hit,
            waypoints=list(self.waypoints),
        )


# =============================================================================
# Session Operation Results
# =============================================================================


class OpenSessionResult(BaseModel):
    session_id: str
    check_in: datetime
    warnings: list[str] = Field(default_factory=list)


class IngestResult(BaseModel):
    accepted: int = 0
    skipped: int = 0
    distance_added_km: float = 0.0
    warnings: list[str] = Field(default_factory=list)


class CloseResult(BaseModel):
    session_id: str
    distance_km: float
    duration_minutes: float
    avg_speed_kmh: float
    method: str
    warnings: list[str] = Field(default_factory=list)
    coordinate_count: int = 0
    check_out: datetime | None = None
    cache_hit: bool = False


class ForceCloseResult(BaseModel):
    session_id: str
    distance_km: float
    method: str
    reason: str
    closed_by: str
    check_out: datetime


class DataQualityMetrics(BaseModel):
    avg_accuracy_m: float = 0.0
    max_accuracy_m: float = 0.0
    good_readings: int = 0
    total_readings: int = 0
    time_gaps: int = 0
    avg_interval_secs: float = 0.0
    continuity: float = 0.0
    overall_score: int = 0
    issues: list[str] = Field(default_factory=list)


class SessionSummary(BaseModel):
    session_id: str
    owner_user_id: str
    day: date
    state: SessionState
    check_in: datetime
    check_out: datetime | None = None
    duration_hours: float = 0.0
    total_distance_km: float = 0.0
    avg_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0
    coordinate_count: int = 0
    start_location: Coordinate | None = None
    end_location: Coordinate | None = None
    calculation_method: str | None = None
    quality: DataQualityMetrics = Field(default_factory=DataQualityMetrics)
