"""FieldTrack domain - models, errors and collaborator protocols."""

from .errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TrackingError,
    UpstreamDegraded,
    ValidationError,
)
from .interfaces import Authorizer, DailyAggregateStore, RoleAuthorizer, TrackingRepository
from .models import (
    CloseResult,
    Coordinate,
    DailyAggregate,
    DataQualityMetrics,
    ForceCloseResult,
    GPSLogRecord,
    IngestResult,
    MovementPattern,
    OpenSessionResult,
    RouteAnalysis,
    RouteCacheEntry,
    RouteComplexity,
    RouteResult,
    SessionState,
    SessionSummary,
    TrackingSession,
    ValidationResult,
)

__all__ = [
    "Authorizer",
    "CloseResult",
    "ConflictError",
    "Coordinate",
    "DailyAggregate",
    "DailyAggregateStore",
    "DataQualityMetrics",
    "ForbiddenError",
    "ForceCloseResult",
    "GPSLogRecord",
    "IngestResult",
    "MovementPattern",
    "NotFoundError",
    "OpenSessionResult",
    "RoleAuthorizer",
    "RouteAnalysis",
    "RouteCacheEntry",
    "RouteComplexity",
    "RouteResult",
    "SessionState",
    "SessionSummary",
    "TrackingError",
    "TrackingRepository",
    "TrackingSession",
    "UpstreamDegraded",
    "ValidationError",
    "ValidationResult",
]
