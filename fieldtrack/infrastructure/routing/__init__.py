"""Distance calculation strategies, fallback chain and route cache."""

from .base import Degraded, JSONClient, RouteOptions, RouteOutcome, RoutingStrategy
from .cache import CachedRouteCalculator, RouteCache, build_route_service, signature
from .chain import RouteCalculator
from .google import DistanceMatrixStrategy, GoogleDirectionsStrategy
from .local import LocalGeometryStrategy, estimate_duration_minutes
from .osrm import OSRMStrategy

__all__ = [
    "CachedRouteCalculator",
    "Degraded",
    "DistanceMatrixStrategy",
    "GoogleDirectionsStrategy",
    "JSONClient",
    "LocalGeometryStrategy",
    "OSRMStrategy",
    "RouteCache",
    "RouteCalculator",
    "RouteOptions",
    "RouteOutcome",
    "RoutingStrategy",
    "build_route_service",
    "estimate_duration_minutes",
    "signature",
]
