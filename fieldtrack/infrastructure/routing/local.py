"""Local geometry tier: Vincenty distance with a heuristic duration. Never fails."""

from __future__ import annotations

from collections.abc import Sequence

from fieldtrack.config import TravelMode
from fieldtrack.core import polyline
from fieldtrack.core.geometry import vincenty_distance
from fieldtrack.domain.models import Coordinate

from .base import RouteOutcome

METHOD = "vincenty_local"

# Segment length bands (km) -> assumed speed (km/h)
HIGHWAY_SEGMENT_KM = 5.0
CITY_SEGMENT_KM = 0.5
HIGHWAY_SPEED_KMH = 60.0
CITY_SPEED_KMH = 15.0
MIXED_SPEED_KMH = 30.0
MIN_MINUTES_PER_KM = 2.0


def _segment_speed(segment_km: float) -> float:
    if segment_km > HIGHWAY_SEGMENT_KM:
        return HIGHWAY_SPEED_KMH
    if segment_km < CITY_SEGMENT_KM:
        return CITY_SPEED_KMH
    return MIXED_SPEED_KMH


def estimate_duration_minutes(segments_km: Sequence[float]) -> float:
    """Travel time from per-segment speed bands, floored at 2 min/km."""
    total_km = sum(segments_km)
    minutes = sum(d / _segment_speed(d) * 60.0 for d in segments_km)
    return max(minutes, total_km * MIN_MINUTES_PER_KM)


class LocalGeometryStrategy:
    """Terminal tier of every chain."""

    name = "local_geometry"

    async def __call__(
        self, coordinates: Sequence[Coordinate], travel_mode: TravelMode
    ) -> RouteOutcome:
        return self.compute(coordinates)

    def compute(self, coordinates: Sequence[Coordinate]) -> RouteOutcome:
        segments = [
            vincenty_distance(coordinates[i - 1], coordinates[i]).distance_km
            for i in range(1, len(coordinates))
        ]
        return RouteOutcome(
            distance_km=sum(segments),
            duration_minutes=estimate_duration_minutes(segments),
            method=METHOD,
            polyline=polyline.encode(coordinates) if len(coordinates) >= 2 else None,
        )
