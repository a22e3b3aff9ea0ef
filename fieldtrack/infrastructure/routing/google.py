"""
Google Maps Routing Tiers
~~~~~~~~~~~~~~~~~~~~~~~~~

Directions API (traffic-aware, single request with capped waypoints) and
Distance Matrix API (consecutive segments, per-segment fallback).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from fieldtrack.config import GoogleMapsConfig, RoutingConfig, TravelMode
from fieldtrack.core.geometry import vincenty_distance
from fieldtrack.core.simplify import cap_points
from fieldtrack.domain.errors import UpstreamDegraded
from fieldtrack.domain.models import Coordinate

from .base import Degraded, JSONClient, RouteOutcome, latlng
from .local import estimate_duration_minutes

logger = logging.getLogger(__name__)

DIRECTIONS_PATH = "/maps/api/directions/json"
DISTANCE_MATRIX_PATH = "/maps/api/distancematrix/json"

# Directions/Distance Matrix have no two-wheeler mode
GOOGLE_MODES = {
    TravelMode.DRIVING: "driving",
    TravelMode.WALKING: "walking",
    TravelMode.BICYCLING: "bicycling",
    TravelMode.TWO_WHEELER: "driving",
}


def _check_status(tier: str, data: dict[str, Any]) -> None:
    status = data.get("status")
    if status != "OK":
        message = data.get("error_message") or "no error message"
        raise UpstreamDegraded(tier, f"API status {status} - {message}")


def _element_status(rows: Any, i: int) -> tuple[float, float] | str:
    """(km, minutes) of the i-th diagonal element, or the status to report."""
    try:
        element = rows[i]["elements"][i]
        status = element.get("status", "MISSING")
        if status != "OK":
            return status
        return element["distance"]["value"] / 1000.0, element["duration"]["value"] / 60.0
    except IndexError:
        return "MISSING"
    except (KeyError, TypeError, AttributeError):
        return "MALFORMED"


class GoogleDirectionsStrategy:
    """
    Directions API tier.

    Sends origin, destination and up to 23 intermediate waypoints. When
    traffic-aware, ``duration_in_traffic`` becomes the duration and the
    plain duration is reported as ``static_duration_minutes``.
    """

    name = "google_directions"

    def __init__(
        self,
        config: GoogleMapsConfig,
        routing: RoutingConfig,
        client: JSONClient | None = None,
    ) -> None:
        self.config = config
        self.routing = routing
        self.client = client or JSONClient(self.name, timeout=config.timeout)

    async def __call__(
        self, coordinates: Sequence[Coordinate], travel_mode: TravelMode
    ) -> RouteOutcome | Degraded:
        api_key = self.config.resolve_api_key()
        if not api_key:
            return Degraded(self.name, "Google Maps API key not configured")
        if len(coordinates) < 2:
            return Degraded(self.name, "insufficient coordinates")
        try:
            return await self._route(coordinates, travel_mode, api_key)
        except UpstreamDegraded as e:
            return Degraded(self.name, e.reason)

    def build_params(
        self, points: Sequence[Coordinate], travel_mode: TravelMode, api_key: str
    ) -> dict[str, str]:
        mode = GOOGLE_MODES[travel_mode]
        params = {
            "origin": latlng(points[0]),
            "destination": latlng(points[-1]),
            "mode": mode,
            "units": "metric",
            "key": api_key,
        }
        if len(points) > 2:
            params["waypoints"] = "|".join(latlng(p) for p in points[1:-1])
        if self.config.region:
            params["region"] = self.config.region
        if self.config.avoid:
            params["avoid"] = self.config.avoid
        if self.config.traffic_aware and mode == "driving":
            params["departure_time"] = "now"
        return params

    async def _route(
        self, coordinates: Sequence[Coordinate], travel_mode: TravelMode, api_key: str
    ) -> RouteOutcome:
        points = cap_points(coordinates, self.routing.max_waypoints, self.routing.simplify_epsilon)
        params = self.build_params(points, travel_mode, api_key)

        logger.debug("Calling Directions API with %d waypoints", len(points))
        data = await self.client.get_json(self.config.base_url + DIRECTIONS_PATH, params)
        _check_status(self.name, data)

        routes = data.get("routes") or []
        if not routes:
            raise UpstreamDegraded(self.name, "no routes found")
        route = routes[0]
        legs = route.get("legs") or []
        if not legs:
            raise UpstreamDegraded(self.name, "route has no legs")

        try:
            distance_m = sum(leg["distance"]["value"] for leg in legs)
            static_s = sum(leg["duration"]["value"] for leg in legs)
            traffic_s = sum(
                (leg.get("duration_in_traffic") or leg["duration"])["value"] for leg in legs
            )
        except (KeyError, TypeError) as e:
            raise UpstreamDegraded(self.name, f"malformed leg: {e}") from e

        has_traffic = any("duration_in_traffic" in leg for leg in legs)
        overview = (route.get("overview_polyline") or {}).get("points")

        return RouteOutcome(
            distance_km=distance_m / 1000.0,
            duration_minutes=traffic_s / 60.0,
            static_duration_minutes=static_s / 60.0 if has_traffic else None,
            polyline=overview,
            method=self.name,
            api_calls=1,
        )


class DistanceMatrixStrategy:
    """
    Distance Matrix tier.

    The trace is split into consecutive segments of ``matrix_segment_size``
    pairs (segments share their boundary point). Only diagonal elements
    (origin[i] -> destination[i]) are summed. A failed element or segment
    falls back to Vincenty for just that part and the method becomes
    ``mixed``. Only when every segment fails is the tier degraded.
    """

    name = "google_distance_matrix"

    def __init__(
        self,
        config: GoogleMapsConfig,
        routing: RoutingConfig,
        client: JSONClient | None = None,
    ) -> None:
        self.config = config
        self.routing = routing
        self.client = client or JSONClient(self.name, timeout=config.timeout)

    async def __call__(
        self, coordinates: Sequence[Coordinate], travel_mode: TravelMode
    ) -> RouteOutcome | Degraded:
        api_key = self.config.resolve_api_key()
        if not api_key:
            return Degraded(self.name, "Google Maps API key not configured")
        if len(coordinates) < 2:
            return Degraded(self.name, "insufficient coordinates")
        return await self._route(coordinates, travel_mode, api_key)

    def segments(self, coordinates: Sequence[Coordinate]) -> list[list[Coordinate]]:
        size = self.routing.matrix_segment_size
        return [
            list(coordinates[i : i + size + 1])
            for i in range(0, len(coordinates) - 1, size)
        ]

    async def _segment(
        self, segment: Sequence[Coordinate], travel_mode: TravelMode, api_key: str
    ) -> tuple[float, float, list[str]]:
        """Return (distance km, duration min, element warnings) for one segment."""
        origins = segment[:-1]
        destinations = segment[1:]
        params = {
            "origins": "|".join(latlng(c) for c in origins),
            "destinations": "|".join(latlng(c) for c in destinations),
            "mode": GOOGLE_MODES[travel_mode],
            "units": "metric",
            "key": api_key,
        }
        if self.config.region:
            params["region"] = self.config.region
        if self.config.avoid:
            params["avoid"] = self.config.avoid

        data = await self.client.get_json(self.config.base_url + DISTANCE_MATRIX_PATH, params)
        _check_status(self.name, data)
        rows = data.get("rows") or []

        distance_km = 0.0
        duration_min = 0.0
        warnings: list[str] = []
        for i, (origin, destination) in enumerate(zip(origins, destinations)):
            status = _element_status(rows, i)
            if isinstance(status, tuple):
                distance_km += status[0]
                duration_min += status[1]
                continue
            fallback = vincenty_distance(origin, destination).distance_km
            distance_km += fallback
            duration_min += estimate_duration_minutes([fallback])
            warnings.append(f"element {i + 1} status {status}, used Vincenty")
        return distance_km, duration_min, warnings

    async def _route(
        self, coordinates: Sequence[Coordinate], travel_mode: TravelMode, api_key: str
    ) -> RouteOutcome | Degraded:
        segments = self.segments(coordinates)
        distance_km = 0.0
        duration_min = 0.0
        warnings: list[str] = []
        failed = 0
        mixed = False
        api_calls = 0

        for index, segment in enumerate(segments):
            if index > 0 and self.routing.matrix_delay_secs > 0:
                await asyncio.sleep(self.routing.matrix_delay_secs)
            api_calls += 1
            try:
                seg_km, seg_min, element_warnings = await self._segment(segment, travel_mode, api_key)
            except UpstreamDegraded as e:
                logger.warning(
                    f"Distance Matrix failed for segment {index + 1}/{len(segments)}: {e.reason}"
                )
                failed += 1
                mixed = True
                fallback = [
                    vincenty_distance(segment[i - 1], segment[i]).distance_km
                    for i in range(1, len(segment))
                ]
                distance_km += sum(fallback)
                duration_min += estimate_duration_minutes(fallback)
                warnings.append(f"segment {index + 1} failed ({e.reason}), used Vincenty")
                continue

            distance_km += seg_km
            duration_min += seg_min
            if element_warnings:
                mixed = True
                warnings.extend(f"segment {index + 1}: {w}" for w in element_warnings)

        if failed == len(segments):
            return Degraded(self.name, f"all {failed} segments failed")

        return RouteOutcome(
            distance_km=distance_km,
            duration_minutes=duration_min,
            method="mixed" if mixed else self.name,
            warnings=warnings,
            api_calls=api_calls,
        )
