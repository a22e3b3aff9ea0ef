"""OSRM routing tier (community router, used when a drawable path is wanted)."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from fieldtrack.config import OSRMConfig, RoutingConfig, TravelMode
from fieldtrack.core import polyline
from fieldtrack.core.geometry import Point
from fieldtrack.core.simplify import cap_points
from fieldtrack.domain.errors import UpstreamDegraded
from fieldtrack.domain.models import Coordinate

from .base import Degraded, JSONClient, RouteOutcome

logger = logging.getLogger(__name__)

OSRM_EPSILON = 0.0001  # ~10 m, coarser to keep URLs short

OSRM_PROFILES = {
    TravelMode.DRIVING: "driving",
    TravelMode.WALKING: "foot",
    TravelMode.BICYCLING: "bike",
    TravelMode.TWO_WHEELER: "driving",
}


class OSRMStrategy:
    """
    ``/route/v1/{profile}/{lon,lat;...}`` with full GeoJSON overview.

    The returned geometry is re-encoded as a Google polyline so every tier
    hands back the same format.
    """

    name = "osrm"

    def __init__(
        self,
        config: OSRMConfig,
        routing: RoutingConfig,
        client: JSONClient | None = None,
    ) -> None:
        self.config = config
        self.routing = routing
        self.client = client or JSONClient(
            self.name,
            timeout=config.timeout,
            headers={"User-Agent": config.user_agent},
        )

    def build_url(self, points: Sequence[Coordinate], travel_mode: TravelMode) -> str:
        profile = OSRM_PROFILES[travel_mode]
        coords = ";".join(f"{p.longitude:.6f},{p.latitude:.6f}" for p in points)
        return f"{self.config.base_url.rstrip('/')}/route/v1/{profile}/{coords}"

    async def __call__(
        self, coordinates: Sequence[Coordinate], travel_mode: TravelMode
    ) -> RouteOutcome | Degraded:
        if len(coordinates) < 2:
            return Degraded(self.name, "insufficient coordinates")
        points = cap_points(coordinates, self.routing.osrm_max_coordinates, OSRM_EPSILON)
        try:
            data = await self.client.get_json(
                self.build_url(points, travel_mode),
                {"overview": "full", "geometries": "geojson", "steps": "false"},
            )
            if data.get("code") != "Ok" or not data.get("routes"):
                raise UpstreamDegraded(self.name, f"routing error: {data.get('code', 'no routes')}")
            route = data["routes"][0]
            geometry = [
                Point(latitude=lat, longitude=lon)
                for lon, lat in (route.get("geometry") or {}).get("coordinates", [])
            ]
            distance_km = float(route["distance"]) / 1000.0
            duration_min = float(route["duration"]) / 60.0
        except UpstreamDegraded as e:
            return Degraded(self.name, e.reason)
        except (KeyError, TypeError, ValueError) as e:
            return Degraded(self.name, f"malformed response: {e}")

        logger.debug(f"OSRM route: {distance_km:.2f}km, {duration_min:.1f}min")
        return RouteOutcome(
            distance_km=distance_km,
            duration_minutes=duration_min,
            polyline=polyline.encode(geometry) if geometry else None,
            method=self.name,
            api_calls=1,
        )
