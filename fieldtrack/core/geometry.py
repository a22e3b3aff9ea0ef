"""
Geometry Primitives
===================

Great-circle and ellipsoidal distance, bearings and path length.
All distances are in kilometres, all angles in degrees.

Usage:
    d = haversine_distance(a, b)
    v = vincenty_distance(a, b)
    print(f"{v.distance_km:.3f}km, heading {v.initial_bearing_deg:.0f}")
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088  # mean radius

# WGS-84 ellipsoid
WGS84_A = 6378137.0  # semi-major axis (m)
WGS84_B = 6356752.314245  # semi-minor axis (m)
WGS84_F = 1 / 298.257223563

VINCENTY_TOLERANCE = 1e-12
VINCENTY_MAX_ITERATIONS = 100


class LatLon(Protocol):
    @property
    def latitude(self) -> float: ...

    @property
    def longitude(self) -> float: ...


@dataclass(frozen=True)
class Point:
    """Bare lat/lon pair for intermediate results (centroids, decoded paths)."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class VincentyResult:
    """Ellipsoidal inverse solution."""

    distance_km: float
    initial_bearing_deg: float
    final_bearing_deg: float
    iterations: int
    converged: bool = True


def haversine_distance(a: LatLon, b: LatLon) -> float:
    """
    Great-circle distance on a spherical Earth.

    Args:
        a: First point
        b: Second point

    Returns:
        Distance in kilometres (0 for identical points)
    """
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = math.radians(b.latitude - a.latitude)
    dlon = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Clamp: rounding can push h a hair past 1 for antipodal points
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_KM * c


def bearing(a: LatLon, b: LatLon) -> float:
    """
    Initial bearing from a to b.

    Returns:
        Bearing in degrees (0-360, 0=North)
    """
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlon = math.radians(b.longitude - a.longitude)

    x = math.sin(dlon) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)

    result = (math.degrees(math.atan2(x, y)) + 360) % 360
    # (-tiny + 360) % 360 can round to exactly 360.0
    return 0.0 if result >= 360.0 else result


def vincenty_distance(a: LatLon, b: LatLon) -> VincentyResult:
    """
    Vincenty inverse formula on the WGS-84 ellipsoid.

    Iterates until successive lambda estimates differ by less than 1e-12 or
    100 iterations elapse. Near-antipodal inputs that do not converge fall
    back to the haversine distance with spherical bearings.
    """
    if a.latitude == b.latitude and a.longitude == b.longitude:
        return VincentyResult(0.0, 0.0, 0.0, 0)

    f = WGS84_F
    L = math.radians(b.longitude - a.longitude)
    U1 = math.atan((1 - f) * math.tan(math.radians(a.latitude)))
    U2 = math.atan((1 - f) * math.tan(math.radians(b.latitude)))
    sinU1, cosU1 = math.sin(U1), math.cos(U1)
    sinU2, cosU2 = math.sin(U2), math.cos(U2)

    lam = L
    iterations = 0
    converged = False
    sin_lam = cos_lam = 0.0
    sin_sigma = cos_sigma = sigma = 0.0
    cos2_alpha = 1.0
    cos_2sigma_m = 0.0

    while iterations < VINCENTY_MAX_ITERATIONS:
        iterations += 1
        sin_lam = math.sin(lam)
        cos_lam = math.cos(lam)
        sin_sigma = math.sqrt(
            (cosU2 * sin_lam) ** 2 + (cosU1 * sinU2 - sinU1 * cosU2 * cos_lam) ** 2
        )
        if sin_sigma == 0:
            # coincident points
            return VincentyResult(0.0, 0.0, 0.0, iterations)

        cos_sigma = sinU1 * sinU2 + cosU1 * cosU2 * cos_lam
        sigma = math.atan2(sin_sigma, cos_sigma)
        sin_alpha = cosU1 * cosU2 * sin_lam / sin_sigma
        cos2_alpha = 1 - sin_alpha**2
        # equatorial line: cos2_alpha == 0
        cos_2sigma_m = cos_sigma - 2 * sinU1 * sinU2 / cos2_alpha if cos2_alpha != 0 else 0.0

        C = f / 16 * cos2_alpha * (4 + f * (4 - 3 * cos2_alpha))
        lam_prev = lam
        lam = L + (1 - C) * f * sin_alpha * (
            sigma + C * sin_sigma * (cos_2sigma_m + C * cos_sigma * (-1 + 2 * cos_2sigma_m**2))
        )
        if abs(lam - lam_prev) < VINCENTY_TOLERANCE:
            converged = True
            break

    if not converged or math.isnan(lam):
        logger.debug("Vincenty did not converge after %d iterations, using haversine", iterations)
        return VincentyResult(
            distance_km=haversine_distance(a, b),
            initial_bearing_deg=bearing(a, b),
            final_bearing_deg=bearing(b, a),
            iterations=iterations,
            converged=False,
        )

    u_sq = cos2_alpha * (WGS84_A**2 - WGS84_B**2) / WGS84_B**2
    A = 1 + u_sq / 16384 * (4096 + u_sq * (-768 + u_sq * (320 - 175 * u_sq)))
    B = u_sq / 1024 * (256 + u_sq * (-128 + u_sq * (74 - 47 * u_sq)))
    delta_sigma = B * sin_sigma * (
        cos_2sigma_m
        + B / 4 * (
            cos_sigma * (-1 + 2 * cos_2sigma_m**2)
            - B / 6 * cos_2sigma_m * (-3 + 4 * sin_sigma**2) * (-3 + 4 * cos_2sigma_m**2)
        )
    )
    distance_m = WGS84_B * A * (sigma - delta_sigma)

    initial = math.degrees(math.atan2(cosU2 * sin_lam, cosU1 * sinU2 - sinU1 * cosU2 * cos_lam))
    final = math.degrees(math.atan2(cosU1 * sin_lam, -sinU1 * cosU2 + cosU1 * sinU2 * cos_lam))

    return VincentyResult(
        distance_km=distance_m / 1000.0,
        initial_bearing_deg=(initial + 360) % 360,
        final_bearing_deg=(final + 360) % 360,
        iterations=iterations,
    )


def total_path_distance(points: Sequence[LatLon], method: str = "haversine") -> float:
    """
    Sum of consecutive pairwise distances.

    Args:
        points: Ordered path
        method: "haversine" or "vincenty"

    Returns:
        Path length in kilometres (0 for fewer than two points)
    """
    if len(points) < 2:
        return 0.0
    if method == "vincenty":
        return sum(vincenty_distance(points[i - 1], points[i]).distance_km for i in range(1, len(points)))
    if method != "haversine":
        raise ValueError(f"unknown distance method: {method}")
    return sum(haversine_distance(points[i - 1], points[i]) for i in range(1, len(points)))


def centroid(points: Sequence[LatLon]) -> Point:
    """Arithmetic mean of latitudes and longitudes (adequate for local traces)."""
    if not points:
        raise ValueError("centroid of empty sequence")
    n = len(points)
    return Point(
        latitude=sum(p.latitude for p in points) / n,
        longitude=sum(p.longitude for p in points) / n,
    )
