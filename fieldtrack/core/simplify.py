"""Route simplification and waypoint capping for provider coordinate limits."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import TypeVar

from fieldtrack.core.geometry import LatLon

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=LatLon)

DEFAULT_EPSILON = 0.00005  # degrees, ~5 m


def perpendicular_distance(point: LatLon, start: LatLon, end: LatLon) -> float:
    """Distance (degrees) from ``point`` to the line through ``start`` and ``end``."""
    a = end.latitude - start.latitude
    b = start.longitude - end.longitude
    c = end.longitude * start.latitude - start.longitude * end.latitude
    norm = math.hypot(a, b)
    if norm == 0:
        # degenerate segment: plain distance to the shared endpoint
        return math.hypot(point.latitude - start.latitude, point.longitude - start.longitude)
    return abs(a * point.longitude + b * point.latitude + c) / norm


def simplify(points: Sequence[P], epsilon: float = DEFAULT_EPSILON) -> list[P]:
    """
    Douglas-Peucker simplification.

    Works on an explicit stack so long traces cannot hit the recursion
    limit. The first and last points always survive and the output never
    has more points than the input.
    """
    n = len(points)
    if n <= 2:
        return list(points)

    keep = [False] * n
    keep[0] = keep[-1] = True
    stack = [(0, n - 1)]

    while stack:
        first, last = stack.pop()
        max_dist = 0.0
        index = first
        for i in range(first + 1, last):
            d = perpendicular_distance(points[i], points[first], points[last])
            if d > max_dist:
                max_dist = d
                index = i
        if max_dist > epsilon:
            keep[index] = True
            stack.append((first, index))
            stack.append((index, last))

    return [p for p, k in zip(points, keep) if k]


def select_waypoints(points: Sequence[P], max_points: int) -> list[P]:
    """Evenly spaced subset of at most ``max_points`` keeping first and last."""
    n = len(points)
    if n <= max_points:
        return list(points)
    if max_points < 2:
        raise ValueError("max_points must be at least 2")

    step = (n - 1) / (max_points - 1)
    indices = sorted({round(i * step) for i in range(max_points)})
    return [points[i] for i in indices]


def cap_points(
    points: Sequence[P],
    max_points: int,
    epsilon: float = DEFAULT_EPSILON,
) -> list[P]:
    """Simplify, then thin evenly until within ``max_points``."""
    if len(points) <= max_points:
        return list(points)
    reduced = simplify(points, epsilon)
    if len(reduced) > max_points:
        reduced = select_waypoints(reduced, max_points)
    logger.debug("Capped %d points to %d", len(points), len(reduced))
    return reduced
