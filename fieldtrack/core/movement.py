"""
Movement Pattern Analyzer
=========================

Classifies a coordinate trace (static, simple, moderate, complex, return
journey) and decides whether an external routing service is worth calling.

Usage:
    pattern, analysis = get_routing_decision(points)
    if analysis.should_use_external_routing:
        ...
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from fieldtrack.config import MovementThresholds
from fieldtrack.core.geometry import bearing, centroid, haversine_distance
from fieldtrack.domain.models import (
    Coordinate,
    MovementPattern,
    RouteAnalysis,
    RouteComplexity,
)

logger = logging.getLogger(__name__)

# Return detection looks at the trailing 40% of the trace
RETURN_TAIL_START = 0.6


def _direction_changes(points: Sequence[Coordinate], threshold_deg: float) -> int:
    changes = 0
    for i in range(2, len(points)):
        b1 = bearing(points[i - 2], points[i - 1])
        b2 = bearing(points[i - 1], points[i])
        diff = abs(b1 - b2)
        if min(diff, 360.0 - diff) > threshold_deg:
            changes += 1
    return changes


def detect_return_journey(
    points: Sequence[Coordinate],
    thresholds: MovementThresholds | None = None,
) -> bool:
    """True when enough of the trace's tail lies close to its start."""
    t = thresholds or MovementThresholds()
    n = len(points)
    if n < t.return_min_points:
        return False

    start = points[0]
    tail_start = math.floor(n * RETURN_TAIL_START)
    near = sum(
        1 for p in points[tail_start:] if haversine_distance(start, p) <= t.return_proximity_km
    )
    return near / (n - tail_start) >= t.return_ratio


def analyze_movement_pattern(
    points: Sequence[Coordinate],
    thresholds: MovementThresholds | None = None,
) -> MovementPattern:
    """
    Compute segment statistics for a trace.

    Args:
        points: Ordered coordinates
        thresholds: Direction-change and return-journey tunables

    Returns:
        MovementPattern; all zeros for fewer than two points
    """
    t = thresholds or MovementThresholds()
    if len(points) < 2:
        return MovementPattern()

    segments = [haversine_distance(points[i - 1], points[i]) for i in range(1, len(points))]
    total = sum(segments)
    mean = total / len(segments)
    variance = sum((d - mean) ** 2 for d in segments) / len(segments)

    first_ts = points[0].timestamp
    last_ts = points[-1].timestamp
    time_span = 0.0
    if first_ts is not None and last_ts is not None:
        time_span = max(0.0, (last_ts - first_ts).total_seconds() / 60.0)
    avg_speed = (total / time_span) * 60.0 if time_span > 0 else 0.0

    center = centroid(points)
    radius = max(haversine_distance(center, p) for p in points)

    return MovementPattern(
        total_distance_km=total,
        average_segment_km=mean,
        max_segment_km=max(segments),
        min_segment_km=min(segments),
        distance_variance=variance,
        time_span_minutes=time_span,
        average_speed_kmh=avg_speed,
        movement_radius_km=radius,
        direction_changes=_direction_changes(points, t.direction_change_deg),
        is_returning=detect_return_journey(points, t),
    )


def complexity_score(point_count: int, pattern: MovementPattern) -> int:
    """Additive score over distance, turns, speed, duration and spread."""
    score = 0

    if pattern.total_distance_km > 5:
        score += 2
    elif pattern.total_distance_km > 1:
        score += 1

    turn_ratio = pattern.direction_changes / point_count if point_count else 0.0
    if turn_ratio > 0.3:
        score += 2
    elif turn_ratio > 0.1:
        score += 1

    if pattern.average_speed_kmh > 30:
        score += 1  # highway speeds
    if pattern.time_span_minutes > 30:
        score += 1

    if pattern.movement_radius_km > 2:
        score += 2
    elif pattern.movement_radius_km > 0.5:
        score += 1

    return score


def analyze_route_complexity(
    points: Sequence[Coordinate],
    pattern: MovementPattern,
    thresholds: MovementThresholds | None = None,
) -> RouteAnalysis:
    """Decide the routing tier for a trace. First matching rule wins."""
    t = thresholds or MovementThresholds()
    distance = pattern.total_distance_km

    if len(points) < t.min_points:
        return RouteAnalysis(
            should_use_external_routing=False,
            is_static_location=True,
            confidence=100,
            reasoning=["Insufficient GPS points for route analysis"],
            skip_routing=True,
            movement_distance_km=distance,
        )

    if (
        distance < t.static_distance_km
        or pattern.movement_radius_km < t.building_radius_km
        or pattern.distance_variance < t.static_variance
    ):
        return RouteAnalysis(
            should_use_external_routing=False,
            is_static_location=True,
            confidence=95,
            reasoning=["Location appears static - minimal movement detected"],
            skip_routing=True,
            movement_distance_km=distance,
        )

    if distance < t.min_routing_distance_km:
        return RouteAnalysis(
            should_use_external_routing=False,
            is_static_location=False,
            confidence=85,
            reasoning=[
                f"Total distance ({distance:.2f}km) below minimum threshold for external routing"
            ],
            movement_distance_km=distance,
        )

    score = complexity_score(len(points), pattern)
    if score >= 6:
        complexity = RouteComplexity.COMPLEX
    elif score >= 3:
        complexity = RouteComplexity.MODERATE
    else:
        complexity = RouteComplexity.SIMPLE
    warrants_external = score >= t.min_complexity_score

    if pattern.is_returning:
        reasoning = ["Return journey detected - optimizing for round trip"]
        if warrants_external:
            reasoning.append("Complex return journey - using external routing")
        else:
            reasoning.append("Simple return journey - using local geometry")
        return RouteAnalysis(
            should_use_external_routing=warrants_external,
            is_static_location=False,
            complexity=complexity,
            confidence=80 if warrants_external else 75,
            reasoning=reasoning,
            complexity_score=score,
            movement_distance_km=distance,
        )

    if warrants_external:
        reasoning = [
            f"Route complexity score ({score}) warrants external routing",
            f"Route with {pattern.direction_changes} direction changes",
        ]
    else:
        reasoning = [f"Route complexity score ({score}) suggests local geometry is sufficient"]

    return RouteAnalysis(
        should_use_external_routing=warrants_external,
        is_static_location=False,
        complexity=complexity,
        confidence=min(90, 50 + 10 * score),
        reasoning=reasoning,
        complexity_score=score,
        movement_distance_km=distance,
    )


def get_routing_decision(
    points: Sequence[Coordinate],
    thresholds: MovementThresholds | None = None,
) -> tuple[MovementPattern, RouteAnalysis]:
    """Analyze a trace and log the resulting decision."""
    pattern = analyze_movement_pattern(points, thresholds)
    analysis = analyze_route_complexity(points, pattern, thresholds)

    logger.info(
        "Routing decision for %d points: external=%s static=%s complexity=%s confidence=%d%%",
        len(points),
        analysis.should_use_external_routing,
        analysis.is_static_location,
        analysis.complexity.value,
        analysis.confidence,
    )
    logger.debug(
        "Movement: distance=%.3fkm radius=%.3fkm turns=%d span=%.1fmin speed=%.1fkm/h returning=%s",
        pattern.total_distance_km,
        pattern.movement_radius_km,
        pattern.direction_changes,
        pattern.time_span_minutes,
        pattern.average_speed_kmh,
        pattern.is_returning,
    )
    return pattern, analysis
