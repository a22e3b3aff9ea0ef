"""Session summaries and GPS data quality metrics."""

from __future__ import annotations

from collections.abc import Sequence

from fieldtrack.core.geometry import total_path_distance
from fieldtrack.domain.models import (
    DataQualityMetrics,
    GPSLogRecord,
    SessionSummary,
    TrackingSession,
)

GAP_THRESHOLD_SECS = 300  # signal gap
IDEAL_INTERVAL_SECS = 30
MAX_REASONABLE_INTERVAL_SECS = 120
MIN_READINGS = 10
MAX_GAPS = 5


def data_quality_metrics(
    logs: Sequence[GPSLogRecord],
    accuracy_threshold: float = 10.0,
) -> DataQualityMetrics:
    """
    Score the quality of a session's GPS log.

    The overall score (0-100) is half accuracy (share of readings within
    ``accuracy_threshold``) and half continuity (penalised for gaps over
    five minutes and for a sampling interval above 30 seconds).
    """
    accuracies = [log.accuracy for log in logs if log.accuracy is not None]
    avg_accuracy = sum(accuracies) / len(accuracies) if accuracies else 0.0
    max_accuracy = max(accuracies) if accuracies else 0.0
    good = sum(1 for a in accuracies if a <= accuracy_threshold)

    ordered = sorted(logs, key=lambda log: log.timestamp)
    gaps = 0
    total_interval = 0.0
    for prev, cur in zip(ordered, ordered[1:]):
        interval = (cur.timestamp - prev.timestamp).total_seconds()
        total_interval += interval
        if interval > GAP_THRESHOLD_SECS:
            gaps += 1
    avg_interval = total_interval / (len(ordered) - 1) if len(ordered) > 1 else 0.0

    continuity = max(
        0.0, 100 - gaps * 10 - max(0.0, (avg_interval - IDEAL_INTERVAL_SECS) / 10)
    )
    accuracy_score = (good / len(accuracies)) * 50 if accuracies else 0.0
    overall = round(accuracy_score + continuity / 100 * 50)

    issues: list[str] = []
    if avg_accuracy > accuracy_threshold * 2:
        issues.append(f"Poor GPS accuracy (avg: {round(avg_accuracy)}m)")
    if gaps > MAX_GAPS:
        issues.append(f"Multiple GPS signal gaps ({gaps} gaps)")
    if avg_interval > MAX_REASONABLE_INTERVAL_SECS:
        issues.append(f"Infrequent GPS readings (avg: {round(avg_interval)}s apart)")
    if len(logs) < MIN_READINGS:
        issues.append("Very few GPS readings recorded")

    return DataQualityMetrics(
        avg_accuracy_m=round(avg_accuracy, 1),
        max_accuracy_m=round(max_accuracy, 1),
        good_readings=good,
        total_readings=len(logs),
        time_gaps=gaps,
        avg_interval_secs=round(avg_interval),
        continuity=round(continuity, 1),
        overall_score=overall,
        issues=issues,
    )


def session_summary(
    session: TrackingSession,
    logs: Sequence[GPSLogRecord],
    accuracy_threshold: float = 10.0,
) -> SessionSummary:
    """Summarize one session; open sessions report zero duration."""
    duration_hours = 0.0
    if session.check_out is not None:
        duration_hours = (session.check_out - session.check_in).total_seconds() / 3600.0

    speeds = [log.speed for log in logs if log.speed is not None and log.speed > 0]
    avg_speed = sum(speeds) / len(speeds) if speeds else 0.0

    distance = session.total_distance_km
    if not distance and len(logs) > 1:
        distance = total_path_distance(logs)

    return SessionSummary(
        session_id=session.id,
        owner_user_id=session.owner_user_id,
        day=session.check_in.date(),
        state=session.state,
        check_in=session.check_in,
        check_out=session.check_out,
        duration_hours=round(duration_hours, 2),
        total_distance_km=round(distance, 3),
        avg_speed_kmh=round(avg_speed, 2),
        max_speed_kmh=round(max(speeds), 2) if speeds else 0.0,
        coordinate_count=len(logs),
        start_location=session.start_location,
        end_location=session.end_location,
        calculation_method=session.calculation_method,
        quality=data_quality_metrics(logs, accuracy_threshold),
    )
