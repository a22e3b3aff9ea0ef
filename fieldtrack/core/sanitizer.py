"""
Coordinate Sanitizer
====================

Turns loosely-typed client payloads into Coordinates and filters out
samples that would corrupt distance totals.

Typical ingestion order:
    sanitize -> validate -> filter_by_accuracy -> order_by_timestamp
             -> filter_by_speed -> remove_near_duplicates
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from fieldtrack.config import TrackingConfig
from fieldtrack.core.geometry import LatLon, haversine_distance
from fieldtrack.domain.models import Coordinate, ValidationResult

logger = logging.getLogger(__name__)

LATITUDE_KEYS = ("latitude", "lat")
LONGITUDE_KEYS = ("longitude", "lng", "lon")

# Epoch values above this are milliseconds (year 5138 in seconds)
EPOCH_MS_THRESHOLD = 1e11


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def _first(raw: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a timestamp into an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings
    (trailing ``Z`` allowed) and epoch seconds or milliseconds, either as
    numbers or numeric strings. Returns None for anything else.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)

    epoch = _to_float(value)
    if epoch is not None:
        if epoch > EPOCH_MS_THRESHOLD:
            epoch /= 1000.0
        try:
            return datetime.fromtimestamp(epoch, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)

    return None


def sanitize(raw: Mapping[str, Any] | Coordinate | None) -> Coordinate | None:
    """
    Normalize one raw coordinate.

    Args:
        raw: Mapping with ``lat``/``latitude`` and ``lng``/``lon``/``longitude``
            keys, or an existing Coordinate

    Returns:
        Coordinate, or None when latitude/longitude are missing,
        non-numeric, non-finite or out of range
    """
    if raw is None:
        return None
    if isinstance(raw, Coordinate):
        return raw
    if not isinstance(raw, Mapping):
        return None

    lat = _to_float(_first(raw, LATITUDE_KEYS))
    lon = _to_float(_first(raw, LONGITUDE_KEYS))
    if lat is None or lon is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None

    return Coordinate(
        latitude=lat,
        longitude=lon,
        accuracy=_to_float(raw.get("accuracy")),
        speed=_to_float(raw.get("speed")),
        altitude=_to_float(raw.get("altitude")),
        timestamp=parse_timestamp(raw.get("timestamp")),
    )


def validate(coord: Coordinate, config: TrackingConfig | None = None) -> ValidationResult:
    """
    Check a coordinate against range and plausibility limits.

    Only an out-of-range position invalidates the sample. Poor accuracy,
    implausible speed and altitude are reported as flags in ``errors``.
    """
    config = config or TrackingConfig()
    errors: list[str] = []
    valid = True

    if not -90.0 <= coord.latitude <= 90.0:
        errors.append(f"latitude out of range: {coord.latitude}")
        valid = False
    if not -180.0 <= coord.longitude <= 180.0:
        errors.append(f"longitude out of range: {coord.longitude}")
        valid = False

    if coord.accuracy is not None and coord.accuracy > config.accuracy_threshold_m:
        errors.append(
            f"accuracy {coord.accuracy:.1f}m exceeds threshold {config.accuracy_threshold_m:.1f}m"
        )
    if coord.speed is not None and not 0.0 <= coord.speed <= config.max_speed_kmh:
        errors.append(f"speed {coord.speed:.1f}km/h outside 0-{config.max_speed_kmh:.0f}km/h")
    if coord.altitude is not None and not (
        config.min_altitude_m <= coord.altitude <= config.max_altitude_m
    ):
        errors.append(
            f"altitude {coord.altitude:.0f}m outside "
            f"{config.min_altitude_m:.0f}..{config.max_altitude_m:.0f}m"
        )

    return ValidationResult(valid=valid, errors=errors)


def filter_by_accuracy(coords: Sequence[Coordinate], threshold_m: float) -> list[Coordinate]:
    """Drop samples less accurate than ``threshold_m``. Unknown accuracy is kept."""
    return [c for c in coords if c.accuracy is None or c.accuracy <= threshold_m]


def order_by_timestamp(coords: Sequence[Coordinate]) -> list[Coordinate]:
    """Stable sort by timestamp; untimestamped samples keep their order at the end."""
    stamped = [c for c in coords if c.timestamp is not None]
    unstamped = [c for c in coords if c.timestamp is None]
    stamped.sort(key=lambda c: c.timestamp)  # type: ignore[arg-type, return-value]
    return stamped + unstamped


def filter_by_speed(
    coords: Sequence[Coordinate],
    max_speed_kmh: float,
    anchor: Coordinate | None = None,
) -> list[Coordinate]:
    """
    Drop GPS teleports.

    A sample is dropped when the speed implied by its distance and time from
    the last kept sample exceeds ``max_speed_kmh``. Pairs where either side
    lacks a timestamp, or where no time elapsed, are not judged.
    """
    kept: list[Coordinate] = []
    last = anchor
    for coord in coords:
        if last is not None and last.timestamp is not None and coord.timestamp is not None:
            hours = (coord.timestamp - last.timestamp).total_seconds() / 3600.0
            if hours > 0:
                implied = haversine_distance(last, coord) / hours
                if implied > max_speed_kmh:
                    logger.debug(
                        "Dropping implausible jump: %.1fkm/h at (%.6f, %.6f)",
                        implied,
                        coord.latitude,
                        coord.longitude,
                    )
                    continue
        kept.append(coord)
        last = coord
    return kept


def remove_near_duplicates(
    coords: Sequence[Coordinate],
    min_distance_km: float = 0.001,
    anchor: LatLon | None = None,
) -> list[Coordinate]:
    """
    Keep a point only if it is at least ``min_distance_km`` from the last kept one.

    Args:
        coords: Ordered samples
        min_distance_km: Jitter floor (default 1 m)
        anchor: Already-persisted point the walk starts from; when given,
            a first sample sitting on top of it is dropped too
    """
    kept: list[Coordinate] = []
    last: LatLon | None = anchor
    for coord in coords:
        if last is None or haversine_distance(last, coord) >= min_distance_km:
            kept.append(coord)
            last = coord
    return kept
