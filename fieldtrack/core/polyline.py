"""Google encoded polyline algorithm format (precision 5)."""

from __future__ import annotations

from collections.abc import Iterable

from fieldtrack.core.geometry import LatLon, Point

PRECISION = 5


def _encode_value(value: int) -> str:
    value = ~(value << 1) if value < 0 else value << 1
    chunks = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1F)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return "".join(chunks)


def encode(points: Iterable[LatLon], precision: int = PRECISION) -> str:
    """Encode points as a polyline string. Empty input encodes to ''."""
    factor = 10**precision
    out: list[str] = []
    prev_lat = prev_lon = 0
    for p in points:
        lat = round(p.latitude * factor)
        lon = round(p.longitude * factor)
        out.append(_encode_value(lat - prev_lat))
        out.append(_encode_value(lon - prev_lon))
        prev_lat, prev_lon = lat, lon
    return "".join(out)


def decode(text: str, precision: int = PRECISION) -> list[Point]:
    """Decode a polyline string. Raises ValueError on truncated input."""
    factor = 10**precision
    points: list[Point] = []
    index = 0
    lat = lon = 0
    length = len(text)

    while index < length:
        deltas = []
        for _ in range(2):
            shift = result = 0
            while True:
                if index >= length:
                    raise ValueError("truncated polyline")
                b = ord(text[index]) - 63
                index += 1
                result |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lon += deltas[1]
        points.append(Point(latitude=lat / factor, longitude=lon / factor))

    return points
