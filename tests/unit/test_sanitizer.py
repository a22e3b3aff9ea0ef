"""
Sanitizer Unit Tests
====================

Tests for coordinate normalization, validation and filtering.
"""

from datetime import UTC, datetime, timedelta

import pytest

from fieldtrack.config import TrackingConfig
from fieldtrack.core.sanitizer import (
    filter_by_accuracy,
    filter_by_speed,
    order_by_timestamp,
    parse_timestamp,
    remove_near_duplicates,
    sanitize,
    validate,
)
from fieldtrack.domain.models import Coordinate

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


class TestSanitize:
    """Tests for sanitize()."""

    def test_aliases_and_string_coercion(self):
        """lat/lng aliases and numeric strings are accepted."""
        coord = sanitize({"lat": "41.5", "lng": "29.25", "accuracy": "7"})
        assert coord == Coordinate(latitude=41.5, longitude=29.25, accuracy=7.0)

    def test_lon_alias(self):
        """lon is accepted as a longitude alias."""
        coord = sanitize({"latitude": 1, "lon": 2})
        assert coord is not None
        assert coord.longitude == 2.0

    @pytest.mark.parametrize(
        "raw",
        [
            {"lat": 41.0},
            {"lat": "north", "lng": 29.0},
            {"lat": float("nan"), "lng": 29.0},
            {"lat": 91.0, "lng": 29.0},
            {"lat": 41.0, "lng": -181.0},
            {"lat": True, "lng": 29.0},
            None,
            "41,29",
        ],
    )
    def test_rejects_bad_positions(self, raw):
        """Missing, non-numeric, non-finite or out-of-range positions give None."""
        assert sanitize(raw) is None

    def test_bad_optional_field_dropped(self):
        """Optional fields that fail to coerce become None."""
        coord = sanitize({"lat": 1, "lng": 2, "speed": "fast", "altitude": ""})
        assert coord is not None
        assert coord.speed is None
        assert coord.altitude is None

    def test_existing_coordinate_passthrough(self):
        """A Coordinate is returned unchanged."""
        coord = Coordinate(latitude=1, longitude=2)
        assert sanitize(coord) is coord


class TestParseTimestamp:
    """Tests for timestamp parsing."""

    def test_iso_with_z(self):
        assert parse_timestamp("2025-03-01T09:00:00Z") == T0

    def test_naive_datetime_is_utc(self):
        assert parse_timestamp(datetime(2025, 3, 1, 9, 0)) == T0

    def test_epoch_seconds_and_millis(self):
        """Epoch values are accepted in seconds or milliseconds."""
        seconds = T0.timestamp()
        assert parse_timestamp(seconds) == T0
        assert parse_timestamp(seconds * 1000) == T0
        assert parse_timestamp(str(int(seconds))) == T0

    def test_garbage(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None


class TestValidate:
    """Tests for validate()."""

    def test_clean_coordinate(self):
        result = validate(Coordinate(latitude=41, longitude=29, accuracy=5, speed=30, altitude=100))
        assert result.valid
        assert result.errors == []

    def test_flags_do_not_invalidate(self):
        """Accuracy, speed and altitude problems are flags only."""
        coord = Coordinate(latitude=41, longitude=29, accuracy=50, speed=250, altitude=12000)
        result = validate(coord, TrackingConfig(accuracy_threshold_m=10))
        assert result.valid
        assert len(result.errors) == 3

    def test_negative_speed_flagged(self):
        result = validate(Coordinate(latitude=0, longitude=0, speed=-1))
        assert result.valid
        assert any("speed" in e for e in result.errors)

    def test_out_of_range_invalid(self):
        """Range violations invalidate (constructed without validation)."""
        coord = Coordinate.model_construct(
            latitude=95.0, longitude=0.0, accuracy=None, speed=None, altitude=None, timestamp=None
        )
        result = validate(coord)
        assert not result.valid


class TestFilters:
    """Tests for list filters."""

    def test_filter_by_accuracy_keeps_unknown(self):
        coords = [
            Coordinate(latitude=0, longitude=0, accuracy=5),
            Coordinate(latitude=0, longitude=0.001, accuracy=15),
            Coordinate(latitude=0, longitude=0.002),
        ]
        kept = filter_by_accuracy(coords, 10)
        assert [c.longitude for c in kept] == [0, 0.002]

    def test_remove_near_duplicates(self):
        """Points closer than 1 m to the last kept point are dropped."""
        coords = [
            Coordinate(latitude=0, longitude=0),
            Coordinate(latitude=0, longitude=0.000001),  # ~0.1 m
            Coordinate(latitude=0, longitude=0.001),
        ]
        kept = remove_near_duplicates(coords)
        assert len(kept) == 2

    def test_remove_near_duplicates_with_anchor(self):
        """The anchor counts as the last kept point."""
        anchor = Coordinate(latitude=0, longitude=0)
        coords = [Coordinate(latitude=0, longitude=0.000001), Coordinate(latitude=0, longitude=0.01)]
        kept = remove_near_duplicates(coords, anchor=anchor)
        assert kept == [coords[1]]

    def test_order_by_timestamp_stable(self):
        """Timestamped points sort; untimestamped keep order at the end."""
        a = Coordinate(latitude=0, longitude=0.1, timestamp=T0 + timedelta(seconds=20))
        b = Coordinate(latitude=0, longitude=0.2)
        c = Coordinate(latitude=0, longitude=0.3, timestamp=T0)
        d = Coordinate(latitude=0, longitude=0.4)
        assert order_by_timestamp([a, b, c, d]) == [c, a, b, d]

    def test_filter_by_speed_drops_teleport(self):
        """A 11 km jump in 10 s is dropped; continuity resumes from the last kept point."""
        coords = [
            Coordinate(latitude=0, longitude=0, timestamp=T0),
            Coordinate(latitude=0, longitude=0.1, timestamp=T0 + timedelta(seconds=10)),
            Coordinate(latitude=0, longitude=0.001, timestamp=T0 + timedelta(seconds=20)),
        ]
        kept = filter_by_speed(coords, 200)
        assert [c.longitude for c in kept] == [0, 0.001]

    def test_filter_by_speed_ignores_untimestamped(self):
        coords = [Coordinate(latitude=0, longitude=0), Coordinate(latitude=0, longitude=1)]
        assert filter_by_speed(coords, 200) == coords
