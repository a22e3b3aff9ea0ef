"""
Routing Tier Unit Tests
=======================

Tests for response parsing in the Google, OSRM and local tiers. HTTP is
replaced by a mocked JSONClient.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from fieldtrack.config import GoogleMapsConfig, OSRMConfig, RoutingConfig, TravelMode
from fieldtrack.core import polyline
from fieldtrack.domain.errors import UpstreamDegraded
from fieldtrack.domain.models import Coordinate
from fieldtrack.infrastructure.routing import (
    Degraded,
    DistanceMatrixStrategy,
    GoogleDirectionsStrategy,
    LocalGeometryStrategy,
    OSRMStrategy,
    estimate_duration_minutes,
)


def mock_client(*responses) -> MagicMock:
    client = MagicMock()
    client.get_json = AsyncMock(side_effect=list(responses))
    client.close = AsyncMock()
    return client


def element(meters: int, seconds: int, status: str = "OK") -> dict:
    return {"status": status, "distance": {"value": meters}, "duration": {"value": seconds}}


@pytest.fixture
def google_config() -> GoogleMapsConfig:
    return GoogleMapsConfig(api_key="test-key")


@pytest.fixture
def routing() -> RoutingConfig:
    return RoutingConfig(matrix_delay_secs=0, matrix_segment_size=2)


@pytest.fixture
def trace() -> list[Coordinate]:
    """Four points with real corners so nothing simplifies away."""
    return [
        Coordinate(latitude=41.00, longitude=29.00),
        Coordinate(latitude=41.01, longitude=29.00),
        Coordinate(latitude=41.01, longitude=29.01),
        Coordinate(latitude=41.02, longitude=29.01),
    ]


class TestEstimateDuration:
    """Tests for the local duration heuristic."""

    def test_speed_bands(self):
        """Highway at 60 km/h, mixed at 30 km/h, city at 15 km/h."""
        assert estimate_duration_minutes([10.0]) == pytest.approx(20.0)
        assert estimate_duration_minutes([1.0]) == pytest.approx(2.0)
        assert estimate_duration_minutes([0.25]) == pytest.approx(1.0)

    def test_floor_of_two_minutes_per_km(self):
        """Highway segments are floored at 2 min/km."""
        assert estimate_duration_minutes([6.0]) == pytest.approx(12.0)

    def test_empty(self):
        assert estimate_duration_minutes([]) == 0.0


class TestLocalGeometry:
    """Tests for the terminal tier."""

    def test_compute(self, trace):
        outcome = LocalGeometryStrategy().compute(trace)
        assert outcome.method == "vincenty_local"
        assert outcome.distance_km == pytest.approx(3.06, abs=0.02)
        assert len(polyline.decode(outcome.polyline)) == 4

    def test_single_point(self):
        outcome = LocalGeometryStrategy().compute([Coordinate(latitude=1, longitude=1)])
        assert outcome.distance_km == 0.0
        assert outcome.polyline is None


class TestRequestBuilding:
    """Tests for request parameters and URLs."""

    def test_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "env-key")
        assert GoogleMapsConfig().resolve_api_key() == "env-key"

    def test_explicit_key_wins(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "env-key")
        assert GoogleMapsConfig(api_key="file-key").resolve_api_key() == "file-key"

    def test_walking_has_no_departure_time(self, google_config, routing, trace):
        strategy = GoogleDirectionsStrategy(google_config, routing, client=mock_client())
        params = strategy.build_params(trace, TravelMode.WALKING, "k")
        assert params["mode"] == "walking"
        assert "departure_time" not in params

    def test_two_wheeler_maps_to_driving(self, google_config, routing, trace):
        strategy = GoogleDirectionsStrategy(google_config, routing, client=mock_client())
        assert strategy.build_params(trace, TravelMode.TWO_WHEELER, "k")["mode"] == "driving"

    def test_matrix_segments_share_boundary_points(self, google_config, routing, trace):
        strategy = DistanceMatrixStrategy(google_config, routing, client=mock_client())
        segments = strategy.segments(trace)
        assert [len(s) for s in segments] == [3, 2]
        assert segments[0][-1] == segments[1][0]

    def test_osrm_url_is_lon_lat(self, routing, trace):
        strategy = OSRMStrategy(OSRMConfig(base_url="http://osrm.local/"), routing, client=mock_client())
        url = strategy.build_url(trace[:2], TravelMode.WALKING)
        assert url == "http://osrm.local/route/v1/foot/29.000000,41.000000;29.000000,41.010000"


@pytest.mark.asyncio
class TestGoogleDirections:
    """Tests for GoogleDirectionsStrategy."""

    async def test_sums_legs_with_traffic(self, google_config, routing, trace):
        """Leg distances and durations are summed; traffic duration preferred."""
        client = mock_client(
            {
                "status": "OK",
                "routes": [
                    {
                        "legs": [
                            {
                                "distance": {"value": 1500},
                                "duration": {"value": 300},
                                "duration_in_traffic": {"value": 420},
                            },
                            {"distance": {"value": 2500}, "duration": {"value": 600}},
                        ],
                        "overview_polyline": {"points": "abc"},
                    }
                ],
            }
        )
        strategy = GoogleDirectionsStrategy(google_config, routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert outcome.method == "google_directions"
        assert outcome.distance_km == pytest.approx(4.0)
        assert outcome.duration_minutes == pytest.approx(17.0)
        assert outcome.static_duration_minutes == pytest.approx(15.0)
        assert outcome.polyline == "abc"
        assert outcome.api_calls == 1

        url, params = client.get_json.await_args.args
        assert url.endswith("/maps/api/directions/json")
        assert params["departure_time"] == "now"
        assert params["waypoints"].count("|") == 1

    async def test_non_ok_status_degrades(self, google_config, routing, trace):
        client = mock_client({"status": "REQUEST_DENIED", "error_message": "bad key"})
        strategy = GoogleDirectionsStrategy(google_config, routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert isinstance(outcome, Degraded)
        assert "REQUEST_DENIED" in outcome.reason

    async def test_transport_error_degrades(self, google_config, routing, trace):
        client = mock_client(UpstreamDegraded("google_directions", "HTTP 503", status=503))
        strategy = GoogleDirectionsStrategy(google_config, routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert outcome == Degraded("google_directions", "HTTP 503")

    async def test_missing_key_skips_http(self, routing, trace, monkeypatch):
        monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
        client = mock_client()
        strategy = GoogleDirectionsStrategy(GoogleMapsConfig(), routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert isinstance(outcome, Degraded)
        client.get_json.assert_not_awaited()


@pytest.mark.asyncio
class TestDistanceMatrix:
    """Tests for DistanceMatrixStrategy."""

    async def test_diagonal_elements_summed(self, google_config, routing, trace):
        """Only origin[i] -> destination[i] elements count."""
        client = mock_client(
            {
                "status": "OK",
                "rows": [
                    {"elements": [element(1000, 120), element(9999, 9999)]},
                    {"elements": [element(9999, 9999), element(1200, 180)]},
                ],
            },
            {"status": "OK", "rows": [{"elements": [element(1100, 60)]}]},
        )
        strategy = DistanceMatrixStrategy(google_config, routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert outcome.method == "google_distance_matrix"
        assert outcome.distance_km == pytest.approx(3.3)
        assert outcome.duration_minutes == pytest.approx(6.0)
        assert outcome.api_calls == 2
        assert outcome.warnings == []

    async def test_failed_element_is_mixed(self, google_config, routing, trace):
        client = mock_client(
            {
                "status": "OK",
                "rows": [
                    {"elements": [element(1000, 120)]},
                    {"elements": [{}, {"status": "ZERO_RESULTS"}]},
                ],
            },
            {"status": "OK", "rows": [{"elements": [element(1100, 60)]}]},
        )
        strategy = DistanceMatrixStrategy(google_config, routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert outcome.method == "mixed"
        assert outcome.distance_km == pytest.approx(2.1 + 0.84, abs=0.02)
        assert any("ZERO_RESULTS" in w for w in outcome.warnings)

    async def test_malformed_elements_fall_back_per_element(self, google_config, routing, trace):
        """A broken element costs only that element, not the tier."""
        client = mock_client(
            {
                "status": "OK",
                "rows": [
                    {"elements": [{"status": "OK", "distance": {}, "duration": {"value": 60}}]},
                    "not-a-row",
                ],
            },
            {"status": "OK", "rows": [{"elements": [element(1100, 60)]}]},
        )
        strategy = DistanceMatrixStrategy(google_config, routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert outcome.method == "mixed"
        assert outcome.api_calls == 2
        assert outcome.warnings == [
            "segment 1: element 1 status MALFORMED, used Vincenty",
            "segment 1: element 2 status MALFORMED, used Vincenty",
        ]
        assert outcome.distance_km == pytest.approx(1.11 + 0.84 + 1.1, abs=0.02)

    async def test_failed_segment_is_mixed(self, google_config, routing, trace):
        client = mock_client(
            UpstreamDegraded("google_distance_matrix", "HTTP 500", status=500),
            {"status": "OK", "rows": [{"elements": [element(1100, 60)]}]},
        )
        strategy = DistanceMatrixStrategy(google_config, routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert outcome.method == "mixed"
        assert outcome.warnings == ["segment 1 failed (HTTP 500), used Vincenty"]

    async def test_all_segments_failed_degrades(self, google_config, routing, trace):
        client = mock_client(
            {"status": "OVER_QUERY_LIMIT"},
            {"status": "OVER_QUERY_LIMIT"},
        )
        strategy = DistanceMatrixStrategy(google_config, routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert outcome == Degraded("google_distance_matrix", "all 2 segments failed")


@pytest.mark.asyncio
class TestOSRM:
    """Tests for OSRMStrategy."""

    async def test_parses_route(self, routing, trace):
        client = mock_client(
            {
                "code": "Ok",
                "routes": [
                    {
                        "distance": 3600.0,
                        "duration": 480.0,
                        "geometry": {"coordinates": [[29.0, 41.0], [29.0, 41.01], [29.01, 41.02]]},
                    }
                ],
            }
        )
        strategy = OSRMStrategy(OSRMConfig(), routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert outcome.method == "osrm"
        assert outcome.distance_km == pytest.approx(3.6)
        assert outcome.duration_minutes == pytest.approx(8.0)
        decoded = polyline.decode(outcome.polyline)
        assert decoded[0].latitude == pytest.approx(41.0)
        assert decoded[0].longitude == pytest.approx(29.0)
        _, params = client.get_json.await_args.args
        assert params["geometries"] == "geojson"

    async def test_no_route_degrades(self, routing, trace):
        client = mock_client({"code": "NoRoute", "routes": []})
        strategy = OSRMStrategy(OSRMConfig(), routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert outcome == Degraded("osrm", "routing error: NoRoute")

    async def test_malformed_route_degrades(self, routing, trace):
        client = mock_client({"code": "Ok", "routes": [{"geometry": {}}]})
        strategy = OSRMStrategy(OSRMConfig(), routing, client=client)

        outcome = await strategy(trace, TravelMode.DRIVING)

        assert isinstance(outcome, Degraded)
        assert outcome.reason.startswith("malformed response")
