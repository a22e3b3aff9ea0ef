"""
Route Calculator
================

Runs the strategy fallback chain for a coordinate sequence.

    scalar chain:  google_directions -> google_distance_matrix -> local
    path chain:    google_directions -> osrm -> local

The movement analyzer gates the external tiers: static, short and simple
traces go straight to local geometry. Every external attempt is bounded by
``asyncio.wait_for``; timeouts and errors become warnings and the next tier
is tried. The local tier always answers.

Usage:
    async with RouteCalculator.from_config(config) as calculator:
        result = await calculator.calculate_route(points, TravelMode.DRIVING)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from fieldtrack.config import FieldTrackConfig, TravelMode
from fieldtrack.core.movement import get_routing_decision
from fieldtrack.core.sanitizer import remove_near_duplicates
from fieldtrack.core.simplify import simplify
from fieldtrack.domain.models import Coordinate, RouteAnalysis, RouteResult

from .base import Degraded, RouteOptions, RouteOutcome, RoutingStrategy
from .google import DistanceMatrixStrategy, GoogleDirectionsStrategy
from .local import LocalGeometryStrategy
from .osrm import OSRMStrategy

logger = logging.getLogger(__name__)


class RouteCalculator:
    """Distance/duration for a trace via the first tier that answers."""

    def __init__(
        self,
        config: FieldTrackConfig | None = None,
        scalar_chain: Sequence[RoutingStrategy] = (),
        path_chain: Sequence[RoutingStrategy] = (),
        local: LocalGeometryStrategy | None = None,
    ) -> None:
        self.config = config or FieldTrackConfig()
        self.scalar_chain = list(scalar_chain)
        self.path_chain = list(path_chain)
        self.local = local or LocalGeometryStrategy()

    @classmethod
    def from_config(cls, config: FieldTrackConfig) -> RouteCalculator:
        """Build the default chains from configuration."""
        directions: list[RoutingStrategy] = []
        matrix: list[RoutingStrategy] = []
        osrm: list[RoutingStrategy] = []
        if config.google.enabled:
            directions.append(GoogleDirectionsStrategy(config.google, config.routing))
            matrix.append(DistanceMatrixStrategy(config.google, config.routing))
        if config.osrm.enabled:
            osrm.append(OSRMStrategy(config.osrm, config.routing))
        return cls(
            config,
            scalar_chain=directions + matrix,
            path_chain=directions + osrm,
        )

    async def __aenter__(self) -> RouteCalculator:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close HTTP sessions owned by the external tiers."""
        seen: set[int] = set()
        for strategy in self.scalar_chain + self.path_chain:
            client = getattr(strategy, "client", None)
            if client is not None and id(client) not in seen:
                seen.add(id(client))
                await client.close()

    async def _attempt(
        self,
        strategy: RoutingStrategy,
        coordinates: Sequence[Coordinate],
        travel_mode: TravelMode,
    ) -> RouteOutcome | Degraded:
        timeout = self.config.routing.strategy_timeout_secs
        try:
            return await asyncio.wait_for(strategy(coordinates, travel_mode), timeout=timeout)
        except TimeoutError:
            return Degraded(strategy.name, f"timed out after {timeout:g}s")
        except Exception as e:
            logger.warning("Strategy %s raised: %s", strategy.name, e, exc_info=True)
            return Degraded(strategy.name, f"{type(e).__name__}: {e}")

    async def calculate_route(
        self,
        coordinates: Sequence[Coordinate],
        travel_mode: TravelMode | None = None,
        options: RouteOptions | None = None,
    ) -> RouteResult:
        """
        Compute distance and duration for an ordered trace.

        Args:
            coordinates: Ordered coordinates
            travel_mode: Defaults to ``routing.default_mode``
            options: ``include_path`` selects the path chain, ``local_only``
                skips external tiers

        Returns:
            RouteResult with the method actually used and every
            degradation reason in ``warnings``
        """
        mode = travel_mode or self.config.routing.default_mode
        options = options or RouteOptions()
        points = remove_near_duplicates(coordinates, self.config.tracking.near_duplicate_km)
        _, analysis = get_routing_decision(points, self.config.movement)

        warnings: list[str] = []
        api_calls = 0
        chain = self.path_chain if options.include_path else self.scalar_chain
        use_external = (
            not options.local_only and analysis.should_use_external_routing and bool(chain)
        )

        waypoints = points
        if use_external:
            waypoints = simplify(points, self.config.routing.simplify_epsilon)
            for strategy in chain:
                outcome = await self._attempt(strategy, waypoints, mode)
                if isinstance(outcome, Degraded):
                    logger.warning("Routing tier degraded: %s", outcome.describe())
                    warnings.append(outcome.describe())
                    continue
                api_calls += outcome.api_calls
                logger.info(
                    "Route via %s: %.3fkm, %.1fmin",
                    outcome.method,
                    outcome.distance_km,
                    outcome.duration_minutes,
                )
                return self._result(outcome, warnings, waypoints, analysis, api_calls)
        elif options.local_only:
            logger.debug("Local-only routing requested")

        outcome = self.local.compute(points)
        return self._result(outcome, warnings, points, analysis, api_calls)

    @staticmethod
    def _result(
        outcome: RouteOutcome,
        warnings: list[str],
        waypoints: Sequence[Coordinate],
        analysis: RouteAnalysis,
        api_calls: int,
    ) -> RouteResult:
        return RouteResult(
            distance_km=outcome.distance_km,
            duration_minutes=outcome.duration_minutes,
            static_duration_minutes=outcome.static_duration_minutes,
            polyline=outcome.polyline,
            method=outcome.method,
            warnings=warnings + outcome.warnings,
            degraded=bool(warnings) or outcome.method == "mixed",
            waypoints=list(waypoints),
            analysis=analysis,
            api_calls=api_calls,
        )
