"""
Route Cache
===========

In-process memo of route results keyed by the signature of the coordinate
sequence. Entries expire after a TTL; an optional ``max_entries`` bound
evicts the least recently used entry. Results produced by a fallback tier
are never stored.

On a miss, a trace that starts where a cached route ended and ends where it
started is served from that route with its path reversed
(method ``return_journey_cached``).

Usage:
    async with build_route_service(config) as service:
        result = await service.calculate_route(points)
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from fieldtrack.config import CacheConfig, FieldTrackConfig, TravelMode
from fieldtrack.core import polyline
from fieldtrack.domain.models import Coordinate, RouteCacheEntry, RouteResult

from .base import RouteOptions
from .chain import RouteCalculator

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

RETURN_JOURNEY_METHOD = "return_journey_cached"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _mode_value(travel_mode: TravelMode | str) -> str:
    return travel_mode.value if isinstance(travel_mode, TravelMode) else travel_mode


def _degree_gap(a: Coordinate, b: Coordinate) -> float:
    return math.hypot(a.latitude - b.latitude, a.longitude - b.longitude)


def _reversed_polyline(encoded: str | None) -> str | None:
    if not encoded:
        return encoded
    try:
        return polyline.encode(reversed(polyline.decode(encoded)))
    except ValueError:
        logger.warning("Cached polyline could not be decoded, dropping it from the reversed route")
        return None


def signature(
    coordinates: Sequence[Coordinate],
    travel_mode: TravelMode | str = TravelMode.DRIVING,
    variant: str = "",
) -> str:
    """SHA-256 over the 6-decimal rounded sequence, travel mode and variant."""
    mode = _mode_value(travel_mode)
    digest = hashlib.sha256()
    digest.update(f"{mode}|{variant}".encode())
    for coord in coordinates:
        lat, lon = coord.rounded(6)
        digest.update(f";{lat:.6f},{lon:.6f}".encode())
    return digest.hexdigest()


class RouteCache:
    """TTL + optional LRU bounded route memo with hit/miss counters."""

    def __init__(
        self,
        ttl_seconds: float = 24 * 3600.0,
        max_entries: int | None = None,
        clock: Clock | None = None,
        reuse_return_journeys: bool = True,
        return_tolerance_deg: float = 0.001,
    ) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_entries = max_entries
        self.reuse_return_journeys = reuse_return_journeys
        self.return_tolerance_deg = return_tolerance_deg
        self._clock = clock or _utcnow
        self._entries: OrderedDict[str, RouteCacheEntry] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.return_hits = 0
        self.skipped_degraded = 0
        self._running = False
        self._cleanup_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(cls, config: CacheConfig, clock: Clock | None = None) -> RouteCache:
        return cls(
            ttl_seconds=config.ttl_seconds,
            max_entries=config.max_entries,
            clock=clock,
            reuse_return_journeys=config.reuse_return_journeys,
            return_tolerance_deg=config.return_tolerance_deg,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: RouteCacheEntry, now: datetime) -> bool:
        return now - entry.computed_at >= self.ttl

    def get(self, key: str) -> RouteCacheEntry | None:
        """Fresh entry for ``key`` or None. Expired entries are dropped."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry, self._clock()):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    def put(
        self,
        key: str,
        result: RouteResult,
        travel_mode: TravelMode | str = "",
        variant: str = "",
    ) -> RouteCacheEntry:
        entry = RouteCacheEntry(
            key=key,
            distance_km=result.distance_km,
            duration_minutes=result.duration_minutes,
            static_duration_minutes=result.static_duration_minutes,
            polyline=result.polyline,
            waypoints=result.waypoints,
            computed_at=self._clock(),
            method=result.method,
            warnings=result.warnings,
            travel_mode=_mode_value(travel_mode),
            variant=variant,
        )
        self._entries[key] = entry
        self._entries.move_to_end(key)
        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted route cache entry %s", evicted[:12])
        return entry

    async def get_or_compute(
        self,
        coordinates: Sequence[Coordinate],
        compute: Callable[[], Awaitable[RouteResult]],
        travel_mode: TravelMode | str = TravelMode.DRIVING,
        variant: str = "",
    ) -> RouteResult:
        """
        Return the cached result for these coordinates, computing it on a miss.

        Degraded results are returned but not stored, so the next call
        retries the external tiers.

        Returns:
            RouteResult with ``cache_hit`` set accordingly
        """
        key = signature(coordinates, travel_mode, variant)
        entry = self.get(key)
        if entry is not None:
            self.hits += 1
            logger.debug("Route cache hit %s", key[:12])
            return entry.to_result(cache_hit=True)

        if self.reuse_return_journeys:
            reverse = self.find_return_journey(coordinates, travel_mode, variant)
            if reverse is not None:
                self.hits += 1
                self.return_hits += 1
                return reverse

        self.misses += 1
        result = await compute()
        if result.degraded:
            self.skipped_degraded += 1
            logger.debug("Not caching degraded route %s (%s)", key[:12], result.method)
        else:
            self.put(key, result, travel_mode, variant)
        return result.model_copy(update={"cache_hit": False})

    def find_return_journey(
        self,
        coordinates: Sequence[Coordinate],
        travel_mode: TravelMode | str = TravelMode.DRIVING,
        variant: str = "",
    ) -> RouteResult | None:
        """
        Serve a trace that retraces a cached route backwards.

        Matches a fresh entry of the same mode and variant whose last point
        is within ``return_tolerance_deg`` of this trace's start and whose
        first point is within it of this trace's end. Traces that end where
        they start never match.

        Returns:
            The cached distance and duration with path and waypoints
            reversed, or None
        """
        if len(coordinates) < 2:
            return None
        start, end = coordinates[0], coordinates[-1]
        tolerance = self.return_tolerance_deg
        if _degree_gap(start, end) < tolerance:
            return None

        mode = _mode_value(travel_mode)
        now = self._clock()
        for key, entry in list(self._entries.items()):
            if entry.travel_mode != mode or entry.variant != variant or len(entry.waypoints) < 2:
                continue
            if self._expired(entry, now):
                continue
            if (
                _degree_gap(start, entry.waypoints[-1]) < tolerance
                and _degree_gap(end, entry.waypoints[0]) < tolerance
            ):
                self._entries.move_to_end(key)
                logger.info("Return journey detected, reusing cached route %s reversed", key[:12])
                return entry.to_result(cache_hit=True).model_copy(
                    update={
                        "method": RETURN_JOURNEY_METHOD,
                        "polyline": _reversed_polyline(entry.polyline),
                        "waypoints": list(reversed(entry.waypoints)),
                    }
                )
        return None

    def cleanup(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._expired(e, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Route cache cleanup removed %d entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        self.return_hits = 0
        self.skipped_degraded = 0

    async def start_cleanup(self, interval_secs: float) -> None:
        """Run ``cleanup()`` every ``interval_secs`` until ``stop()``."""
        if self._running:
            return
        self._running = True
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval_secs))
        logger.info("Route cache cleanup every %ss", interval_secs)

    async def stop(self) -> None:
        self._running = False
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def _cleanup_loop(self, interval_secs: float) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval_secs)
                self.cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Route cache cleanup error: {e}")

    def stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        stamps = [e.computed_at for e in self._entries.values()]
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "return_hits": self.return_hits,
            "skipped_degraded": self.skipped_degraded,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "oldest_entry": min(stamps) if stamps else None,
            "newest_entry": max(stamps) if stamps else None,
        }


class CachedRouteCalculator:
    """RouteCalculator behind a RouteCache. Same call shape as the calculator."""

    def __init__(self, calculator: RouteCalculator, cache: RouteCache) -> None:
        self.calculator = calculator
        self.cache = cache

    @property
    def config(self) -> FieldTrackConfig:
        return self.calculator.config

    async def __aenter__(self) -> CachedRouteCalculator:
        await self.cache.start_cleanup(self.config.cache.cleanup_interval_secs)
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def calculate_route(
        self,
        coordinates: Sequence[Coordinate],
        travel_mode: TravelMode | None = None,
        options: RouteOptions | None = None,
    ) -> RouteResult:
        mode = travel_mode or self.calculator.config.routing.default_mode
        options = options or RouteOptions()
        variant = f"path={int(options.include_path)},local={int(options.local_only)}"

        async def compute() -> RouteResult:
            return await self.calculator.calculate_route(coordinates, mode, options)

        return await self.cache.get_or_compute(coordinates, compute, mode, variant)

    async def close(self) -> None:
        await self.cache.stop()
        await self.calculator.close()


def build_route_service(
    config: FieldTrackConfig, clock: Clock | None = None
) -> RouteCalculator | CachedRouteCalculator:
    """Default chain from config, behind a RouteCache when caching is enabled."""
    calculator = RouteCalculator.from_config(config)
    if not config.cache.enabled:
        return calculator
    return CachedRouteCalculator(calculator, RouteCache.from_config(config.cache, clock))
