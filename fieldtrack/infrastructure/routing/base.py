"""
Routing Strategy Contracts
~~~~~~~~~~~~~~~~~~~~~~~~~~

Shared shapes for the distance strategies and a thin aiohttp JSON client
used by the external tiers.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from fieldtrack.config import TravelMode
from fieldtrack.domain.errors import UpstreamDegraded
from fieldtrack.domain.models import Coordinate

logger = logging.getLogger(__name__)


@dataclass
class RouteOptions:
    """Per-call routing options."""

    include_path: bool = False  # caller wants a visualizable polyline
    local_only: bool = False  # never touch external services


@dataclass
class RouteOutcome:
    """Successful answer from one strategy."""

    distance_km: float
    duration_minutes: float
    method: str
    static_duration_minutes: float | None = None
    polyline: str | None = None
    warnings: list[str] = field(default_factory=list)
    api_calls: int = 0


@dataclass(frozen=True)
class Degraded:
    """A strategy could not answer; the chain moves on."""

    tier: str
    reason: str

    def describe(self) -> str:
        return f"{self.tier} unavailable: {self.reason}"


class RoutingStrategy(Protocol):
    """Async callable shared by every tier."""

    name: str

    async def __call__(
        self, coordinates: Sequence[Coordinate], travel_mode: TravelMode
    ) -> RouteOutcome | Degraded: ...


def latlng(coord: Coordinate) -> str:
    return f"{coord.latitude:.6f},{coord.longitude:.6f}"


class JSONClient:
    """
    Minimal aiohttp GET/JSON client.

    Non-200 responses, transport errors, timeouts and undecodable bodies
    are raised as UpstreamDegraded tagged with the owning tier.

    Example:
        >>> client = JSONClient("osrm", timeout=10.0)
        >>> data = await client.get_json("https://router.project-osrm.org/route/v1/...")
        >>> await client.close()
    """

    def __init__(
        self,
        tier: str,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.tier = tier
        self.timeout = timeout
        self.headers = headers or {}
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        session = self._get_session()
        try:
            async with session.get(url, params=params, headers=self.headers) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    logger.warning(f"{self.tier} request failed: {resp.status} - {text[:200]}")
                    raise UpstreamDegraded(self.tier, f"HTTP {resp.status}", status=resp.status)
                data = await resp.json(content_type=None)
        except TimeoutError as e:
            raise UpstreamDegraded(self.tier, f"timeout after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise UpstreamDegraded(self.tier, f"request error: {e}") from e
        except ValueError as e:
            raise UpstreamDegraded(self.tier, f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamDegraded(self.tier, "unexpected response body")
        return data

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
