from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator


class TravelMode(str, Enum):
    DRIVING = "driving"
    WALKING = "walking"
    BICYCLING = "bicycling"
    TWO_WHEELER = "two_wheeler"


class LoggingConfig(BaseModel):
    level: str = Field("INFO")
    format: str = Field("%(asctime)s %(levelname)s %(name)s: %(message)s")

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {value}")
        return upper


class TrackingConfig(BaseModel):
    """Ingestion and session limits."""
    accuracy_threshold_m: float = Field(10.0, gt=0)
    near_duplicate_km: float = Field(0.001, ge=0)  # 1 m jitter floor
    max_speed_kmh: float = Field(200.0, gt=0)
    min_altitude_m: float = Field(-500.0)
    max_altitude_m: float = Field(10000.0)
    max_batch_size: int = Field(5000, ge=1)
    chunk_size: int = Field(500, ge=1)
    max_session_hours: float = Field(24.0, gt=0)
    max_check_in_age_hours: float = Field(24.0, gt=0)
    high_skip_ratio: float = Field(0.5, ge=0.0, le=1.0)
    overseer_ids: list[str] = Field(default_factory=list)

    @field_validator("max_altitude_m")
    @classmethod
    def _altitude_range(cls, value: float, info: Any) -> float:
        low = info.data.get("min_altitude_m", -500.0)  # type: ignore[assignment]
        if value <= low:
            raise ValueError("max_altitude_m must be > min_altitude_m")
        return value


class MovementThresholds(BaseModel):
    """Routing-decision thresholds (distances in km)."""
    min_points: int = Field(3, ge=2)
    static_distance_km: float = Field(0.05, ge=0)
    building_radius_km: float = Field(0.02, ge=0)
    static_variance: float = Field(0.001, ge=0)
    min_routing_distance_km: float = Field(0.1, ge=0)
    min_complexity_score: int = Field(2, ge=0)
    direction_change_deg: float = Field(30.0, gt=0, lt=180)
    return_proximity_km: float = Field(0.1, gt=0)
    return_ratio: float = Field(0.3, gt=0, le=1.0)
    return_min_points: int = Field(6, ge=3)


class RoutingConfig(BaseModel):
    default_mode: TravelMode = Field(TravelMode.DRIVING)
    strategy_timeout_secs: float = Field(15.0, gt=0)
    simplify_epsilon: float = Field(0.00005, gt=0)  # ~5 m
    max_waypoints: int = Field(25, ge=2, le=27)
    matrix_segment_size: int = Field(10, ge=1, le=25)
    matrix_delay_secs: float = Field(0.1, ge=0)
    osrm_max_coordinates: int = Field(100, ge=2)


class GoogleMapsConfig(BaseModel):
    enabled: bool = Field(True)
    api_key: str = Field("")
    api_key_env: str = Field("GOOGLE_MAPS_API_KEY")
    base_url: str = Field("https://maps.googleapis.com")
    timeout: float = Field(10.0, gt=0)
    region: str | None = Field(None)
    avoid: str | None = Field(None)
    traffic_aware: bool = Field(True)

    def resolve_api_key(self) -> str:
        return self.api_key or os.environ.get(self.api_key_env, "")


class OSRMConfig(BaseModel):
    enabled: bool = Field(True)
    base_url: str = Field("https://router.project-osrm.org")
    timeout: float = Field(10.0, gt=0)
    user_agent: str = Field("fieldtrack-routing/1.0")


class CacheConfig(BaseModel):
    enabled: bool = Field(True)
    ttl_hours: float = Field(24.0, gt=0)
    max_entries: int | None = Field(None, ge=1)
    cleanup_interval_secs: int = Field(3600, ge=60)
    reuse_return_journeys: bool = Field(True)
    return_tolerance_deg: float = Field(0.001, gt=0)  # ~100 m

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_hours * 3600.0


class DatabaseConfig(BaseModel):
    path: Path = Field(Path("data/fieldtrack.db"))

    @field_validator("path")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        return value.expanduser()


class FieldTrackConfig(BaseModel):
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    movement: MovementThresholds = Field(default_factory=MovementThresholds)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    google: GoogleMapsConfig = Field(default_factory=GoogleMapsConfig)
    osrm: OSRMConfig = Field(default_factory=OSRMConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)


def load_config(path: Path) -> FieldTrackConfig:
    with Path(path).expanduser().open("r", encoding="utf-8") as fp:
        raw = yaml.safe_load(fp) or {}
    try:
        return FieldTrackConfig.model_validate(raw)
    except ValidationError as exc:  # pragma: no cover - formatting
        raise ValueError(str(exc)) from exc


def resolve_config_path(cli_path: Path | None) -> Path:
    """Resolve config path by priority: CLI, env, /etc/fieldtrack, repo configs."""
    candidates: list[Path] = []
    if cli_path:
        p = Path(cli_path).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    env = os.environ.get("FIELDTRACK_CONFIG")
    if env:
        p = Path(env).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    for p in [Path("/etc/fieldtrack/fieldtrack.yml"), Path("configs/fieldtrack.yml")]:
        if p.exists():
            return p.resolve()
        candidates.append(p)
    # Fallback to first candidate even if not exists to surface errors consistently
    return candidates[0] if candidates else Path("configs/fieldtrack.yml").resolve()


def configure_logging(config: LoggingConfig) -> None:
    logging.basicConfig(level=getattr(logging, config.level), format=config.format)
