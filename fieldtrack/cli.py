from __future__ import annotations

import asyncio
import csv
import importlib.metadata as md
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .config import FieldTrackConfig, TravelMode, configure_logging, load_config, resolve_config_path
from .core.movement import get_routing_decision
from .core.sanitizer import sanitize
from .core.simplify import simplify as simplify_points
from .domain.models import Coordinate
from .infrastructure.routing import RouteOptions, build_route_service

# Typer application: tests import this
app = typer.Typer(no_args_is_help=True, add_completion=False, help="FieldTrack CLI")
console = Console()


def _load_settings(config: Path | None) -> FieldTrackConfig:
    resolved = resolve_config_path(config)
    if not resolved.exists():
        cfg = FieldTrackConfig()
    else:
        cfg = load_config(resolved)
    configure_logging(cfg.logging)
    return cfg


def load_trace(path: Path) -> tuple[list[Coordinate], int]:
    """Read a JSON or CSV trace. Returns (coordinates, rows dropped by sanitizing)."""
    if path.suffix.lower() == ".csv":
        with path.open("r", encoding="utf-8", newline="") as fp:
            rows: list = list(csv.DictReader(fp))
    else:
        with path.open("r", encoding="utf-8") as fp:
            data = json.load(fp)
        rows = data.get("coordinates", []) if isinstance(data, dict) else data

    coords = [c for c in (sanitize(row) for row in rows) if c is not None]
    return coords, len(rows) - len(coords)


def _read_trace_or_exit(path: Path) -> list[Coordinate]:
    try:
        coords, dropped = load_trace(path)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Cannot read trace {path}: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if dropped:
        console.print(f"[yellow]Dropped {dropped} invalid row(s)[/yellow]")
    return coords


@app.command()
def version() -> None:
    """Print version information."""
    try:
        dist_version = md.version("fieldtrack")
    except md.PackageNotFoundError:
        from . import __version__

        dist_version = __version__
    console.print(f"fieldtrack {dist_version}")
    raise typer.Exit(code=0)


@app.command(name="config-validate")
def config_validate(path: Path = typer.Argument(Path("configs/fieldtrack.yml"))) -> None:
    """Validate and show resolved configuration."""
    resolved = resolve_config_path(path)
    console.print(f"Using config: {resolved}")
    try:
        cfg = load_config(resolved)
    except Exception as exc:
        console.print(f"Config validation failed: {exc}")
        raise typer.Exit(code=1) from exc
    console.print("Config OK. Key settings:")
    console.print(f"- accuracy threshold: {cfg.tracking.accuracy_threshold_m}m")
    console.print(f"- default travel mode: {cfg.routing.default_mode.value}")
    console.print(f"- google routing: {'enabled' if cfg.google.enabled else 'disabled'}")
    console.print(f"- osrm routing: {'enabled' if cfg.osrm.enabled else 'disabled'}")
    console.print(f"- cache ttl: {cfg.cache.ttl_hours}h")


@app.command()
def analyze(
    trace: Path = typer.Argument(..., exists=True, dir_okay=False),
    config: Path | None = typer.Option(None, "--config", "-c"),
) -> None:
    """Show the movement pattern and routing decision for a trace."""
    cfg = _load_settings(config)
    coords = _read_trace_or_exit(trace)
    pattern, analysis = get_routing_decision(coords, cfg.movement)

    table = Table(title=f"Movement pattern ({len(coords)} points)")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Total distance", f"{pattern.total_distance_km:.3f} km")
    table.add_row("Movement radius", f"{pattern.movement_radius_km:.3f} km")
    table.add_row("Direction changes", str(pattern.direction_changes))
    table.add_row("Time span", f"{pattern.time_span_minutes:.1f} min")
    table.add_row("Average speed", f"{pattern.average_speed_kmh:.1f} km/h")
    table.add_row("Return journey", "yes" if pattern.is_returning else "no")
    console.print(table)

    console.print(
        f"Static: {analysis.is_static_location} | "
        f"External routing: {analysis.should_use_external_routing} | "
        f"Complexity: {analysis.complexity.value} | "
        f"Confidence: {analysis.confidence}%"
    )
    for reason in analysis.reasoning:
        console.print(f"- {reason}")


@app.command()
def route(
    trace: Path = typer.Argument(..., exists=True, dir_okay=False),
    mode: TravelMode | None = typer.Option(None, "--mode", "-m"),
    local_only: bool = typer.Option(False, "--local-only"),
    path: bool = typer.Option(False, "--path", help="Prefer a drawable path (OSRM tier)"),
    config: Path | None = typer.Option(None, "--config", "-c"),
) -> None:
    """Compute distance and duration for a trace through the routing chain."""
    cfg = _load_settings(config)
    coords = _read_trace_or_exit(trace)

    async def _run():
        async with build_route_service(cfg) as service:
            return await service.calculate_route(
                coords, mode, RouteOptions(include_path=path, local_only=local_only)
            )

    result = asyncio.run(_run())
    console.print(
        {
            "distance_km": round(result.distance_km, 3),
            "duration_minutes": round(result.duration_minutes, 1),
            "method": result.method,
            "api_calls": result.api_calls,
        }
    )
    if path and result.polyline:
        console.print(f"polyline: {result.polyline}")
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


@app.command()
def simplify(
    trace: Path = typer.Argument(..., exists=True, dir_okay=False),
    epsilon: float = typer.Option(0.00005, "--epsilon", "-e", min=0.0),
    output: Path | None = typer.Option(None, "--output", "-o"),
) -> None:
    """Douglas-Peucker simplify a trace (epsilon in degrees)."""
    coords = _read_trace_or_exit(trace)
    reduced = simplify_points(coords, epsilon)
    console.print(f"Simplified {len(coords)} points to {len(reduced)}")
    if output:
        payload = [c.model_dump(mode="json", exclude_none=True) for c in reduced]
        output.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        console.print(f"Wrote {output}")


cli = typer.main.get_command(app)


if __name__ == "__main__":  # pragma: no cover
    app()
