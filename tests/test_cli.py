import json

from click.testing import CliRunner

from fieldtrack.cli import cli, load_trace


def write_trace(tmp_path, points):
    trace = tmp_path / "trace.json"
    trace.write_text(json.dumps(points), encoding="utf-8")
    return trace


def straight_line(n=20):
    return [{"lat": 41.0 + i * 0.001, "lng": 29.0} for i in range(n)]


def test_version_command():
    runner = CliRunner()
    result = runner.invoke(cli, ["version"], prog_name="fieldtrack")
    assert result.exit_code == 0
    assert "fieldtrack" in result.stdout


def test_config_validate(tmp_path):
    yml = tmp_path / "fieldtrack.yml"
    yml.write_text("routing:\n  default_mode: bicycling\n", encoding="utf-8")
    runner = CliRunner()
    result = runner.invoke(cli, ["config-validate", str(yml)], prog_name="fieldtrack")
    assert result.exit_code == 0
    assert "bicycling" in result.stdout


def test_config_validate_rejects_bad_file(tmp_path):
    yml = tmp_path / "fieldtrack.yml"
    yml.write_text("routing:\n  max_waypoints: 99\n", encoding="utf-8")
    runner = CliRunner()
    result = runner.invoke(cli, ["config-validate", str(yml)], prog_name="fieldtrack")
    assert result.exit_code == 1


def test_analyze_static_trace(tmp_path):
    trace = write_trace(tmp_path, [{"lat": 41.0, "lng": 29.0 + i * 0.00005} for i in range(4)])
    runner = CliRunner()
    result = runner.invoke(cli, ["analyze", str(trace)], prog_name="fieldtrack")
    assert result.exit_code == 0
    assert "Static: True" in result.stdout


def test_route_local_only(tmp_path):
    trace = write_trace(tmp_path, straight_line())
    runner = CliRunner()
    result = runner.invoke(cli, ["route", str(trace), "--local-only"], prog_name="fieldtrack")
    assert result.exit_code == 0
    assert "vincenty_local" in result.stdout


def test_simplify_writes_output(tmp_path):
    trace = write_trace(tmp_path, straight_line())
    out = tmp_path / "simplified.json"
    runner = CliRunner()
    result = runner.invoke(cli, ["simplify", str(trace), "-o", str(out)], prog_name="fieldtrack")
    assert result.exit_code == 0
    assert len(json.loads(out.read_text(encoding="utf-8"))) == 2


def test_load_trace_csv_drops_bad_rows(tmp_path):
    trace = tmp_path / "trace.csv"
    trace.write_text("lat,lng\n41.0,29.0\nbad,29.0\n41.001,29.0\n", encoding="utf-8")
    coords, dropped = load_trace(trace)
    assert len(coords) == 2
    assert dropped == 1


def test_load_trace_wrapped_json(tmp_path):
    trace = tmp_path / "trace.json"
    trace.write_text(json.dumps({"coordinates": straight_line(3)}), encoding="utf-8")
    coords, dropped = load_trace(trace)
    assert len(coords) == 3
    assert dropped == 0
