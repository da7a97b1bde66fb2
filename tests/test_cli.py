from __future__ import annotations

from typer.testing import CliRunner

from thermolog.cli import app
from thermolog.export import write_csv
from thermolog.models import TemperatureReading

runner = CliRunner()


def test_frame_command():
    result = runner.invoke(app, ["frame", "--slave", "1", "--start", "0", "--count", "2"])
    assert result.exit_code == 0
    assert result.output.strip() == "01 03 00 00 00 02 C4 0B"


def test_convert_command():
    result = runner.invoke(app, ["convert", "400", "65136"])
    assert result.exit_code == 0
    assert result.output.splitlines() == ["400\t40.0", "65136\t-40.0"]


def test_convert_with_formula():
    result = runner.invoke(app, ["convert", "650", "--formula", "registerValue / 10 - 40"])
    assert result.exit_code == 0
    assert "650\t25.0" in result.output


def test_inspect_command(tmp_path):
    path = write_csv(tmp_path / "data.csv", [TemperatureReading(i, 1, 20.0 + i, 200) for i in range(3)])
    result = runner.invoke(app, ["inspect", str(path)])
    assert result.exit_code == 0
    assert "3 readings, 0 rejected" in result.output
    assert "CH1" in result.output


def test_simulate_command(tmp_path):
    out = tmp_path / "sim.csv"
    result = runner.invoke(
        app,
        ["simulate", "--seconds", "0.5", "--seed", "1", "--set", "test_mode.data_generation_rate=10", "--out", str(out)],
    )
    assert result.exit_code == 0, result.output
    assert out.exists()
