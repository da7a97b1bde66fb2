"""Command line interface for the thermolog package."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional

import typer

from .conversion import TemperatureConverter
from .errors import ThermologError
from .export import read_csv
from .metrics import channel_statistics
from .modbus.config import PRESETS, MonitorConfig, TemperatureConversionConfig, load_config, preset_overrides
from .modbus.frames import build_read_holding_registers
from .modbus.registers import describe_registers
from .modbus.transport import SerialTransport
from .monitor import TemperatureMonitor
from .plotting import plot_readings

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, context_settings={"help_option_names": ["-h", "--help"]})

DEFAULT_CONFIG = Path("config/monitor.json")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")) -> None:
    """Modbus RTU temperature acquisition tools."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config_path: Optional[Path], preset: Optional[str], override: Optional[List[str]]) -> MonitorConfig:
    overrides: List[str] = []
    if preset:
        key = preset.lower()
        if key not in PRESETS:
            raise typer.BadParameter(f"Unknown preset '{preset}'. Expected one of {list(PRESETS)}")
        overrides = preset_overrides(key)
    overrides += override or []
    path = config_path
    if path is None and DEFAULT_CONFIG.exists():
        path = DEFAULT_CONFIG
    try:
        return load_config(path, overrides or None)
    except ThermologError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _acquire(monitor: TemperatureMonitor, duration: Optional[float]) -> None:
    interval_sec = max(float(monitor.config.runtime.stats_log_interval), 5.0)
    next_log = time.monotonic() + interval_sec
    deadline = time.monotonic() + duration if duration else None

    def emit_stats(prefix: str = "") -> None:
        counters = monitor.counters()
        logger.info(
            "%sreads=%d errors=%d timeouts=%d crc_errors=%d readings=%d",
            prefix,
            counters.get("reads", 0),
            counters.get("errors", 0),
            counters.get("timeouts", 0),
            counters.get("crc_errors", 0),
            counters.get("readings", 0),
        )

    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.2)
            monitor.maybe_autosave()
            if time.monotonic() >= next_log:
                emit_stats()
                next_log = time.monotonic() + interval_sec
    except KeyboardInterrupt:
        logger.info("Stopping acquisition (Ctrl+C)")
    finally:
        monitor.pause_recording()
        monitor.shutdown()
        emit_stats("Final stats: ")


def _export(monitor: TemperatureMonitor, out: Optional[Path]) -> None:
    if not len(monitor.store):
        typer.echo("No readings acquired; nothing exported")
        return
    try:
        path = monitor.export_csv(out)
    except ThermologError as exc:
        typer.echo(f"Export failed: {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(f"Exported {len(monitor.store)} readings to {path}")


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Monitor configuration JSON."),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial device, overrides serial.port."),
    url: Optional[str] = typer.Option(
        None, "--url", help="pyserial URL for a network bridge, e.g. socket://host:502."
    ),
    preset: Optional[str] = typer.Option(None, "--preset", "-P", help="Sampling preset (1hz|2hz|5hz|10hz)."),
    override: Optional[List[str]] = typer.Option(
        None, "--set", help="Override config keys, e.g. --set serial.start_register=40001"
    ),
    duration: Optional[float] = typer.Option(None, "--duration", help="Stop after N seconds (default: until Ctrl+C)."),
    out: Optional[Path] = typer.Option(None, "--out", help="Export file or directory written on exit."),
) -> None:
    """Poll the device until interrupted and export the readings."""
    cfg = _load(config_path, preset, override)
    if port:
        cfg.serial.port = port
    transport = SerialTransport(cfg.serial, url=url, timeout=cfg.modbus.timeout_ms / 1000.0)
    monitor = TemperatureMonitor(cfg, transport)
    logger.info("Reading %s from slave %d every %.2fs", describe_registers(cfg.serial), cfg.modbus.slave_id, cfg.recording.effective_interval)
    try:
        monitor.connect()
        monitor.start_recording()
    except ThermologError as exc:
        typer.echo(f"Cannot start acquisition: {exc}")
        monitor.shutdown()
        raise typer.Exit(code=1) from exc
    _acquire(monitor, duration)
    _export(monitor, out)


@app.command()
def simulate(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Monitor configuration JSON."),
    preset: Optional[str] = typer.Option(None, "--preset", "-P", help="Sampling preset (1hz|2hz|5hz|10hz)."),
    override: Optional[List[str]] = typer.Option(None, "--set", help="Override config keys."),
    seconds: float = typer.Option(10.0, "--seconds", "-s", help="How long to generate test data."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for the noise generator."),
    out: Optional[Path] = typer.Option(None, "--out", help="Export file or directory."),
) -> None:
    """Generate test-mode readings without a device and export them."""
    cfg = _load(config_path, preset, override)
    if seed is not None:
        cfg.test_mode.seed = seed
    monitor = TemperatureMonitor(cfg)
    monitor.start_test_mode()
    _acquire(monitor, seconds)
    _export(monitor, out)


@app.command()
def frame(
    slave: int = typer.Option(1, "--slave", help="Slave id."),
    start: int = typer.Option(0, "--start", help="First (wire) register address."),
    count: int = typer.Option(10, "--count", help="Number of registers."),
) -> None:
    """Print a read-holding-registers request as hex."""
    try:
        request = build_read_holding_registers(slave, start, count)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(" ".join(f"{byte:02X}" for byte in request))


@app.command()
def convert(
    raw_values: List[int] = typer.Argument(..., help="Raw register values."),
    formula: Optional[str] = typer.Option(None, "--formula", "-f", help="Custom formula using registerValue."),
) -> None:
    """Convert raw register values to °C."""
    config = TemperatureConversionConfig()
    if formula:
        config = TemperatureConversionConfig(mode="custom", custom_formula=formula)
        preview = TemperatureConverter(config).preview()
        if not preview.ok:
            typer.echo(f"[warning] formula falls back to builtin conversion: {preview.error}")
    converter = TemperatureConverter(config)
    for raw in raw_values:
        typer.echo(f"{raw}\t{converter.convert(raw):.1f}")


@app.command()
def inspect(
    input_path: Path = typer.Argument(..., exists=True, readable=True, help="Exported CSV file."),
) -> None:
    """Import a CSV file and print per-channel statistics."""
    try:
        result = read_csv(input_path)
    except ThermologError as exc:
        typer.echo(f"Import failed: {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(
        f"{len(result.readings)} readings, {result.rejected_rows} rejected, "
        f"calibration={'yes' if result.has_calibration else 'no'}"
    )
    for channel, stats in channel_statistics(result.readings).items():
        typer.echo(
            f"CH{channel:<2} n={stats.reading_count:<7} current={stats.current:.1f} "
            f"avg10={stats.moving_average:.1f} min={stats.min_temperature:.1f} "
            f"max={stats.max_temperature:.1f} trend={stats.trend}"
        )


@app.command()
def plot(
    input_path: Path = typer.Argument(..., exists=True, readable=True, help="Exported CSV file."),
    out: Path = typer.Option(Path("temperature.png"), "--out", help="PNG output path."),
) -> None:
    """Render an exported CSV file to a PNG chart."""
    try:
        result = read_csv(input_path)
    except ThermologError as exc:
        typer.echo(f"Import failed: {exc}")
        raise typer.Exit(code=1) from exc
    try:
        path = plot_readings(result.readings, out, calibration_active=result.has_calibration, title=input_path.name)
    except RuntimeError as exc:
        typer.echo(f"[warning] plotting skipped: {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(f"Chart written to {path}")


def run_cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run_cli()
