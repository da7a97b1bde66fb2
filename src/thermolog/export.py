"""CSV export and import of reading histories."""
from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .errors import CsvImportError, ExportError, NoValidRowsError
from .models import MAX_CHANNEL, MIN_CHANNEL, RAW_MAX, TemperatureReading, encode_raw
from .modbus.config import RecordingConfig, SerialConfig
from .session import SessionDurations

logger = logging.getLogger(__name__)

MIN_TEMPERATURE_C = -273.15
MAX_TEMPERATURE_C = 1000.0

BASE_COLUMNS = ["Timestamp", "Channel", "Temperature_C", "Raw_Value"]
CALIBRATED_COLUMN = "Calibrated_Temperature_C"


@dataclass
class ExportMetadata:
    serial: SerialConfig = field(default_factory=SerialConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    calibrated_channels: List[int] = field(default_factory=list)
    session: Optional[SessionDurations] = None
    export_date: Optional[datetime] = None


@dataclass
class CsvImportResult:
    readings: List[TemperatureReading]
    rejected_rows: int
    has_calibration: bool

    @property
    def channels(self) -> List[int]:
        return sorted({reading.channel for reading in self.readings})


def _format_ts(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000.0).strftime("%Y-%m-%d %H:%M:%S")


def _register_description(serial: SerialConfig) -> str:
    if serial.custom_registers:
        return "custom registers " + ";".join(str(address) for address in serial.custom_registers)
    return f"start register {serial.start_register} ({serial.register_count} consecutive)"


def _header_lines(readings: Sequence[TemperatureReading], metadata: ExportMetadata) -> List[str]:
    exported = metadata.export_date or datetime.now()
    frequency = 1.0 / metadata.recording.effective_interval
    lines = [
        "# Temperature monitoring data export",
        f"# Export date: {exported.isoformat(timespec='seconds')}",
        f"# Device port: {metadata.serial.port}",
        f"# Baud rate: {metadata.serial.baud_rate}",
        f"# Registers: {_register_description(metadata.serial)}",
        f"# Recording frequency: {frequency:.1f} Hz",
        f"# Total records: {len(readings)}",
    ]
    if readings:
        first = min(reading.timestamp for reading in readings)
        last = max(reading.timestamp for reading in readings)
        lines.append(f"# Time range: {_format_ts(first)} to {_format_ts(last)}")
    if metadata.calibrated_channels:
        channels = ", ".join(f"CH{channel}" for channel in sorted(metadata.calibrated_channels))
        lines.append(f"# Calibrated channels: {channels}")
    session = metadata.session
    if session is not None:
        lines.append(f"# Session active time: {session.total_active_duration:.1f} s")
        lines.append(
            f"# Session paused time: {session.total_pause_duration:.1f} s ({session.pause_count} pause(s))"
        )
        for index, pause in enumerate(session.pause_events, start=1):
            resumed = _format_ts(pause.resumed_at) if pause.resumed_at is not None else "not resumed"
            reason = pause.reason or "no reason given"
            lines.append(
                f"# Pause {index}: {_format_ts(pause.paused_at)} -> {resumed}, "
                f"{pause.duration:.1f} s, {reason}"
            )
    lines.append("#")
    return lines


def valid_readings(readings: Sequence[TemperatureReading]) -> List[TemperatureReading]:
    kept = [reading for reading in readings if reading.is_valid()]
    dropped = len(readings) - len(kept)
    if dropped:
        logger.warning("Skipping %d invalid reading(s) during export", dropped)
    return kept


def to_csv(readings: Sequence[TemperatureReading], metadata: Optional[ExportMetadata] = None) -> str:
    """Serialize *readings* with a ``#`` metadata header block."""
    metadata = metadata or ExportMetadata()
    with_calibration = any(reading.is_calibrated for reading in readings)
    buffer = io.StringIO()
    for line in _header_lines(readings, metadata):
        buffer.write(line + "\n")
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(BASE_COLUMNS + ([CALIBRATED_COLUMN] if with_calibration else []))
    for reading in readings:
        row = [reading.timestamp, reading.channel, f"{reading.temperature:.1f}", reading.raw_value]
        if with_calibration:
            row.append(
                f"{reading.calibrated_temperature:.1f}" if reading.calibrated_temperature is not None else ""
            )
        writer.writerow(row)
    return buffer.getvalue()


def _parse_row(cells: List[str], read_calibrated: bool) -> Optional[TemperatureReading]:
    if len(cells) < 3:
        return None
    try:
        timestamp = int(float(cells[0]))
        channel = int(cells[1])
        temperature = float(cells[2])
        raw_value = int(float(cells[3])) if len(cells) >= 4 else encode_raw(temperature)
    except (ValueError, OverflowError):
        return None
    if not 0 <= raw_value <= RAW_MAX:
        return None
    if not math.isfinite(temperature):
        return None
    if not MIN_CHANNEL <= channel <= MAX_CHANNEL:
        return None
    if not MIN_TEMPERATURE_C <= temperature <= MAX_TEMPERATURE_C:
        return None
    calibrated: Optional[float] = None
    if read_calibrated and len(cells) >= 5 and cells[4].strip():
        try:
            calibrated = float(cells[4])
        except ValueError:
            return None
    return TemperatureReading(timestamp, channel, temperature, raw_value, calibrated)


def parse_csv(text: str) -> CsvImportResult:
    """
    Parse exported CSV text back into readings.

    Comment and blank lines are skipped. Data starts after the first line
    that mentions ``timestamp`` (case-insensitive); a calibrated column is
    read only when that header names it. Bad rows are counted in
    ``rejected_rows`` and otherwise ignored.
    """
    header: Optional[str] = None
    readings: List[TemperatureReading] = []
    rejected = 0
    read_calibrated = False
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if header is None:
            if "timestamp" in stripped.lower():
                header = stripped
                read_calibrated = "calibrated" in stripped.lower()
            continue
        cells = next(csv.reader([stripped]))
        reading = _parse_row([cell.strip() for cell in cells], read_calibrated)
        if reading is None:
            rejected += 1
            continue
        readings.append(reading)

    if header is None:
        raise CsvImportError("CSV header row with a Timestamp column not found")
    if not readings:
        raise NoValidRowsError(rejected)
    if rejected:
        logger.warning("Rejected %d invalid CSV row(s)", rejected)
    readings.sort(key=lambda reading: reading.timestamp)
    return CsvImportResult(
        readings=readings,
        rejected_rows=rejected,
        has_calibration=any(reading.is_calibrated for reading in readings),
    )


def from_csv(text: str) -> List[TemperatureReading]:
    return parse_csv(text).readings


def build_export_filename(
    metadata: ExportMetadata,
    record_count: int,
    *,
    prefix: str = "",
    now: Optional[datetime] = None,
) -> str:
    """File name encoding date, time, registers, frequency, records, pauses and calibration."""
    now = now or datetime.now()
    parts = [f"{prefix}temperature_data", now.strftime("%Y-%m-%d"), now.strftime("%H-%M-%S")]
    serial = metadata.serial
    if serial.custom_registers:
        parts.append(f"custom{len(serial.custom_registers)}regs")
    else:
        end = serial.start_register + serial.register_count - 1
        parts.append(f"reg{serial.start_register}-{end}")
    parts.append(f"{1.0 / metadata.recording.effective_interval:.1f}Hz")
    parts.append(f"{record_count}records")
    if metadata.session is not None and metadata.session.pause_count:
        parts.append(f"{metadata.session.pause_count}pauses")
    name = "_".join(parts)
    if metadata.calibrated_channels:
        name += "_calibrated"
    return name + ".csv"


def write_csv(
    path: Union[str, Path],
    readings: Sequence[TemperatureReading],
    metadata: Optional[ExportMetadata] = None,
) -> Path:
    """Write an export file; the directory is created on demand."""
    target = Path(path)
    kept = valid_readings(readings)
    if not kept:
        raise ExportError("No valid readings to export")
    try:
        text = to_csv(kept, metadata)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    except (OSError, ValueError, TypeError) as exc:
        raise ExportError(f"Failed to export readings to {target}: {exc}") from exc
    logger.info("Exported %d readings to %s", len(kept), target)
    return target


def read_csv(path: Union[str, Path]) -> CsvImportResult:
    source = Path(path)
    try:
        text = source.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise CsvImportError(f"Cannot read {source}: {exc}") from exc
    result = parse_csv(text)
    logger.info(
        "Imported %d readings from %s (%d rejected)", len(result.readings), source, result.rejected_rows
    )
    return result
