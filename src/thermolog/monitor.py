"""Top-level orchestration of acquisition, calibration, session tracking and export."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .calibration import CalibrationEngine, latest_readings, one_click_offsets
from .conversion import TemperatureConverter
from .downsample import downsample
from .errors import SchedulerStateError, SessionStateError
from .export import CsvImportResult, ExportMetadata, build_export_filename, read_csv, write_csv
from .metrics import ChannelStats, SamplingInfo, channel_statistics, sampling_info, sliding_window
from .models import CalibrationOffset, TemperatureReading
from .modbus.config import MonitorConfig
from .modbus.scheduler import AcquisitionMode, AcquisitionScheduler, SchedulerState
from .modbus.transport import Transport
from .session import SessionTracker, now_ms
from .store import ReadingStore

logger = logging.getLogger(__name__)

AUTOSAVE_PREFIX = "autosave_"


class TemperatureMonitor:
    """
    Wires the pipeline together: scheduler → converter → calibration → store.

    The session log follows the recording switch: turning recording on
    records ``start`` (or ``resume`` after a pause) and turning it off
    records ``pause``.
    """

    def __init__(self, config: MonitorConfig, transport: Optional[Transport] = None):
        self.config = config
        runtime = config.runtime
        self.store = ReadingStore(
            max_readings=runtime.max_readings,
            cleanup_threshold=runtime.cleanup_threshold,
            cleanup_keep=runtime.cleanup_keep,
        )
        self.converter = TemperatureConverter(config.conversion)
        self.calibration = CalibrationEngine()
        self.session = SessionTracker()
        self.scheduler = AcquisitionScheduler(config, self._on_readings, self.converter.convert, transport)
        self._last_autosave = time.monotonic()

    # -- acquisition ---------------------------------------------------

    @property
    def is_recording(self) -> bool:
        return self.config.recording.is_recording

    @property
    def test_mode(self) -> bool:
        return self.config.test_mode.enabled

    def _on_readings(self, batch: List[TemperatureReading]) -> None:
        self.store.extend(batch, transform=self.calibration.calibrate)

    def connect(self, transport: Optional[Transport] = None) -> None:
        if self.test_mode:
            raise SchedulerStateError("Disable test mode before connecting to a device")
        self.scheduler.connect(transport)

    def disconnect(self) -> None:
        self.scheduler.disconnect()
        if self.is_recording:
            self.config.recording.is_recording = False
            self.session.halt("Recording paused")

    def start_recording(self) -> None:
        if self.test_mode:
            raise SchedulerStateError("Test mode is generating data; stop it before recording from the device")
        if self.scheduler.state is SchedulerState.PAUSED:
            self.scheduler.resume()
        else:
            self.scheduler.start(AcquisitionMode.DEVICE)
        self.config.recording.is_recording = True
        self.session.begin("Recording started")

    def pause_recording(self) -> None:
        if not self.is_recording:
            return
        self.scheduler.pause()
        self.config.recording.is_recording = False
        self.session.halt("Test mode paused" if self.test_mode else "Recording paused")

    def start_test_mode(self) -> None:
        if self.scheduler.mode is AcquisitionMode.DEVICE:
            raise SchedulerStateError("Stop device acquisition before starting test mode")
        self.config.test_mode.enabled = True
        if self.scheduler.state is SchedulerState.PAUSED:
            self.scheduler.resume()
        else:
            self.scheduler.start(AcquisitionMode.TEST)
        self.config.recording.is_recording = True
        self.session.begin("Test mode started")

    def stop_test_mode(self) -> None:
        if not self.test_mode:
            return
        self.scheduler.stop()
        was_recording = self.is_recording
        self.config.test_mode.enabled = False
        self.config.recording.is_recording = False
        if was_recording:
            self.session.halt("Test mode paused")

    def shutdown(self) -> None:
        """Stop acquisition and close the device, keeping data and session log."""
        if self.test_mode:
            self.stop_test_mode()
        else:
            self.disconnect()

    # -- calibration ---------------------------------------------------

    def apply_calibration(self, offsets: Sequence[CalibrationOffset]) -> int:
        """Recalibrate the whole history atomically; returns the rewritten count."""
        rewritten = self.store.rewrite(lambda history: self.calibration.apply(offsets, history))
        return len(rewritten)

    def one_click_calibration(self, target: float) -> List[CalibrationOffset]:
        latest = latest_readings(self.store.snapshot())
        offsets = one_click_offsets(target, latest, self.calibration.offsets)
        self.apply_calibration(offsets)
        return offsets

    def clear_calibration(self) -> None:
        if len(self.store):
            self.apply_calibration([])
        else:
            self.calibration.clear()

    # -- data management -----------------------------------------------

    def readings(self):
        return self.store.snapshot()

    def clear_data(self) -> None:
        if self.is_recording or self.test_mode:
            raise SessionStateError("Stop data collection before clearing current data")
        self.store.clear()
        self.calibration.clear()
        self.session.close("Current data cleared")

    def new_session(self) -> None:
        self.scheduler.disconnect()
        self.config.test_mode.enabled = False
        self.config.recording.is_recording = False
        self.store.clear()
        self.calibration.clear()
        self.session.reset("New session started")
        self._last_autosave = time.monotonic()
        logger.info("New session started")

    def import_csv(self, path: Union[str, Path], continue_writing: bool = False) -> CsvImportResult:
        """
        Load an export file. Replace mode swaps the store and clears the
        session log; continue mode merges the rows and records a ``resume``.
        A failed import leaves everything untouched.
        """
        source = Path(path)
        result = read_csv(source)
        current = self.store.snapshot()
        if continue_writing and current:
            current_channels = {reading.channel for reading in current}
            mismatch = current_channels != set(result.channels)
            merged = sorted(list(current) + result.readings, key=lambda reading: reading.timestamp)
            self.store.replace(merged)
            reason = f"Continued from CSV import: {source.name} ({len(result.readings)} records)"
            if mismatch:
                reason += " - Channel count mismatch detected"
                logger.warning("Imported channels %s differ from current channels %s", result.channels, sorted(current_channels))
            self.session.continue_from(reason)
        else:
            self.store.replace(result.readings)
            self.session.clear()
        return result

    # -- export --------------------------------------------------------

    def export_metadata(self) -> ExportMetadata:
        return ExportMetadata(
            serial=self.config.serial,
            recording=self.config.recording,
            calibrated_channels=self.calibration.enabled_channels(),
            session=self.session.durations() if self.session.events else None,
        )

    def export_csv(self, path: Optional[Union[str, Path]] = None, *, prefix: str = "") -> Path:
        """Write the store to *path*; a directory (or None) gets a generated file name."""
        readings = self.store.snapshot()
        metadata = self.export_metadata()
        target = Path(path) if path is not None else self.config.storage.output_dir
        if path is None or target.is_dir():
            target = target / build_export_filename(metadata, len(readings), prefix=prefix)
        return write_csv(target, readings, metadata)

    def maybe_autosave(self, now: Optional[float] = None) -> Optional[Path]:
        storage = self.config.storage
        if not storage.auto_save_enabled or not len(self.store):
            return None
        current = time.monotonic() if now is None else now
        if current - self._last_autosave < storage.auto_save_interval_min * 60.0:
            return None
        self._last_autosave = current
        path = self.export_csv(prefix=AUTOSAVE_PREFIX)
        logger.info("Autosave written to %s", path)
        return path

    # -- views ---------------------------------------------------------

    def chart_series(self, window_minutes: Optional[float] = None, now: Optional[int] = None) -> Sequence[TemperatureReading]:
        readings: Sequence[TemperatureReading] = self.store.snapshot()
        if window_minutes is not None:
            readings = sliding_window(readings, window_minutes, now if now is not None else now_ms())
        return downsample(readings, calibration_active=self.calibration.active)

    def statistics(self) -> Dict[int, ChannelStats]:
        return channel_statistics(self.store.snapshot())

    def sampling(self) -> SamplingInfo:
        return sampling_info(self.config.recording.interval)

    def counters(self) -> Dict[str, int]:
        counters = self.scheduler.counters()
        counters["readings"] = len(self.store)
        counters["formula_errors"] = self.converter.formula_errors
        return counters
