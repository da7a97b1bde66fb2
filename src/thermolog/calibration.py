"""Per-channel additive temperature calibration."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .errors import NoDataError
from .models import CalibrationOffset, TemperatureReading

logger = logging.getLogger(__name__)


def _enabled_offsets(offsets: Iterable[CalibrationOffset]) -> Dict[int, float]:
    lookup: Dict[int, float] = {}
    for entry in offsets:
        if entry.enabled and entry.channel_id not in lookup:
            lookup[entry.channel_id] = float(entry.offset)
    return lookup


def _calibrate_one(reading: TemperatureReading, lookup: Mapping[int, float]) -> TemperatureReading:
    offset = lookup.get(reading.channel)
    if offset is None:
        if reading.calibrated_temperature is None:
            return reading
        return replace(reading, calibrated_temperature=None)
    return replace(reading, calibrated_temperature=reading.temperature + offset)


def apply_calibration(
    offsets: Sequence[CalibrationOffset], history: Sequence[TemperatureReading]
) -> List[TemperatureReading]:
    """
    Recalibrate the whole history with *offsets*.

    Readings on a channel with an enabled offset get
    ``calibrated_temperature = temperature + offset``; every other reading
    loses its calibrated value. Raises NoDataError for an empty history.
    """
    if not history:
        raise NoDataError("No data to calibrate")
    lookup = _enabled_offsets(offsets)
    return [_calibrate_one(reading, lookup) for reading in history]


def latest_readings(history: Iterable[TemperatureReading]) -> Dict[int, TemperatureReading]:
    latest: Dict[int, TemperatureReading] = {}
    for reading in history:
        current = latest.get(reading.channel)
        if current is None or reading.timestamp >= current.timestamp:
            latest[reading.channel] = reading
    return latest


def one_click_offsets(
    target: float,
    latest_by_channel: Mapping[int, TemperatureReading],
    current_offsets: Sequence[CalibrationOffset] = (),
) -> List[CalibrationOffset]:
    """
    Offsets that bring each channel's latest temperature to *target*.

    Channels with a current reading get an enabled offset of
    ``target - temperature``; existing entries for channels without data are
    kept as they are.
    """
    result: List[CalibrationOffset] = []
    seen = set()
    for entry in current_offsets:
        reading = latest_by_channel.get(entry.channel_id)
        if reading is not None:
            result.append(CalibrationOffset(entry.channel_id, target - reading.temperature, True))
        else:
            result.append(entry)
        seen.add(entry.channel_id)
    for channel in sorted(latest_by_channel):
        if channel in seen:
            continue
        reading = latest_by_channel[channel]
        result.append(CalibrationOffset(channel, target - reading.temperature, True))
    return result


class CalibrationEngine:
    """Holds the active offset set and applies it to history and new readings."""

    def __init__(self, offsets: Optional[Sequence[CalibrationOffset]] = None):
        self._offsets: List[CalibrationOffset] = list(offsets or [])
        self._lookup = _enabled_offsets(self._offsets)

    @property
    def offsets(self) -> List[CalibrationOffset]:
        return list(self._offsets)

    @property
    def active(self) -> bool:
        return bool(self._lookup)

    def enabled_channels(self) -> List[int]:
        return sorted(self._lookup)

    def offset_for(self, channel: int) -> Optional[float]:
        return self._lookup.get(channel)

    def apply(
        self, offsets: Sequence[CalibrationOffset], history: Sequence[TemperatureReading]
    ) -> List[TemperatureReading]:
        calibrated = apply_calibration(offsets, history)
        self._offsets = list(offsets)
        self._lookup = _enabled_offsets(self._offsets)
        logger.info(
            "Calibration applied to %d channel(s), %d historical reading(s) rewritten",
            len(self._lookup),
            len(calibrated),
        )
        return calibrated

    def calibrate(self, reading: TemperatureReading) -> TemperatureReading:
        return _calibrate_one(reading, self._lookup)

    def calibrate_many(self, readings: Iterable[TemperatureReading]) -> List[TemperatureReading]:
        return [_calibrate_one(reading, self._lookup) for reading in readings]

    def clear(self) -> None:
        self._offsets = []
        self._lookup = {}
