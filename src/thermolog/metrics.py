"""Per-channel statistics and display helpers for reading histories."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .downsample import readings_to_frame
from .models import TemperatureReading

MOVING_AVERAGE_WINDOW = 10
TREND_DEADBAND_C = 0.1


@dataclass(frozen=True)
class ChannelStats:
    channel: int
    current: float
    trend: str
    moving_average: float
    max_temperature: float
    min_temperature: float
    reading_count: int


@dataclass(frozen=True)
class SamplingInfo:
    frequency_hz: float
    interval_label: str


def channel_statistics(
    readings: Sequence[TemperatureReading], window: int = MOVING_AVERAGE_WINDOW
) -> Dict[int, ChannelStats]:
    if not readings:
        return {}
    df = readings_to_frame(readings).sort_values("timestamp", kind="mergesort")
    stats: Dict[int, ChannelStats] = {}
    for channel, group in df.groupby("channel", sort=True):
        temps = group["temperature"].to_numpy(dtype=float)
        current = float(temps[-1])
        previous = float(temps[-2]) if temps.size > 1 else current
        if current > previous + TREND_DEADBAND_C:
            trend = "up"
        elif current < previous - TREND_DEADBAND_C:
            trend = "down"
        else:
            trend = "stable"
        stats[int(channel)] = ChannelStats(
            channel=int(channel),
            current=current,
            trend=trend,
            moving_average=float(np.mean(temps[-window:])),
            max_temperature=float(np.max(temps)),
            min_temperature=float(np.min(temps)),
            reading_count=int(temps.size),
        )
    return stats


def sliding_window(
    readings: Sequence[TemperatureReading], window_minutes: float, now: Optional[int] = None
) -> List[TemperatureReading]:
    """Readings newer than ``now - window_minutes``."""
    if not readings:
        return []
    end = now if now is not None else max(reading.timestamp for reading in readings)
    cutoff = end - window_minutes * 60_000
    return [reading for reading in readings if reading.timestamp >= cutoff]


def sampling_info(interval: float) -> SamplingInfo:
    interval = max(float(interval), 0.1)
    label = f"{interval * 1000:.0f}ms" if interval < 1 else f"{interval:.1f}s"
    return SamplingInfo(frequency_hz=1.0 / interval, interval_label=label)
