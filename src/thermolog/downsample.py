"""Bucket-average downsampling of reading series for charts."""
from __future__ import annotations

import logging
import math
from typing import List, Sequence

import numpy as np
import pandas as pd

from .models import TemperatureReading

logger = logging.getLogger(__name__)

DOWNSAMPLE_THRESHOLD = 15000
TARGET_POINTS = 10000


def readings_to_frame(readings: Sequence[TemperatureReading]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "timestamp": np.fromiter((r.timestamp for r in readings), dtype=np.int64, count=len(readings)),
            "channel": np.fromiter((r.channel for r in readings), dtype=np.int64, count=len(readings)),
            "temperature": np.fromiter((r.temperature for r in readings), dtype=float, count=len(readings)),
            "raw_value": np.fromiter((r.raw_value for r in readings), dtype=float, count=len(readings)),
            "calibrated": np.fromiter(
                (np.nan if r.calibrated_temperature is None else r.calibrated_temperature for r in readings),
                dtype=float,
                count=len(readings),
            ),
        }
    )


def bucket_size(n: int, channels: int, target: int = TARGET_POINTS) -> int:
    """
    Number of consecutive readings per bucket.

    Each bucket emits one point per channel present, so the bucket count is
    limited to ``target // channels`` to keep the output within *target*.
    """
    buckets = max(target // max(channels, 1), 1)
    return max(math.ceil(n / buckets), 1)


def downsample(
    readings: Sequence[TemperatureReading],
    *,
    calibration_active: bool = False,
    threshold: int = DOWNSAMPLE_THRESHOLD,
    target: int = TARGET_POINTS,
) -> Sequence[TemperatureReading]:
    """
    Reduce *readings* to at most *target* points when there are more than
    *threshold* of them; smaller inputs are returned unchanged.

    Readings are sorted by time, cut into contiguous buckets (channels mixed)
    and averaged per channel inside each bucket. The synthetic reading takes
    the timestamp of the bucket's middle element. When calibration is active
    and a bucket has no calibrated values for a channel, the calibrated field
    borrows the mean uncalibrated temperature so both series stay aligned.
    """
    n = len(readings)
    if n <= threshold:
        return readings

    df = readings_to_frame(readings).sort_values("timestamp", kind="mergesort").reset_index(drop=True)
    channels = int(df["channel"].nunique())
    size = bucket_size(n, channels, target)
    df["bucket"] = np.arange(n) // size

    # Middle-index timestamp of each bucket.
    starts = np.arange(0, n, size)
    lengths = np.minimum(size, n - starts)
    mid_ts = df["timestamp"].to_numpy()[starts + lengths // 2]

    grouped = (
        df.groupby(["bucket", "channel"], sort=True)
        .agg(
            temperature=("temperature", "mean"),
            raw_value=("raw_value", "mean"),
            calibrated=("calibrated", "mean"),
        )
        .reset_index()
    )

    out: List[TemperatureReading] = []
    for bucket, channel, temperature, raw_value, calibrated in grouped.itertuples(index=False, name=None):
        if np.isnan(calibrated):
            calibrated_value = float(temperature) if calibration_active else None
        else:
            calibrated_value = float(calibrated)
        out.append(
            TemperatureReading(
                timestamp=int(mid_ts[int(bucket)]),
                channel=int(channel),
                temperature=float(temperature),
                raw_value=int(math.floor(raw_value + 0.5)),
                calibrated_temperature=calibrated_value,
            )
        )
    logger.debug("Downsampled %d readings to %d (bucket size %d, %d channels)", n, len(out), size, channels)
    return out
