from __future__ import annotations

import numpy as np

from thermolog.downsample import DOWNSAMPLE_THRESHOLD, TARGET_POINTS, bucket_size, downsample
from thermolog.models import TemperatureReading


def make_readings(n: int, channels: int = 1, calibrated: bool = False):
    readings = []
    for i in range(n):
        channel = i % channels + 1
        temp = 20.0 + (i % 7)
        readings.append(
            TemperatureReading(
                timestamp=1000 * (i // channels),
                channel=channel,
                temperature=temp,
                raw_value=int(temp * 10),
                calibrated_temperature=temp + 1.0 if calibrated else None,
            )
        )
    return readings


def test_small_input_is_returned_unchanged():
    readings = make_readings(DOWNSAMPLE_THRESHOLD)
    assert downsample(readings) is readings


def test_large_single_channel_input_is_bounded():
    readings = make_readings(20000)
    out = downsample(readings)
    assert 0 < len(out) <= TARGET_POINTS
    assert len(out) == 10000
    # timestamps stay ordered and within the input span
    ts = [r.timestamp for r in out]
    assert ts == sorted(ts)
    assert ts[0] >= readings[0].timestamp and ts[-1] <= readings[-1].timestamp


def test_multi_channel_output_never_exceeds_target():
    readings = make_readings(40000, channels=10)
    out = downsample(readings)
    assert len(out) <= TARGET_POINTS
    assert {r.channel for r in out} == set(range(1, 11))


def test_bucket_means():
    readings = [TemperatureReading(i, 1, float(i % 2), i % 2) for i in range(20000)]
    out = downsample(readings)
    # two readings per bucket: one 0.0 and one 1.0
    assert all(np.isclose(r.temperature, 0.5) for r in out)
    assert out[0].timestamp == 1


def test_raw_mean_rounds_half_up():
    readings = [TemperatureReading(i, 1, 25.0, 250 + i % 2) for i in range(20000)]
    out = downsample(readings)
    assert {r.raw_value for r in out} == {251}


def test_calibrated_mean_and_fallback():
    calibrated = downsample(make_readings(16000, calibrated=True))
    assert all(r.calibrated_temperature is not None for r in calibrated)
    assert np.isclose(calibrated[0].calibrated_temperature - calibrated[0].temperature, 1.0)

    fallback = downsample(make_readings(16000), calibration_active=True)
    assert all(r.calibrated_temperature == r.temperature for r in fallback)

    plain = downsample(make_readings(16000))
    assert all(r.calibrated_temperature is None for r in plain)


def test_unsorted_input_is_sorted_first():
    readings = make_readings(16000)[::-1]
    out = downsample(readings)
    ts = [r.timestamp for r in out]
    assert ts == sorted(ts)


def test_bucket_size():
    assert bucket_size(20000, 1) == 2
    assert bucket_size(40000, 10) == 40
    assert bucket_size(5, 20, target=10) == 5
