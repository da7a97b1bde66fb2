from __future__ import annotations

import threading

from thermolog.models import TemperatureReading
from thermolog.store import ReadingStore


def reading(ts: int, channel: int = 1) -> TemperatureReading:
    return TemperatureReading(ts, channel, 20.0, 200)


def test_snapshot_is_immutable_and_versioned():
    store = ReadingStore()
    store.extend([reading(1), reading(2)])
    snap = store.snapshot()
    assert isinstance(snap, tuple)
    version = store.version
    store.extend([reading(3)])
    assert len(snap) == 2
    assert len(store) == 3
    assert store.version == version + 1


def test_extend_applies_transform_and_notifies():
    store = ReadingStore()
    seen = []
    store.subscribe(seen.extend)
    added = store.extend([reading(1)], transform=lambda r: TemperatureReading(r.timestamp, r.channel, 1.0, 10))
    assert added[0].temperature == 1.0
    assert seen == added
    assert store.extend([]) == []


def test_memory_cleanup_keeps_newest():
    store = ReadingStore(max_readings=10, cleanup_threshold=8, cleanup_keep=5)
    store.extend([reading(ts) for ts in range(9)])
    assert [r.timestamp for r in store.snapshot()] == [4, 5, 6, 7, 8]


def test_replace_truncates_to_max_readings():
    store = ReadingStore(max_readings=3)
    store.replace([reading(ts) for ts in range(5)])
    assert [r.timestamp for r in store.snapshot()] == [2, 3, 4]


def test_rewrite_is_exclusive_with_appends():
    store = ReadingStore()
    store.extend([reading(0)])
    started = threading.Event()
    release = threading.Event()

    def slow_rewrite(history):
        started.set()
        release.wait(1.0)
        return [TemperatureReading(r.timestamp, r.channel, r.temperature, r.raw_value, 99.0) for r in history]

    worker = threading.Thread(target=store.rewrite, args=(slow_rewrite,))
    worker.start()
    started.wait(1.0)
    appender = threading.Thread(target=store.extend, args=([reading(1)],))
    appender.start()
    appender.join(0.05)
    # the append waits for the rewrite to finish
    assert appender.is_alive()
    release.set()
    worker.join(1.0)
    appender.join(1.0)
    snap = store.snapshot()
    assert [r.timestamp for r in snap] == [0, 1]
    assert snap[0].calibrated_temperature == 99.0
    assert snap[1].calibrated_temperature is None
