"""Thread-safe reading store with atomic whole-history replacement."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .models import TemperatureReading

logger = logging.getLogger(__name__)

MAX_READINGS = 5_000_000
CLEANUP_THRESHOLD = 4_500_000
CLEANUP_KEEP = 3_000_000


class ReadingStore:
    """
    Append-only reading collection shared by the acquisition loop and the
    calibration engine.

    Appends and whole-history rewrites run under the same lock, so a
    calibration rewrite never interleaves with a tick's append. Every change
    bumps ``version``; ``snapshot()`` hands out an immutable tuple.
    """

    def __init__(
        self,
        *,
        max_readings: int = MAX_READINGS,
        cleanup_threshold: int = CLEANUP_THRESHOLD,
        cleanup_keep: int = CLEANUP_KEEP,
    ):
        self._lock = threading.RLock()
        self._readings: List[TemperatureReading] = []
        self._version = 0
        self.max_readings = max_readings
        self.cleanup_threshold = cleanup_threshold
        self.cleanup_keep = cleanup_keep
        self._listeners: List[Callable[[Sequence[TemperatureReading]], None]] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._readings)

    @property
    def version(self) -> int:
        return self._version

    def snapshot(self) -> Tuple[TemperatureReading, ...]:
        with self._lock:
            return tuple(self._readings)

    def extend(
        self,
        readings: Iterable[TemperatureReading],
        transform: Optional[Callable[[TemperatureReading], TemperatureReading]] = None,
    ) -> List[TemperatureReading]:
        """Append readings, optionally mapping each one (e.g. calibration) inside the lock."""
        with self._lock:
            added = [transform(reading) if transform else reading for reading in readings]
            if not added:
                return added
            self._readings.extend(added)
            self._optimize_memory()
            self._version += 1
        for listener in list(self._listeners):
            listener(added)
        return added

    def replace(self, readings: Sequence[TemperatureReading]) -> None:
        with self._lock:
            items = list(readings)
            if len(items) > self.max_readings:
                logger.warning(
                    "Keeping newest %d of %d readings", self.max_readings, len(items)
                )
                items = items[-self.max_readings :]
            self._readings = items
            self._version += 1

    def rewrite(self, func: Callable[[Sequence[TemperatureReading]], List[TemperatureReading]]) -> List[TemperatureReading]:
        """Replace the whole history with ``func(current)`` atomically."""
        with self._lock:
            updated = func(tuple(self._readings))
            self._readings = list(updated)
            self._version += 1
            return self._readings

    def clear(self) -> None:
        with self._lock:
            self._readings = []
            self._version += 1
        logger.info("Readings cleared")

    def subscribe(self, listener: Callable[[Sequence[TemperatureReading]], None]) -> None:
        self._listeners.append(listener)

    def _optimize_memory(self) -> None:
        if len(self._readings) <= self.cleanup_threshold:
            return
        before = len(self._readings)
        self._readings.sort(key=lambda reading: reading.timestamp)
        self._readings = self._readings[-self.cleanup_keep :]
        logger.info("Memory optimization: reduced readings from %d to %d", before, len(self._readings))
