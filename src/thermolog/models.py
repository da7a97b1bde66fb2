"""Record types flowing through the acquisition pipeline."""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Optional

MIN_CHANNEL = 1
MAX_CHANNEL = 16
RAW_MAX = 0xFFFF


@dataclass(frozen=True)
class TemperatureReading:
    """One temperature sample of one channel."""

    timestamp: int
    channel: int
    temperature: float
    raw_value: int
    calibrated_temperature: Optional[float] = None

    @property
    def is_calibrated(self) -> bool:
        return self.calibrated_temperature is not None

    def is_valid(self) -> bool:
        return (
            MIN_CHANNEL <= self.channel <= MAX_CHANNEL
            and isinstance(self.temperature, (int, float))
            and math.isfinite(self.temperature)
        )


@dataclass(frozen=True)
class CalibrationOffset:
    channel_id: int
    offset: float
    enabled: bool = True


class SessionAction(str, enum.Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


@dataclass(frozen=True)
class SessionEvent:
    timestamp: int
    action: SessionAction
    reason: str = ""


class OperationType(str, enum.Enum):
    READ = "read"
    WRITE = "write"


class OperationStatus(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class OperationLogEntry:
    timestamp: int
    type: OperationType
    status: OperationStatus
    message: str


def encode_raw(temperature: float) -> int:
    """Encode a temperature as a 0.1 °C two's complement register value."""

    value = int(round(temperature * 10))
    return value & RAW_MAX
