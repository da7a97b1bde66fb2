"""
Modbus RTU acquisition: configuration, frame codec, register resolution,
byte transports and the polling scheduler.
"""

from .config import MonitorConfig, SerialConfig, load_config
from .frames import FrameStats, build_read_holding_registers, crc16_modbus, parse_response
from .registers import RegisterBinding, resolve_registers
from .scheduler import AcquisitionMode, AcquisitionScheduler, SchedulerState
from .transport import SerialTransport, Transport

__all__ = [
    "MonitorConfig",
    "SerialConfig",
    "load_config",
    "FrameStats",
    "build_read_holding_registers",
    "crc16_modbus",
    "parse_response",
    "RegisterBinding",
    "resolve_registers",
    "AcquisitionMode",
    "AcquisitionScheduler",
    "SchedulerState",
    "SerialTransport",
    "Transport",
]
