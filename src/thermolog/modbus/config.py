from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..errors import ConfigError
from ..models import MAX_CHANNEL

MIN_INTERVAL_SEC = 0.1


@dataclass
class SerialConfig:
    port: str = "/dev/ttyUSB0"
    baud_rate: int = 9600
    parity: str = "none"  # none | even | odd
    stop_bits: int = 1
    data_bits: int = 8
    start_register: int = 0
    register_count: int = 10
    offset_address: int = 40001
    auto_offset: bool = False
    custom_registers: Optional[List[int]] = None

    def channel_count(self) -> int:
        if self.custom_registers:
            return min(len(self.custom_registers), MAX_CHANNEL)
        return self.register_count


@dataclass
class ModbusSettings:
    slave_id: int = 1
    timeout_ms: int = 1000
    retries: int = 3
    response_delay_ms: int = 0
    function_code: int = 0x03


@dataclass
class RecordingConfig:
    interval: float = 1.0  # seconds
    selected_channels: List[bool] = field(default_factory=lambda: [True] * MAX_CHANNEL)
    is_recording: bool = False

    @property
    def effective_interval(self) -> float:
        return max(float(self.interval), MIN_INTERVAL_SEC)

    def is_selected(self, channel: int) -> bool:
        index = channel - 1
        return 0 <= index < len(self.selected_channels) and bool(self.selected_channels[index])


@dataclass
class TemperatureRange:
    min: float = 20.0
    max: float = 80.0


@dataclass
class TestModeConfig:
    __test__ = False  # keep pytest from collecting this dataclass

    enabled: bool = False
    data_generation_rate: float = 1.0  # readings per second
    temperature_range: TemperatureRange = field(default_factory=TemperatureRange)
    noise_level: float = 0.1  # 0-1 scale
    seed: Optional[int] = None

    @property
    def period(self) -> float:
        rate = float(self.data_generation_rate)
        if rate <= 0:
            return 1.0
        return max(1.0 / rate, MIN_INTERVAL_SEC)


@dataclass
class TemperatureConversionConfig:
    mode: str = "builtin"  # builtin | custom
    custom_formula: str = "return registerValue * 0.1;"
    test_value: int = 250


@dataclass
class StorageConfig:
    auto_save_enabled: bool = False
    auto_save_interval_min: float = 10.0
    output_dir: Path = Path("exports")


@dataclass
class RuntimeConfig:
    stats_log_interval: float = 60.0
    reconnect_initial_sec: float = 0.5
    reconnect_max_sec: float = 5.0
    max_readings: int = 5_000_000
    cleanup_threshold: int = 4_500_000
    cleanup_keep: int = 3_000_000


@dataclass
class MonitorConfig:
    serial: SerialConfig = field(default_factory=SerialConfig)
    modbus: ModbusSettings = field(default_factory=ModbusSettings)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    test_mode: TestModeConfig = field(default_factory=TestModeConfig)
    conversion: TemperatureConversionConfig = field(default_factory=TemperatureConversionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)

    def validate(self) -> "MonitorConfig":
        serial = self.serial
        if serial.parity not in {"none", "even", "odd"}:
            raise ConfigError(f"serial.parity must be none, even or odd, got '{serial.parity}'")
        if serial.stop_bits not in {1, 2}:
            raise ConfigError("serial.stop_bits must be 1 or 2")
        if serial.data_bits not in {7, 8}:
            raise ConfigError("serial.data_bits must be 7 or 8")
        if not 1 <= serial.register_count <= MAX_CHANNEL:
            raise ConfigError(f"serial.register_count must be within 1..{MAX_CHANNEL}")
        if not 0 <= serial.start_register <= 0xFFFF:
            raise ConfigError("serial.start_register must be within 0..65535")
        if serial.custom_registers is not None and len(serial.custom_registers) > MAX_CHANNEL:
            raise ConfigError(f"serial.custom_registers accepts at most {MAX_CHANNEL} entries")
        if any(not 0 <= address <= 0xFFFF for address in serial.custom_registers or ()):
            raise ConfigError("serial.custom_registers entries must be within 0..65535")
        if serial.start_register + serial.register_count - 1 > 0xFFFF:
            raise ConfigError("serial.start_register + register_count runs past register 65535")
        if not 1 <= self.modbus.slave_id <= 247:
            raise ConfigError("modbus.slave_id must be within 1..247")
        if self.modbus.timeout_ms <= 0:
            raise ConfigError("modbus.timeout_ms must be positive")
        if self.modbus.retries < 0:
            raise ConfigError("modbus.retries may not be negative")
        if self.modbus.function_code != 0x03:
            raise ConfigError("modbus.function_code must be 3 (read holding registers)")
        if self.recording.interval <= 0:
            raise ConfigError("recording.interval must be positive")
        if self.conversion.mode not in {"builtin", "custom"}:
            raise ConfigError(f"conversion.mode must be builtin or custom, got '{self.conversion.mode}'")
        rng = self.test_mode.temperature_range
        if rng.min > rng.max:
            raise ConfigError("test_mode.temperature_range.min must not exceed max")
        if not 0.0 <= self.test_mode.noise_level <= 1.0:
            raise ConfigError("test_mode.noise_level must be within 0..1")
        return self


PRESETS: Dict[str, Dict[str, Any]] = {
    "1hz": {"recording": {"interval": 1.0}, "test_mode": {"data_generation_rate": 1.0}},
    "2hz": {"recording": {"interval": 0.5}, "test_mode": {"data_generation_rate": 2.0}},
    "5hz": {"recording": {"interval": 0.2}, "test_mode": {"data_generation_rate": 5.0}},
    "10hz": {"recording": {"interval": 0.1}, "test_mode": {"data_generation_rate": 10.0}},
}


def preset_overrides(preset: str) -> list[str]:
    data = PRESETS[preset]
    return [
        f"recording.interval={data['recording']['interval']}",
        f"test_mode.data_generation_rate={data['test_mode']['data_generation_rate']}",
    ]


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> MonitorConfig:
    """
    Load a monitor configuration from JSON and apply CLI-style overrides.

    Overrides are expressed as dotted `key=value` pairs, e.g.:
        ["serial.start_register=40001", "recording.interval=0.5"]
    Passing ``path=None`` starts from the built-in defaults.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        try:
            data = _load_json(config_path)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Unable to read config {config_path}: {exc}") from exc
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    try:
        return config_from_mapping(merged).validate()
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def config_from_mapping(merged: Dict[str, Any]) -> MonitorConfig:
    serial = merged.get("serial") or {}
    modbus = merged.get("modbus") or {}
    recording = merged.get("recording") or {}
    test_mode = merged.get("test_mode") or {}
    conversion = merged.get("conversion") or {}
    storage = merged.get("storage") or {}
    runtime = merged.get("runtime") or {}
    temp_range = test_mode.get("temperature_range") or {}

    custom = serial.get("custom_registers")
    if custom is not None:
        from .registers import parse_custom_registers

        custom = parse_custom_registers(custom)
    selected = recording.get("selected_channels")
    if selected is None:
        selected = [True] * MAX_CHANNEL
    seed = test_mode.get("seed")

    return MonitorConfig(
        serial=SerialConfig(
            port=str(serial.get("port", "/dev/ttyUSB0")),
            baud_rate=int(serial.get("baud_rate", 9600)),
            parity=str(serial.get("parity", "none")).lower(),
            stop_bits=int(serial.get("stop_bits", 1)),
            data_bits=int(serial.get("data_bits", 8)),
            start_register=int(serial.get("start_register", 0)),
            register_count=int(serial.get("register_count", 10)),
            offset_address=int(serial.get("offset_address", 40001)),
            auto_offset=bool(serial.get("auto_offset", False)),
            custom_registers=custom or None,
        ),
        modbus=ModbusSettings(
            slave_id=int(modbus.get("slave_id", 1)),
            timeout_ms=int(modbus.get("timeout_ms", 1000)),
            retries=int(modbus.get("retries", 3)),
            response_delay_ms=int(modbus.get("response_delay_ms", 0)),
            function_code=int(modbus.get("function_code", 0x03)),
        ),
        recording=RecordingConfig(
            interval=float(recording.get("interval", 1.0)),
            selected_channels=[bool(value) for value in selected],
            is_recording=bool(recording.get("is_recording", False)),
        ),
        test_mode=TestModeConfig(
            enabled=bool(test_mode.get("enabled", False)),
            data_generation_rate=float(test_mode.get("data_generation_rate", 1.0)),
            temperature_range=TemperatureRange(
                min=float(temp_range.get("min", 20.0)),
                max=float(temp_range.get("max", 80.0)),
            ),
            noise_level=float(test_mode.get("noise_level", 0.1)),
            seed=int(seed) if seed is not None else None,
        ),
        conversion=TemperatureConversionConfig(
            mode=str(conversion.get("mode", "builtin")).lower(),
            custom_formula=str(conversion.get("custom_formula", "return registerValue * 0.1;")),
            test_value=int(conversion.get("test_value", 250)),
        ),
        storage=StorageConfig(
            auto_save_enabled=bool(storage.get("auto_save_enabled", False)),
            auto_save_interval_min=float(storage.get("auto_save_interval_min", 10.0)),
            output_dir=Path(storage.get("output_dir", "exports")),
        ),
        runtime=RuntimeConfig(
            stats_log_interval=float(runtime.get("stats_log_interval", 60.0)),
            reconnect_initial_sec=float(runtime.get("reconnect_initial_sec", 0.5)),
            reconnect_max_sec=float(runtime.get("reconnect_max_sec", 5.0)),
            max_readings=int(runtime.get("max_readings", 5_000_000)),
            cleanup_threshold=int(runtime.get("cleanup_threshold", 4_500_000)),
            cleanup_keep=int(runtime.get("cleanup_keep", 3_000_000)),
        ),
    )


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ConfigError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ConfigError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    if raw.lower() == "null":
        return None
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
