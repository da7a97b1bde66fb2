"""Periodic acquisition of temperature readings from a Modbus slave or a test signal."""
from __future__ import annotations

import enum
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Sequence

import numpy as np

from ..errors import (
    HandshakeError,
    ProtocolError,
    SchedulerStateError,
    TransportError,
    TransportTimeout,
)
from ..models import (
    OperationLogEntry,
    OperationStatus,
    OperationType,
    TemperatureReading,
    encode_raw,
)
from .config import MonitorConfig, TestModeConfig
from .frames import (
    FrameStats,
    build_read_holding_registers,
    expected_response_length,
    parse_response,
)
from .registers import RegisterBinding, RegisterRequest, group_contiguous, resolve_registers
from .transport import Transport

logger = logging.getLogger(__name__)

OPERATION_LOG_SIZE = 10
HEADER_LENGTH = 3

ReadingSink = Callable[[List[TemperatureReading]], None]
Converter = Callable[[int], float]


def _now_ms() -> int:
    return int(time.time() * 1000)


class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    READING = "reading"
    PAUSED = "paused"


class AcquisitionMode(str, enum.Enum):
    DEVICE = "device"
    TEST = "test"


@dataclass
class ModbusStats:
    success_count: int = 0
    error_count: int = 0
    timeout_count: int = 0
    last_transaction: Optional[int] = None


class OperationLog:
    """The most recent Modbus transactions, newest last."""

    def __init__(self, maxlen: int = OPERATION_LOG_SIZE):
        self._entries: Deque[OperationLogEntry] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def add(self, status: OperationStatus, message: str, op_type: OperationType = OperationType.READ) -> None:
        with self._lock:
            self._entries.append(OperationLogEntry(_now_ms(), op_type, status, message))

    def entries(self) -> List[OperationLogEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class TestSignalGenerator:
    """
    Synthetic readings: per-channel baseline spread across the configured
    range, a slow sinusoid and uniform noise scaled by ``noise_level``.
    Values may leave ``[min, max]``; the range only positions the signal.
    """

    __test__ = False

    SINE_PERIOD_MS = 30000.0

    def __init__(self, config: TestModeConfig, channel_count: int = 10):
        self.config = config
        self.channel_count = max(channel_count, 1)
        self._rng = np.random.default_rng(config.seed)

    def temperature(self, channel: int, timestamp: int) -> float:
        low = float(self.config.temperature_range.min)
        span = float(self.config.temperature_range.max) - low
        base = low + span / self.channel_count * (channel - 1)
        wave = math.sin(timestamp / self.SINE_PERIOD_MS + channel) * span * 0.2
        noise = (self._rng.random() - 0.5) * 2 * self.config.noise_level * span * 0.1
        return base + wave + noise

    def generate(self, channels: Sequence[int], timestamp: int) -> List[TemperatureReading]:
        readings = []
        for channel in channels:
            temperature = self.temperature(channel, timestamp)
            readings.append(TemperatureReading(timestamp, channel, temperature, encode_raw(temperature)))
        return readings


class AcquisitionScheduler:
    """
    Drives one acquisition loop on a background thread.

    Device mode polls the resolved registers once per recording interval
    over an explicit ``Transport``; test mode synthesizes readings at the
    test generation rate. Every produced batch is handed to ``sink``.
    """

    def __init__(
        self,
        config: MonitorConfig,
        sink: ReadingSink,
        converter: Converter,
        transport: Optional[Transport] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.config = config
        self.sink = sink
        self.converter = converter
        self.transport = transport
        self.clock = clock
        self.stats = ModbusStats()
        self.frame_stats = FrameStats()
        self.operation_log = OperationLog()
        self.test_generator = TestSignalGenerator(config.test_mode, config.serial.channel_count())
        self._state = SchedulerState.IDLE
        self._mode: Optional[AcquisitionMode] = None
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._connected = False
        self._reconnects = 0
        self._log = logging.getLogger(__name__)

    # -- state ---------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def mode(self) -> Optional[AcquisitionMode]:
        return self._mode

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def counters(self) -> Dict[str, int]:
        counters = self.frame_stats.stats()
        counters.update(
            reads=self.stats.success_count,
            errors=self.stats.error_count,
            timeouts=self.stats.timeout_count,
            reconnects=self._reconnects,
        )
        return counters

    # -- connection ----------------------------------------------------

    def connect(self, transport: Optional[Transport] = None) -> None:
        """Open the transport and confirm the slave answers before reporting connected."""
        if transport is not None:
            self.transport = transport
        if self.transport is None:
            raise SchedulerStateError("No transport configured")
        if self._connected:
            return
        if not self.transport.is_open:
            self.transport.open()
        bindings = self.bindings()
        if not bindings:
            self.transport.close()
            raise HandshakeError("No registers configured")
        first = bindings[0]
        probe = RegisterRequest(first.physical_address, (first,))
        try:
            self._exchange(probe)
        except (ProtocolError, TransportError, ValueError) as exc:
            self.transport.close()
            self._log.warning("Handshake with %s failed: %s", self.transport.name, exc)
            raise HandshakeError(f"Device did not answer the handshake read: {exc}") from exc
        self._connected = True
        self._log.info("Connected to slave %d via %s", self.config.modbus.slave_id, self.transport.name)

    def disconnect(self) -> None:
        self.stop()
        if self.transport is not None:
            self.transport.close()
        if self._connected:
            self._log.info("Disconnected")
        self._connected = False

    # -- lifecycle -----------------------------------------------------

    def start(self, mode: AcquisitionMode = AcquisitionMode.DEVICE) -> None:
        mode = AcquisitionMode(mode)
        with self._state_lock:
            if self._state is not SchedulerState.IDLE:
                if self._mode is mode:
                    return
                raise SchedulerStateError(
                    f"Cannot start {mode.value} acquisition while {self._mode.value if self._mode else 'idle'} is running"
                )
            if mode is AcquisitionMode.DEVICE and not self._connected:
                raise SchedulerStateError("Device is not connected")
            self._mode = mode
            self._state = SchedulerState.READING
            self._stop_event = threading.Event()
            self._thread = threading.Thread(target=self._run, name=f"acquisition-{mode.value}", daemon=True)
        self._log.info("Acquisition started (%s)", mode.value)
        self._thread.start()

    def pause(self) -> None:
        with self._state_lock:
            if self._state is SchedulerState.READING:
                self._state = SchedulerState.PAUSED
                self._log.info("Acquisition paused")

    def resume(self) -> None:
        with self._state_lock:
            if self._state is SchedulerState.PAUSED:
                self._state = SchedulerState.READING
                self._log.info("Acquisition resumed")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        with self._state_lock:
            was_running = self._state is not SchedulerState.IDLE
            self._state = SchedulerState.IDLE
            self._mode = None
            self._thread = None
            if thread is None or not thread.is_alive():
                self._stop_event = threading.Event()
        if was_running:
            self._log.info("Acquisition stopped")

    # -- one tick ------------------------------------------------------

    def bindings(self) -> List[RegisterBinding]:
        return resolve_registers(self.config.serial)

    def selected_bindings(self) -> List[RegisterBinding]:
        recording = self.config.recording
        return [binding for binding in self.bindings() if recording.is_selected(binding.channel)]

    def tick(self) -> List[TemperatureReading]:
        """Produce one batch of readings for the current mode (without calling the sink)."""
        if self._mode is AcquisitionMode.TEST:
            return self._test_tick()
        return self._device_tick()

    def _test_tick(self) -> List[TemperatureReading]:
        channels = [
            channel
            for channel in range(1, self.config.serial.channel_count() + 1)
            if self.config.recording.is_selected(channel)
        ]
        return self.test_generator.generate(channels, self.clock())

    def _device_tick(self) -> List[TemperatureReading]:
        readings: List[TemperatureReading] = []
        delay = self.config.modbus.response_delay_ms / 1000.0
        for index, request in enumerate(group_contiguous(self.selected_bindings())):
            if self._stop_event.is_set():
                return []
            if index and delay > 0:
                self._stop_event.wait(delay)
            values = self.read_request(request)
            if self._stop_event.is_set():
                # reply arrived after stop was requested
                return []
            if values is None:
                continue
            timestamp = self.clock()
            for binding, raw in zip(request.bindings, values):
                temperature = self.converter(raw)
                if not math.isfinite(temperature):
                    continue
                readings.append(TemperatureReading(timestamp, binding.channel, temperature, raw))
        return readings

    def read_request(self, request: RegisterRequest) -> Optional[List[int]]:
        """Read one contiguous block, retrying up to ``modbus.retries`` extra times."""
        attempts = 1 + max(self.config.modbus.retries, 0)
        for attempt in range(1, attempts + 1):
            try:
                return self._exchange(request)
            except TransportTimeout as exc:
                self._record_failure(OperationStatus.TIMEOUT, request, exc, attempt, attempts)
            except ProtocolError as exc:
                self._record_failure(OperationStatus.ERROR, request, exc, attempt, attempts)
            if self._stop_event.is_set():
                return None
        return None

    def _exchange(self, request: RegisterRequest) -> List[int]:
        assert self.transport is not None
        modbus = self.config.modbus
        frame = build_read_holding_registers(modbus.slave_id, request.start_address, request.quantity)
        timeout = modbus.timeout_ms / 1000.0
        deadline = time.monotonic() + timeout
        self.transport.reset_input()
        self.transport.write(frame)
        reply = self.transport.read(HEADER_LENGTH, timeout)
        total = expected_response_length(reply)
        if total is None:
            raise TransportTimeout(f"No reply within {modbus.timeout_ms} ms")
        if total > len(reply):
            reply += self.transport.read(total - len(reply), max(deadline - time.monotonic(), 0.0))
            if len(reply) < total:
                raise TransportTimeout(f"Incomplete reply ({len(reply)}/{total} bytes) within {modbus.timeout_ms} ms")
        try:
            values = parse_response(reply, slave_id=modbus.slave_id, function_code=modbus.function_code).registers()
            if len(values) != request.quantity:
                raise ProtocolError(f"Expected {request.quantity} registers, got {len(values)}")
        except ProtocolError as exc:
            self.frame_stats.record(exc)
            raise
        self.frame_stats.record()
        self.stats.success_count += 1
        self.stats.last_transaction = self.clock()
        self.operation_log.add(
            OperationStatus.SUCCESS,
            f"Read {request.quantity} register(s) from {request.start_address}",
        )
        return values

    def _record_failure(
        self,
        status: OperationStatus,
        request: RegisterRequest,
        exc: Exception,
        attempt: int,
        attempts: int,
    ) -> None:
        self.stats.error_count += 1
        if status is OperationStatus.TIMEOUT:
            self.stats.timeout_count += 1
        self.stats.last_transaction = self.clock()
        message = f"Read {request.quantity} register(s) from {request.start_address} failed: {exc}"
        self.operation_log.add(status, message)
        if attempt < attempts:
            self._log.debug("%s (attempt %d/%d)", message, attempt, attempts)
        else:
            self._log.warning("%s (giving up after %d attempts)", message, attempts)

    # -- worker --------------------------------------------------------

    def _period(self) -> float:
        if self._mode is AcquisitionMode.TEST:
            return self.config.test_mode.period
        return self.config.recording.effective_interval

    def _run(self) -> None:
        runtime = self.config.runtime
        initial_delay = max(runtime.reconnect_initial_sec, 0.1)
        max_delay = max(runtime.reconnect_max_sec, initial_delay)
        backoff = initial_delay
        next_tick = time.monotonic()
        while not self._stop_event.is_set():
            if self._state is SchedulerState.PAUSED:
                self._stop_event.wait(min(self._period(), 0.5))
                next_tick = time.monotonic()
                continue
            try:
                batch = self.tick()
                backoff = initial_delay
            except TransportError as exc:
                self.stats.error_count += 1
                self.operation_log.add(OperationStatus.ERROR, f"Transport error: {exc}")
                self._log.warning("Transport error: %s", exc)
                self._reopen(min(backoff, max_delay))
                backoff = min(backoff * 2, max_delay)
                next_tick = time.monotonic()
                continue
            except Exception:  # pragma: no cover - unexpected failures must not kill the loop
                self._log.exception("Unexpected error in acquisition tick")
                batch = []
            if batch and not self._stop_event.is_set():
                self.sink(batch)
            next_tick += self._period()
            wait = next_tick - time.monotonic()
            if wait < 0:
                next_tick = time.monotonic()
                wait = 0.0
            self._stop_event.wait(wait)

    def _reopen(self, delay: float) -> None:
        if self.transport is None:
            return
        self.transport.close()
        self._log.info("Reconnecting in %.1fs", delay)
        if self._stop_event.wait(delay):
            return
        try:
            self.transport.open()
        except TransportError as exc:
            self._log.warning("Reconnect failed: %s", exc)
            return
        self._reconnects += 1
        self._log.info("Reconnected to %s", self.transport.name)
