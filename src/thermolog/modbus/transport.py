"""Byte transports carrying Modbus RTU frames."""
from __future__ import annotations

import logging
import time
from typing import Optional

try:
    import serial  # type: ignore[import]
except ImportError:  # pragma: no cover - handled when a transport is opened
    serial = None  # type: ignore[assignment]

from ..errors import TransportError
from .config import SerialConfig

logger = logging.getLogger(__name__)

_PARITY = {"none": "N", "even": "E", "odd": "O"}


class Transport:
    """
    Minimal byte pipe used by the scheduler.

    ``read`` returns whatever arrived before the timeout, possibly fewer
    bytes than requested; framing and timeout decisions belong to the caller.
    """

    name = "transport"

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    def open(self) -> None:
        raise NotImplementedError

    def write(self, data: bytes) -> None:
        raise NotImplementedError

    def read(self, size: int, timeout: float) -> bytes:
        raise NotImplementedError

    def reset_input(self) -> None:
        """Drop stale bytes left over from an earlier exchange."""

    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self) -> "Transport":
        if not self.is_open:
            self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class SerialTransport(Transport):
    """
    pyserial backed transport.

    ``url`` accepts anything ``serial.serial_for_url`` understands, so a
    network bridge is reached with ``socket://host:port`` or
    ``rfc2217://host:port`` through the same code path as a local port.
    """

    def __init__(self, config: SerialConfig, url: Optional[str] = None, timeout: float = 1.0):
        self.config = config
        self.url = url
        self.timeout = timeout
        self._handle = None

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.url or self.config.port

    @property
    def is_open(self) -> bool:
        return self._handle is not None and bool(getattr(self._handle, "is_open", True))

    def open(self) -> None:
        if serial is None:
            raise ImportError("pyserial is required but not installed")
        if self.is_open:
            return
        options = dict(
            baudrate=self.config.baud_rate,
            bytesize=self.config.data_bits,
            parity=_PARITY.get(self.config.parity, "N"),
            stopbits=self.config.stop_bits,
            timeout=self.timeout,
        )
        try:
            if self.url:
                self._handle = serial.serial_for_url(self.url, **options)
            else:
                self._handle = serial.Serial(port=self.config.port, **options)
        except (serial.SerialException, ValueError) as exc:
            self._handle = None
            raise TransportError(f"Cannot open {self.name}: {exc}") from exc
        logger.info("Opened %s (%d baud, parity=%s)", self.name, self.config.baud_rate, self.config.parity)

    def write(self, data: bytes) -> None:
        handle = self._require_handle()
        try:
            handle.write(data)
            handle.flush()
        except serial.SerialException as exc:
            raise TransportError(f"Write to {self.name} failed: {exc}") from exc

    def read(self, size: int, timeout: float) -> bytes:
        handle = self._require_handle()
        deadline = time.monotonic() + max(timeout, 0.0)
        buffer = bytearray()
        try:
            while len(buffer) < size:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                handle.timeout = remaining
                chunk = handle.read(size - len(buffer))
                if chunk:
                    buffer.extend(chunk)
        except serial.SerialException as exc:
            raise TransportError(f"Read from {self.name} failed: {exc}") from exc
        return bytes(buffer)

    def reset_input(self) -> None:
        if self._handle is None:
            return
        try:
            self._handle.reset_input_buffer()
        except serial.SerialException as exc:
            raise TransportError(f"Cannot flush {self.name}: {exc}") from exc

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except serial.SerialException as exc:
            logger.debug("Error while closing %s: %s", self.name, exc)
        else:
            logger.info("Closed %s", self.name)

    def _require_handle(self):
        if self._handle is None:
            raise TransportError(f"{self.name} is not open")
        return self._handle
