from __future__ import annotations

import struct
from typing import Dict, List, Optional

import pytest

from thermolog.modbus.frames import append_crc, build_read_response
from thermolog.modbus.transport import Transport


class FakeSlave(Transport):
    """In-memory Modbus slave answering 0x03 requests from a register map."""

    name = "fake"

    def __init__(self, registers: Optional[Dict[int, int]] = None, slave_id: int = 1):
        self.registers = dict(registers or {})
        self.slave_id = slave_id
        self.faults: List[str] = []
        self.requests: List[bytes] = []
        self.opened = 0
        self.closed = 0
        self._open = False
        self._buffer = bytearray()

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True
        self.opened += 1

    def close(self) -> None:
        self._open = False
        self.closed += 1

    def reset_input(self) -> None:
        self._buffer.clear()

    def write(self, data: bytes) -> None:
        self.requests.append(bytes(data))
        slave, _function, start, quantity = struct.unpack(">BBHH", data[:6])
        fault = self.faults.pop(0) if self.faults else None
        if fault == "timeout":
            return
        values = [self.registers.get(start + offset, 0) for offset in range(quantity)]
        reply = bytearray(build_read_response(self.slave_id, values))
        if fault == "crc":
            reply[-1] ^= 0xFF
        elif fault == "exception":
            reply = bytearray(append_crc(bytes([self.slave_id, 0x83, 0x02])))
        elif fault == "short":
            reply = reply[:4]
        self._buffer.extend(reply)

    def read(self, size: int, timeout: float) -> bytes:
        chunk = bytes(self._buffer[:size])
        del self._buffer[:size]
        return chunk


@pytest.fixture
def fake_slave():
    return FakeSlave
